"""DuckDB storage for documents and the knowledge graph."""

from .manager import DatabaseManager

__all__ = ["DatabaseManager"]

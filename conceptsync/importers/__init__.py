"""Document importers for various source formats."""

from .base import BaseImporter, ImportedDocument
from .mock import MockImporter
from .json_export import JSONExportImporter

__all__ = ["BaseImporter", "ImportedDocument", "MockImporter", "JSONExportImporter"]

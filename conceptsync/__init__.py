"""
ConceptSync: a concept synchronization and knowledge-graph engine.

Turns edited documents into deduplicated concepts, knowledge data, object tags
and properties, re-deriving only what changed.
"""

__version__ = "0.1.0"
__author__ = "ConceptSync Project"

# Import main components
from .database import DatabaseManager
from .models import Block, Document, Concept, KnowledgeDatum, SyncStatus, InspectionReport
from .agents import AgentRunner
from .importers import BaseImporter, MockImporter, JSONExportImporter
from .engine import KnowledgeEngine

__all__ = [
    "DatabaseManager",
    "Block",
    "Document",
    "Concept",
    "KnowledgeDatum",
    "SyncStatus",
    "InspectionReport",
    "AgentRunner",
    "BaseImporter",
    "MockImporter",
    "JSONExportImporter",
    "KnowledgeEngine"
]

"""
Base importer interface for ConceptSync.

This module defines the abstract interface that all document importers must implement.
"""

from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel, Field

from ..models import Block, DOC_TYPE_NOTE


class ImportedDocument(BaseModel):
    """
    A document read from a source, ready to be stored.
    """

    title: str = Field(default="Untitled")

    blocks: List[Block] = Field(default_factory=list)

    doc_type: str = Field(default=DOC_TYPE_NOTE)


class BaseImporter(ABC):
    """
    Abstract base class for all document importers.

    Each importer converts data from a specific source format (editor JSON
    export, built-in samples, ...) into ImportedDocument objects.
    """

    @abstractmethod
    def get_all_documents(self) -> List[ImportedDocument]:
        """
        Retrieve all documents from the data source.

        Returns:
            List of ImportedDocument objects
        """
        pass

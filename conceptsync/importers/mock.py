"""
Mock importer for testing ConceptSync.

This module provides a small hardcoded set of documents for exercising the
pipeline without a real export.
"""

from typing import List

from ..models import Block, InlineContent, INLINE_LINK
from .base import BaseImporter, ImportedDocument


def _paragraph(block_id: str, text: str, children: List[Block] = None) -> Block:
    return Block(
        id=block_id,
        content=[InlineContent(text=text)],
        children=children or []
    )


class MockImporter(BaseImporter):
    """
    Mock importer that returns hardcoded sample documents.

    Used for testing the core pipeline without requiring real data sources.
    """

    def __init__(self):
        """Initialize the mock importer with sample data."""
        self._documents = self._create_documents()

    def get_all_documents(self) -> List[ImportedDocument]:
        """
        Return all sample documents.

        Returns:
            List of sample ImportedDocument objects
        """
        return self._documents

    def _create_documents(self) -> List[ImportedDocument]:
        """
        Create the sample documents.

        Returns:
            Documents about a chip maker and a central bank
        """
        documents = []

        # Document 1: semiconductor market notes with a nested block and a link
        documents.append(ImportedDocument(
            title="Semiconductor Market Notes",
            blocks=[
                _paragraph(
                    "techglobal-intro",
                    "TechGlobal powers 85% of premium smartphones.",
                    children=[
                        _paragraph(
                            "techglobal-rival",
                            "Its closest rival is Vision Chips, which lost two major contracts this year."
                        )
                    ]
                ),
                Block(
                    id="techglobal-source",
                    content=[
                        InlineContent(text="Market share figures come from "),
                        InlineContent(type=INLINE_LINK, text="the annual report", href="https://example.com/report"),
                        InlineContent(text=".")
                    ]
                )
            ]
        ))

        # Document 2: central bank meeting notes
        documents.append(ImportedDocument(
            title="Verdantis Economy",
            blocks=[
                _paragraph(
                    "verdantis-rates",
                    "The Central Institution of Verdantis sets interest rates on Monday and Thursday."
                ),
                _paragraph(
                    "verdantis-policy",
                    "Analysts expect the Central Institution to hold its policy rate at 3.5%."
                )
            ]
        ))

        return documents

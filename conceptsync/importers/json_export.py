"""
JSON export importer for ConceptSync.

Reads documents from a JSON file in the block editor's format. The file holds
either a list of documents or an object with a "documents" list. A document
has a "title" and either "blocks" (editor blocks) or a plain "content" string,
which is split into one paragraph per blank-line separated chunk.
"""

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List

from ..models import Block, InlineContent
from .base import BaseImporter, ImportedDocument


class JSONExportImporter(BaseImporter):
    """
    Importer for editor JSON exports.
    """

    def __init__(self, export_path: str):
        """
        Initialize the importer.

        Args:
            export_path: Path to the JSON export file

        Raises:
            FileNotFoundError: If the export file does not exist
        """
        self.export_path = Path(export_path)
        if not self.export_path.exists():
            raise FileNotFoundError(f"Export file not found: {self.export_path}")

    def get_all_documents(self) -> List[ImportedDocument]:
        """
        Parse every document of the export.

        Documents that cannot be parsed are logged and skipped.

        Returns:
            List of ImportedDocument objects

        Raises:
            ValueError: If the file is not valid JSON or has no document list
        """
        try:
            with open(self.export_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {self.export_path}: {e}")

        if isinstance(data, dict):
            data = data.get("documents")
        if not isinstance(data, list):
            raise ValueError(f"No document list found in {self.export_path}")

        documents = []
        for index, raw in enumerate(data):
            try:
                documents.append(self._parse_document(raw))
            except (TypeError, ValueError) as e:
                logging.warning(f"Skipping document {index} of {self.export_path}: {e}")

        logging.info(f"Read {len(documents)} documents from {self.export_path}")
        return documents

    def _parse_document(self, raw: Dict[str, Any]) -> ImportedDocument:
        if not isinstance(raw, dict):
            raise TypeError("document must be an object")

        if "blocks" in raw:
            blocks = [self._parse_block(block) for block in raw["blocks"]]
        else:
            chunks = [chunk.strip() for chunk in str(raw.get("content", "")).split("\n\n")]
            blocks = [
                Block(id=str(uuid.uuid4()), content=[InlineContent(text=chunk)])
                for chunk in chunks if chunk
            ]

        return ImportedDocument(title=raw.get("title") or "Untitled", blocks=blocks)

    def _parse_block(self, raw: Any) -> Block:
        """Build a block, accepting plain strings for text-only content."""
        if isinstance(raw, str):
            return Block(id=str(uuid.uuid4()), content=[InlineContent(text=raw)])

        content = raw.get("content", [])
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]

        return Block(
            id=raw.get("id") or str(uuid.uuid4()),
            type=raw.get("type", "paragraph"),
            content=[InlineContent(**item) for item in content],
            children=[self._parse_block(child) for child in raw.get("children", [])]
        )

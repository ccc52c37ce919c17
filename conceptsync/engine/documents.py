"""
Document service for ConceptSync.

Stores documents and keeps the inspection ledger in step with their blocks:
every new or changed block is marked edited, every vanished block is marked
for removal. The Block Inspector then works from the ledger alone.
"""

import logging
import uuid
from typing import List, Optional

from ..database import DatabaseManager
from ..errors import BlockNotFoundError, DocumentNotFoundError
from ..models import Block, Document, LedgerEntry, DOC_TYPE_NOTE, SOURCE_DOCUMENT
from .text import block_to_text, find_block, iter_blocks


class DocumentService:
    """
    Document and block access plus ledger diffing.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db

    def create_document(
        self,
        title: str,
        blocks: Optional[List[Block]] = None,
        doc_type: str = DOC_TYPE_NOTE
    ) -> str:
        """
        Create a document and mark all its blocks for inspection.

        Args:
            title: Document title
            blocks: Initial block tree
            doc_type: Document type

        Returns:
            The new document id
        """
        document = Document(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            title=title,
            doc_type=doc_type,
            blocks=blocks or []
        )
        self.db.insert_document(document)
        self.sync_ledger(document)

        logging.info(f"Created document '{title}' ({document.id})")
        return document.id

    def get_document(self, document_id: str) -> Document:
        """
        Return a document.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self.db.get_document(document_id)
        if not document:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return document

    def list_documents(self, include_archived: bool = False) -> List[Document]:
        return self.db.list_documents(include_archived=include_archived)

    def sync_ledger(self, document: Document) -> List[str]:
        """
        Diff a document's blocks against its ledger.

        New and changed blocks are marked edited; ledger entries of blocks no
        longer in the document are marked to_remove. A restored block whose
        content did not change is simply un-marked. Every block of an
        archived document is marked to_remove.

        Args:
            document: The document as currently stored

        Returns:
            Ids of the blocks marked edited
        """
        changed = []
        present = set()

        if document.is_archived:
            for entry in self.db.list_ledger_entries(document.id):
                if not entry.to_remove:
                    self.db.update_ledger_entry(document.id, entry.block_id, to_remove=True)
            return changed

        for block in iter_blocks(document.blocks):
            present.add(block.id)
            entry = self.db.get_ledger_entry(document.id, block.id)

            if self.db.block_needs_processing(document.id, block):
                content_hash = self.db.calculate_content_hash(block)
                self.db.upsert_ledger_entry(LedgerEntry(
                    document_id=document.id,
                    block_id=block.id,
                    edited=True,
                    to_remove=False,
                    concept_synced=False,
                    mentioned_concepts=entry.mentioned_concepts if entry else [],
                    references=entry.references if entry else [],
                    content_hash=content_hash
                ))
                changed.append(block.id)
            elif entry.to_remove:
                self.db.update_ledger_entry(document.id, block.id, to_remove=False)

        for entry in self.db.list_ledger_entries(document.id):
            if entry.block_id not in present and not entry.to_remove:
                self.db.update_ledger_entry(document.id, entry.block_id, to_remove=True)

        if changed:
            logging.debug(f"Marked {len(changed)} blocks of document {document.id} as edited")
        return changed

    def update_content(self, document_id: str, blocks: List[Block]) -> List[str]:
        """
        Replace a document's blocks and diff-mark the ledger.

        Returns:
            Ids of the blocks marked edited
        """
        document = self.get_document(document_id)
        self.db.update_document(document_id, blocks=blocks)
        document.blocks = blocks
        return self.sync_ledger(document)

    def rename_document(self, document_id: str, title: str) -> None:
        self.get_document(document_id)
        self.db.update_document(document_id, title=title)

    def archive_document(self, document_id: str) -> None:
        """Archive a document and queue every block of it for cleanup."""
        document = self.get_document(document_id)
        self.db.update_document(document_id, is_archived=True)
        document.is_archived = True
        self.sync_ledger(document)
        logging.info(f"Archived document {document_id}")

    def get_block_by_id(self, document_id: str, block_id: str) -> Block:
        """
        Find a block anywhere in a document's block tree.

        Raises:
            DocumentNotFoundError: If the document does not exist
            BlockNotFoundError: If the block is not in the document
        """
        block = find_block(self.get_document(document_id).blocks, block_id)
        if not block:
            raise BlockNotFoundError(f"Block {block_id} not found in document {document_id}")
        return block

    def get_block_text(self, document_id: str, block_id: str) -> str:
        return block_to_text(self.get_block_by_id(document_id, block_id))

    def get_source_text(self, source_type: str, source_id: str, source_section: str) -> Optional[str]:
        """
        Current text behind a knowledge source.

        Returns:
            The block text, or None when the document is archived or gone or
            the block no longer exists

        Raises:
            ValueError: If the source type is not supported
        """
        if source_type != SOURCE_DOCUMENT:
            raise ValueError(f"Unsupported knowledge source type: {source_type}")

        document = self.db.get_document(source_id)
        if not document or document.is_archived:
            return None

        block = find_block(document.blocks, source_section)
        return block_to_text(block) if block else None

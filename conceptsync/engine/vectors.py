"""
Vector index over the embeddings table.

Embeddings are tagged with the attribute they were computed from (type), the
owning entity (source_id) and optional scopes (context_id, file_id). An
attribute is always re-embedded as a whole: replace() embeds, then deletes
the old vectors and inserts the new ones.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from ..database import DatabaseManager
from ..models import EmbeddingType, VectorEmbedding, VectorHit
from .text import clean_embedding_text


class VectorIndex:
    """
    Stores and searches embeddings through the database manager.
    """

    def __init__(self, db: DatabaseManager, runner):
        """
        Args:
            db: Database manager holding the embeddings table
            runner: Object exposing embed(texts) -> List[List[float]]
        """
        self.db = db
        self.runner = runner

    def upsert_many(
        self,
        texts: List[str],
        embedding_type: EmbeddingType,
        source_id: str,
        context_id: Optional[str] = None,
        file_id: Optional[str] = None
    ) -> List[str]:
        """
        Embed several texts in one batch and store them.

        Texts that are empty after cleaning are skipped.

        Returns:
            Ids of the stored embeddings
        """
        cleaned, vectors = self._embed(texts)
        return self._store(cleaned, vectors, embedding_type, source_id, context_id, file_id)

    def _embed(self, texts: List[str]) -> Tuple[List[str], List[List[float]]]:
        cleaned = [clean_embedding_text(text) for text in texts]
        cleaned = [text for text in cleaned if text]
        if not cleaned:
            return [], []
        return cleaned, self.runner.embed(cleaned)

    def _store(
        self,
        cleaned: List[str],
        vectors: List[List[float]],
        embedding_type: EmbeddingType,
        source_id: str,
        context_id: Optional[str],
        file_id: Optional[str]
    ) -> List[str]:
        ids = []
        for text, vector in zip(cleaned, vectors):
            embedding_id = str(uuid.uuid4())
            self.db.insert_embedding(VectorEmbedding(
                id=embedding_id,
                user_id=self.db.user_id,
                type=embedding_type,
                source_id=source_id,
                context_id=context_id,
                file_id=file_id,
                text=text,
                embedding=vector
            ))
            ids.append(embedding_id)

        logging.debug(f"Stored {len(ids)} {EmbeddingType(embedding_type).value} embeddings for {source_id}")
        return ids

    def upsert(
        self,
        text: Optional[str],
        embedding_type: EmbeddingType,
        source_id: str,
        context_id: Optional[str] = None,
        file_id: Optional[str] = None
    ) -> List[str]:
        """Embed and store one text. Empty text stores nothing."""
        return self.upsert_many([text or ""], embedding_type, source_id, context_id, file_id)

    def search(
        self,
        text: str,
        embedding_type: EmbeddingType,
        context_id: Optional[str] = None,
        file_id: Optional[str] = None,
        source_ids: Optional[List[str]] = None,
        limit: int = 3
    ) -> List[VectorHit]:
        """
        Find the stored embeddings closest to a text.

        Args:
            text: Query text
            embedding_type: Only embeddings of this type are searched
            context_id: Optional context scope
            file_id: Optional file scope
            source_ids: Optional set of allowed source ids
            limit: Maximum number of hits

        Returns:
            Hits ranked by cosine similarity
        """
        cleaned = clean_embedding_text(text)
        if not cleaned:
            return []

        vector = self.runner.embed([cleaned])[0]
        return self.db.search_embeddings(
            vector,
            embedding_type,
            context_id=context_id,
            file_id=file_id,
            source_ids=source_ids,
            limit=limit
        )

    def delete(self, source_id: str, embedding_type: EmbeddingType) -> int:
        """Remove every embedding of one source attribute. Nothing to delete is fine."""
        return self.db.delete_embeddings(source_id, embedding_type)

    def replace(
        self,
        texts: List[str],
        embedding_type: EmbeddingType,
        source_id: str,
        context_id: Optional[str] = None,
        file_id: Optional[str] = None
    ) -> List[str]:
        """
        Swap every embedding of one source attribute for fresh ones.

        The new vectors are computed before anything is deleted, so a failed
        embedding call leaves the old embeddings in place.
        """
        cleaned, vectors = self._embed(texts)
        self.delete(source_id, embedding_type)
        return self._store(cleaned, vectors, embedding_type, source_id, context_id, file_id)

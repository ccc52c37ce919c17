"""
Database manager for ConceptSync.

This module handles all storage using DuckDB: documents and their inspection
ledger, the knowledge graph tables, vector embeddings and the log of every AI
agent call. Every row carries the id of the user that owns it and every query
is scoped to the user the manager was opened for.
"""

import duckdb
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..config import config
from ..errors import AuthorizationError
from ..models import (
    Block, Document, LedgerEntry, Concept, KnowledgeDatum, ObjectTemplate,
    PropertyTemplate, ObjectTag, ObjectTagProperty, VectorEmbedding, VectorHit,
    Reference, EmbeddingType
)


# Columns stored as JSON text
_JSON_COLUMNS = {
    "documents": {"blocks", "mentioned_concepts"},
    "inspection_ledger": {"mentioned_concepts", "block_references"},
    "concepts": {"aliases"},
    "knowledge_datas": {"quotes"},
    "object_tags": {"source_kds"},
    "object_tag_properties": {"source_kds"},
}

# Columns that may be patched after insert
_UPDATABLE_COLUMNS = {
    "documents": {
        "title", "doc_type", "blocks", "is_archived", "is_published",
        "concept_id", "mentioned_concepts"
    },
    "inspection_ledger": {
        "edited", "to_remove", "concept_synced", "mentioned_concepts",
        "block_references", "content_hash"
    },
    "concepts": {
        "aliases", "alias_string", "description", "synced", "hidden", "root_document"
    },
    "knowledge_datas": {"extracted_text", "quotes", "processed", "updated"},
    "object_templates": {"template_name", "description"},
    "property_templates": {"name", "type", "autosync", "position"},
    "object_tags": {"object_name", "object_description", "source_kds"},
    "object_tag_properties": {"name", "type", "value", "source_kds", "autosync"},
}


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class DatabaseManager:
    """
    Manages the DuckDB database holding documents and the knowledge graph.
    """

    def __init__(self, db_path: Optional[str] = None, user_id: Optional[str] = None):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the DuckDB database file (defaults to config value)
            user_id: Owner of every row read or written (defaults to config value)
        """
        self.db_path = db_path or config.database_filename
        self.user_id = user_id or config.user_id
        self.connection = None

    def connect(self):
        """Establish connection to the database."""
        self.connection = duckdb.connect(self.db_path)

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def _check_connection(self):
        if not self.connection:
            raise RuntimeError("Database connection not established")

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        self._check_connection()

        # Insertion order for every table; timestamps can tie within a transaction
        self.connection.execute("CREATE SEQUENCE IF NOT EXISTS row_seq;")

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                title VARCHAR NOT NULL,
                doc_type VARCHAR NOT NULL DEFAULT 'note',
                blocks TEXT NOT NULL DEFAULT '[]',
                is_archived BOOLEAN NOT NULL DEFAULT FALSE,
                is_published BOOLEAN NOT NULL DEFAULT FALSE,
                concept_id VARCHAR,
                inspect_in_progress BOOLEAN NOT NULL DEFAULT FALSE,
                mentioned_concepts TEXT NOT NULL DEFAULT '[]',
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # One row per (document, block)
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS inspection_ledger (
                document_id VARCHAR NOT NULL,
                block_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                edited BOOLEAN NOT NULL DEFAULT TRUE,
                to_remove BOOLEAN NOT NULL DEFAULT FALSE,
                concept_synced BOOLEAN NOT NULL DEFAULT FALSE,
                mentioned_concepts TEXT NOT NULL DEFAULT '[]',
                block_references TEXT NOT NULL DEFAULT '[]',
                content_hash VARCHAR,
                seq BIGINT DEFAULT nextval('row_seq'),
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (document_id, block_id)
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS concepts (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                aliases TEXT NOT NULL DEFAULT '[]',
                alias_string VARCHAR NOT NULL DEFAULT '',
                description TEXT,
                synced BOOLEAN NOT NULL DEFAULT FALSE,
                hidden BOOLEAN NOT NULL DEFAULT FALSE,
                root_document VARCHAR,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS knowledge_datas (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                concept_id VARCHAR NOT NULL,
                source_type VARCHAR NOT NULL,
                source_id VARCHAR NOT NULL,
                source_section VARCHAR NOT NULL DEFAULT '',
                extracted_text TEXT,
                quotes TEXT NOT NULL DEFAULT '[]',
                processed BOOLEAN NOT NULL DEFAULT FALSE,
                updated BOOLEAN NOT NULL DEFAULT FALSE,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (concept_id, source_type, source_id, source_section)
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS object_templates (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                concept_id VARCHAR NOT NULL,
                template_name VARCHAR NOT NULL,
                description TEXT,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS property_templates (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                template_id VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                type VARCHAR NOT NULL DEFAULT 'string',
                autosync VARCHAR NOT NULL DEFAULT 'default',
                position INTEGER NOT NULL DEFAULT 0,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS object_tags (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                concept_id VARCHAR NOT NULL,
                object_concept_id VARCHAR NOT NULL,
                template_id VARCHAR NOT NULL,
                object_name VARCHAR NOT NULL,
                object_description TEXT,
                source_kds TEXT NOT NULL DEFAULT '[]',
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS object_tag_properties (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                object_tag_id VARCHAR NOT NULL,
                concept_id VARCHAR NOT NULL,
                property_template_id VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                type VARCHAR NOT NULL DEFAULT 'string',
                value TEXT,
                source_kds TEXT NOT NULL DEFAULT '[]',
                autosync VARCHAR NOT NULL DEFAULT 'default',
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Embedding rows are only ever inserted and deleted
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS embeddings (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                type VARCHAR NOT NULL,
                source_id VARCHAR NOT NULL,
                context_id VARCHAR,
                file_id VARCHAR,
                text TEXT NOT NULL,
                embedding DOUBLE[] NOT NULL,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS kd_references (
                id VARCHAR PRIMARY KEY,
                user_id VARCHAR NOT NULL,
                source_kd_id VARCHAR NOT NULL,
                ref_kd_id VARCHAR NOT NULL,
                description TEXT,
                affirmation_score DOUBLE,
                seq BIGINT DEFAULT nextval('row_seq'),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Create sequence for auto-incrementing call_id in ai_agent_calls
        self.connection.execute("CREATE SEQUENCE IF NOT EXISTS call_id_seq;")
        self.connection.execute("""
            CREATE TABLE IF NOT EXISTS ai_agent_calls (
                call_id BIGINT PRIMARY KEY DEFAULT nextval('call_id_seq'),
                user_id VARCHAR NOT NULL,
                agent_name VARCHAR NOT NULL,
                input_data TEXT NOT NULL,
                system_prompt TEXT,
                user_prompt TEXT NOT NULL,
                model_name VARCHAR NOT NULL,
                raw_response TEXT NOT NULL,
                parsed_response TEXT,
                success BOOLEAN NOT NULL,
                error_message TEXT,
                execution_time_ms INTEGER,
                document_id VARCHAR,
                concept_id VARCHAR,
                called_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Run a query and return its rows as dictionaries keyed by column name."""
        self._check_connection()
        cursor = self.connection.execute(sql, params or [])
        columns = [column[0] for column in cursor.description]
        return [dict(zip(columns, row)) for row in cursor.fetchall()]

    def _decode(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        for column in _JSON_COLUMNS.get(table, ()):
            if column in row and isinstance(row[column], str):
                row[column] = json.loads(row[column])
        return row

    def _encode(self, table: str, column: str, value: Any) -> Any:
        if column in _JSON_COLUMNS.get(table, ()):
            return json.dumps(value, default=_json_default)
        return value

    def _check_owner(self, table: str, row: Dict[str, Any]) -> None:
        if row["user_id"] != self.user_id:
            raise AuthorizationError(
                f"{table} row '{row.get('id')}' is not owned by user '{self.user_id}'"
            )

    def _get_owned(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query(f"SELECT * FROM {table} WHERE id = ?", [row_id])
        if not rows:
            return None
        self._check_owner(table, rows[0])
        return self._decode(table, rows[0])

    def _insert(self, table: str, values: Dict[str, Any]) -> None:
        self._check_connection()
        columns = list(values.keys())
        placeholders = ", ".join("?" for _ in columns)
        self.connection.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            [self._encode(table, column, values[column]) for column in columns]
        )

    def _update(self, table: str, where: str, params: List[Any], fields: Dict[str, Any]) -> None:
        """
        Patch columns of the rows matching a WHERE clause owned by the current user.

        Args:
            table: Table name
            where: SQL condition using positional parameters
            params: Parameters for the condition
            fields: Column values to write

        Raises:
            ValueError: If a column is not updatable
        """
        self._check_connection()
        if not fields:
            return

        unknown = set(fields) - _UPDATABLE_COLUMNS[table]
        if unknown:
            raise ValueError(f"Cannot update columns {sorted(unknown)} of {table}")

        assignments = [f"{column} = ?" for column in fields]
        values = [self._encode(table, column, value) for column, value in fields.items()]
        assignments.append("updated_at = ?")
        values.append(datetime.now())

        self.connection.execute(
            f"UPDATE {table} SET {', '.join(assignments)} WHERE ({where}) AND user_id = ?",
            values + params + [self.user_id]
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def insert_document(self, document: Document) -> None:
        """
        Store a new document.

        Args:
            document: The document to insert
        """
        self._insert("documents", {
            "id": document.id,
            "user_id": document.user_id,
            "title": document.title,
            "doc_type": document.doc_type,
            "blocks": document.blocks,
            "is_archived": document.is_archived,
            "is_published": document.is_published,
            "concept_id": document.concept_id,
            "inspect_in_progress": document.inspect_in_progress,
            "mentioned_concepts": document.mentioned_concepts,
        })

    def get_document(self, document_id: str) -> Optional[Document]:
        """
        Retrieve a document by id.

        Args:
            document_id: The document id

        Returns:
            The document if found, None otherwise

        Raises:
            AuthorizationError: If the document belongs to another user
        """
        row = self._get_owned("documents", document_id)
        return Document(**row) if row else None

    def list_documents(self, include_archived: bool = False, doc_type: Optional[str] = None) -> List[Document]:
        """
        List the user's documents in creation order.

        Args:
            include_archived: Also return archived documents
            doc_type: Optional filter by document type

        Returns:
            List of documents
        """
        query = "SELECT * FROM documents WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        if not include_archived:
            query += " AND is_archived = FALSE"

        if doc_type:
            query += " AND doc_type = ?"
            params.append(doc_type)

        query += " ORDER BY seq"
        return [Document(**self._decode("documents", row)) for row in self._query(query, params)]

    def find_document_by_title(self, title: str) -> Optional[Document]:
        """Return the user's first non-archived document with this exact title."""
        rows = self._query("""
            SELECT * FROM documents
            WHERE user_id = ? AND title = ? AND is_archived = FALSE
            ORDER BY seq
            LIMIT 1
        """, [self.user_id, title])
        return Document(**self._decode("documents", rows[0])) if rows else None

    def update_document(self, document_id: str, **fields) -> None:
        """Patch columns of a document."""
        self._update("documents", "id = ?", [document_id], fields)

    def try_begin_inspection(self, document_id: str) -> bool:
        """
        Claim the inspection guard of a document.

        The check and the set happen in one statement, so two callers can never
        both see the flag cleared.

        Args:
            document_id: The document to claim

        Returns:
            True if the guard was claimed, False if another pass holds it
        """
        self._check_connection()
        result = self.connection.execute("""
            UPDATE documents SET inspect_in_progress = TRUE
            WHERE id = ? AND user_id = ? AND inspect_in_progress = FALSE
            RETURNING id
        """, [document_id, self.user_id]).fetchone()
        return result is not None

    def end_inspection(self, document_id: str) -> None:
        """Release the inspection guard of a document."""
        self._check_connection()
        self.connection.execute("""
            UPDATE documents SET inspect_in_progress = FALSE
            WHERE id = ? AND user_id = ?
        """, [document_id, self.user_id])

    # ------------------------------------------------------------------
    # Inspection ledger
    # ------------------------------------------------------------------

    def calculate_content_hash(self, block: Block) -> str:
        """
        Calculate SHA-256 hash of a block's canonical JSON representation.

        Children are excluded: every nested block has its own ledger entry.

        Args:
            block: The block to hash

        Returns:
            The SHA-256 hash as a hex string
        """
        # Convert to dict, then to JSON with sorted keys for consistent hashing
        block_dict = block.model_dump(exclude={"children"})
        json_str = json.dumps(block_dict, sort_keys=True, ensure_ascii=True)
        return hashlib.sha256(json_str.encode('utf-8')).hexdigest()

    def block_needs_processing(self, document_id: str, block: Block) -> bool:
        """
        Check if a block is new or changed since its ledger entry was written.

        Args:
            document_id: The document containing the block
            block: The block to check

        Returns:
            True if the block needs processing
        """
        entry = self.get_ledger_entry(document_id, block.id)

        if not entry:
            # Block has never been seen
            return True

        # Check if content has changed
        return entry.content_hash != self.calculate_content_hash(block)

    def _ledger_from_row(self, row: Dict[str, Any]) -> LedgerEntry:
        row = self._decode("inspection_ledger", row)
        row["references"] = row.pop("block_references")
        return LedgerEntry(**row)

    def upsert_ledger_entry(self, entry: LedgerEntry) -> None:
        """
        Insert a ledger entry or overwrite the existing one for the same block.

        Args:
            entry: The ledger entry to store
        """
        if self.get_ledger_entry(entry.document_id, entry.block_id):
            self._update(
                "inspection_ledger",
                "document_id = ? AND block_id = ?",
                [entry.document_id, entry.block_id],
                {
                    "edited": entry.edited,
                    "to_remove": entry.to_remove,
                    "concept_synced": entry.concept_synced,
                    "mentioned_concepts": entry.mentioned_concepts,
                    "block_references": entry.references,
                    "content_hash": entry.content_hash,
                }
            )
            return

        self._insert("inspection_ledger", {
            "document_id": entry.document_id,
            "block_id": entry.block_id,
            "user_id": self.user_id,
            "edited": entry.edited,
            "to_remove": entry.to_remove,
            "concept_synced": entry.concept_synced,
            "mentioned_concepts": entry.mentioned_concepts,
            "block_references": entry.references,
            "content_hash": entry.content_hash,
        })

    def get_ledger_entry(self, document_id: str, block_id: str) -> Optional[LedgerEntry]:
        """Retrieve the ledger entry of one block, or None."""
        rows = self._query("""
            SELECT * FROM inspection_ledger
            WHERE document_id = ? AND block_id = ? AND user_id = ?
        """, [document_id, block_id, self.user_id])
        return self._ledger_from_row(rows[0]) if rows else None

    def list_ledger_entries(self, document_id: str) -> List[LedgerEntry]:
        """List every ledger entry of a document."""
        rows = self._query("""
            SELECT * FROM inspection_ledger
            WHERE document_id = ? AND user_id = ?
            ORDER BY seq
        """, [document_id, self.user_id])
        return [self._ledger_from_row(row) for row in rows]

    def update_ledger_entry(self, document_id: str, block_id: str, **fields) -> None:
        """Patch columns of a ledger entry. Use 'references' for the reference list."""
        if "references" in fields:
            fields["block_references"] = fields.pop("references")
        self._update(
            "inspection_ledger", "document_id = ? AND block_id = ?", [document_id, block_id], fields
        )

    def delete_ledger_entry(self, document_id: str, block_id: str) -> None:
        """Remove a ledger entry."""
        self._check_connection()
        self.connection.execute("""
            DELETE FROM inspection_ledger
            WHERE document_id = ? AND block_id = ? AND user_id = ?
        """, [document_id, block_id, self.user_id])

    # ------------------------------------------------------------------
    # Concepts
    # ------------------------------------------------------------------

    def insert_concept(self, concept: Concept) -> None:
        """Store a new concept."""
        self._insert("concepts", {
            "id": concept.id,
            "user_id": concept.user_id,
            "aliases": concept.aliases,
            "alias_string": concept.alias_string,
            "description": concept.description,
            "synced": concept.synced,
            "hidden": concept.hidden,
            "root_document": concept.root_document,
        })

    def get_concept(self, concept_id: str) -> Optional[Concept]:
        """
        Retrieve a concept by id.

        Args:
            concept_id: The concept id

        Returns:
            The concept if found, None otherwise

        Raises:
            AuthorizationError: If the concept belongs to another user
        """
        row = self._get_owned("concepts", concept_id)
        return Concept(**row) if row else None

    def list_concepts(self, synced: Optional[bool] = None, include_hidden: bool = True) -> List[Concept]:
        """
        List the user's concepts.

        Args:
            synced: Optional filter on the synced flag
            include_hidden: Also return hidden concepts

        Returns:
            List of concepts ordered by creation
        """
        query = "SELECT * FROM concepts WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        if synced is not None:
            query += " AND synced = ?"
            params.append(synced)

        if not include_hidden:
            query += " AND hidden = FALSE"

        query += " ORDER BY seq"
        return [Concept(**self._decode("concepts", row)) for row in self._query(query, params)]

    def list_concepts_with_counts(self) -> List[Tuple[Concept, int]]:
        """List visible concepts together with the number of knowledge data each has."""
        rows = self._query("""
            SELECT c.*,
                   (SELECT COUNT(*) FROM knowledge_datas k WHERE k.concept_id = c.id) AS kd_count
            FROM concepts c
            WHERE c.user_id = ? AND c.hidden = FALSE
            ORDER BY c.seq
        """, [self.user_id])

        results = []
        for row in rows:
            kd_count = row.pop("kd_count")
            results.append((Concept(**self._decode("concepts", row)), int(kd_count)))
        return results

    def search_concepts_by_alias(self, query: str, limit: int = 10) -> List[Concept]:
        """
        Text search over the alias string of the user's concepts.

        Args:
            query: Substring to look for, case-insensitive
            limit: Maximum number of results

        Returns:
            Matching concepts, shortest alias string first
        """
        rows = self._query("""
            SELECT * FROM concepts
            WHERE user_id = ? AND alias_string ILIKE ?
            ORDER BY length(alias_string), id
            LIMIT ?
        """, [self.user_id, f"%{query}%", limit])
        return [Concept(**self._decode("concepts", row)) for row in rows]

    def update_concept(self, concept_id: str, **fields) -> None:
        """Patch columns of a concept."""
        self._update("concepts", "id = ?", [concept_id], fields)

    def delete_concept(self, concept_id: str) -> None:
        """Delete a concept row."""
        self._check_connection()
        self.connection.execute(
            "DELETE FROM concepts WHERE id = ? AND user_id = ?", [concept_id, self.user_id]
        )

    # ------------------------------------------------------------------
    # Knowledge data
    # ------------------------------------------------------------------

    def find_knowledge_data(
        self,
        concept_id: str,
        source_type: str,
        source_id: str,
        source_section: str = ""
    ) -> Optional[KnowledgeDatum]:
        """Look up the knowledge datum for one (concept, source) tuple."""
        rows = self._query("""
            SELECT * FROM knowledge_datas
            WHERE user_id = ? AND concept_id = ? AND source_type = ?
              AND source_id = ? AND source_section = ?
        """, [self.user_id, concept_id, source_type, source_id, source_section])
        return KnowledgeDatum(**self._decode("knowledge_datas", rows[0])) if rows else None

    def add_knowledge_data(self, kd: KnowledgeDatum) -> Tuple[str, bool]:
        """
        Insert a knowledge datum unless one exists for the same (concept, source) tuple.

        Args:
            kd: The knowledge datum to insert

        Returns:
            The id of the stored row and whether it was created by this call
        """
        existing = self.find_knowledge_data(kd.concept_id, kd.source_type, kd.source_id, kd.source_section)
        if existing:
            return existing.id, False

        try:
            self._insert("knowledge_datas", {
                "id": kd.id,
                "user_id": kd.user_id,
                "concept_id": kd.concept_id,
                "source_type": kd.source_type,
                "source_id": kd.source_id,
                "source_section": kd.source_section,
                "extracted_text": kd.extracted_text,
                "quotes": kd.quotes,
                "processed": kd.processed,
                "updated": kd.updated,
            })
            return kd.id, True
        except duckdb.IntegrityError:
            # Inserted by someone else between the check and the insert
            existing = self.find_knowledge_data(kd.concept_id, kd.source_type, kd.source_id, kd.source_section)
            if not existing:
                raise
            logging.info(f"Knowledge datum for concept {kd.concept_id} and block {kd.source_section} already stored")
            return existing.id, False

    def get_knowledge_data(self, kd_id: str) -> Optional[KnowledgeDatum]:
        """Retrieve a knowledge datum by id."""
        row = self._get_owned("knowledge_datas", kd_id)
        return KnowledgeDatum(**row) if row else None

    def list_knowledge_data(
        self,
        concept_id: Optional[str] = None,
        source_type: Optional[str] = None,
        source_id: Optional[str] = None,
        source_section: Optional[str] = None,
        processed: Optional[bool] = None,
        updated: Optional[bool] = None
    ) -> List[KnowledgeDatum]:
        """
        List knowledge data with optional filters.

        Args:
            concept_id: Filter by concept
            source_type: Filter by source type
            source_id: Filter by source document
            source_section: Filter by block id
            processed: Filter on the processed flag
            updated: Filter on the updated flag

        Returns:
            Matching knowledge data in creation order
        """
        query = "SELECT * FROM knowledge_datas WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        for column, value in (
            ("concept_id", concept_id),
            ("source_type", source_type),
            ("source_id", source_id),
            ("source_section", source_section),
            ("processed", processed),
            ("updated", updated),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)

        query += " ORDER BY seq"
        return [KnowledgeDatum(**self._decode("knowledge_datas", row)) for row in self._query(query, params)]

    def update_knowledge_data(self, kd_id: str, **fields) -> None:
        """Patch columns of a knowledge datum."""
        self._update("knowledge_datas", "id = ?", [kd_id], fields)

    def delete_knowledge_data(self, kd_id: str) -> None:
        """Delete a knowledge datum row."""
        self._check_connection()
        self.connection.execute(
            "DELETE FROM knowledge_datas WHERE id = ? AND user_id = ?", [kd_id, self.user_id]
        )

    # ------------------------------------------------------------------
    # Object templates
    # ------------------------------------------------------------------

    def insert_object_template(self, template: ObjectTemplate) -> None:
        """Store a new object template."""
        self._insert("object_templates", {
            "id": template.id,
            "user_id": template.user_id,
            "concept_id": template.concept_id,
            "template_name": template.template_name,
            "description": template.description,
        })

    def get_object_template(self, template_id: str) -> Optional[ObjectTemplate]:
        """Retrieve an object template by id."""
        row = self._get_owned("object_templates", template_id)
        return ObjectTemplate(**row) if row else None

    def list_object_templates(self, concept_id: str) -> List[ObjectTemplate]:
        """List the templates owned by a parent concept."""
        rows = self._query("""
            SELECT * FROM object_templates
            WHERE user_id = ? AND concept_id = ?
            ORDER BY seq
        """, [self.user_id, concept_id])
        return [ObjectTemplate(**row) for row in rows]

    def delete_object_template(self, template_id: str) -> None:
        """Delete an object template together with its property templates."""
        self._check_connection()
        self.connection.execute(
            "DELETE FROM property_templates WHERE template_id = ? AND user_id = ?",
            [template_id, self.user_id]
        )
        self.connection.execute(
            "DELETE FROM object_templates WHERE id = ? AND user_id = ?", [template_id, self.user_id]
        )

    def insert_property_template(self, prop: PropertyTemplate) -> None:
        """Store a new property template."""
        self._insert("property_templates", {
            "id": prop.id,
            "user_id": prop.user_id,
            "template_id": prop.template_id,
            "name": prop.name,
            "type": prop.type,
            "autosync": prop.autosync,
            "position": prop.position,
        })

    def list_property_templates(self, template_id: str) -> List[PropertyTemplate]:
        """List the property templates of a template in position order."""
        rows = self._query("""
            SELECT * FROM property_templates
            WHERE user_id = ? AND template_id = ?
            ORDER BY position, id
        """, [self.user_id, template_id])
        return [PropertyTemplate(**row) for row in rows]

    # ------------------------------------------------------------------
    # Object tags and their properties
    # ------------------------------------------------------------------

    def insert_object_tag(self, tag: ObjectTag) -> None:
        """Store a new object tag."""
        self._insert("object_tags", {
            "id": tag.id,
            "user_id": tag.user_id,
            "concept_id": tag.concept_id,
            "object_concept_id": tag.object_concept_id,
            "template_id": tag.template_id,
            "object_name": tag.object_name,
            "object_description": tag.object_description,
            "source_kds": tag.source_kds,
        })

    def get_object_tag(self, tag_id: str) -> Optional[ObjectTag]:
        """Retrieve an object tag by id."""
        row = self._get_owned("object_tags", tag_id)
        return ObjectTag(**row) if row else None

    def find_object_tag(self, concept_id: str, template_id: str) -> Optional[ObjectTag]:
        """Return the tag of a concept under a template, if any."""
        tags = self.list_object_tags(concept_id=concept_id, template_id=template_id)
        return tags[0] if tags else None

    def list_object_tags(
        self,
        concept_id: Optional[str] = None,
        object_concept_id: Optional[str] = None,
        template_id: Optional[str] = None,
        source_kd_id: Optional[str] = None
    ) -> List[ObjectTag]:
        """
        List object tags with optional filters.

        Args:
            concept_id: Tags of this (tagged) concept
            object_concept_id: Tags whose parent is this concept
            template_id: Tags grouped under this template
            source_kd_id: Tags inferred from this knowledge datum

        Returns:
            Matching tags in creation order
        """
        query = "SELECT * FROM object_tags WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        for column, value in (
            ("concept_id", concept_id),
            ("object_concept_id", object_concept_id),
            ("template_id", template_id),
        ):
            if value is not None:
                query += f" AND {column} = ?"
                params.append(value)

        if source_kd_id is not None:
            query += " AND source_kds LIKE ?"
            params.append(f'%"{source_kd_id}"%')

        query += " ORDER BY seq"
        tags = [ObjectTag(**self._decode("object_tags", row)) for row in self._query(query, params)]

        if source_kd_id is not None:
            tags = [tag for tag in tags if source_kd_id in tag.source_kds]
        return tags

    def update_object_tag(self, tag_id: str, **fields) -> None:
        """Patch columns of an object tag."""
        self._update("object_tags", "id = ?", [tag_id], fields)

    def delete_object_tag(self, tag_id: str) -> None:
        """Delete an object tag together with its properties."""
        self._check_connection()
        self.connection.execute(
            "DELETE FROM object_tag_properties WHERE object_tag_id = ? AND user_id = ?",
            [tag_id, self.user_id]
        )
        self.connection.execute(
            "DELETE FROM object_tags WHERE id = ? AND user_id = ?", [tag_id, self.user_id]
        )

    def insert_object_tag_property(self, prop: ObjectTagProperty) -> None:
        """Store a new object tag property."""
        self._insert("object_tag_properties", {
            "id": prop.id,
            "user_id": prop.user_id,
            "object_tag_id": prop.object_tag_id,
            "concept_id": prop.concept_id,
            "property_template_id": prop.property_template_id,
            "name": prop.name,
            "type": prop.type,
            "value": prop.value,
            "source_kds": prop.source_kds,
            "autosync": prop.autosync,
        })

    def get_object_tag_property(self, property_id: str) -> Optional[ObjectTagProperty]:
        """Retrieve an object tag property by id."""
        row = self._get_owned("object_tag_properties", property_id)
        return ObjectTagProperty(**row) if row else None

    def list_object_tag_properties(
        self,
        object_tag_id: Optional[str] = None,
        concept_id: Optional[str] = None,
        source_kd_id: Optional[str] = None
    ) -> List[ObjectTagProperty]:
        """
        List object tag properties with optional filters.

        Args:
            object_tag_id: Properties of this tag
            concept_id: Properties of any tag of this concept
            source_kd_id: Properties backed by this knowledge datum

        Returns:
            Matching properties in creation order
        """
        query = "SELECT * FROM object_tag_properties WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        if object_tag_id is not None:
            query += " AND object_tag_id = ?"
            params.append(object_tag_id)

        if concept_id is not None:
            query += " AND concept_id = ?"
            params.append(concept_id)

        if source_kd_id is not None:
            query += " AND source_kds LIKE ?"
            params.append(f'%"{source_kd_id}"%')

        query += " ORDER BY seq"
        props = [
            ObjectTagProperty(**self._decode("object_tag_properties", row))
            for row in self._query(query, params)
        ]

        if source_kd_id is not None:
            props = [prop for prop in props if source_kd_id in prop.source_kds]
        return props

    def update_object_tag_property(self, property_id: str, **fields) -> None:
        """Patch columns of an object tag property."""
        self._update("object_tag_properties", "id = ?", [property_id], fields)

    def delete_object_tag_property(self, property_id: str) -> None:
        """Delete an object tag property."""
        self._check_connection()
        self.connection.execute(
            "DELETE FROM object_tag_properties WHERE id = ? AND user_id = ?",
            [property_id, self.user_id]
        )

    # ------------------------------------------------------------------
    # Vector embeddings
    # ------------------------------------------------------------------

    def insert_embedding(self, embedding: VectorEmbedding) -> None:
        """Store a vector embedding."""
        self._insert("embeddings", {
            "id": embedding.id,
            "user_id": embedding.user_id,
            "type": embedding.type.value,
            "source_id": embedding.source_id,
            "context_id": embedding.context_id,
            "file_id": embedding.file_id,
            "text": embedding.text,
            "embedding": [float(x) for x in embedding.embedding],
        })

    def list_embeddings(
        self,
        source_id: Optional[str] = None,
        embedding_type: Optional[EmbeddingType] = None
    ) -> List[VectorEmbedding]:
        """List stored embeddings, optionally for one source and type."""
        query = "SELECT * FROM embeddings WHERE user_id = ?"
        params: List[Any] = [self.user_id]

        if source_id is not None:
            query += " AND source_id = ?"
            params.append(source_id)

        if embedding_type is not None:
            query += " AND type = ?"
            params.append(EmbeddingType(embedding_type).value)

        query += " ORDER BY seq"
        return [VectorEmbedding(**row) for row in self._query(query, params)]

    def search_embeddings(
        self,
        vector: List[float],
        embedding_type: EmbeddingType,
        context_id: Optional[str] = None,
        file_id: Optional[str] = None,
        source_ids: Optional[List[str]] = None,
        limit: int = 3
    ) -> List[VectorHit]:
        """
        Rank stored embeddings of one type by cosine similarity to a vector.

        Args:
            vector: The query embedding
            embedding_type: Only embeddings of this type are considered
            context_id: Restrict to this context (e.g. the owning concept)
            file_id: Restrict to this file (e.g. the source document)
            source_ids: Restrict to these source ids
            limit: Maximum number of hits

        Returns:
            Hits ordered by descending similarity, ties broken by embedding id
        """
        query = """
            SELECT id, source_id, list_cosine_similarity(embedding, CAST(? AS DOUBLE[])) AS score
            FROM embeddings
            WHERE user_id = ? AND type = ?
        """
        params: List[Any] = [[float(x) for x in vector], self.user_id, EmbeddingType(embedding_type).value]

        if context_id is not None:
            query += " AND context_id = ?"
            params.append(context_id)

        if file_id is not None:
            query += " AND file_id = ?"
            params.append(file_id)

        if source_ids is not None:
            if not source_ids:
                return []
            query += f" AND source_id IN ({', '.join('?' for _ in source_ids)})"
            params.extend(source_ids)

        query += " ORDER BY score DESC, id LIMIT ?"
        params.append(limit)

        return [
            VectorHit(embedding_id=row["id"], source_id=row["source_id"], score=float(row["score"]))
            for row in self._query(query, params)
            if row["score"] is not None
        ]

    def delete_embeddings(self, source_id: str, embedding_type: EmbeddingType) -> int:
        """
        Delete every embedding of one source and type.

        Returns:
            Number of deleted rows (zero is not an error)
        """
        self._check_connection()
        result = self.connection.execute("""
            DELETE FROM embeddings
            WHERE user_id = ? AND source_id = ? AND type = ?
            RETURNING id
        """, [self.user_id, source_id, EmbeddingType(embedding_type).value]).fetchall()
        return len(result)

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def insert_reference(self, reference: Reference) -> None:
        """Store a reference between two knowledge data."""
        self._insert("kd_references", {
            "id": reference.id,
            "user_id": reference.user_id,
            "source_kd_id": reference.source_kd_id,
            "ref_kd_id": reference.ref_kd_id,
            "description": reference.description,
            "affirmation_score": reference.affirmation_score,
        })

    def list_references(self, kd_id: str) -> List[Reference]:
        """List references where the knowledge datum is either end."""
        rows = self._query("""
            SELECT * FROM kd_references
            WHERE user_id = ? AND (source_kd_id = ? OR ref_kd_id = ?)
            ORDER BY seq
        """, [self.user_id, kd_id, kd_id])
        return [Reference(**row) for row in rows]

    def delete_references(self, kd_id: str) -> int:
        """
        Delete every reference touching a knowledge datum.

        Returns:
            Number of deleted rows
        """
        self._check_connection()
        result = self.connection.execute("""
            DELETE FROM kd_references
            WHERE user_id = ? AND (source_kd_id = ? OR ref_kd_id = ?)
            RETURNING id
        """, [self.user_id, kd_id, kd_id]).fetchall()
        return len(result)

    # ------------------------------------------------------------------
    # AI agent call log
    # ------------------------------------------------------------------

    def log_ai_agent_call(
        self,
        agent_name: str,
        input_data: str,
        system_prompt: Optional[str],
        user_prompt: str,
        model_name: str,
        raw_response: str,
        parsed_response: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[int] = None,
        document_id: Optional[str] = None,
        concept_id: Optional[str] = None
    ) -> Optional[int]:
        """
        Log an AI agent call to the database for reproducibility.

        Returns:
            The id of the logged call
        """
        self._check_connection()

        result = self.connection.execute("""
            INSERT INTO ai_agent_calls (
                user_id, agent_name, input_data, system_prompt, user_prompt, model_name,
                raw_response, parsed_response, success, error_message,
                execution_time_ms, document_id, concept_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING call_id
        """, [
            self.user_id, agent_name, input_data, system_prompt, user_prompt, model_name,
            raw_response, parsed_response, success, error_message,
            execution_time_ms, document_id, concept_id
        ]).fetchone()
        return result[0] if result else None

    def get_ai_agent_calls(
        self,
        agent_name: Optional[str] = None,
        document_id: Optional[str] = None,
        concept_id: Optional[str] = None,
        success_only: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict]:
        """
        Retrieve AI agent calls from the database.

        Args:
            agent_name: Filter by agent name (optional)
            document_id: Filter by document ID (optional)
            concept_id: Filter by concept ID (optional)
            success_only: Only return successful calls
            limit: Limit number of results

        Returns:
            List of AI agent call records, most recent first
        """
        query = """
            SELECT call_id, agent_name, input_data, system_prompt, user_prompt,
                   model_name, raw_response, parsed_response, success, error_message,
                   execution_time_ms, document_id, concept_id, called_at
            FROM ai_agent_calls
            WHERE user_id = ?
        """
        params: List[Any] = [self.user_id]

        if agent_name:
            query += " AND agent_name = ?"
            params.append(agent_name)

        if document_id:
            query += " AND document_id = ?"
            params.append(document_id)

        if concept_id:
            query += " AND concept_id = ?"
            params.append(concept_id)

        if success_only:
            query += " AND success = true"

        query += " ORDER BY call_id DESC"

        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        return self._query(query, params)

    def reproduce_ai_agent_call(self, call_id: int) -> Optional[Dict]:
        """
        Get all details needed to reproduce a specific AI agent call.

        Args:
            call_id: The ID of the call to reproduce

        Returns:
            Dictionary with all call details or None if not found
        """
        rows = self._query("""
            SELECT call_id, agent_name, input_data, system_prompt, user_prompt,
                   model_name, raw_response, parsed_response, success, error_message,
                   execution_time_ms, document_id, concept_id, called_at
            FROM ai_agent_calls
            WHERE call_id = ? AND user_id = ?
        """, [call_id, self.user_id])
        return rows[0] if rows else None

"""SQLite document records and FTS5 full-text chunk search."""

import json
import logging
import re
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import DuplicateContentError, IndexReadError, IndexWriteError
from .models import Document, IndexState

logger = logging.getLogger(__name__)

_FTS_TOKEN = re.compile(r"\w+", re.UNICODE)


def build_fts5_query(query: str) -> Optional[str]:
    """Quote every word so FTS5 operators and punctuation are matched literally.

    Quoted tokens separated by spaces are an implicit AND in FTS5. Returns
    None when the query has no word characters at all.
    """
    tokens = _FTS_TOKEN.findall(query)
    if not tokens:
        return None
    return " ".join('"' + t.replace('"', '""') + '"' for t in tokens)


def _connect(db_path: str) -> sqlite3.Connection:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    if db_path != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    return conn


# ============ Capability interfaces ============

class DocumentStore(ABC):
    """Relational store for document records."""

    @abstractmethod
    def create(self, document: Document) -> Document:
        """Insert a document. Raises DuplicateContentError on (owner_id, content_hash) conflict."""

    @abstractmethod
    def get(self, document_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def find_by_content_hash(self, owner_id: str, content_hash: str) -> Optional[Document]:
        pass

    @abstractmethod
    def list_documents(self, owner_id: Optional[str] = None) -> List[Document]:
        """Documents newest first, optionally for one owner."""

    @abstractmethod
    def update_index_state(
        self,
        document_id: str,
        state: IndexState,
        indexed_chunk_count: int,
        total_chunk_count: int,
    ) -> None:
        pass

    @abstractmethod
    def delete(self, document_id: str) -> bool:
        pass


class TextIndex(ABC):
    """Secondary, non-vector store of chunk text."""

    @abstractmethod
    def upsert(self, chunk_id: str, text: str, metadata: Dict[str, Any]) -> None:
        """Insert or replace chunk text. Raises IndexWriteError."""

    @abstractmethod
    def search(self, query: str, k: int, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Keyword/substring match over chunk text.

        Rows carry chunk_id, document_id, ordinal, display_name, content.
        Raises IndexReadError.
        """

    @abstractmethod
    def delete_document(self, document_id: str) -> int:
        """Remove every chunk of a document atomically. Raises IndexWriteError."""

    @abstractmethod
    def count(self, document_id: Optional[str] = None) -> int:
        pass


# ============ SQLite implementations ============

class SQLiteDocumentStore(DocumentStore):
    """Document records in SQLite; (owner_id, content_hash) is unique."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn = _connect(db_path)
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock, self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    display_name TEXT NOT NULL,
                    original_name TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    byte_size INTEGER NOT NULL,
                    content_hash TEXT NOT NULL,
                    name_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    source_path TEXT,
                    index_state TEXT NOT NULL,
                    indexed_chunk_count INTEGER NOT NULL DEFAULT 0,
                    total_chunk_count INTEGER NOT NULL DEFAULT 0,
                    metadata_json TEXT,
                    UNIQUE (owner_id, content_hash)
                )
            """)
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_id)"
            )

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            owner_id=row["owner_id"],
            display_name=row["display_name"],
            original_name=row["original_name"],
            mime_type=row["mime_type"],
            byte_size=row["byte_size"],
            content_hash=row["content_hash"],
            name_hash=row["name_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            source_path=row["source_path"],
            index_state=IndexState(row["index_state"]),
            indexed_chunk_count=row["indexed_chunk_count"],
            total_chunk_count=row["total_chunk_count"],
            metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
        )

    def create(self, document: Document) -> Document:
        try:
            with self._lock, self.conn:
                self.conn.execute("""
                    INSERT INTO documents (
                        id, owner_id, display_name, original_name, mime_type, byte_size,
                        content_hash, name_hash, created_at, source_path, index_state,
                        indexed_chunk_count, total_chunk_count, metadata_json
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    document.id,
                    document.owner_id,
                    document.display_name,
                    document.original_name,
                    document.mime_type,
                    document.byte_size,
                    document.content_hash,
                    document.name_hash,
                    document.created_at.isoformat(),
                    document.source_path,
                    document.index_state.value,
                    document.indexed_chunk_count,
                    document.total_chunk_count,
                    json.dumps(document.metadata) if document.metadata else None,
                ))
        except sqlite3.IntegrityError as e:
            existing = self._find(document.owner_id, document.content_hash)
            raise DuplicateContentError(
                document.owner_id,
                document.content_hash,
                existing.id if existing else None,
            ) from e
        return document

    def get(self, document_id: str) -> Optional[Document]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return self._row_to_document(row) if row else None

    def find_by_content_hash(self, owner_id: str, content_hash: str) -> Optional[Document]:
        return self._find(owner_id, content_hash)

    def _find(self, owner_id: str, content_hash: str) -> Optional[Document]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM documents WHERE owner_id = ? AND content_hash = ?",
                (owner_id, content_hash),
            ).fetchone()
        return self._row_to_document(row) if row else None

    def list_documents(self, owner_id: Optional[str] = None) -> List[Document]:
        sql = "SELECT * FROM documents"
        params: List[Any] = []
        if owner_id is not None:
            sql += " WHERE owner_id = ?"
            params.append(owner_id)
        sql += " ORDER BY created_at DESC, id"
        with self._lock:
            rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def update_index_state(
        self,
        document_id: str,
        state: IndexState,
        indexed_chunk_count: int,
        total_chunk_count: int,
    ) -> None:
        with self._lock, self.conn:
            self.conn.execute("""
                UPDATE documents
                SET index_state = ?, indexed_chunk_count = ?, total_chunk_count = ?
                WHERE id = ?
            """, (state.value, indexed_chunk_count, total_chunk_count, document_id))

    def delete(self, document_id: str) -> bool:
        with self._lock, self.conn:
            cursor = self.conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()


class SQLiteTextIndex(TextIndex):
    """Chunk text in SQLite with an FTS5 index and a LIKE fallback."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn = _connect(db_path)
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock, self.conn:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS text_chunks (
                    id INTEGER PRIMARY KEY,
                    chunk_id TEXT NOT NULL UNIQUE,
                    document_id TEXT NOT NULL,
                    owner_id TEXT,
                    ordinal INTEGER,
                    display_name TEXT,
                    mime_type TEXT,
                    content TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_text_chunks_document ON text_chunks(document_id)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_text_chunks_owner ON text_chunks(owner_id)"
            )
            # FTS5 rows share rowid with text_chunks.id
            self.conn.execute("""
                CREATE VIRTUAL TABLE IF NOT EXISTS text_chunks_fts USING fts5(content)
            """)

    def upsert(self, chunk_id: str, text: str, metadata: Dict[str, Any]) -> None:
        try:
            with self._lock, self.conn:
                row = self.conn.execute(
                    "SELECT id FROM text_chunks WHERE chunk_id = ?", (chunk_id,)
                ).fetchone()
                values = (
                    metadata.get("document_id"),
                    metadata.get("owner_id"),
                    metadata.get("ordinal"),
                    metadata.get("display_name"),
                    metadata.get("mime_type"),
                    text,
                )
                if row:
                    rowid = row["id"]
                    self.conn.execute("""
                        UPDATE text_chunks
                        SET document_id = ?, owner_id = ?, ordinal = ?, display_name = ?,
                            mime_type = ?, content = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ?
                    """, (*values, rowid))
                    self.conn.execute("DELETE FROM text_chunks_fts WHERE rowid = ?", (rowid,))
                else:
                    cursor = self.conn.execute("""
                        INSERT INTO text_chunks (
                            document_id, owner_id, ordinal, display_name, mime_type, content, chunk_id
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """, (*values, chunk_id))
                    rowid = cursor.lastrowid
                self.conn.execute(
                    "INSERT INTO text_chunks_fts(rowid, content) VALUES (?, ?)", (rowid, text)
                )
        except sqlite3.Error as e:
            raise IndexWriteError(f"Text index rejected chunk {chunk_id}: {e}") from e

    def search(self, query: str, k: int, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """FTS5 keyword match first, then a case-insensitive substring match."""
        columns = "c.chunk_id, c.document_id, c.owner_id, c.ordinal, c.display_name, c.mime_type, c.content"
        owner_sql = " AND c.owner_id = ?" if owner_id is not None else ""
        owner_params: List[Any] = [owner_id] if owner_id is not None else []

        try:
            with self._lock:
                rows: List[sqlite3.Row] = []
                fts_query = build_fts5_query(query)
                if fts_query:
                    rows = self.conn.execute(f"""
                        SELECT {columns}
                        FROM text_chunks_fts
                        JOIN text_chunks c ON c.id = text_chunks_fts.rowid
                        WHERE text_chunks_fts MATCH ?{owner_sql}
                        ORDER BY text_chunks_fts.rank
                        LIMIT ?
                    """, [fts_query, *owner_params, k]).fetchall()

                if not rows and query.strip():
                    pattern = "%" + query.strip().lower().replace("\\", "\\\\") \
                        .replace("%", "\\%").replace("_", "\\_") + "%"
                    rows = self.conn.execute(f"""
                        SELECT {columns}
                        FROM text_chunks c
                        WHERE lower(c.content) LIKE ? ESCAPE '\\'{owner_sql}
                        ORDER BY c.document_id, c.ordinal
                        LIMIT ?
                    """, [pattern, *owner_params, k]).fetchall()
        except sqlite3.Error as e:
            raise IndexReadError(f"Text index query failed: {e}") from e

        return [dict(row) for row in rows]

    def delete_document(self, document_id: str) -> int:
        try:
            with self._lock, self.conn:
                ids = self.conn.execute(
                    "SELECT id FROM text_chunks WHERE document_id = ?", (document_id,)
                ).fetchall()
                for (rowid,) in ids:
                    self.conn.execute("DELETE FROM text_chunks_fts WHERE rowid = ?", (rowid,))
                self.conn.execute("DELETE FROM text_chunks WHERE document_id = ?", (document_id,))
        except sqlite3.Error as e:
            raise IndexWriteError(f"Text index delete for document {document_id} failed: {e}") from e
        return len(ids)

    def count(self, document_id: Optional[str] = None) -> int:
        with self._lock:
            if document_id is None:
                row = self.conn.execute("SELECT COUNT(*) FROM text_chunks").fetchone()
            else:
                row = self.conn.execute(
                    "SELECT COUNT(*) FROM text_chunks WHERE document_id = ?", (document_id,)
                ).fetchone()
        return row[0]

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()

"""
Isha - IshaVectorStore
=======================
OOP wrapper around LanceDB providing a clean interface for:
  • Table creation with a strict PyArrow schema (fixed vector dimension)
  • Document insertion of pre-computed embeddings with metadata
  • Cosine nearest-neighbour search with optional metadata filtering
  • Deletion by id or by source file, listing, stats, reset, heartbeat

Design decisions:
  • **Cached DB connection** — ``_get_connection()`` caches the
    ``lancedb.DBConnection`` per URI to avoid file-lock issues.
  • **Lazy table** — every operation auto-creates the table on first
    use, so a missing collection is never an error.
  • **No embedder inside** — vectors are computed by the caller; the
    store only validates their dimension.
  • **Partial success via counts** — malformed items are skipped with a
    warning and the number actually written is returned.

Usage:
    from isha.src.database.vector_store import IshaVectorStore

    store = IshaVectorStore()
    store.add_documents([{"id": "a1", "text": "...", "embedding": [...], "metadata": {...}}])
    results = store.search(query_embedding, k=5)
"""

from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any

import lancedb
import pyarrow as pa

from isha.config.settings import Settings, settings as default_settings
from isha.src.core.errors import DimensionMismatchError, EmptyBatchError, QueryError, ValidationError
from isha.src.core.models import CollectionInfo, DocumentSummary, SearchResult
from isha.src.utils.logger import get_logger

logger = get_logger(__name__)

# ── Type Aliases ──────────────────────────────────────────────────────
DocumentItem = dict[str, Any]
DocumentRecord = dict[str, str | int | list[float]]

_METADATA_COLUMNS: dict[str, Any] = {
    "source_file": "unknown",
    "source_type": "text",
    "chunk_index": 0,
    "uploaded_at": "",
    "size_bytes": 0,
}

_DB_LOCK = threading.Lock()
_db_connection_cache: dict[str, lancedb.DBConnection] = {}


def build_schema(dimension: int) -> pa.Schema:
    """LanceDB table schema for vectors of length *dimension*."""
    return pa.schema([
        pa.field("id", pa.utf8()),
        pa.field("vector", pa.list_(pa.float32(), dimension)),
        pa.field("text", pa.utf8()),
        pa.field("source_file", pa.utf8()),
        pa.field("source_type", pa.utf8()),
        pa.field("chunk_index", pa.int32()),
        pa.field("uploaded_at", pa.utf8()),
        pa.field("size_bytes", pa.int64()),
    ])


def _get_connection(uri: str) -> lancedb.DBConnection:
    """
    Return a cached ``lancedb.DBConnection`` for *uri*.

    Thread-safe via ``_DB_LOCK``.
    """
    if uri not in _db_connection_cache:
        with _DB_LOCK:
            if uri not in _db_connection_cache:
                logger.info("Opening new LanceDB connection: %s", uri)
                _db_connection_cache[uri] = lancedb.connect(uri)
    return _db_connection_cache[uri]


def _sql_literal(value: str | int | float) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("'", "''")
    return f"'{escaped}'"


class IshaVectorStore:
    """
    High-level abstraction over a LanceDB vector table.

    Parameters
    ----------
    uri
        LanceDB location.  Defaults to ``settings.LANCEDB_URI``.
    table_name
        Collection name.  Defaults to ``settings.LANCEDB_TABLE_NAME``.
    dimension
        Embedding length D.  Defaults to ``settings.EMBEDDING_DIMENSION``.
    """

    __slots__ = ("_uri", "_table_name", "dimension", "_schema", "_table_lock", "db", "table")

    def __init__(self, uri: str | None = None, table_name: str | None = None, dimension: int | None = None, settings: Settings | None = None) -> None:
        cfg = settings or default_settings
        self._uri: str = str(uri or cfg.LANCEDB_URI)
        self._table_name: str = table_name or cfg.LANCEDB_TABLE_NAME
        self.dimension: int = dimension or cfg.EMBEDDING_DIMENSION
        self._schema = build_schema(self.dimension)
        self._table_lock = threading.Lock()
        self.db: lancedb.DBConnection | None = None
        self.table: Any = None


    @property
    def name(self) -> str:
        return self._table_name


    @property
    def uri(self) -> str:
        return self._uri


    def initialize(self) -> None:
        """Open (or re-use) the connection and open or create the table."""
        self._ensure_table()


    def _ensure_table(self) -> Any:
        if self.table is not None:
            return self.table

        with self._table_lock:
            if self.table is not None:
                return self.table
            try:
                self.db = _get_connection(self._uri)
                if self._table_name in self.db.table_names():
                    self.table = self.db.open_table(self._table_name)
                    logger.info("Opened existing table '%s' (%d rows).", self._table_name, self.table.count_rows())
                else:
                    self.table = self.db.create_table(self._table_name, schema=self._schema, exist_ok=True)
                    logger.info("Created new table '%s' (dimension=%d).", self._table_name, self.dimension)
            except OSError as exc:
                logger.error("LanceDB filesystem error at %s: %s", self._uri, exc)
                raise
            except Exception:
                logger.exception("Unexpected error connecting to LanceDB.")
                raise
        return self.table

    # ══════════════════════════════════════════════════════════════════
    #  WRITE
    # ══════════════════════════════════════════════════════════════════

    def add_documents(self, items: list[DocumentItem]) -> int:
        """
        Persist pre-embedded items.

        Each item is ``{"id", "text", "embedding", "metadata"}``.  Items
        missing id/text/embedding, or whose embedding is not D long, are
        skipped with a warning.

        Returns
        -------
        int
            Number of rows written.

        Raises
        ------
        EmptyBatchError
            If no valid item remains after filtering.
        """
        items = items or []
        records: list[DocumentRecord] = []
        for item in items:
            doc_id = item.get("id")
            text = item.get("text")
            embedding = item.get("embedding")

            if not doc_id or not text or not embedding:
                logger.warning("Skipping invalid document (id=%r): missing id, text or embedding.", doc_id)
                continue
            if len(embedding) != self.dimension:
                logger.warning("Skipping document %s: embedding has %d dimensions, expected %d.", doc_id, len(embedding), self.dimension)
                continue

            meta = item.get("metadata") or {}
            records.append({
                "id": str(doc_id),
                "vector": [float(v) for v in embedding],
                "text": str(text),
                **{col: meta.get(col, default) for col, default in _METADATA_COLUMNS.items()},
            })

        if not records:
            raise EmptyBatchError("No valid documents to add.")

        table = self._ensure_table()
        with self._table_lock:
            try:
                table.add(records)
            except OSError as exc:
                logger.error("Failed to write records to LanceDB: %s", exc)
                raise

        skipped = len(items) - len(records)
        logger.info("Added %d document(s) to '%s' (%d skipped).", len(records), self._table_name, skipped)
        return len(records)


    def delete_documents(self, ids: list[str]) -> int:
        """Delete rows by id.  Returns how many rows were actually removed."""
        if not ids:
            raise ValidationError("Invalid IDs array: at least one id is required.")

        table = self._ensure_table()
        where = f"id IN ({', '.join(_sql_literal(i) for i in ids)})"
        with self._table_lock:
            found = table.count_rows(where)
            table.delete(where)
        logger.info("Deleted %d document(s) from '%s' (%d id(s) requested).", found, self._table_name, len(ids))
        return found


    def delete_by_source(self, source_file: str) -> int:
        """Delete every chunk that came from *source_file*."""
        if not source_file:
            raise ValidationError("Filename is required.")

        table = self._ensure_table()
        where = f"source_file = {_sql_literal(source_file)}"
        with self._table_lock:
            found = table.count_rows(where)
            if found:
                table.delete(where)
        logger.info("Deleted %d chunk(s) for source '%s'.", found, source_file)
        return found


    def reset_collection(self) -> None:
        """Drop the table and recreate it empty.  Destructive."""
        self._ensure_table()
        with self._table_lock:
            try:
                self.db.drop_table(self._table_name)
                logger.warning("Dropped table '%s'.", self._table_name)
            except ValueError:
                logger.warning("Table '%s' does not exist — nothing to drop.", self._table_name)
            except OSError as exc:
                logger.error("Filesystem error dropping table '%s': %s", self._table_name, exc)
                raise
            self.table = None
        self._ensure_table()

    # ══════════════════════════════════════════════════════════════════
    #  READ
    # ══════════════════════════════════════════════════════════════════

    def search(self, query_embedding: list[float] | None, k: int = 5, filter_dict: dict[str, str | int] | None = None) -> list[SearchResult]:
        """
        Cosine nearest-neighbour search.

        Parameters
        ----------
        query_embedding
            Query vector of length D.
        k
            Maximum results (default 5).
        filter_dict
            Optional equality filters over metadata columns, e.g.
            ``{"source_file": "notes.md"}``.

        Returns
        -------
        list[SearchResult]
            At most *k* results, ascending by distance.
        """
        if not query_embedding:
            raise QueryError("Query must include embedding.")
        if len(query_embedding) != self.dimension:
            raise DimensionMismatchError(f"Query embedding has {len(query_embedding)} dimensions, expected {self.dimension}.")

        table = self._ensure_table()
        query = table.search(list(query_embedding)).distance_type("cosine").limit(k)

        if filter_dict:
            unknown = set(filter_dict) - set(_METADATA_COLUMNS) - {"id"}
            if unknown:
                raise ValidationError(f"Unknown filter column(s): {sorted(unknown)}")
            where_str = " AND ".join(f"{col} = {_sql_literal(val)}" for col, val in filter_dict.items())
            query = query.where(where_str)
            logger.info("Searching with filter: %s (limit=%d)", where_str, k)
        else:
            logger.info("Searching without filters (limit=%d).", k)

        rows = query.to_list()
        results = [
            SearchResult(
                id=row["id"],
                text=row["text"],
                metadata={col: row.get(col) for col in _METADATA_COLUMNS},
                distance=float(row["_distance"]),
            )
            for row in rows
        ]
        results.sort(key=lambda r: r.distance)
        logger.info("Search returned %d result(s).", len(results))
        return results[:k]


    def list_documents(self) -> list[DocumentSummary]:
        """Group stored chunks by source file."""
        table = self._ensure_table()
        rows = table.to_arrow().select(["id", "text", *_METADATA_COLUMNS]).to_pylist()

        grouped: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for row in rows:
            grouped[row["source_file"] or "Unknown"].append(row)

        summaries: list[DocumentSummary] = []
        for filename, chunks in grouped.items():
            chunks.sort(key=lambda r: r["chunk_index"] or 0)
            first = chunks[0]
            summaries.append(DocumentSummary(
                filename=filename,
                file_type=first["source_type"] or "unknown",
                upload_date=first["uploaded_at"] or "",
                file_size=first["size_bytes"] or 0,
                chunk_count=len(chunks),
                total_text_length=sum(len(c["text"] or "") for c in chunks),
                chunk_ids=[c["id"] for c in chunks],
            ))
        summaries.sort(key=lambda s: s.filename)
        return summaries


    def count(self) -> int:
        """Return the total number of rows in the table."""
        return self._ensure_table().count_rows()


    def get_collection_info(self) -> CollectionInfo:
        return CollectionInfo(name=self._table_name, count=self.count(), url=self._uri)


    def check_health(self) -> bool:
        """Heartbeat: the database answers a table listing."""
        try:
            _get_connection(self._uri).table_names()
            return True
        except Exception as exc:
            logger.warning("LanceDB heartbeat failed: %s", exc)
            return False


    def __repr__(self) -> str:
        return f"IshaVectorStore(uri='{self._uri}', table='{self._table_name}', dimension={self.dimension})"

"""DuckDB Indexed Store Adapter.

This adapter implements the IndexedStorePort contract on top of DuckDB, an
in-process database that works equally well as a file on a device or as an
in-memory store in tests.

Architecture:
    - Implements IndexedStorePort (Hexagonal Architecture)
    - One ``documents`` table; the ``kind`` column is the index segment
    - Documents are stored as JSON text, with ``name``/``description`` copied
      into text columns for search and ``cohort_uuid``/``patient_uuid`` copied
      into key columns for exact scans
    - A global sequence records insertion order; an overwrite keeps the
      original position
    - One connection guarded by a re-entrant lock; every statement is atomic
      and ``transaction()`` groups statements across segments
"""

import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

import duckdb

from cohortsync.domain.ports import (
    IndexedStorePort,
    QueryError,
    Result,
    SearchHit,
    StoreIOError,
)
from cohortsync.domain.search_query import And, Node, Not, Term, parse_query, positive_terms
from cohortsync.infrastructure.config_manager import StoreConfig

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("name", "description")
KEY_FIELDS = ("cohort_uuid", "patient_uuid")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _text(column: str) -> str:
    return f"lower(coalesce({column}, ''))"


def compile_filter(node: Node) -> tuple[str, list]:
    """Compile a query tree into a SQL predicate over the text columns.

    Returns:
        (sql_fragment, params)
    """
    if isinstance(node, Term):
        columns = [node.field] if node.field else list(TEXT_FIELDS)
        clauses = [f"contains({_text(column)}, ?)" for column in columns]
        return f"({' OR '.join(clauses)})", [node.text] * len(columns)
    if isinstance(node, Not):
        sql, params = compile_filter(node.operand)
        return f"(NOT {sql})", params
    joiner = " AND " if isinstance(node, And) else " OR "
    parts, params = [], []
    for operand in node.operands:
        sql, operand_params = compile_filter(operand)
        parts.append(sql)
        params.extend(operand_params)
    return f"({joiner.join(parts)})", params


def compile_score(node: Optional[Node]) -> tuple[str, list]:
    """Compile the relevance expression for the positive terms of a query.

    Per term: name starts with the term (4), a word of the name starts with
    the term (3), name contains the term (2), description contains it (1).
    """
    terms = positive_terms(node)
    if not terms:
        return "0", []
    cases, params = [], []
    for term in terms:
        if term.field == "description":
            cases.append(f"(CASE WHEN contains({_text('description')}, ?) THEN 1 ELSE 0 END)")
            params.append(term.text)
            continue
        branches = [
            f"WHEN starts_with({_text('name')}, ?) THEN 4",
            f"WHEN contains(' ' || {_text('name')}, ?) THEN 3",
            f"WHEN contains({_text('name')}, ?) THEN 2",
        ]
        params.extend([term.text, " " + term.text, term.text])
        if term.field is None:
            branches.append(f"WHEN contains({_text('description')}, ?) THEN 1")
            params.append(term.text)
        cases.append(f"(CASE {' '.join(branches)} ELSE 0 END)")
    return " + ".join(cases), params


class DuckDBIndexStore(IndexedStorePort):
    """DuckDB implementation of IndexedStorePort.

    Parameters:
        store_config: StoreConfig from configuration manager (preferred)
        db_path: Path to DuckDB database file (or ':memory:' for in-memory)

    Example Usage:
        ```python
        store = DuckDBIndexStore(db_path=":memory:")
        store.initialize_schema()
        store.put("Cohort", "c1", {"uuid": "c1", "name": "TB Patients"})
        hits = store.search("Cohort", "tb").value
        ```
    """

    def __init__(self, store_config: Optional[StoreConfig] = None, db_path: Optional[str] = None):
        if store_config:
            self.db_path = store_config.db_path
        elif db_path:
            self.db_path = db_path
        else:
            self.db_path = ":memory:"

        if self.db_path != ":memory:" and not Path(self.db_path).parent.exists():
            raise StoreIOError(
                f"Database directory does not exist: {Path(self.db_path).parent}",
                operation="__init__"
            )

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialized = False
        self._lock = threading.RLock()
        self._transaction_depth = 0

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get or create the DuckDB connection (created lazily)."""
        if self._connection is None:
            try:
                self._connection = duckdb.connect(self.db_path)
                logger.info(f"Connected to DuckDB index store: {self.db_path}")
            except duckdb.Error as e:
                raise StoreIOError(
                    f"Failed to connect to DuckDB: {str(e)}",
                    operation="connect",
                    details={"db_path": self.db_path}
                )
        return self._connection

    def _ensure_schema(self) -> None:
        if not self._initialized:
            self.initialize_schema().unwrap()

    def initialize_schema(self) -> Result[None]:
        """Create the documents table, insertion sequence and key index.

        Returns:
            Result[None]: Success or StoreIOError failure
        """
        with self._lock:
            try:
                conn = self._get_connection()
                conn.execute("CREATE SEQUENCE IF NOT EXISTS document_seq START 1")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        kind VARCHAR NOT NULL,
                        doc_key VARCHAR NOT NULL,
                        seq BIGINT NOT NULL,
                        name VARCHAR,
                        description VARCHAR,
                        cohort_uuid VARCHAR,
                        patient_uuid VARCHAR,
                        document VARCHAR NOT NULL,
                        updated_at TIMESTAMP NOT NULL,
                        PRIMARY KEY (kind, doc_key)
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_cohort ON documents(kind, cohort_uuid)")
                self._initialized = True
                logger.info("Index store schema initialized successfully")
                return Result.success_result(None)
            except StoreIOError as e:
                return Result.failure_result(e)
            except duckdb.Error as e:
                error_msg = f"Failed to initialize schema: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(StoreIOError(error_msg, operation="initialize_schema"))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one transaction; nested use joins the outer one.

        Any exception raised inside the block rolls the transaction back and
        is re-raised.

        Raises:
            StoreIOError: If the transaction cannot be started or committed
        """
        with self._lock:
            if self._transaction_depth > 0:
                self._transaction_depth += 1
                try:
                    yield
                finally:
                    self._transaction_depth -= 1
                return

            try:
                self._ensure_schema()
                conn = self._get_connection()
                conn.begin()
            except duckdb.Error as e:
                raise StoreIOError(f"Failed to begin transaction: {str(e)}", operation="begin")
            self._transaction_depth = 1
            try:
                yield
                conn.commit()
            except duckdb.Error as e:
                conn.rollback()
                raise StoreIOError(f"Transaction failed: {str(e)}", operation="commit")
            except BaseException:
                conn.rollback()
                raise
            finally:
                self._transaction_depth = 0

    def _run(self, operation: str, action, details: Optional[dict] = None) -> Result:
        """Run a store action under the lock, mapping DuckDB errors to StoreIOError."""
        with self._lock:
            try:
                self._ensure_schema()
                return Result.success_result(action(self._get_connection()))
            except StoreIOError as e:
                logger.error(f"Index store {operation} failed: {e}")
                return Result.failure_result(e)
            except duckdb.Error as e:
                error_msg = f"Failed to {operation}: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(StoreIOError(error_msg, operation=operation, details=details))

    @staticmethod
    def _row_values(kind: str, key: str, document: dict, now: datetime) -> list:
        text = [document.get(field) for field in TEXT_FIELDS]
        keys = [document.get(field) for field in KEY_FIELDS]
        return [kind, key, *text, *keys, json.dumps(document, default=str), now]

    _UPSERT_SQL = """
        INSERT INTO documents (
            kind, doc_key, seq, name, description, cohort_uuid, patient_uuid, document, updated_at
        ) VALUES (?, ?, nextval('document_seq'), ?, ?, ?, ?, ?, ?)
        ON CONFLICT (kind, doc_key) DO UPDATE SET
            name = excluded.name,
            description = excluded.description,
            cohort_uuid = excluded.cohort_uuid,
            patient_uuid = excluded.patient_uuid,
            document = excluded.document,
            updated_at = excluded.updated_at
    """

    def put(self, kind: str, key: str, document: dict) -> Result[str]:
        """Insert or overwrite the document at (kind, key)."""
        def action(conn):
            conn.execute(self._UPSERT_SQL, self._row_values(kind, key, document, _utcnow()))
            logger.debug(f"Stored {kind} document {key}")
            return key

        return self._run("put", action, details={"kind": kind, "key": key})

    def put_many(self, kind: str, items: list[tuple[str, dict]]) -> Result[int]:
        """Upsert several documents in a single transaction."""
        if not items:
            return Result.success_result(0)
        with self._lock:
            try:
                with self.transaction():
                    conn = self._get_connection()
                    now = _utcnow()
                    for key, document in items:
                        conn.execute(self._UPSERT_SQL, self._row_values(kind, key, document, now))
            except StoreIOError as e:
                logger.error(f"Failed to store batch of {len(items)} {kind} documents: {e}")
                return Result.failure_result(e)
            except duckdb.Error as e:
                error_msg = f"Failed to store batch: {str(e)}"
                logger.error(error_msg, exc_info=True)
                return Result.failure_result(
                    StoreIOError(error_msg, operation="put_many", details={"kind": kind, "count": len(items)})
                )
        logger.info(f"Stored batch of {len(items)} {kind} documents")
        return Result.success_result(len(items))

    def get(self, kind: str, key: str) -> Result[Optional[dict]]:
        """Fetch one document; value is None when absent."""
        def action(conn):
            row = conn.execute(
                "SELECT document FROM documents WHERE kind = ? AND doc_key = ?",
                [kind, key]
            ).fetchone()
            return json.loads(row[0]) if row else None

        return self._run("get", action, details={"kind": kind, "key": key})

    def search(self, kind: str, query: str) -> Result[list[SearchHit]]:
        """Search name/description of one segment, ranked by relevance then insertion order."""
        try:
            tree = parse_query(query)
        except QueryError as e:
            logger.warning(f"Rejected search query for {kind}: {e}")
            return Result.failure_result(e)

        score_sql, score_params = compile_score(tree)
        where_sql, where_params = compile_filter(tree) if tree is not None else ("TRUE", [])
        sql = f"""
            SELECT doc_key, document, {score_sql} AS score, seq
            FROM documents
            WHERE kind = ? AND {where_sql}
            ORDER BY score DESC, seq ASC
        """

        def action(conn):
            rows = conn.execute(sql, score_params + [kind] + where_params).fetchall()
            return [
                SearchHit(kind=kind, key=row[0], document=json.loads(row[1]), score=float(row[2]), seq=row[3])
                for row in rows
            ]

        return self._run("search", action, details={"kind": kind, "query": query})

    @staticmethod
    def _key_clause(fields: dict) -> tuple[str, list]:
        unknown = set(fields) - set(KEY_FIELDS)
        if unknown:
            raise StoreIOError(
                f"Not an exact-match key field: {', '.join(sorted(unknown))}",
                operation="key_scan"
            )
        clauses = [f"{field} = ?" for field in fields]
        return " AND ".join(["kind = ?"] + clauses), list(fields.values())

    def find(self, kind: str, **fields: str) -> Result[list[dict]]:
        """Exact-match scan on cohort_uuid / patient_uuid, in insertion order."""
        def action(conn):
            where, params = self._key_clause(fields)
            rows = conn.execute(
                f"SELECT document FROM documents WHERE {where} ORDER BY seq ASC",
                [kind] + params
            ).fetchall()
            return [json.loads(row[0]) for row in rows]

        return self._run("find", action, details={"kind": kind, **fields})

    def delete(self, kind: str, key: str) -> Result[int]:
        """Delete one document; deleting an absent key removes nothing."""
        def action(conn):
            rows = conn.execute(
                "DELETE FROM documents WHERE kind = ? AND doc_key = ? RETURNING doc_key",
                [kind, key]
            ).fetchall()
            return len(rows)

        return self._run("delete", action, details={"kind": kind, "key": key})

    def delete_where(self, kind: str, **fields: str) -> Result[int]:
        """Delete every matching document of the kind as one statement."""
        if not fields:
            return Result.failure_result(
                StoreIOError("delete_where requires at least one key field", operation="delete_where")
            )

        def action(conn):
            where, params = self._key_clause(fields)
            rows = conn.execute(
                f"DELETE FROM documents WHERE {where} RETURNING doc_key",
                [kind] + params
            ).fetchall()
            logger.info(f"Deleted {len(rows)} {kind} documents matching {fields}")
            return len(rows)

        return self._run("delete_where", action, details={"kind": kind, **fields})

    def count(self, kind: str) -> Result[int]:
        def action(conn):
            return conn.execute("SELECT count(*) FROM documents WHERE kind = ?", [kind]).fetchone()[0]

        return self._run("count", action, details={"kind": kind})

    def close(self) -> None:
        """Close the DuckDB connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                self._initialized = False
                logger.info("Closed DuckDB index store")

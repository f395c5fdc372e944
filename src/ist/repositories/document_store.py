from __future__ import annotations

import itertools
import json
import logging
import operator
import secrets
import sqlite3
import string
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from ist.domain.errors import (
    NotFoundError,
    StoreUnavailableError,
    StoreUsageError,
    TransactionConflictError,
)

log = logging.getLogger("ist.store")

MAX_BATCH_WRITES = 500
_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


# Placeholder resolved to the store clock when the write commits.
SERVER_TIMESTAMP = _ServerTimestamp()


def new_document_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


def _is_lock_wait(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return "locked" in text or "busy" in text


def format_timestamp(value: datetime) -> str:
    return value.isoformat(sep=" ", timespec="microseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _encode_value(value: Any, now_iso: str | None = None) -> Any:
    if value is SERVER_TIMESTAMP:
        if now_iso is None:
            raise StoreUsageError("SERVER_TIMESTAMP can only be used in writes.")
        return now_iso
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _encode_value(v, now_iso) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode_value(v, now_iso) for v in value]
    return value


# ---------- References ----------
@dataclass(frozen=True)
class DocumentRef:
    user_id: str
    collection: str
    id: str

    @property
    def path(self) -> str:
        return f"users/{self.user_id}/{self.collection}/{self.id}"


@dataclass(frozen=True)
class CollectionRef:
    user_id: str
    name: str

    @property
    def path(self) -> str:
        return f"users/{self.user_id}/{self.name}"

    def document(self, doc_id: str | None = None) -> DocumentRef:
        doc_id = new_document_id() if doc_id is None else str(doc_id)
        if not doc_id or "/" in doc_id:
            raise StoreUsageError(f"Invalid document id: {doc_id!r}")
        return DocumentRef(self.user_id, self.name, doc_id)

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        return Query(self).where(field_name, op, value)

    def order_by(self, field_name: str, descending: bool = False) -> "Query":
        return Query(self).order_by(field_name, descending)


@dataclass(frozen=True)
class DocumentSnapshot:
    ref: DocumentRef
    data: Optional[dict]
    version: int

    @property
    def id(self) -> str:
        return self.ref.id

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, field_name: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(field_name, default)


_FILTER_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


@dataclass(frozen=True)
class Query:
    """Filters, ordering and limit over a single collection.

    Filter values are encoded like stored values (datetimes as ISO text), so
    range filters on timestamps compare lexicographically. Documents missing a
    filtered or ordered field never match.
    """

    collection: CollectionRef
    filters: tuple[tuple[str, str, Any], ...] = ()
    order_field: Optional[str] = None
    descending: bool = False
    limit_to: Optional[int] = None

    def where(self, field_name: str, op: str, value: Any) -> "Query":
        if op not in _FILTER_OPS:
            raise StoreUsageError(f"Unsupported filter operator: {op}")
        return replace(self, filters=self.filters + ((field_name, op, _encode_value(value)),))

    def order_by(self, field_name: str, descending: bool = False) -> "Query":
        return replace(self, order_field=field_name, descending=descending)

    def limit(self, count: int) -> "Query":
        if int(count) <= 0:
            raise StoreUsageError("Query limit must be > 0.")
        return replace(self, limit_to=int(count))

    def matches(self, data: dict) -> bool:
        for field_name, op, value in self.filters:
            current = data.get(field_name)
            if current is None:
                return False
            try:
                if not _FILTER_OPS[op](current, value):
                    return False
            except TypeError:
                return False
        return True

    def apply(self, snapshots: Iterable[DocumentSnapshot]) -> list[DocumentSnapshot]:
        out = [s for s in snapshots if s.data is not None and self.matches(s.data)]
        if self.order_field:
            key = self.order_field
            out = [s for s in out if s.data.get(key) is not None]
            out.sort(key=lambda s: (s.data[key], s.id), reverse=self.descending)
        if self.limit_to is not None:
            out = out[: self.limit_to]
        return out


@dataclass(frozen=True)
class _Write:
    kind: str  # "set" | "update" | "delete"
    ref: DocumentRef
    data: Optional[dict] = None


# ---------- Transactions & batches ----------
class Transaction:
    """Optimistic read-modify-write unit.

    Every read records the document version; writes are only staged. Commit
    fails with TransactionConflictError if any read document changed, and
    applies nothing in that case.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._read_versions: dict[DocumentRef, int] = {}
        self._writes: list[_Write] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def _ensure_open(self) -> None:
        if self._finished:
            raise StoreUsageError("Transaction already finished.")

    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        self._ensure_open()
        if self._writes:
            raise StoreUsageError("Transactions require all reads to be executed before all writes.")
        snap = self._store.get(ref)
        seen = self._read_versions.get(ref)
        if seen is not None and seen != snap.version:
            raise TransactionConflictError(f"Document changed during transaction: {ref.path}")
        self._read_versions[ref] = snap.version
        return snap

    def set(self, ref: DocumentRef, data: dict) -> None:
        self._ensure_open()
        self._writes.append(_Write("set", ref, dict(data)))

    def update(self, ref: DocumentRef, fields: dict) -> None:
        self._ensure_open()
        self._writes.append(_Write("update", ref, dict(fields)))

    def delete(self, ref: DocumentRef) -> None:
        self._ensure_open()
        self._writes.append(_Write("delete", ref))

    def commit(self) -> None:
        self._ensure_open()
        self._finished = True
        self._store._commit(self._writes, self._read_versions)

    def rollback(self) -> None:
        self._finished = True
        self._writes.clear()


class WriteBatch:
    """Unconditional multi-write: no read checks, applied in one commit."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._writes: list[_Write] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._writes)

    def _stage(self, write: _Write) -> None:
        if self._committed:
            raise StoreUsageError("Batch already committed.")
        if len(self._writes) >= MAX_BATCH_WRITES:
            raise StoreUsageError(f"A batch can hold at most {MAX_BATCH_WRITES} writes.")
        self._writes.append(write)

    def set(self, ref: DocumentRef, data: dict) -> None:
        self._stage(_Write("set", ref, dict(data)))

    def update(self, ref: DocumentRef, fields: dict) -> None:
        self._stage(_Write("update", ref, dict(fields)))

    def delete(self, ref: DocumentRef) -> None:
        self._stage(_Write("delete", ref))

    def commit(self) -> int:
        """Apply the staged writes; returns how many deletes removed a live document."""
        if self._committed:
            raise StoreUsageError("Batch already committed.")
        self._committed = True
        if not self._writes:
            return 0
        return self._store._commit(self._writes)


@dataclass
class ListenerRegistration:
    _store: "DocumentStore"
    _token: int
    _active: bool = field(default=True)

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if self._active:
            self._store._remove_listener(self._token)
            self._active = False


# ---------- Store ----------
class DocumentStore:
    """Per-user document store on SQLite.

    Documents live at users/{user_id}/{collection}/{doc_id} with JSON data and
    a version that increases on every write. Deletes keep a tombstone row so a
    deleted-then-recreated document never reuses a version.
    """

    def __init__(
        self,
        db_path: Path | str,
        busy_timeout: float = 5.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)
        self.clock = clock
        self._listeners: dict[int, tuple[Query, Callable[[list[DocumentSnapshot]], None]]] = {}
        self._listeners_lock = threading.Lock()
        self._listener_ids = itertools.count(1)

    def _conn(self) -> sqlite3.Connection:
        # Autocommit mode: transactions are opened explicitly with BEGIN IMMEDIATE.
        return sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_documents),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            cur.execute("COMMIT")
        except Exception as exc:
            conn.rollback()
            raise RuntimeError("Document store migration failed.") from exc
        finally:
            conn.close()

    def _migration_v1_documents(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS documents (
            user_id TEXT NOT NULL,
            collection TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            version INTEGER NOT NULL CHECK(version > 0),
            data TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, collection, doc_id)
        )
        """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_documents_live ON documents(user_id, collection) WHERE data IS NOT NULL"
        )

    # ---------- References ----------
    def collection(self, user_id: str, name: str) -> CollectionRef:
        user_id = (user_id or "").strip()
        name = (name or "").strip()
        if not user_id:
            raise StoreUsageError("A user id is required to address documents.")
        if not name or "/" in name:
            raise StoreUsageError(f"Invalid collection name: {name!r}")
        return CollectionRef(user_id, name)

    # ---------- Reads ----------
    def get(self, ref: DocumentRef) -> DocumentSnapshot:
        conn = self._conn()
        try:
            row = self._read_row(conn, ref)
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Store read failed: {exc}") from exc
        finally:
            conn.close()
        if not row:
            return DocumentSnapshot(ref, None, 0)
        version, data = row
        return DocumentSnapshot(ref, json.loads(data) if data is not None else None, int(version))

    def query(self, query: Query | CollectionRef) -> list[DocumentSnapshot]:
        if isinstance(query, CollectionRef):
            query = Query(query)
        coll = query.collection
        conn = self._conn()
        try:
            rows = conn.execute(
                """
                SELECT doc_id, version, data
                FROM documents
                WHERE user_id=? AND collection=? AND data IS NOT NULL
                """,
                (coll.user_id, coll.name),
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Store query failed: {exc}") from exc
        finally:
            conn.close()
        snaps = [DocumentSnapshot(DocumentRef(coll.user_id, coll.name, str(r[0])), json.loads(r[2]), int(r[1])) for r in rows]
        return query.apply(snaps)

    def _read_row(self, conn: sqlite3.Connection, ref: DocumentRef):
        return conn.execute(
            "SELECT version, data FROM documents WHERE user_id=? AND collection=? AND doc_id=?",
            (ref.user_id, ref.collection, ref.id),
        ).fetchone()

    # ---------- Point writes ----------
    def set(self, ref: DocumentRef, data: dict) -> None:
        self._commit([_Write("set", ref, dict(data))])

    def update(self, ref: DocumentRef, fields: dict) -> None:
        self._commit([_Write("update", ref, dict(fields))])

    def delete(self, ref: DocumentRef) -> None:
        self._commit([_Write("delete", ref)])

    def add(self, collection: CollectionRef, data: dict) -> DocumentRef:
        ref = collection.document()
        self.set(ref, data)
        return ref

    def transaction(self) -> Transaction:
        return Transaction(self)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    # ---------- Commit ----------
    def _commit(self, writes: list[_Write], read_versions: dict[DocumentRef, int] | None = None) -> int:
        now_iso = format_timestamp(self.clock())
        conn = self._conn()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as exc:
                if not _is_lock_wait(exc):
                    raise StoreUnavailableError(f"Store could not start a write: {exc}") from exc
                # Nothing was written, so this is safe to retry.
                raise TransactionConflictError(f"Store is busy: {exc}") from exc
            try:
                for ref, seen in (read_versions or {}).items():
                    row = self._read_row(conn, ref)
                    current = int(row[0]) if row else 0
                    if current != seen:
                        log.info("tx_conflict path=%s seen=%s current=%s", ref.path, seen, current)
                        raise TransactionConflictError(f"Document changed during transaction: {ref.path}")
                touched, deleted = self._apply_writes(conn, writes, now_iso)
                conn.execute("COMMIT")
            except Exception:
                conn.rollback()
                raise
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Store write failed, outcome unknown: {exc}") from exc
        finally:
            conn.close()
        self._notify(touched)
        return deleted

    def _apply_writes(
        self, conn: sqlite3.Connection, writes: list[_Write], now_iso: str
    ) -> tuple[set[tuple[str, str]], int]:
        touched: set[tuple[str, str]] = set()
        deleted = 0
        for w in writes:
            ref = w.ref
            row = self._read_row(conn, ref)
            version = int(row[0]) if row else 0
            current = json.loads(row[1]) if row and row[1] is not None else None

            if w.kind == "set":
                data = _encode_value(w.data, now_iso)
            elif w.kind == "update":
                if current is None:
                    raise NotFoundError(f"No document to update: {ref.path}")
                data = dict(current)
                data.update(_encode_value(w.data, now_iso))
            elif w.kind == "delete":
                if current is None:
                    continue
                data = None
                deleted += 1
            else:
                raise StoreUsageError(f"Unknown write kind: {w.kind}")

            payload = json.dumps(data, ensure_ascii=False, sort_keys=True) if data is not None else None
            conn.execute(
                """
                INSERT INTO documents (user_id, collection, doc_id, version, data, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, collection, doc_id)
                DO UPDATE SET version=excluded.version, data=excluded.data, updated_at=excluded.updated_at
                """,
                (ref.user_id, ref.collection, ref.id, version + 1, payload, now_iso),
            )
            touched.add((ref.user_id, ref.collection))
        return touched, deleted

    # ---------- Live queries ----------
    def on_snapshot(
        self,
        query: Query | CollectionRef,
        callback: Callable[[list[DocumentSnapshot]], None],
    ) -> ListenerRegistration:
        """Deliver matching documents now and after every commit to the collection."""
        if isinstance(query, CollectionRef):
            query = Query(query)
        token = next(self._listener_ids)
        with self._listeners_lock:
            self._listeners[token] = (query, callback)
        self._deliver(token, query, callback)
        return ListenerRegistration(self, token)

    def _remove_listener(self, token: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(token, None)

    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    def _notify(self, touched: set[tuple[str, str]]) -> None:
        if not touched:
            return
        with self._listeners_lock:
            targets = [
                (token, q, cb)
                for token, (q, cb) in self._listeners.items()
                if (q.collection.user_id, q.collection.name) in touched
            ]
        for token, q, cb in targets:
            with self._listeners_lock:
                if token not in self._listeners:
                    continue
            self._deliver(token, q, cb)

    def _deliver(self, token: int, query: Query, callback: Callable[[list[DocumentSnapshot]], None]) -> None:
        # A failing listener never fails the commit.
        try:
            callback(self.query(query))
        except Exception:
            log.exception("snapshot_listener_failed listener=%s collection=%s", token, query.collection.path)

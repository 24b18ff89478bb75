"""SQLite storage backend for embedding-indexed memory."""

from __future__ import annotations

import sqlite3
import threading
from array import array
from collections.abc import Sequence
from pathlib import Path

from personaforge.core.models import MemoryKind, MemoryRecord, MemorySummary
from personaforge.utils.helpers import ensure_dir


class MemoryStore:
    """Persist memory records per (account, chat) with a hard record ceiling.

    Insert, eviction and the since-summary counter are updated in one
    transaction under the store lock.
    """

    def __init__(self, db_path: Path, *, max_records: int = 1000) -> None:
        self.db_path = db_path.expanduser()
        self.max_records = max(1, int(max_records))
        ensure_dir(self.db_path.parent)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _create_schema(self) -> None:
        with self._lock:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'message',
                    text TEXT NOT NULL,
                    dims INTEGER NOT NULL DEFAULT 0,
                    vector BLOB,
                    importance REAL NOT NULL DEFAULT 1.0,
                    created_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_memory_records_scope_created
                ON memory_records (account_id, chat_id, created_at, id)
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_summaries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    span_from REAL NOT NULL,
                    span_to REAL NOT NULL,
                    message_count INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    record_id INTEGER,
                    UNIQUE (account_id, chat_id, span_from, span_to)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS memory_counters (
                    account_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    since_summary INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (account_id, chat_id)
                )
                """
            )
            self._conn.commit()

    @staticmethod
    def _serialize_vector(vector: Sequence[float]) -> bytes:
        packed = array("f", [float(v) for v in vector])
        return packed.tobytes()

    @staticmethod
    def _deserialize_vector(blob: bytes) -> tuple[float, ...]:
        unpacked = array("f")
        unpacked.frombytes(blob)
        return tuple(unpacked.tolist())

    @classmethod
    def _row_to_record(cls, row: sqlite3.Row) -> MemoryRecord:
        blob = row["vector"]
        return MemoryRecord(
            record_id=int(row["id"]),
            account_id=str(row["account_id"]),
            chat_id=str(row["chat_id"]),
            text=str(row["text"]),
            embedding=cls._deserialize_vector(blob) if blob else None,
            created_at=float(row["created_at"]),
            importance=float(row["importance"]),
            kind=str(row["kind"]),  # type: ignore[arg-type]
        )

    def _evict(self, account_id: str, chat_id: str) -> int:
        count = int(
            self._conn.execute(
                "SELECT COUNT(*) FROM memory_records WHERE account_id = ? AND chat_id = ?",
                (account_id, chat_id),
            ).fetchone()[0]
        )
        overflow = count - self.max_records
        if overflow <= 0:
            return 0
        self._conn.execute(
            """
            DELETE FROM memory_records
            WHERE id IN (
                SELECT id FROM memory_records
                WHERE account_id = ? AND chat_id = ?
                ORDER BY created_at ASC, id ASC
                LIMIT ?
            )
            """,
            (account_id, chat_id, overflow),
        )
        return overflow

    def add(
        self,
        *,
        account_id: str,
        chat_id: str,
        text: str,
        embedding: Sequence[float] | None,
        created_at: float,
        kind: MemoryKind = "message",
    ) -> MemoryRecord:
        """Insert one record, evict the oldest past the ceiling, bump the summary counter."""
        blob = self._serialize_vector(embedding) if embedding else None
        with self._lock:
            try:
                cursor = self._conn.execute(
                    """
                    INSERT INTO memory_records (account_id, chat_id, kind, text, dims, vector, importance, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, 1.0, ?)
                    """,
                    (account_id, chat_id, kind, text, len(embedding or ()), blob, created_at),
                )
                record_id = int(cursor.lastrowid)
                if kind == "message":
                    self._conn.execute(
                        """
                        INSERT INTO memory_counters (account_id, chat_id, since_summary)
                        VALUES (?, ?, 1)
                        ON CONFLICT(account_id, chat_id) DO UPDATE SET since_summary = since_summary + 1
                        """,
                        (account_id, chat_id),
                    )
                self._evict(account_id, chat_id)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return MemoryRecord(
            record_id=record_id,
            account_id=account_id,
            chat_id=chat_id,
            text=text,
            embedding=tuple(float(v) for v in embedding) if embedding else None,
            created_at=created_at,
            kind=kind,
        )

    def list_records(self, account_id: str, chat_id: str) -> list[MemoryRecord]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM memory_records
                WHERE account_id = ? AND chat_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (account_id, chat_id),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count(self, account_id: str, chat_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM memory_records WHERE account_id = ? AND chat_id = ?",
                (account_id, chat_id),
            ).fetchone()
        return int(row[0])

    def messages_since_summary(self, account_id: str, chat_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT since_summary FROM memory_counters WHERE account_id = ? AND chat_id = ?",
                (account_id, chat_id),
            ).fetchone()
        return int(row["since_summary"]) if row is not None else 0

    def oldest_messages(self, account_id: str, chat_id: str, *, limit: int) -> list[MemoryRecord]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM memory_records
                WHERE account_id = ? AND chat_id = ? AND kind = 'message'
                ORDER BY created_at ASC, id ASC
                LIMIT ?
                """,
                (account_id, chat_id, max(0, int(limit))),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def replace_with_summary(
        self,
        *,
        account_id: str,
        chat_id: str,
        span: Sequence[MemoryRecord],
        text: str,
        embedding: Sequence[float] | None,
    ) -> tuple[MemoryRecord, MemorySummary]:
        """Collapse ``span`` into one summary record and reset the counter."""
        if not span:
            raise ValueError("summary span is empty")
        span_from = min(r.created_at for r in span)
        span_to = max(r.created_at for r in span)
        ids = [r.record_id for r in span]
        blob = self._serialize_vector(embedding) if embedding else None
        with self._lock:
            try:
                placeholders = ",".join("?" for _ in ids)
                self._conn.execute(
                    f"DELETE FROM memory_records WHERE account_id = ? AND chat_id = ? AND id IN ({placeholders})",
                    (account_id, chat_id, *ids),
                )
                cursor = self._conn.execute(
                    """
                    INSERT INTO memory_records (account_id, chat_id, kind, text, dims, vector, importance, created_at)
                    VALUES (?, ?, 'summary', ?, ?, ?, 1.0, ?)
                    """,
                    (account_id, chat_id, text, len(embedding or ()), blob, span_to),
                )
                record_id = int(cursor.lastrowid)
                self._conn.execute(
                    """
                    INSERT INTO memory_summaries (account_id, chat_id, span_from, span_to, message_count, text, record_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(account_id, chat_id, span_from, span_to) DO UPDATE SET
                        message_count = excluded.message_count,
                        text = excluded.text,
                        record_id = excluded.record_id
                    """,
                    (account_id, chat_id, span_from, span_to, len(span), text, record_id),
                )
                self._conn.execute(
                    """
                    UPDATE memory_counters
                    SET since_summary = 0
                    WHERE account_id = ? AND chat_id = ?
                    """,
                    (account_id, chat_id),
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        record = MemoryRecord(
            record_id=record_id,
            account_id=account_id,
            chat_id=chat_id,
            text=text,
            embedding=tuple(float(v) for v in embedding) if embedding else None,
            created_at=span_to,
            kind="summary",
        )
        summary = MemorySummary(
            account_id=account_id,
            chat_id=chat_id,
            span_from=span_from,
            span_to=span_to,
            message_count=len(span),
            text=text,
        )
        return record, summary

    def list_summaries(self, account_id: str, chat_id: str) -> list[MemorySummary]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM memory_summaries
                WHERE account_id = ? AND chat_id = ?
                ORDER BY span_from ASC
                """,
                (account_id, chat_id),
            ).fetchall()
        return [
            MemorySummary(
                account_id=str(row["account_id"]),
                chat_id=str(row["chat_id"]),
                span_from=float(row["span_from"]),
                span_to=float(row["span_to"]),
                message_count=int(row["message_count"]),
                text=str(row["text"]),
            )
            for row in rows
        ]

    def purge_account(self, account_id: str) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM memory_records WHERE account_id = ?", (account_id,))
            self._conn.execute("DELETE FROM memory_summaries WHERE account_id = ?", (account_id,))
            self._conn.execute("DELETE FROM memory_counters WHERE account_id = ?", (account_id,))
            self._conn.commit()
            return cursor.rowcount

"""SQLite strike ledger."""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path

from personaforge.core.models import SecurityState
from personaforge.security.escalation import EscalationPolicy
from personaforge.utils.helpers import ensure_dir


class SecurityStore:
    """Persist per (account, sender) strike counts and block deadlines.

    Strike increments are a single upsert and the block deadline update runs
    in the same transaction under the store lock.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path.expanduser()
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
                CREATE TABLE IF NOT EXISTS security_state (
                    account_id TEXT NOT NULL,
                    sender_id TEXT NOT NULL,
                    strikes INTEGER NOT NULL DEFAULT 0,
                    last_violation_at REAL,
                    blocked_until REAL,
                    PRIMARY KEY (account_id, sender_id)
                )
                """
            )
            self._conn.commit()

    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> SecurityState:
        return SecurityState(
            account_id=str(row["account_id"]),
            sender_id=str(row["sender_id"]),
            strikes=int(row["strikes"]),
            last_violation_at=float(row["last_violation_at"]) if row["last_violation_at"] is not None else None,
            blocked_until=float(row["blocked_until"]) if row["blocked_until"] is not None else None,
        )

    def get(self, account_id: str, sender_id: str) -> SecurityState | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM security_state WHERE account_id = ? AND sender_id = ?",
                (account_id, sender_id),
            ).fetchone()
        return self._row_to_state(row) if row is not None else None

    def record_violation(
        self,
        account_id: str,
        sender_id: str,
        *,
        now: float,
        policy: EscalationPolicy,
    ) -> SecurityState:
        """Add one strike and extend the block deadline per ``policy``."""
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO security_state (account_id, sender_id, strikes, last_violation_at, blocked_until)
                    VALUES (?, ?, 1, ?, NULL)
                    ON CONFLICT(account_id, sender_id) DO UPDATE SET
                        strikes = strikes + 1,
                        last_violation_at = excluded.last_violation_at
                    """,
                    (account_id, sender_id, now),
                )
                row = self._conn.execute(
                    "SELECT * FROM security_state WHERE account_id = ? AND sender_id = ?",
                    (account_id, sender_id),
                ).fetchone()
                block_seconds = policy.block_seconds(int(row["strikes"]))
                if block_seconds > 0:
                    until = now + block_seconds
                    current = row["blocked_until"]
                    if current is None or until > float(current):
                        self._conn.execute(
                            "UPDATE security_state SET blocked_until = ? WHERE account_id = ? AND sender_id = ?",
                            (until, account_id, sender_id),
                        )
                        row = self._conn.execute(
                            "SELECT * FROM security_state WHERE account_id = ? AND sender_id = ?",
                            (account_id, sender_id),
                        ).fetchone()
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return self._row_to_state(row)

    def unblock(self, account_id: str, sender_id: str) -> bool:
        """Clear the block deadline; strikes are kept."""
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE security_state SET blocked_until = NULL WHERE account_id = ? AND sender_id = ?",
                (account_id, sender_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def reset(self, account_id: str, sender_id: str) -> bool:
        """Administrative reset: forget strikes and block."""
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM security_state WHERE account_id = ? AND sender_id = ?",
                (account_id, sender_id),
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def list_blocked(self, account_id: str, *, now: float) -> list[SecurityState]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM security_state
                WHERE account_id = ? AND blocked_until IS NOT NULL AND blocked_until > ?
                ORDER BY blocked_until DESC
                """,
                (account_id, now),
            ).fetchall()
        return [self._row_to_state(row) for row in rows]

    def purge_account(self, account_id: str) -> int:
        with self._lock:
            cursor = self._conn.execute("DELETE FROM security_state WHERE account_id = ?", (account_id,))
            self._conn.commit()
            return cursor.rowcount

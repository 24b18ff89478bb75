"""SQLite registry for accounts, chat policies and conversation history."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING

from personaforge.core.models import (
    Account,
    AccountState,
    ChatPolicy,
    HistoryRole,
    HistoryTurn,
    HumanizationSettings,
)
from personaforge.utils.helpers import ensure_dir

if TYPE_CHECKING:
    from personaforge.config.schema import ChatPolicyDefaults


class AccountRegistry:
    """Keyed records written by administrative operations and read per event."""

    def __init__(self, db_path: Path, *, history_limit: int = 200) -> None:
        self.db_path = db_path.expanduser()
        self.history_limit = max(1, int(history_limit))
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
                CREATE TABLE IF NOT EXISTS accounts (
                    account_id TEXT PRIMARY KEY,
                    username TEXT NOT NULL DEFAULT '',
                    persona TEXT NOT NULL DEFAULT 'default',
                    humanization TEXT NOT NULL DEFAULT '{}',
                    state TEXT NOT NULL DEFAULT 'stopped',
                    active INTEGER NOT NULL DEFAULT 1,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_policies (
                    account_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    enabled INTEGER NOT NULL,
                    reply_mode TEXT NOT NULL,
                    triggers TEXT NOT NULL DEFAULT '[]',
                    cooldown_seconds REAL NOT NULL,
                    memory_enabled INTEGER NOT NULL,
                    context_depth INTEGER NOT NULL,
                    PRIMARY KEY (account_id, chat_id)
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS message_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    account_id TEXT NOT NULL,
                    chat_id TEXT NOT NULL,
                    role TEXT NOT NULL,
                    sender_name TEXT NOT NULL DEFAULT '',
                    text TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_message_history_scope
                ON message_history (account_id, chat_id, id)
                """
            )
            self._conn.commit()

    # Accounts

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        try:
            raw = json.loads(row["humanization"] or "{}")
        except json.JSONDecodeError:
            raw = {}
        known = HumanizationSettings.__dataclass_fields__
        settings = HumanizationSettings(**{k: v for k, v in raw.items() if k in known})
        return Account(
            account_id=str(row["account_id"]),
            username=str(row["username"]),
            persona=str(row["persona"]),
            humanization=settings,
            state=str(row["state"]),  # type: ignore[arg-type]
            active=bool(row["active"]),
        )

    def upsert_account(self, account: Account) -> Account:
        now = time.time()
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO accounts (account_id, username, persona, humanization, state, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (account_id) DO UPDATE SET
                    username = excluded.username,
                    persona = excluded.persona,
                    humanization = excluded.humanization,
                    active = excluded.active,
                    updated_at = excluded.updated_at
                """,
                (
                    account.account_id,
                    account.username,
                    account.persona,
                    json.dumps(asdict(account.humanization), sort_keys=True),
                    account.state,
                    int(account.active),
                    now,
                    now,
                ),
            )
            self._conn.commit()
        return self.get_account(account.account_id) or account

    def get_account(self, account_id: str) -> Account | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM accounts WHERE account_id = ?", (account_id,)).fetchone()
        return self._row_to_account(row) if row is not None else None

    def list_accounts(self) -> list[Account]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM accounts ORDER BY account_id").fetchall()
        return [self._row_to_account(row) for row in rows]

    def set_state(self, account_id: str, state: AccountState) -> None:
        with self._lock:
            self._conn.execute(
                "UPDATE accounts SET state = ?, updated_at = ? WHERE account_id = ?",
                (state, time.time(), account_id),
            )
            self._conn.commit()

    def delete_account(self, account_id: str) -> bool:
        """Remove the account with its chat policies and history."""
        with self._lock:
            try:
                deleted = self._conn.execute("DELETE FROM accounts WHERE account_id = ?", (account_id,)).rowcount
                self._conn.execute("DELETE FROM chat_policies WHERE account_id = ?", (account_id,))
                self._conn.execute("DELETE FROM message_history WHERE account_id = ?", (account_id,))
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
        return deleted > 0

    # Chat policies

    @staticmethod
    def _row_to_policy(row: sqlite3.Row) -> ChatPolicy:
        try:
            triggers = tuple(str(t) for t in json.loads(row["triggers"] or "[]"))
        except json.JSONDecodeError:
            triggers = ()
        return ChatPolicy(
            account_id=str(row["account_id"]),
            chat_id=str(row["chat_id"]),
            enabled=bool(row["enabled"]),
            reply_mode=str(row["reply_mode"]),  # type: ignore[arg-type]
            triggers=triggers,
            cooldown_seconds=float(row["cooldown_seconds"]),
            memory_enabled=bool(row["memory_enabled"]),
            context_depth=int(row["context_depth"]),
        )

    def upsert_chat_policy(self, policy: ChatPolicy) -> None:
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO chat_policies
                    (account_id, chat_id, enabled, reply_mode, triggers, cooldown_seconds, memory_enabled, context_depth)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (account_id, chat_id) DO UPDATE SET
                    enabled = excluded.enabled,
                    reply_mode = excluded.reply_mode,
                    triggers = excluded.triggers,
                    cooldown_seconds = excluded.cooldown_seconds,
                    memory_enabled = excluded.memory_enabled,
                    context_depth = excluded.context_depth
                """,
                (
                    policy.account_id,
                    policy.chat_id,
                    int(policy.enabled),
                    policy.reply_mode,
                    json.dumps(list(policy.triggers), ensure_ascii=False),
                    float(policy.cooldown_seconds),
                    int(policy.memory_enabled),
                    int(policy.context_depth),
                ),
            )
            self._conn.commit()

    def get_chat_policy(self, account_id: str, chat_id: str) -> ChatPolicy | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM chat_policies WHERE account_id = ? AND chat_id = ?",
                (account_id, chat_id),
            ).fetchone()
        return self._row_to_policy(row) if row is not None else None

    def resolve_chat_policy(self, account_id: str, chat_id: str, defaults: "ChatPolicyDefaults") -> ChatPolicy:
        """Stored policy for the chat, or one built from ``defaults``."""
        stored = self.get_chat_policy(account_id, chat_id)
        if stored is not None:
            return stored
        return ChatPolicy(
            account_id=account_id,
            chat_id=chat_id,
            enabled=defaults.enabled,
            reply_mode=defaults.reply_mode,
            triggers=tuple(defaults.triggers),
            cooldown_seconds=defaults.cooldown_seconds,
            memory_enabled=defaults.memory_enabled,
            context_depth=defaults.context_depth,
        )

    def list_chat_policies(self, account_id: str) -> list[ChatPolicy]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM chat_policies WHERE account_id = ? ORDER BY chat_id",
                (account_id,),
            ).fetchall()
        return [self._row_to_policy(row) for row in rows]

    # History

    def append_history(
        self,
        account_id: str,
        chat_id: str,
        *,
        role: HistoryRole,
        text: str,
        sender_name: str = "",
        created_at: float | None = None,
    ) -> None:
        """Append one turn and trim the chat to ``history_limit`` rows."""
        with self._lock:
            try:
                self._conn.execute(
                    """
                    INSERT INTO message_history (account_id, chat_id, role, sender_name, text, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (account_id, chat_id, role, sender_name, text, time.time() if created_at is None else created_at),
                )
                self._conn.execute(
                    """
                    DELETE FROM message_history
                    WHERE account_id = ? AND chat_id = ? AND id NOT IN (
                        SELECT id FROM message_history
                        WHERE account_id = ? AND chat_id = ?
                        ORDER BY id DESC LIMIT ?
                    )
                    """,
                    (account_id, chat_id, account_id, chat_id, self.history_limit),
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def recent_history(self, account_id: str, chat_id: str, limit: int) -> list[HistoryTurn]:
        """Last ``limit`` turns, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT role, sender_name, text, created_at FROM message_history
                WHERE account_id = ? AND chat_id = ?
                ORDER BY id DESC LIMIT ?
                """,
                (account_id, chat_id, int(limit)),
            ).fetchall()
        return [
            HistoryTurn(
                role=str(row["role"]),  # type: ignore[arg-type]
                sender_name=str(row["sender_name"]),
                text=str(row["text"]),
                created_at=float(row["created_at"]),
            )
            for row in reversed(rows)
        ]

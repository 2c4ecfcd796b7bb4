"""SQLite persistence layer."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                conversation_id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                origin TEXT NOT NULL,
                sender_id TEXT,
                content TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id)
            );

            CREATE TABLE IF NOT EXISTS tool_calls (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                tool_name TEXT NOT NULL,
                arguments_json TEXT NOT NULL,
                origin TEXT NOT NULL,
                status TEXT NOT NULL,
                result_json TEXT,
                error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY(conversation_id) REFERENCES conversations(conversation_id)
            );

            CREATE INDEX IF NOT EXISTS idx_tool_calls_conversation
                ON tool_calls(conversation_id, created_at);

            CREATE TABLE IF NOT EXISTS scheduled_tasks (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL,
                action_name TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_value TEXT NOT NULL,
                next_fire_at TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_scheduled_tasks_next_fire
                ON scheduled_tasks(next_fire_at);
            """
        )

    # Conversations

    def upsert_conversation(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conversations(conversation_id, created_at)
                VALUES(?, ?)
                ON CONFLICT(conversation_id) DO NOTHING
                """,
                (conversation_id, _utc_now_iso()),
            )

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        origin: str = "user",
        sender_id: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages(conversation_id, role, origin, sender_id, content, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (conversation_id, role, origin, sender_id, content, _utc_now_iso()),
            )

    def get_recent_messages(self, conversation_id: str, limit: int) -> list[dict[str, str]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, content
                FROM messages
                WHERE conversation_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (conversation_id, limit),
            ).fetchall()
        ordered = list(reversed(rows))
        return [{"role": row["role"], "content": row["content"]} for row in ordered]

    def get_transcript(self, conversation_id: str) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT role, origin, sender_id, content, created_at
                FROM messages
                WHERE conversation_id = ?
                ORDER BY id ASC
                """,
                (conversation_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def clear_history(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM tool_calls WHERE conversation_id = ?", (conversation_id,))

    def delete_conversation(self, conversation_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM tool_calls WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM scheduled_tasks WHERE conversation_id = ?", (conversation_id,))
            conn.execute("DELETE FROM conversations WHERE conversation_id = ?", (conversation_id,))

    # Tool calls

    def insert_tool_call(
        self,
        call_id: str,
        conversation_id: str,
        tool_name: str,
        arguments: dict[str, Any],
        origin: str,
        status: str,
        created_at: datetime,
    ) -> None:
        created = _iso(created_at)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tool_calls(
                    id, conversation_id, tool_name, arguments_json, origin, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (call_id, conversation_id, tool_name, json.dumps(arguments), origin, status, created, created),
            )

    def get_tool_call(self, call_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tool_calls WHERE id = ?", (call_id,)).fetchone()
        return _tool_call_row(row) if row else None

    def list_tool_calls(self, conversation_id: str, status: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM tool_calls WHERE conversation_id = ?"
        params: list[Any] = [conversation_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at ASC, rowid ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_tool_call_row(row) for row in rows]

    def transition_tool_call(
        self,
        call_id: str,
        expected_status: str,
        new_status: str,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        """Compare-and-set a call's status. Returns False if the expected status no longer holds."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE tool_calls
                SET status = ?, result_json = ?, error = ?, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    new_status,
                    json.dumps(result, default=str) if result is not None else None,
                    error,
                    _utc_now_iso(),
                    call_id,
                    expected_status,
                ),
            )
            return cur.rowcount == 1

    # Scheduled tasks

    def insert_scheduled_task(
        self,
        task_id: str,
        conversation_id: str,
        action_name: str,
        payload: Any,
        trigger_type: str,
        trigger_value: str,
        next_fire_at: datetime,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO scheduled_tasks(
                    id, conversation_id, action_name, payload_json, trigger_type, trigger_value,
                    next_fire_at, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    conversation_id,
                    action_name,
                    json.dumps(payload),
                    trigger_type,
                    trigger_value,
                    _iso(next_fire_at),
                    _utc_now_iso(),
                ),
            )

    def get_scheduled_task(self, task_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM scheduled_tasks WHERE id = ?", (task_id,)).fetchone()
        return _scheduled_task_row(row) if row else None

    def list_scheduled_tasks(self, conversation_id: str | None = None) -> list[dict[str, Any]]:
        query = "SELECT * FROM scheduled_tasks"
        params: tuple[Any, ...] = ()
        if conversation_id is not None:
            query += " WHERE conversation_id = ?"
            params = (conversation_id,)
        query += " ORDER BY next_fire_at ASC, created_at ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_scheduled_task_row(row) for row in rows]

    def update_task_next_fire(self, task_id: str, next_fire_at: datetime) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE scheduled_tasks SET next_fire_at = ? WHERE id = ?",
                (_iso(next_fire_at), task_id),
            )
            return cur.rowcount == 1

    def delete_scheduled_task(self, task_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM scheduled_tasks WHERE id = ?", (task_id,))
            return cur.rowcount == 1


def _tool_call_row(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["arguments"] = json.loads(item.pop("arguments_json"))
    raw_result = item.pop("result_json")
    item["result"] = json.loads(raw_result) if raw_result is not None else None
    item["created_at"] = datetime.fromisoformat(item["created_at"])
    return item


def _scheduled_task_row(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["payload"] = json.loads(item.pop("payload_json"))
    item["next_fire_at"] = datetime.fromisoformat(item["next_fire_at"])
    item["created_at"] = datetime.fromisoformat(item["created_at"])
    return item


def _iso(value: datetime) -> str:
    # Fixed width so lexical order in SQLite matches chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _utc_now_iso() -> str:
    return _iso(datetime.now(timezone.utc))

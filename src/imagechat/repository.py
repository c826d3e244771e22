"""SQLite-backed repository for conversations, assets and image blobs."""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

MessageRecord = dict[str, Any]
AssetRecord = dict[str, Any]
ConversationRecord = dict[str, Any]

_ASSET_COLUMNS = "id, space, blob_handle, label, created_at, originating_message_id, seq"


def utc_timestamp(value: datetime | None = None) -> str:
    """Return a fixed-width ISO8601 UTC timestamp.

    Fixed width keeps lexical and chronological order identical, which the
    asset numbering query relies on.
    """

    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="microseconds")


def _new_id() -> str:
    return uuid.uuid4().hex


def _decode_error(value: str | None) -> dict[str, Any] | None:
    if not value:
        return None
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return {"code": "UNKNOWN", "status": "", "message": value}
    return decoded if isinstance(decoded, dict) else None


def _message_from_row(row: aiosqlite.Row) -> MessageRecord:
    message: MessageRecord = {
        "id": row["id"],
        "conversation_id": row["conversation_id"],
        "role": row["role"],
        "content": row["content"],
        "position": row["position"],
        "created_at": row["created_at"],
    }
    if row["thought"]:
        message["thought"] = row["thought"]
    if row["thought_signature"]:
        message["thought_signature"] = row["thought_signature"]
    if row["generated_asset_id"]:
        message["generated_asset_id"] = row["generated_asset_id"]
    error = _decode_error(row["error"])
    if error is not None:
        message["error"] = error
    return message


class StudioRepository:
    """Persist conversations, numbered asset records and their blobs.

    Asset display numbers are never stored. They are ranked on read by
    creation time with the insertion sequence as the tie-break.
    """

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None
        self._space_locks: dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA foreign_keys=ON;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                title TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT,
                thought TEXT,
                thought_signature TEXT,
                generated_asset_id TEXT,
                error TEXT,
                position INTEGER NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS assets (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                space TEXT NOT NULL,
                blob_handle TEXT NOT NULL,
                label TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                originating_message_id TEXT
            );

            CREATE TABLE IF NOT EXISTS blobs (
                handle TEXT PRIMARY KEY,
                space TEXT NOT NULL,
                data TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_conversation
                ON messages(conversation_id, position);
            CREATE INDEX IF NOT EXISTS idx_assets_space_created
                ON assets(space, created_at, seq);
            CREATE INDEX IF NOT EXISTS idx_blobs_space ON blobs(space);
            """
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def space_lock(self, space: str) -> asyncio.Lock:
        """Return the lock serializing add/remove within one index space."""

        lock = self._space_locks.get(space)
        if lock is None:
            lock = asyncio.Lock()
            self._space_locks[space] = lock
        return lock

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self, title: str | None = None, *, conversation_id: str | None = None
    ) -> str:
        assert self._connection is not None
        conversation_id = conversation_id or _new_id()
        now = utc_timestamp()
        await self._connection.execute(
            """
            INSERT OR IGNORE INTO conversations(id, title, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            """,
            (conversation_id, title, now, now),
        )
        await self._connection.commit()
        return conversation_id

    async def list_conversations(self) -> list[ConversationRecord]:
        """Return conversations, most recently updated first."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT c.id, c.title, c.created_at, c.updated_at,
                   COUNT(m.id) AS message_count
            FROM conversations c
            LEFT JOIN messages m ON m.conversation_id = c.id
            GROUP BY c.id
            ORDER BY c.updated_at DESC
            """
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [dict(row) for row in rows]

    async def rename_conversation(self, conversation_id: str, title: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
            (title, utc_timestamp(), conversation_id),
        )
        await self._connection.commit()
        updated = cursor.rowcount > 0
        await cursor.close()
        return updated

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Remove a conversation and its messages. Assets are kept."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM conversations WHERE id = ?", (conversation_id,)
        )
        await self._connection.commit()
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def _touch_conversation(self, conversation_id: str) -> None:
        assert self._connection is not None
        await self._connection.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (utc_timestamp(), conversation_id),
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        *,
        content: str | None = None,
        thought: str | None = None,
        thought_signature: str | None = None,
        generated_asset_id: str | None = None,
        error: dict[str, Any] | None = None,
        position: int | None = None,
        message_id: str | None = None,
    ) -> MessageRecord:
        """Persist a message, appending it or inserting it at ``position``.

        Inserting shifts every message at or after ``position`` down by one.
        """

        assert self._connection is not None
        message_id = message_id or _new_id()
        if position is None:
            cursor = await self._connection.execute(
                "SELECT COALESCE(MAX(position), -1) + 1 FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()
            position = int(row[0]) if row is not None else 0
        else:
            await self._connection.execute(
                """
                UPDATE messages SET position = position + 1
                WHERE conversation_id = ? AND position >= ?
                """,
                (conversation_id, position),
            )

        created_at = utc_timestamp()
        await self._connection.execute(
            """
            INSERT INTO messages(
                id,
                conversation_id,
                role,
                content,
                thought,
                thought_signature,
                generated_asset_id,
                error,
                position,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message_id,
                conversation_id,
                role,
                content,
                thought,
                thought_signature,
                generated_asset_id,
                json.dumps(error, ensure_ascii=False) if error else None,
                position,
                created_at,
            ),
        )
        await self._touch_conversation(conversation_id)
        await self._connection.commit()

        record = await self.get_message(message_id)
        if record is None:  # pragma: no cover - insert just succeeded
            raise RuntimeError(f"Message {message_id} vanished after insert")
        return record

    async def get_message(self, message_id: str) -> MessageRecord | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT * FROM messages WHERE id = ?", (message_id,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _message_from_row(row) if row is not None else None

    async def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Return conversation messages in display order."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            """
            SELECT * FROM messages
            WHERE conversation_id = ?
            ORDER BY position ASC, created_at ASC
            """,
            (conversation_id,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_message_from_row(row) for row in rows]

    async def delete_message(self, message_id: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM messages WHERE id = ?", (message_id,)
        )
        await self._connection.commit()
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def delete_error_messages(self, conversation_id: str) -> int:
        """Drop every error-only assistant message from a conversation."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM messages WHERE conversation_id = ? AND error IS NOT NULL",
            (conversation_id,),
        )
        await self._connection.commit()
        removed = cursor.rowcount
        await cursor.close()
        return max(removed, 0)

    async def clear_generated_asset(self, asset_id: str) -> int:
        """Detach a deleted asset from the messages that referenced it."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "UPDATE messages SET generated_asset_id = NULL WHERE generated_asset_id = ?",
            (asset_id,),
        )
        await self._connection.commit()
        updated = cursor.rowcount
        await cursor.close()
        return max(updated, 0)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def insert_asset(
        self,
        space: str,
        *,
        asset_id: str,
        blob_handle: str,
        label: str,
        created_at: str,
        originating_message_id: str | None = None,
    ) -> None:
        assert self._connection is not None
        await self._connection.execute(
            """
            INSERT INTO assets(id, space, blob_handle, label, created_at, originating_message_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (asset_id, space, blob_handle, label, created_at, originating_message_id),
        )
        await self._connection.commit()

    async def fetch_assets(self, space: str) -> list[AssetRecord]:
        """Return the records of a space with their derived display number."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            f"""
            SELECT {_ASSET_COLUMNS},
                   ROW_NUMBER() OVER (ORDER BY created_at ASC, seq ASC) AS number
            FROM assets
            WHERE space = ?
            ORDER BY number ASC
            """,
            (space,),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [dict(row) for row in rows]

    async def fetch_asset(self, space: str, asset_id: str) -> AssetRecord | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            f"""
            SELECT * FROM (
                SELECT {_ASSET_COLUMNS},
                       ROW_NUMBER() OVER (ORDER BY created_at ASC, seq ASC) AS number
                FROM assets
                WHERE space = ?
            )
            WHERE id = ?
            """,
            (space, asset_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return dict(row) if row is not None else None

    async def count_assets(self, space: str) -> int:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT COUNT(*) FROM assets WHERE space = ?", (space,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row is not None else 0

    async def delete_asset_record(self, space: str, asset_id: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM assets WHERE space = ? AND id = ?", (space, asset_id)
        )
        await self._connection.commit()
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    async def put_blob(self, space: str, handle: str, data: str) -> None:
        assert self._connection is not None
        await self._connection.execute(
            "INSERT OR REPLACE INTO blobs(handle, space, data) VALUES (?, ?, ?)",
            (handle, space, data),
        )
        await self._connection.commit()

    async def get_blob(self, space: str, handle: str) -> str | None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT data FROM blobs WHERE space = ? AND handle = ?", (space, handle)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row["data"] if row is not None else None

    async def delete_blob(self, space: str, handle: str) -> bool:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM blobs WHERE space = ? AND handle = ?", (space, handle)
        )
        await self._connection.commit()
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def clear_space(self, space: str) -> int:
        """Delete every asset record and blob of an index space."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "DELETE FROM assets WHERE space = ?", (space,)
        )
        removed = max(cursor.rowcount, 0)
        await cursor.close()
        await self._connection.execute("DELETE FROM blobs WHERE space = ?", (space,))
        await self._connection.commit()
        return removed


__all__ = [
    "AssetRecord",
    "ConversationRecord",
    "MessageRecord",
    "StudioRepository",
    "utc_timestamp",
]

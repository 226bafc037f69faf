"""历史存储：按群组保存聊天记录的简单 KV 层。

键格式为 chat_history:<groupId>，值为消息投影列表的 JSON；每次写入整体覆盖。
纯数据层，不做任何校验或合并，使用 aiosqlite 异步读写。
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import aiosqlite

KEY_PREFIX = "chat_history:"

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def history_key(group_id: str) -> str:
    return f"{KEY_PREFIX}{group_id}"


class HistoryStore:
    """KV 存储：get / put / delete 原始字符串，以及按群组读写消息列表的便捷方法。"""

    def __init__(self, db_path: str = "data/group_chat.db"):
        """指定 SQLite 数据库文件路径，连接在 initialize() 中建立。"""
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """建立连接并建表。应用启动时调用一次。"""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.executescript(DB_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # ── 原始 KV ──

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        now = datetime.now().isoformat()
        await self._db.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value, now),
        )
        await self._db.commit()

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM kv WHERE key = ?", (key,))
        await self._db.commit()

    # ── 群组历史 ──

    async def load_messages(self, group_id: str) -> list:
        """读取群组历史；不存在返回空列表。"""
        stored = await self.get(history_key(group_id))
        return json.loads(stored) if stored else []

    async def save_messages(self, group_id: str, messages: list) -> None:
        """整体覆盖群组历史。"""
        await self.put(history_key(group_id), json.dumps(messages, ensure_ascii=False))

    async def clear_messages(self, group_id: str) -> None:
        await self.delete(history_key(group_id))

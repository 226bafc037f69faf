"""持久化桥：同一份权威消息列表的两个去向。

本地：LocalStorage 把每个键存成一个 JSON 文件，列表每次变化都同步写入；
      poll() 通过 mtime 感知其它进程对同一键的修改（相当于浏览器跨标签页的 storage 事件）。
远程：HistoryBridge 在首次进入群组时从 /api/history 水合，之后每次变化都推送最新快照。
      推送是发出即忘：失败只记日志，不重试，也不影响聊天。
      水合完成前不推送，避免用水合前的（可能为空的）列表覆盖服务端记录。
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from pydantic import TypeAdapter, ValidationError

from src.models.chat import ChatMessage, HumanSender, PersonaSender, StoredHistoryMessage

if TYPE_CHECKING:
    from src.client.message_list import MessageList
    from src.client.transport import Transport
    from src.models.character import Character

logger = logging.getLogger(__name__)

HISTORY_PATH = "/api/history"

_RE_UNSAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")
_MESSAGES_ADAPTER = TypeAdapter(list[ChatMessage])


def local_messages_key(group_index: int | str) -> str:
    return f"chat_messages_group_{group_index}"


class LocalStorage:
    """设备本地的键值存储：目录下每个键一个 JSON 文件。读写失败只记日志。"""

    def __init__(self, directory: str = "data/local_storage"):
        self.directory = Path(directory)
        self._listeners: dict[str, list[Callable[[Any], None]]] = {}
        self._seen_mtime: dict[str, int | None] = {}

    def _path(self, key: str) -> Path:
        return self.directory / f"{_RE_UNSAFE_KEY.sub('_', key)}.json"

    def _mtime(self, key: str) -> int | None:
        try:
            return self._path(key).stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            if not path.exists():
                return default
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f'Error loading local storage key "{key}": {e}')
            return default

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f'Error setting local storage key "{key}": {e}')
            return
        self._seen_mtime[key] = self._mtime(key)

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f'Error clearing local storage key "{key}": {e}')
            return
        self._seen_mtime[key] = None

    def subscribe(self, key: str, listener: Callable[[Any], None]) -> Callable[[], None]:
        """订阅其它进程对 key 的修改；返回取消订阅函数。"""
        self._listeners.setdefault(key, []).append(listener)
        self._seen_mtime.setdefault(key, self._mtime(key))

        def unsubscribe() -> None:
            listeners = self._listeners.get(key, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def poll(self) -> list[str]:
        """检查被订阅的键是否被外部修改，通知监听者；返回发生变化的键。删除不通知。"""
        changed = []
        for key, listeners in list(self._listeners.items()):
            mtime = self._mtime(key)
            if mtime == self._seen_mtime.get(key):
                continue
            self._seen_mtime[key] = mtime
            if mtime is None or not listeners:
                continue
            value = self.get(key)
            if value is None:
                continue
            changed.append(key)
            for listener in list(listeners):
                listener(value)
        return changed

    async def watch(self, interval: float = 1.0) -> None:
        """持续轮询，直到所在任务被取消。"""
        while True:
            self.poll()
            await asyncio.sleep(interval)


class LocalMessageCache:
    """把权威消息列表镜像到本地存储，并在外部修改时回灌。"""

    def __init__(self, storage: LocalStorage, key: str):
        self.storage = storage
        self.key = key
        self._message_list: MessageList | None = None
        self._unsubscribe: list[Callable[[], None]] = []

    def load(self) -> list[ChatMessage]:
        data = self.storage.get(self.key, [])
        try:
            return _MESSAGES_ADAPTER.validate_python(data)
        except ValidationError as e:
            logger.error(f'Invalid messages in local storage key "{self.key}": {e}')
            return []

    def attach(self, message_list: MessageList) -> None:
        self._message_list = message_list
        self._unsubscribe = [
            message_list.subscribe(self._mirror),
            self.storage.subscribe(self.key, self._on_external_change),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def clear(self) -> None:
        self.storage.remove(self.key)

    def _mirror(self, messages: list[ChatMessage]) -> None:
        self.storage.set(self.key, [m.model_dump(mode="json") for m in messages])

    def _on_external_change(self, value: Any) -> None:
        try:
            messages = _MESSAGES_ADAPTER.validate_python(value)
        except ValidationError as e:
            logger.error(f'Error parsing storage change for key "{self.key}": {e}')
            return
        if self._message_list is not None:
            logger.info("Local storage key %s changed externally: %d messages", self.key, len(messages))
            self._message_list.replace_all(messages)


class HistoryBridge:
    """服务端历史：一次性水合 + 之后的最新快照推送。"""

    def __init__(
        self,
        transport: Transport,
        group_id: str,
        users: list[HumanSender],
        characters: list[Character],
        path: str = HISTORY_PATH,
    ):
        self.transport = transport
        self.group_id = group_id
        self.users = users
        self.characters = characters
        self.path = path

        self.hydrated = False
        self._pending: list[dict] | None = None
        self._worker: asyncio.Task | None = None

    def attach(self, message_list: MessageList) -> Callable[[], None]:
        return message_list.subscribe(self.on_change)

    async def hydrate(self, message_list: MessageList) -> None:
        """读取服务端历史并替换权威列表；失败保持原列表。只执行一次。"""
        if self.hydrated:
            return
        try:
            result = await self.transport.get_json(self.path, {"groupId": self.group_id})
            if isinstance(result, dict) and result.get("success") and isinstance(result.get("messages"), list):
                messages = self._resolve_messages(result["messages"])
                logger.info("[CALL] history hydrated: group_id=%s messages=%d", self.group_id, len(messages))
                message_list.replace_all(messages)
        except Exception as e:
            logger.error("加载聊天历史记录失败: group_id=%s error=%s", self.group_id, e)
        finally:
            self.hydrated = True

    def on_change(self, messages: list[ChatMessage]) -> None:
        """列表变化回调：水合前忽略；之后登记最新快照并确保有推送任务在跑。"""
        if not self.hydrated:
            return
        self._pending = [StoredHistoryMessage.from_message(m).model_dump(by_alias=True) for m in messages]
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._push_loop())

    async def flush(self) -> None:
        """等待所有挂起的推送完成。"""
        while self._worker is not None and not self._worker.done():
            await self._worker

    async def clear_remote(self) -> None:
        await self.flush()
        try:
            await self.transport.delete(self.path, {"groupId": self.group_id})
        except Exception as e:
            logger.error("清除聊天历史记录失败: group_id=%s error=%s", self.group_id, e)

    async def _push_loop(self) -> None:
        while self._pending is not None:
            payload, self._pending = self._pending, None
            try:
                await self.transport.post_json(self.path, {"groupId": self.group_id, "messages": payload})
            except Exception as e:
                logger.error("保存聊天历史记录失败: group_id=%s error=%s", self.group_id, e)

    def _resolve_messages(self, stored: list) -> list[ChatMessage]:
        """把存储投影还原为消息：按名字先找用户、再找角色，找不到则合成发送者；id 去重。"""
        messages: list[ChatMessage] = []
        used_ids: set[int] = set()
        for index, raw in enumerate(stored):
            item = StoredHistoryMessage.model_validate(raw)
            message_id = item.id if item.id is not None else index + 1
            if message_id in used_ids:
                message_id = max(used_ids) + 1
            used_ids.add(message_id)
            messages.append(ChatMessage(
                id=message_id,
                sender=self._resolve_sender(index, item),
                content=item.content,
                is_ai=item.is_ai,
            ))
        return messages

    def _resolve_sender(self, index: int, item: StoredHistoryMessage) -> HumanSender | PersonaSender:
        for user in self.users:
            if user.name == item.sender_name:
                return user
        for character in self.characters:
            if character.name == item.sender_name:
                return PersonaSender(id=character.id, name=character.name, avatar=character.avatar or None)
        if item.is_ai:
            return PersonaSender(id=index + 1, name=item.sender_name, avatar=None)
        return HumanSender(id=index + 1, name=item.sender_name, avatar=None)

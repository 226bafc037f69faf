"""权威消息列表：只通过“读旧列表、算新列表、整体替换”更新，并同步通知监听者。

编排器是唯一修改消息内容的一方；本地缓存与远程历史只订阅变化。
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from src.models.chat import ChatMessage

logger = logging.getLogger(__name__)

Listener = Callable[[list[ChatMessage]], None]


class MessageList:
    def __init__(self, initial: list[ChatMessage] | None = None):
        self._messages: list[ChatMessage] = list(initial or [])
        self._listeners: list[Listener] = []

    @property
    def messages(self) -> list[ChatMessage]:
        """当前列表的浅拷贝。"""
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """注册变化回调，返回取消订阅函数。"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def next_id(self) -> int:
        """单调递增的新消息 id：现有最大 id + 1。"""
        return max((m.id for m in self._messages), default=0) + 1

    def get(self, message_id: int) -> ChatMessage | None:
        for m in self._messages:
            if m.id == message_id:
                return m
        return None

    def replace(self, compute: Callable[[list[ChatMessage]], list[ChatMessage]]) -> None:
        """以旧列表计算新列表并整体替换。"""
        self._messages = list(compute(list(self._messages)))
        self._notify()

    def replace_all(self, messages: list[ChatMessage]) -> None:
        self.replace(lambda _: messages)

    def append(self, message: ChatMessage) -> None:
        self.replace(lambda prev: [*prev, message])

    def update(self, message_id: int, **changes: Any) -> None:
        """替换指定 id 的消息字段；id 不存在时不变（但仍通知，与整体替换语义一致）。"""
        self.replace(
            lambda prev: [m.model_copy(update=changes) if m.id == message_id else m for m in prev]
        )

    def _notify(self) -> None:
        snapshot = list(self._messages)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Message listener %r failed: %s", listener, e, exc_info=True)

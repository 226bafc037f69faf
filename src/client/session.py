"""群聊会话：把编排器、调度客户端、本地缓存与远程历史组装在一起。

一个 ChatSession 对应“当前设备进入了某个群组”，持有该群的权威消息列表、
静音集合与讨论模式开关。当前用户的显示名通过构造参数显式传入。
"""

from __future__ import annotations

import logging

from src.client.message_list import MessageList
from src.client.orchestrator import TurnOrchestrator
from src.client.persistence import HistoryBridge, LocalMessageCache, LocalStorage, local_messages_key
from src.client.scheduler import SchedulerClient
from src.client.stream_decoder import DEFAULT_READ_TIMEOUT
from src.client.transport import Transport
from src.models.character import Character, Group
from src.models.chat import ChatMessage, HumanSender

logger = logging.getLogger(__name__)


def group_roster(group: Group, characters: list[Character]) -> list[Character]:
    """群内可发言角色：按成员顺序，排除调度器角色。"""
    by_id = {c.id: c for c in characters}
    return [by_id[m] for m in group.members if m in by_id and not by_id[m].is_scheduler]


class ChatSession:
    def __init__(
        self,
        transport: Transport,
        group: Group,
        group_index: int,
        characters: list[Character],
        user: HumanSender,
        storage: LocalStorage,
        turn_delay: float = 1.0,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ):
        self.transport = transport
        self.group = group
        self.roster = group_roster(group, characters)
        self.user = user
        self.muted: set[str] = set()
        self.discussion_mode = group.is_group_discussion_mode

        self.local_cache = LocalMessageCache(storage, local_messages_key(group_index))
        self.message_list = MessageList(self.local_cache.load())
        self.local_cache.attach(self.message_list)

        self.history_bridge = HistoryBridge(
            transport,
            group_id=group.id,
            users=[user],
            characters=self.roster,
        )
        self.history_bridge.attach(self.message_list)

        self.orchestrator = TurnOrchestrator(
            transport=transport,
            scheduler=SchedulerClient(transport),
            message_list=self.message_list,
            user_name=user.name,
            turn_delay=turn_delay,
            read_timeout=read_timeout,
        )

    @classmethod
    async def from_init(
        cls,
        transport: Transport,
        group_index: int,
        storage: LocalStorage,
        user_name: str = "",
        **kwargs,
    ) -> ChatSession:
        """调用 /api/init 获取群组与角色，选择第 group_index 个群组建立会话。"""
        result = await transport.get_json("/api/init")
        data = result.get("data", {}) if isinstance(result, dict) else {}
        groups = [Group.model_validate(g) for g in data.get("groups", [])]
        characters = [Character.model_validate(c) for c in data.get("characters", [])]
        if not 0 <= group_index < len(groups):
            raise IndexError(f"Group index out of range: {group_index} (groups={len(groups)})")
        user = HumanSender(id=1, name=user_name)
        return cls(transport, groups[group_index], group_index, characters, user, storage, **kwargs)

    @property
    def messages(self) -> list[ChatMessage]:
        return self.message_list.messages

    @property
    def busy(self) -> bool:
        return self.orchestrator.busy

    async def enter(self) -> None:
        """进入群组：一次性从服务端水合历史。"""
        await self.history_bridge.hydrate(self.message_list)

    async def send(self, text: str) -> list[ChatMessage]:
        return await self.orchestrator.send(
            text,
            group=self.group,
            roster=self.roster,
            muted=self.muted,
            discussion_mode=self.discussion_mode,
            user_sender=self.user,
        )

    def cancel(self) -> None:
        self.orchestrator.cancel()

    def toggle_mute(self, character_id: str) -> bool:
        """切换静音，返回切换后是否处于静音。"""
        if character_id in self.muted:
            self.muted.discard(character_id)
            return False
        self.muted.add(character_id)
        return True

    def toggle_discussion_mode(self) -> bool:
        self.discussion_mode = not self.discussion_mode
        return self.discussion_mode

    async def reset(self) -> None:
        """清空本群消息，同时删除本地与服务端副本。"""
        logger.info("[CALL] session.reset: group_id=%s messages=%d", self.group.id, len(self.message_list))
        self.message_list.replace_all([])
        self.local_cache.clear()
        await self.history_bridge.clear_remote()

    async def close(self) -> None:
        """等待挂起的远程推送并解除订阅。"""
        await self.history_bridge.flush()
        self.local_cache.detach()

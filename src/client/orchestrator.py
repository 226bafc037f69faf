"""回合编排器：一条人类消息触发一个发送周期，角色依次（绝不并发）流式回复。

状态：IDLE → DISPATCHING（确定回复名单）→ STREAMING（逐个角色）→ IDLE

每个回合：
  1. 被静音的角色直接跳过，不产生占位消息；
  2. 先登记空的占位消息，之后所有增量都按它的 id 原地覆盖内容；
  3. rag 角色走检索端点，其余走补全端点；
  4. 非空回复追加到滚动历史，供同一周期后面的角色参考；
  5. 空回复写固定道歉文本；失败写带错误详情的道歉文本并标记 is_error，
     同时把失败说明写进历史，然后继续下一个角色；
  6. 不是最后一个角色时暂停 turn_delay 秒。

取消令牌贯穿请求、读流与回合间等待；取消后不再发起新回合，进行中的消息标记为已取消。
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterable

from src.client.cancellation import CancellationToken
from src.client.errors import SchedulerError, TurnCancelled
from src.client.stream_decoder import DEFAULT_READ_TIMEOUT, NAME_SEPARATOR, StreamDecoder
from src.models.chat import ChatMessage, HistoryEntry, HumanSender, PersonaSender, cap_history

if TYPE_CHECKING:
    from src.client.message_list import MessageList
    from src.client.scheduler import SchedulerClient
    from src.client.transport import Transport
    from src.models.character import Character, Group

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"
RAG_PATH = "/rag/query"

EMPTY_REPLY_TEXT = "对不起，我还不够智能，服务又断开了。"
ERROR_REPLY_TEMPLATE = "对不起，我还不够智能，服务又断开了（错误：{detail}）"
CANCELLED_TEXT = "（已取消）"

# 历史中代表本地用户的固定名字
USER_HISTORY_NAME = "user"


class OrchestratorState(str, Enum):
    IDLE = "idle"
    DISPATCHING = "dispatching"
    STREAMING = "streaming"


class TurnOrchestrator:
    """驱动发送周期；只通过 MessageList 的整体替换修改消息。"""

    def __init__(
        self,
        transport: Transport,
        scheduler: SchedulerClient,
        message_list: MessageList,
        user_name: str,
        turn_delay: float = 1.0,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        chat_path: str = CHAT_PATH,
        rag_path: str = RAG_PATH,
    ):
        self.transport = transport
        self.scheduler = scheduler
        self.message_list = message_list
        self.user_name = user_name
        self.turn_delay = turn_delay
        self.read_timeout = read_timeout
        self.chat_path = chat_path
        self.rag_path = rag_path

        self.cancel_token = CancellationToken()
        self.state = OrchestratorState.IDLE
        self.current_message_id: int | None = None

    @property
    def busy(self) -> bool:
        return self.state != OrchestratorState.IDLE

    def cancel(self) -> None:
        """中止当前发送周期。"""
        if self.busy:
            logger.info("[CALL] orchestrator.cancel: state=%s message_id=%s", self.state, self.current_message_id)
        self.cancel_token.cancel()

    def build_history(self, messages: Iterable[ChatMessage]) -> list[HistoryEntry]:
        """把消息列表投影为模型输入历史：统一 role=user，内容带 `名字：` 前缀。"""
        history = []
        for msg in messages:
            if msg.sender.name == self.user_name:
                content = f"{USER_HISTORY_NAME}{NAME_SEPARATOR}{msg.content}"
            else:
                content = f"{msg.sender.name}{NAME_SEPARATOR}{msg.content}"
            history.append(HistoryEntry(role="user", content=content, name=msg.sender.name))
        return history

    async def send(
        self,
        text: str,
        group: Group,
        roster: list[Character],
        muted: Iterable[str] = (),
        discussion_mode: bool | None = None,
        user_sender: HumanSender | None = None,
    ) -> list[ChatMessage]:
        """处理一条人类消息，返回本周期产生的角色消息（最终状态）。"""
        if self.busy:
            logger.warning("[CALL] orchestrator.send ignored: previous cycle still running")
            return []
        if not text.strip():
            return []

        self.cancel_token.reset()
        muted = set(muted)
        if discussion_mode is None:
            discussion_mode = group.is_group_discussion_mode

        prior = self.message_list.messages
        self.message_list.append(ChatMessage(
            id=self.message_list.next_id(),
            sender=user_sender or HumanSender(name=self.user_name),
            content=text,
            is_ai=False,
        ))
        history = self.build_history(prior)
        known_names = [c.name for c in roster] + [USER_HISTORY_NAME]

        logger.info(
            "[CALL] orchestrator.send: group=%s discussion_mode=%s roster=%s muted=%s text_len=%d",
            group.id, discussion_mode, [c.id for c in roster], sorted(muted), len(text),
        )

        produced: list[ChatMessage] = []
        self.state = OrchestratorState.DISPATCHING
        try:
            try:
                selected = await self._select(text, history, roster, discussion_mode)
            except TurnCancelled:
                logger.info("[CALL] orchestrator: cancelled while dispatching")
                return produced

            self.state = OrchestratorState.STREAMING
            for i, character in enumerate(selected):
                if self.cancel_token.cancelled:
                    break
                if character.id in muted:
                    logger.info("[CALL] orchestrator: skip muted character %s", character.id)
                    continue

                message = await self._run_turn(character, i, text, history, group, known_names)
                produced.append(message)
                if message.is_cancelled:
                    break

                if i < len(selected) - 1:
                    try:
                        await self._pause()
                    except TurnCancelled:
                        break
        finally:
            self.state = OrchestratorState.IDLE
            self.current_message_id = None

        logger.info("[CALL] orchestrator.send done: replies=%d", len(produced))
        return produced

    async def _select(
        self,
        text: str,
        history: list[HistoryEntry],
        roster: list[Character],
        discussion_mode: bool,
    ) -> list[Character]:
        """讨论模式全员按名单顺序；否则按调度结果顺序。调度失败时退回全员。"""
        speakers = [c for c in roster if not c.is_scheduler]
        if discussion_mode:
            return speakers
        try:
            ids = await self.scheduler.select(text, cap_history(history), roster, self.cancel_token)
        except SchedulerError as e:
            logger.warning("[CALL] scheduler failed, falling back to full roster: %s", e)
            return speakers
        by_id = {c.id: c for c in roster}
        return [by_id[aid] for aid in ids if aid in by_id]

    async def _pause(self) -> None:
        await self.cancel_token.sleep(self.turn_delay)

    def _build_payload(
        self,
        character: Character,
        index: int,
        text: str,
        history: list[HistoryEntry],
        group: Group,
    ) -> dict:
        return {
            "model": character.model,
            "message": text,
            "query": text,
            "personality": character.personality,
            "history": [h.model_dump() for h in cap_history(history)],
            "index": index,
            "aiName": character.name,
            "rag": character.rag,
            "knowledge": character.knowledge,
            "custom_prompt": character.render_prompt(group),
        }

    async def _run_turn(
        self,
        character: Character,
        index: int,
        text: str,
        history: list[HistoryEntry],
        group: Group,
        known_names: list[str],
    ) -> ChatMessage:
        """执行单个角色的回合；失败隔离在本回合内。history 会被原地追加。"""
        message_id = self.message_list.next_id()
        placeholder = ChatMessage(
            id=message_id,
            sender=PersonaSender(id=character.id, name=character.name, avatar=character.avatar or None),
            content="",
            is_ai=True,
        )
        self.message_list.append(placeholder)
        self.current_message_id = message_id

        path = self.rag_path if character.rag else self.chat_path
        payload = self._build_payload(character, index, text, history, group)
        decoder = StreamDecoder(known_names, read_timeout=self.read_timeout, cancel_token=self.cancel_token)
        logger.info(
            "[CALL] turn start: character=%s index=%d path=%s message_id=%d history=%d",
            character.id, index, path, message_id, len(payload["history"]),
        )

        # 最终状态在本地组装：回合期间列表可能被整体替换（重置、其它窗口同步），占位消息不一定还在
        try:
            reply = await self.cancel_token.run(self._stream_reply(path, payload, decoder, message_id))
        except TurnCancelled:
            partial = decoder.full_text
            final = {"content": partial or CANCELLED_TEXT, "is_cancelled": True}
            self.message_list.update(message_id, **final)
            logger.info("[CALL] turn cancelled: character=%s partial_len=%d", character.id, len(partial))
        except Exception as e:
            logger.error("[CALL] 发送消息失败: character=%s error=%s", character.id, e, exc_info=True)
            error_text = ERROR_REPLY_TEMPLATE.format(detail=e)
            history.append(HistoryEntry(role="user", content=f"{character.name}{error_text}", name=character.name))
            final = {"content": error_text, "is_error": True}
            self.message_list.update(message_id, **final)
        else:
            if not reply.strip():
                final = {"content": EMPTY_REPLY_TEXT}
                self.message_list.update(message_id, **final)
            else:
                final = {"content": reply}
                history.append(HistoryEntry(
                    role="user",
                    content=f"{character.name}{NAME_SEPARATOR}{reply}",
                    name=character.name,
                ))
            logger.info("[CALL] turn done: character=%s reply_len=%d", character.id, len(reply))

        if self.message_list.get(message_id) is None:
            logger.warning("[CALL] message %d replaced during turn: character=%s", message_id, character.id)
        return placeholder.model_copy(update=final)

    async def _stream_reply(self, path: str, payload: dict, decoder: StreamDecoder, message_id: int) -> str:
        """请求并解码一个角色的回复；每个增量都把累计内容写回占位消息。"""
        async with self.transport.stream(path, payload) as response:
            async for _ in decoder.decode(response.aiter_bytes()):
                self.message_list.update(message_id, content=decoder.full_text)
        return decoder.full_text

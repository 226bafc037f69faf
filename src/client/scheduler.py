"""调度客户端：询问 /api/scheduler 哪些角色应回复本条消息。"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.client.errors import ChatError, SchedulerError
from src.models.chat import HistoryEntry, cap_history

if TYPE_CHECKING:
    from src.client.cancellation import CancellationToken
    from src.client.transport import Transport
    from src.models.character import Character

logger = logging.getLogger(__name__)

SCHEDULER_PATH = "/api/scheduler"


class SchedulerClient:
    def __init__(self, transport: Transport, path: str = SCHEDULER_PATH):
        self.transport = transport
        self.path = path

    async def select(
        self,
        message: str,
        history: list[HistoryEntry],
        roster: list[Character],
        cancel_token: CancellationToken | None = None,
    ) -> list[str]:
        """返回调度器选中的角色 id（保持调度器给出的顺序，丢弃名单外的 id）。"""
        payload = {
            "message": message,
            "history": [h.model_dump() for h in cap_history(history)],
            "availableAIs": [c.model_dump(mode="json") for c in roster],
        }
        request = self.transport.post_json(self.path, payload)
        try:
            data = await (cancel_token.run(request) if cancel_token else request)
        except ChatError as e:
            if cancel_token and cancel_token.cancelled:
                raise
            raise SchedulerError(f"调度失败: {e}") from e

        selected = data.get("selectedAIs") if isinstance(data, dict) else None
        if not isinstance(selected, list):
            raise SchedulerError(f"调度返回格式不正确: {data!r}")

        roster_ids = {c.id for c in roster}
        result = [str(aid) for aid in selected if str(aid) in roster_ids]
        logger.info("[CALL] scheduler.select: selected=%s filtered=%s", selected, result)
        return result

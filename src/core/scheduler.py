"""调度服务：决定哪些角色回复当前消息。

优先让调度器角色（personality == "sheduler"）的模型挑选，模型输出须为 JSON id 数组；
未配置调度器、缺少 API Key 或模型输出无法解析时，退回到按名字点名：
消息中提到了谁就选谁，谁都没提到则全员回复。
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.completion import CompletionService
    from src.registry.character_registry import CharacterRegistry

logger = logging.getLogger(__name__)

_RE_JSON_ARRAY = re.compile(r"\[.*?\]", re.DOTALL)


class SchedulerService:
    """挑选回复角色；返回值只包含 available 中存在的 id，保持模型给出的顺序。"""

    def __init__(self, registry: CharacterRegistry, completion: CompletionService):
        self.registry = registry
        self.completion = completion

    async def select(self, message: str, history: list[dict], available: list[dict]) -> list[str]:
        available_ids = [str(a.get("id")) for a in available if a.get("id") is not None]
        logger.info(
            "[CALL] scheduler.select: available=%s history=%d message_preview=%s",
            available_ids, len(history), message[:80],
        )
        if not available_ids:
            return []

        selected = await self._select_by_model(message, history, available)
        if selected:
            logger.info("[CALL] scheduler: model selected %s", selected)
            return selected

        selected = self._select_by_name(message, available)
        logger.info("[CALL] scheduler: name-based selection %s", selected)
        return selected

    async def _select_by_model(self, message: str, history: list[dict], available: list[dict]) -> list[str]:
        scheduler = self.registry.scheduler_character()
        if not scheduler:
            return []
        model_config = self.registry.get_model_config(scheduler.model)
        if not model_config:
            logger.warning("[CALL] scheduler: unknown model %s", scheduler.model)
            return []
        api_key = self.registry.resolve_api_key(model_config, scheduler)
        if not api_key:
            logger.warning("[CALL] scheduler: api key not configured for %s", scheduler.model)
            return []

        roster = "\n".join(
            f"- id={a.get('id')} 名字={a.get('name', '')} 性格={a.get('personality', '')}"
            for a in available
        )
        recent = "\n".join(str(h.get("content", "")) for h in history[-10:] if isinstance(h, dict))
        prompt = (
            f"{scheduler.custom_prompt}\n"
            f"群成员：\n{roster}\n"
            f"最近的聊天记录：\n{recent}\n"
            f"新消息：{message}\n"
            f"请选出最适合回复新消息的成员，只输出 JSON 数组形式的 id 列表，例如 [\"ai1\"]。"
        )
        try:
            text = await self.completion.complete(
                model=scheduler.model,
                messages=[{"role": "user", "content": prompt}],
                api_key=api_key,
                base_url=scheduler.base_url or model_config.base_url,
            )
        except Exception as e:
            logger.error("[CALL] scheduler: model call failed: %s", e)
            return []
        return self._parse_ids(text, [str(a.get("id")) for a in available])

    @staticmethod
    def _parse_ids(text: str, available_ids: list[str]) -> list[str]:
        """从模型输出中提取第一个 JSON 数组，过滤未知 id 并去重。"""
        match = _RE_JSON_ARRAY.search(text or "")
        if not match:
            return []
        try:
            ids = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning("[CALL] scheduler: invalid JSON from model: %s", match.group(0)[:100])
            return []
        result: list[str] = []
        for item in ids if isinstance(ids, list) else []:
            aid = str(item)
            if aid in available_ids and aid not in result:
                result.append(aid)
        return result

    @staticmethod
    def _select_by_name(message: str, available: list[dict]) -> list[str]:
        mentioned = [
            str(a["id"]) for a in available
            if a.get("name") and a["name"].lower() in message.lower()
        ]
        return mentioned or [str(a["id"]) for a in available if a.get("id") is not None]

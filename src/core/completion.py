"""补全服务：组装发往上游模型的消息数组，并通过 OpenAI 兼容 API 流式获取回复。

消息数组 = [system, ...history]，新的用户消息按 index 插入：
  index <= 0 或 index >= len(messages)  → 追加到末尾
  否则                                   → 插入到倒数第 index 个元素之前
多个角色依次回复同一条消息时，用 index 控制新消息在上下文中的位置（缓解近因偏差）。
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Callable, Optional

from openai import AsyncOpenAI

from src.models.chat import HISTORY_LIMIT

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, Optional[str]], AsyncOpenAI]


def build_system_prompt(custom_prompt: str, ai_name: str) -> str:
    """角色提示 + 固定注意事项。"""
    return (
        f"{custom_prompt or ''}\n"
        f"注意事项："
        f"1) 你的名字是 {ai_name}，保持这个身份；"
        f"2) 输出内容不要添加 “{ai_name}：” 这类前缀；"
        f"3) 若玩游戏（如成语接龙），严格按规则，回复简短；"
        f"4) 保持群聊风格，除新闻总结外尽量控制在 50 字以内。"
    )


def splice_user_message(messages: list[dict], user_message: dict, index: int) -> list[dict]:
    """按 index 把用户消息插入消息数组，返回新列表。"""
    result = list(messages)
    if index <= 0 or index >= len(result):
        result.append(user_message)
    else:
        result.insert(len(result) - index, user_message)
    return result


def build_messages(
    message: str,
    custom_prompt: str,
    history: list[dict],
    ai_name: str,
    index: int,
) -> list[dict]:
    """组装完整的上游消息数组；history 截至最近 HISTORY_LIMIT 条。"""
    safe_history = [
        {"role": h.get("role", "user"), "content": h.get("content", "")}
        for h in history[-HISTORY_LIMIT:]
        if isinstance(h, dict)
    ]
    messages = [{"role": "system", "content": build_system_prompt(custom_prompt, ai_name)}, *safe_history]
    return splice_user_message(messages, {"role": "user", "content": message}, index)


def _default_client_factory(api_key: str, base_url: str | None) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, base_url=base_url)


class CompletionService:
    """封装 AsyncOpenAI：流式与非流式两种调用。

    每个 (api_key, base_url) 复用同一个客户端，应用关闭时由 aclose() 统一释放连接池。
    """

    def __init__(self, client_factory: ClientFactory | None = None, timeout: float = 60.0):
        self.client_factory = client_factory or _default_client_factory
        self.timeout = timeout
        self._clients: dict[tuple[str, str | None], AsyncOpenAI] = {}

    def _get_client(self, api_key: str, base_url: str | None) -> AsyncOpenAI:
        key = (api_key, base_url)
        if key not in self._clients:
            self._clients[key] = self.client_factory(api_key, base_url)
        return self._clients[key]

    async def aclose(self) -> None:
        """关闭所有已创建的客户端。"""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning("[CALL] completion client close failed: %s", e)

    async def stream_chat(
        self,
        model: str,
        messages: list[dict],
        api_key: str,
        base_url: str | None = None,
    ) -> AsyncIterator[str]:
        """建立上游流式请求，返回逐个产出非空 delta.content 的异步迭代器。

        建立请求失败在 await 时抛出；读取过程中的失败在迭代时抛出。
        """
        logger.info(
            "[CALL] completion.stream_chat: model=%s messages=%d base_url=%s",
            model, len(messages), base_url,
        )
        client = self._get_client(api_key, base_url)
        stream = await client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            timeout=self.timeout,
        )

        async def deltas() -> AsyncIterator[str]:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content

        return deltas()

    async def complete(
        self,
        model: str,
        messages: list[dict],
        api_key: str,
        base_url: str | None = None,
    ) -> str:
        """非流式调用，返回完整文本（调度器使用）。"""
        logger.info("[CALL] completion.complete: model=%s messages=%d", model, len(messages))
        client = self._get_client(api_key, base_url)
        response = await client.chat.completions.create(
            model=model,
            messages=messages,
            timeout=self.timeout,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

"""补全服务测试：消息数组组装与 OpenAI 客户端调用。"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.completion import (
    CompletionService,
    build_messages,
    build_system_prompt,
    splice_user_message,
)

U = {"role": "user", "content": "U"}


def items(*names):
    return [{"role": "user", "content": n} for n in names]


def test_splice_appends_for_zero_and_negative_index():
    base = items("a", "b", "c")
    assert splice_user_message(base, U, 0)[-1] == U
    assert splice_user_message(base, U, -3)[-1] == U


def test_splice_appends_when_index_out_of_range():
    base = items("a", "b")
    assert splice_user_message(base, U, 2)[-1] == U
    assert splice_user_message(base, U, 99)[-1] == U


def test_splice_inserts_before_last_index_entries():
    base = items("a", "b", "c", "d", "e")
    result = splice_user_message(base, U, 2)
    assert [m["content"] for m in result] == ["a", "b", "c", "U", "d", "e"]
    # 原列表不变
    assert len(base) == 5


def test_system_prompt_contains_rules():
    prompt = build_system_prompt("你是千问", "千问")
    assert prompt.startswith("你是千问\n注意事项：")
    assert "你的名字是 千问" in prompt
    assert "“千问：”" in prompt
    assert "50 字以内" in prompt


def test_build_messages_caps_history_and_strips_fields():
    history = [{"role": "user", "content": f"h{i}", "name": "x"} for i in range(12)]
    messages = build_messages("新消息", "提示", history, "Kimi", 0)

    assert messages[0]["role"] == "system"
    assert [m["content"] for m in messages[1:-1]] == [f"h{i}" for i in range(2, 12)]
    assert messages[-1] == {"role": "user", "content": "新消息"}
    assert all(set(m) == {"role", "content"} for m in messages)


def test_build_messages_with_index():
    history = items("h1", "h2", "h3")
    messages = build_messages("新", "", history, "A", 1)
    assert [m["content"] for m in messages[1:]] == ["h1", "h2", "新", "h3"]


def _chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


async def _aiter(values):
    for v in values:
        yield v


async def test_stream_chat_yields_non_empty_deltas():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=_aiter([_chunk("你"), _chunk(None), SimpleNamespace(choices=[]), _chunk("好")])
    )
    factory = MagicMock(return_value=client)
    service = CompletionService(client_factory=factory)

    deltas = await service.stream_chat("qwen-plus", [U], api_key="sk", base_url="http://up")

    assert [d async for d in deltas] == ["你", "好"]
    factory.assert_called_once_with("sk", "http://up")
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["stream"] is True
    assert kwargs["model"] == "qwen-plus"


async def test_stream_chat_open_failure_raises_on_await():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("401"))
    service = CompletionService(client_factory=lambda key, url: client)

    with pytest.raises(RuntimeError):
        await service.stream_chat("qwen-plus", [U], api_key="bad")


async def test_complete_returns_text():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='["ai1"]'))])
    )
    service = CompletionService(client_factory=lambda key, url: client)
    assert await service.complete("qwen-plus", [U], api_key="sk") == '["ai1"]'


async def test_clients_reused_per_key_and_closed():
    created = []

    def factory(api_key, base_url):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="ok"))])
        )
        client.close = AsyncMock()
        created.append(client)
        return client

    service = CompletionService(client_factory=factory)
    for _ in range(3):
        await service.complete("qwen-plus", [U], api_key="sk")
    await service.complete("deepseek-chat", [U], api_key="sk2", base_url="http://other")

    assert len(created) == 2
    assert created[0].chat.completions.create.await_count == 3

    await service.aclose()

    for client in created:
        client.close.assert_awaited_once()
    # 关闭后再次调用会新建客户端
    await service.complete("qwen-plus", [U], api_key="sk")
    assert len(created) == 3

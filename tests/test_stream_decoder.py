"""流解码器测试：分块、前缀剥离、损坏行与读超时。"""

import asyncio

import pytest

from src.client.cancellation import CancellationToken
from src.client.errors import StreamTimeoutError, TurnCancelled
from src.client.stream_decoder import StreamDecoder, build_prefix_pattern, strip_name_prefix
from tests.helpers import chunks, sse


async def collect(decoder: StreamDecoder, source) -> list[str]:
    return [delta async for delta in decoder.decode(source)]


# ── 前缀剥离 ──────────────────────────────────────────────


def test_strip_prefix_case_insensitive():
    pattern = build_prefix_pattern(["DeepSeek", "user"])
    assert strip_name_prefix("deepseek：你好", pattern) == "你好"
    assert strip_name_prefix("USER：在吗", pattern) == "在吗"


def test_strip_prefix_only_at_start_and_once():
    pattern = build_prefix_pattern(["Kimi"])
    assert strip_name_prefix("我觉得Kimi：说得对", pattern) == "我觉得Kimi：说得对"
    assert strip_name_prefix("Kimi：Kimi：重复", pattern) == "Kimi：重复"


def test_strip_prefix_requires_fullwidth_colon():
    pattern = build_prefix_pattern(["Kimi"])
    assert strip_name_prefix("Kimi: 半角冒号", pattern) == "Kimi: 半角冒号"


def test_strip_prefix_escapes_regex_characters():
    pattern = build_prefix_pattern(["A.I(1)"])
    assert strip_name_prefix("A.I(1)：hi", pattern) == "hi"
    assert strip_name_prefix("AxI(1)：hi", pattern) == "AxI(1)：hi"


def test_no_known_names_leaves_text():
    assert build_prefix_pattern([]) is None
    assert strip_name_prefix("Kimi：hi", None) == "Kimi：hi"


# ── 解码 ──────────────────────────────────────────────────


async def test_decode_simple_frames():
    decoder = StreamDecoder(["千问"])
    deltas = await collect(decoder, chunks(sse("你", "好", "！")))
    assert deltas == ["你", "好", "！"]
    assert decoder.full_text == "你好！"


async def test_frame_split_across_chunks():
    raw = sse("hello", "world")
    decoder = StreamDecoder([])
    deltas = await collect(decoder, chunks(raw[:7], raw[7:19], raw[19:]))
    assert deltas == ["hello", "world"]


async def test_multibyte_character_split_across_chunks():
    raw = sse("群聊")
    # 在“群”字的 UTF-8 编码中间切开
    cut = raw.index("群".encode("utf-8")) + 1
    decoder = StreamDecoder([])
    deltas = await collect(decoder, chunks(raw[:cut], raw[cut:]))
    assert deltas == ["群聊"]


async def test_prefix_stripped_when_split_over_frames():
    decoder = StreamDecoder(["DeepSeek", "user"])
    deltas = await collect(decoder, chunks(sse("Deep", "Seek", "：", "你好")))
    assert decoder.full_text == "你好"
    assert "".join(deltas).endswith("你好")


async def test_prefix_stripping_is_idempotent_for_later_text():
    decoder = StreamDecoder(["Kimi"])
    await collect(decoder, chunks(sse("Kimi：", "我同意", "Kimi：的看法")))
    assert decoder.full_text == "我同意Kimi：的看法"


async def test_malformed_line_skipped_and_logged(caplog):
    raw = b'data: {"content": "a"}\n\ndata: {broken\n\ndata: {"content": "b"}\n\n'
    decoder = StreamDecoder([])
    deltas = await collect(decoder, chunks(raw))
    assert deltas == ["a", "b"]
    assert "解析响应数据失败" in caplog.text


async def test_non_data_lines_and_empty_content_ignored():
    raw = b': keep-alive\n\nevent: ping\ndata: {"content": ""}\n\ndata: {"other": 1}\n\n' + sse("x")
    decoder = StreamDecoder([])
    assert await collect(decoder, chunks(raw)) == ["x"]


async def test_final_line_without_newline():
    decoder = StreamDecoder([])
    deltas = await collect(decoder, chunks(sse("a") + b'data: {"content": "b"}'))
    assert deltas == ["a", "b"]


async def test_crlf_line_endings():
    decoder = StreamDecoder([])
    raw = b'data: {"content": "a"}\r\n\r\ndata: {"content": "b"}\r\n\r\n'
    assert await collect(decoder, chunks(raw)) == ["a", "b"]


# ── 超时与取消 ────────────────────────────────────────────


async def test_timeout_without_content_raises():
    decoder = StreamDecoder([], read_timeout=0.05)
    with pytest.raises(StreamTimeoutError):
        await collect(decoder, chunks(stall_after=True))


async def test_timeout_after_partial_content_accepts_partial():
    decoder = StreamDecoder([], read_timeout=0.05)
    deltas = await collect(decoder, chunks(sse("部分", "回答"), stall_after=True))
    assert deltas == ["部分", "回答"]
    assert decoder.full_text == "部分回答"


async def test_cancel_interrupts_pending_read():
    token = CancellationToken()
    decoder = StreamDecoder([], read_timeout=5, cancel_token=token)

    async def cancel_soon():
        await asyncio.sleep(0.02)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(TurnCancelled):
        await collect(decoder, chunks(sse("a"), stall_after=True))
    await canceller
    assert decoder.full_text == "a"

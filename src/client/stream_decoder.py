"""流解码器：把 `data: <json>` 分行的 SSE 字节流解成内容增量。

  - 缓冲只增，按换行切出完整的行，跨块的多字节字符由增量解码器处理；
  - 非 `data: ` 开头的行（空行、注释）忽略，单行 JSON 损坏只记日志并跳过；
  - 每个非空 content 追加到累计回复后，去掉开头的一个 `<已知名字>：` 前缀，
    防止角色把别人的名字当作引用前缀输出；
  - 每次读取最多等待 read_timeout 秒：一个字都没收到就抛 StreamTimeoutError，
    已有内容则视为正常结束（接受部分回答）。
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import re
from typing import AsyncIterable, AsyncIterator

import httpx

from src.client.cancellation import CancellationToken
from src.client.errors import StreamError, StreamTimeoutError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
NAME_SEPARATOR = "："
DEFAULT_READ_TIMEOUT = 10.0


def build_prefix_pattern(known_names: list[str]) -> re.Pattern | None:
    """构造 `^(名字1|名字2)：` 的大小写不敏感正则；没有名字时返回 None。"""
    names = [re.escape(n) for n in known_names if n]
    if not names:
        return None
    return re.compile(f"^({'|'.join(names)}){NAME_SEPARATOR}", re.IGNORECASE)


def strip_name_prefix(text: str, pattern: re.Pattern | None) -> str:
    if pattern is None:
        return text
    return pattern.sub("", text, count=1)


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes:
    return await iterator.__anext__()


class StreamDecoder:
    """一次性解码器：每个回合新建一个，full_text 为去前缀后的累计回复。"""

    def __init__(
        self,
        known_names: list[str],
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        cancel_token: CancellationToken | None = None,
    ):
        self.read_timeout = read_timeout
        self.cancel_token = cancel_token or CancellationToken()
        self.full_text = ""
        self._pattern = build_prefix_pattern(known_names)
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def decode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
        """逐个产出内容增量；调用方可随时读取 self.full_text。"""
        iterator = chunks.__aiter__()
        while True:
            try:
                chunk = await self.cancel_token.run(_next_chunk(iterator), timeout=self.read_timeout)
            except StopAsyncIteration:
                break
            except asyncio.TimeoutError:
                if not self.full_text.strip():
                    raise StreamTimeoutError()
                logger.warning(
                    "[CALL] stream stalled for %.1fs, accepting partial reply (%d chars)",
                    self.read_timeout, len(self.full_text),
                )
                return
            except httpx.HTTPError as e:
                raise StreamError(f"读取响应流失败: {e}") from e

            self._buffer += self._decoder.decode(chunk)
            for delta in self._drain_lines():
                yield delta

        # 流结束：处理最后一行没有换行结尾的情况
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer:
            self._buffer += "\n"
            for delta in self._drain_lines():
                yield delta

    def _drain_lines(self) -> list[str]:
        deltas = []
        while (newline_index := self._buffer.find("\n")) >= 0:
            line = self._buffer[:newline_index].rstrip("\r")
            self._buffer = self._buffer[newline_index + 1:]
            delta = self._handle_line(line)
            if delta:
                deltas.append(delta)
        return deltas

    def _handle_line(self, line: str) -> str | None:
        if not line.startswith(DATA_PREFIX):
            return None
        try:
            data = json.loads(line[len(DATA_PREFIX):])
        except json.JSONDecodeError as e:
            logger.error("解析响应数据失败: %s line=%s", e, line[:100])
            return None
        content = data.get("content") if isinstance(data, dict) else None
        if not content or not isinstance(content, str):
            return None
        previous = self.full_text
        self.full_text = strip_name_prefix(previous + content, self._pattern)
        if self.full_text.startswith(previous):
            return self.full_text[len(previous):] or None
        return self.full_text or None

"""传输客户端：基于 httpx.AsyncClient，返回 JSON 或字节流。"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from src.client.errors import TransportError

logger = logging.getLogger(__name__)


class Transport:
    """所有客户端组件共享的 HTTP 入口。"""

    def __init__(
        self,
        base_url: str = "http://localhost:8788",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        # 流读取的超时由 StreamDecoder 单独控制，这里 read 不设限
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout, read=None),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request_json("GET", path, params=params)

    async def post_json(self, path: str, payload: Any) -> Any:
        return await self._request_json("POST", path, json=payload)

    async def delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request_json("DELETE", path, params=params)

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {path} 请求失败: {e}") from e
        if response.is_error:
            raise TransportError(f"{method} {path} 返回 {response.status_code}", response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} 响应不是合法 JSON") from e

    @asynccontextmanager
    async def stream(self, path: str, payload: Any) -> AsyncIterator[httpx.Response]:
        """POST 并以流方式返回响应；调用方通过 response.aiter_bytes() 读取。

        补全端点出错时也会返回带说明帧的流（包括 400），因此不检查状态码。
        """
        logger.debug("[CALL] transport.stream: path=%s", path)
        try:
            async with self._client.stream("POST", path, json=payload) as response:
                yield response
        except httpx.HTTPError as e:
            raise TransportError(f"无法获取响应流: {e}") from e

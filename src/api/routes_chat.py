"""补全路由：把角色的一次发言代理到 OpenAI 兼容 API，以 SSE 流返回。

每一帧都是 `data: {"content": "..."}`。除缺少消息返回 400 外，任何配置或上游错误
都以一条说明性的帧返回，前端始终有内容可展示。
"""

from __future__ import annotations

import json
import logging
import math
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from src.core.completion import build_messages

router = APIRouter(prefix="/api", tags=["chat"])
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def sse_frame(content: str) -> str:
    return f"data: {json.dumps({'content': content}, ensure_ascii=False)}\n\n"


def stream_single_message(content: str, status_code: int = 200) -> StreamingResponse:
    """只含一帧的 SSE 响应。"""
    async def body() -> AsyncIterator[str]:
        yield sse_frame(content)

    return StreamingResponse(body(), status_code=status_code, media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/chat")
async def chat(request: Request):
    """校验请求、解析模型与 API Key、组装消息后流式转发上游回复。"""
    from src.main import app_state

    try:
        try:
            payload = await request.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        message = payload.get("message", "")
        custom_prompt = payload.get("custom_prompt") or ""
        history = payload.get("history") or []
        ai_name = payload.get("aiName") or "AI"
        index = payload.get("index", 0)
        model = payload.get("model") or "qwen-plus"

        if not message or not isinstance(message, str):
            return stream_single_message("缺少用户消息内容", 400)

        if not isinstance(history, list):
            history = []
        if isinstance(index, bool) or not isinstance(index, (int, float)) or not math.isfinite(index):
            index = 0
        index = int(index)

        logger.info(
            "[CALL] API chat: model=%s ai_name=%s index=%s history=%d message_len=%d",
            model, ai_name, index, len(history), len(message),
        )

        model_config = app_state.registry.get_model_config(model)
        if not model_config:
            return stream_single_message("不支持的模型类型，请更换模型")

        api_key = app_state.registry.resolve_api_key(model_config)
        if not api_key:
            return stream_single_message(
                f"{model} 的 API 密钥未配置，请在环境变量中设置 {model_config.api_key}"
            )

        messages = build_messages(message, custom_prompt, history, ai_name, index)
        deltas = await app_state.completion.stream_chat(
            model=model,
            messages=messages,
            api_key=api_key,
            base_url=model_config.base_url,
        )
    except Exception as e:
        logger.error("[CALL] API chat failed: %s", e, exc_info=True)
        return stream_single_message("服务异常，请稍后再试")

    async def body() -> AsyncIterator[str]:
        try:
            async for content in deltas:
                yield sse_frame(content)
        except Exception as e:
            logger.error("[CALL] Streaming error: %s", e)
            yield sse_frame("生成过程中出错，请稍后重试")

    return StreamingResponse(body(), media_type="text/event-stream", headers=SSE_HEADERS)

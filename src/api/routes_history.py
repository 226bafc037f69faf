"""历史路由：按 groupId 读取、覆盖写入或清空群聊记录。"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api/history", tags=["history"])
logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@router.get("")
async def get_history(groupId: str | None = None):
    """获取指定群组的聊天历史；未保存过时返回空列表。"""
    from src.main import app_state
    if not groupId:
        return _error(400, "groupId is required")
    try:
        messages = await app_state.history_store.load_messages(groupId)
    except Exception as e:
        logger.error("Error fetching chat history: %s", e)
        return _error(500, str(e) or "Failed to fetch chat history")
    return {"success": True, "messages": messages}


@router.post("")
async def save_history(request: Request):
    """整体覆盖指定群组的聊天历史。"""
    from src.main import app_state
    try:
        body = await request.json()
    except ValueError:
        body = None
    body = body if isinstance(body, dict) else {}
    group_id = body.get("groupId")
    messages = body.get("messages")
    if not group_id or not isinstance(messages, list):
        return _error(400, "groupId and messages are required")
    try:
        await app_state.history_store.save_messages(str(group_id), messages)
    except Exception as e:
        logger.error("Error saving chat history: %s", e)
        return _error(500, str(e) or "Failed to save chat history")
    logger.info("[CALL] API save_history: group_id=%s messages=%d", group_id, len(messages))
    return {"success": True}


@router.delete("")
async def clear_history(groupId: str | None = None):
    """删除指定群组的聊天历史（重置群聊时调用）。"""
    from src.main import app_state
    if not groupId:
        return _error(400, "groupId is required")
    try:
        await app_state.history_store.clear_messages(groupId)
    except Exception as e:
        logger.error("Error clearing chat history: %s", e)
        return _error(500, str(e) or "Failed to clear chat history")
    return {"success": True}

"""初始化与调度路由：返回群组、角色配置，以及为一条消息挑选回复角色。"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from pydantic import BaseModel, Field

router = APIRouter(prefix="/api", tags=["groups"])
logger = logging.getLogger(__name__)


# ── 请求模型 ──

class SchedulerRequest(BaseModel):
    message: str = ""
    history: list[dict] = Field(default_factory=list)
    availableAIs: list[dict] = Field(default_factory=list)


# ── 路由 ──

@router.get("/init")
async def init():
    """前端初始化数据：群组、角色；不做认证，user 恒为 None。"""
    from src.main import app_state
    registry = app_state.registry
    return {
        "data": {
            "groups": [g.model_dump(mode="json") for g in registry.list_groups()],
            "characters": [c.model_dump(mode="json") for c in registry.list_characters()],
            "user": None,
        }
    }


@router.post("/scheduler")
async def schedule(req: SchedulerRequest):
    """为当前消息挑选回复角色，返回有序 id 列表。"""
    from src.main import app_state
    selected = await app_state.scheduler.select(
        message=req.message,
        history=req.history,
        available=req.availableAIs,
    )
    return {"selectedAIs": selected}

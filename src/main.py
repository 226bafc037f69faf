"""AI 群聊：FastAPI 入口。

本模块负责：
- 应用启动与生命周期（lifespan）
- 各核心组件的初始化与注入
- 注册路由与中间件

运行：uvicorn src.main:app --port 8788
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes_chat import router as chat_router
from src.api.routes_group import router as group_router
from src.api.routes_history import router as history_router
from src.core.completion import CompletionService
from src.core.history_store import HistoryStore
from src.core.scheduler import SchedulerService
from src.registry.character_registry import CharacterRegistry

# 配置根日志格式，便于排查问题
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """全局应用状态，持有所有核心组件的引用。

    供各路由模块通过 main.app_state 访问，避免循环依赖。
    """

    registry: CharacterRegistry
    history_store: HistoryStore
    completion: CompletionService
    scheduler: SchedulerService


# 全局状态（供路由模块导入使用）
app_state: AppState = None  # type: ignore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时初始化所有组件，关闭时释放资源。"""
    global app_state

    logger.info("Starting AI Group Chat...")

    # 数据层：群聊历史 KV
    history_store = HistoryStore(db_path=os.environ.get("GROUPCHAT_DB_PATH", "data/group_chat.db"))
    await history_store.initialize()

    # 配置：模型、群组、角色
    registry = CharacterRegistry(config_dir=os.environ.get("GROUPCHAT_CONFIG_DIR", "config"))

    completion = CompletionService()
    scheduler = SchedulerService(registry=registry, completion=completion)

    app_state = AppState(
        registry=registry,
        history_store=history_store,
        completion=completion,
        scheduler=scheduler,
    )

    missing = [
        cfg.api_key for cfg in registry.models.values()
        if cfg.api_key and not registry.resolve_api_key(cfg)
    ]
    if missing:
        logger.warning(f"API keys not configured: {missing}")
    logger.info(
        f"AI Group Chat started. {len(registry.characters)} characters, {len(registry.groups)} groups loaded."
    )

    yield

    logger.info("Shutting down AI Group Chat...")
    await completion.aclose()
    await history_store.close()


app = FastAPI(
    title="AI Group Chat",
    description="Multi-character AI group chat backed by OpenAI-compatible models",
    version="0.1.0",
    lifespan=lifespan,
)

# 允许跨域，便于前端或第三方调用
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router)
app.include_router(history_router)
app.include_router(group_router)


@app.get("/")
async def root():
    """根路径：返回应用名称、版本与运行状态。"""
    return {"name": "AI Group Chat", "version": "0.1.0", "status": "running"}


@app.get("/api/health")
async def health():
    """健康检查：返回当前已加载的角色数量。"""
    return {
        "status": "ok",
        "characters_loaded": len(app_state.registry.characters) if app_state else 0,
    }

"""统一导出角色、群组与聊天相关数据模型，供其他模块引用。"""
from src.models.character import (
    SCHEDULER_PERSONALITY,
    Character,
    Group,
    ModelConfig,
)
from src.models.chat import (
    HISTORY_LIMIT,
    ChatMessage,
    HistoryEntry,
    HumanSender,
    PersonaSender,
    Sender,
    StoredHistoryMessage,
    cap_history,
)

__all__ = [
    "SCHEDULER_PERSONALITY",
    "Character",
    "Group",
    "ModelConfig",
    "HISTORY_LIMIT",
    "ChatMessage",
    "HistoryEntry",
    "HumanSender",
    "PersonaSender",
    "Sender",
    "StoredHistoryMessage",
    "cap_history",
]

"""群聊客户端核心：传输、流解码、调度、回合编排与持久化桥。"""
from src.client.errors import (
    ChatError,
    SchedulerError,
    StreamError,
    StreamTimeoutError,
    TransportError,
    TurnCancelled,
)
from src.client.message_list import MessageList
from src.client.orchestrator import OrchestratorState, TurnOrchestrator
from src.client.persistence import HistoryBridge, LocalMessageCache, LocalStorage
from src.client.scheduler import SchedulerClient
from src.client.session import ChatSession
from src.client.stream_decoder import StreamDecoder
from src.client.transport import Transport

__all__ = [
    "ChatError",
    "SchedulerError",
    "StreamError",
    "StreamTimeoutError",
    "TransportError",
    "TurnCancelled",
    "MessageList",
    "OrchestratorState",
    "TurnOrchestrator",
    "HistoryBridge",
    "LocalMessageCache",
    "LocalStorage",
    "SchedulerClient",
    "ChatSession",
    "StreamDecoder",
    "Transport",
]

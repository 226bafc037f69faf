"""聊天数据模型：发送者、消息、模型输入历史与服务端存储投影。

ChatMessage 是客户端权威列表中的元素；HistoryEntry 只是发给补全端点的投影；
StoredHistoryMessage 是写入 KV 的简化结构（字段名与前端约定保持 camelCase）。
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

# 发给任何端点的历史条数上限
HISTORY_LIMIT = 10


class HumanSender(BaseModel):
    """人类发送者。"""

    kind: Literal["human"] = "human"
    id: int | str = 1
    name: str = ""
    avatar: str | None = None


class PersonaSender(BaseModel):
    """AI 角色发送者；历史水合时找不到对应角色也会用它承载合成记录。"""

    kind: Literal["persona"] = "persona"
    id: int | str = ""
    name: str = ""
    avatar: str | None = None


Sender = Annotated[Union[HumanSender, PersonaSender], Field(discriminator="kind")]


class ChatMessage(BaseModel):
    """群聊中的一条消息；content 在角色流式回复期间被整体替换增长。"""

    id: int
    sender: Sender
    content: str = ""
    is_ai: bool = False
    is_error: bool = False
    is_cancelled: bool = False


class HistoryEntry(BaseModel):
    """补全端点的输入历史：role / content / name。"""

    role: Literal["system", "user", "assistant"] = "user"
    content: str = ""
    name: str | None = None


class StoredHistoryMessage(BaseModel):
    """服务端 KV 中保存的消息投影，只包含 id、发送者名称、AI 标记与内容。"""

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    sender_name: str = Field(default="", alias="senderName")
    is_ai: bool = Field(default=False, alias="isAI")
    content: str = ""

    @classmethod
    def from_message(cls, message: ChatMessage) -> StoredHistoryMessage:
        return cls(
            id=message.id,
            sender_name=message.sender.name,
            is_ai=message.is_ai,
            content=message.content,
        )


def cap_history(history: list[HistoryEntry], limit: int = HISTORY_LIMIT) -> list[HistoryEntry]:
    """只保留最近 limit 条。"""
    if limit <= 0:
        return []
    return list(history[-limit:])

"""角色与群组配置模型：Character、ModelConfig、Group。

从 config 目录的 YAML 加载，初始化后只读；编排器与路由均不修改这些对象。
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# 调度器角色的 personality 标记（沿用既有数据中的拼写）
SCHEDULER_PERSONALITY = "sheduler"

GROUP_NAME_PLACEHOLDER = "#groupName#"


class ModelConfig(BaseModel):
    """一个可用模型：模型名、API Key 所在的环境变量名与可选的 base_url。"""

    model: str
    api_key: str = ""        # 环境变量名，而非密钥本身
    base_url: str | None = None


class Character(BaseModel):
    """AI 角色：模型、性格标签、提示模板（含 #groupName# 占位符）与可选知识库。"""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    model: str = ""
    personality: str = ""
    custom_prompt: str = ""
    avatar: str = ""

    # 检索增强：为 True 时走 /rag/query
    rag: bool = False
    knowledge: str | None = None

    # 可选：覆盖 ModelConfig 的 API Key 绑定名与 base_url
    api_key: str | None = None
    base_url: str | None = None

    @property
    def is_scheduler(self) -> bool:
        return self.personality == SCHEDULER_PERSONALITY

    def render_prompt(self, group: Group) -> str:
        """替换模板中的群名占位符，并拼接群组描述。"""
        return self.custom_prompt.replace(GROUP_NAME_PLACEHOLDER, group.name) + "\n" + group.description


class Group(BaseModel):
    """群组：名称、描述、有序成员 id 列表与讨论模式开关。"""

    id: str = ""
    name: str = ""
    description: str = ""
    members: list[str] = Field(default_factory=list)
    # True：所有角色都回复；False：由调度器挑选子集
    is_group_discussion_mode: bool = False

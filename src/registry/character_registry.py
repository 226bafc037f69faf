"""角色注册表：从 config 目录的 YAML 加载模型、群组与角色配置。

目录结构：
  config/models.yaml          模型列表（model / api_key 环境变量名 / base_url）
  config/groups.yaml          群组列表
  config/characters/*.yaml    每个角色一个文件

路由与调度通过 registry 获取只读配置；API Key 在请求时从环境变量解析。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from src.models.character import Character, Group, ModelConfig

logger = logging.getLogger(__name__)


class CharacterRegistry:
    """内存中的配置表：character_id -> Character，外加模型与群组列表。"""

    def __init__(self, config_dir: str = "config"):
        """指定配置目录并立即加载。"""
        self.config_dir = config_dir
        self.characters: dict[str, Character] = {}
        self.models: dict[str, ModelConfig] = {}
        self.groups: list[Group] = []
        self._load_from_dir(config_dir)

    def _load_from_dir(self, config_dir: str) -> None:
        """依次加载 models.yaml、groups.yaml 与 characters/*.yaml；单个文件失败只记日志。"""
        config_path = Path(config_dir)
        if not config_path.exists():
            logger.warning(f"Config directory not found: {config_dir}")
            return

        for data in self._read_list(config_path / "models.yaml", "models"):
            try:
                cfg = ModelConfig(**data)
                self.models[cfg.model] = cfg
            except Exception as e:
                logger.error(f"Invalid model config {data!r}: {e}")

        for data in self._read_list(config_path / "groups.yaml", "groups"):
            try:
                self.groups.append(Group(**data))
            except Exception as e:
                logger.error(f"Invalid group config {data!r}: {e}")

        characters_dir = config_path / "characters"
        if characters_dir.exists():
            for file in sorted(characters_dir.glob("*.yaml")):
                try:
                    character = self._load_character(file)
                    self.characters[character.id] = character
                    logger.info(f"Loaded character: {character.id} ({character.name}) model={character.model}")
                except Exception as e:
                    logger.error(f"Failed to load character from {file}: {e}")

    def _read_list(self, file: Path, key: str) -> list[dict]:
        """读取形如 {key: [...]} 的 YAML 文件；文件缺失或格式错误返回空列表。"""
        if not file.exists():
            return []
        try:
            with open(file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse {file}: {e}")
            return []
        items = data.get(key, []) if isinstance(data, dict) else []
        return [item for item in items if isinstance(item, dict)]

    def _load_character(self, file: Path) -> Character:
        """读取单个角色 YAML。"""
        with open(file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        return Character(
            id=str(data["id"]),
            name=data.get("name", ""),
            model=data.get("model", ""),
            personality=data.get("personality", ""),
            custom_prompt=data.get("custom_prompt", ""),
            avatar=data.get("avatar", ""),
            rag=bool(data.get("rag", False)),
            knowledge=data.get("knowledge"),
            api_key=data.get("api_key"),
            base_url=data.get("base_url"),
        )

    def get_character(self, character_id: str) -> Character:
        """按 id 获取角色；不存在则抛 KeyError。"""
        if character_id not in self.characters:
            raise KeyError(f"Character not found: {character_id}")
        return self.characters[character_id]

    def list_characters(self) -> list[Character]:
        return list(self.characters.values())

    def list_groups(self) -> list[Group]:
        return list(self.groups)

    def get_model_config(self, model: str) -> ModelConfig | None:
        return self.models.get(model)

    def group_characters(self, group: Group) -> list[Character]:
        """群组内可发言的角色：按成员顺序，排除调度器角色与未知 id。"""
        result = []
        for member_id in group.members:
            character = self.characters.get(member_id)
            if character and not character.is_scheduler:
                result.append(character)
        return result

    def scheduler_character(self) -> Character | None:
        """返回第一个调度器角色（若配置了）。"""
        for character in self.characters.values():
            if character.is_scheduler:
                return character
        return None

    def resolve_api_key(self, model_config: ModelConfig, character: Character | None = None) -> str | None:
        """从环境变量解析 API Key；角色上的绑定名优先。未配置返回 None。"""
        env_name = (character.api_key if character and character.api_key else None) or model_config.api_key
        if not env_name:
            return None
        return os.environ.get(env_name) or None

    def reload(self) -> None:
        """清空并重新加载全部配置。"""
        self.characters.clear()
        self.models.clear()
        self.groups.clear()
        self._load_from_dir(self.config_dir)

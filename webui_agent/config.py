"""配置：从 .env / 环境变量读取模型配置和智能体参数"""

import os
from dataclasses import dataclass, field, fields
from typing import List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"
DEFAULT_MODEL = "qwen-plus"

ENV_PREFIX = "WEBUI_AGENT_"

TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class ModelConfig:
    api_key: Optional[str] = None
    base_url: Optional[str] = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    planner_model: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "ModelConfig":
        if dotenv:
            # 加载 .env 文件中的环境变量
            load_dotenv()
        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL) or None,
            model=os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
            planner_model=os.getenv("OPENAI_PLANNER_MODEL") or None,
        )

    def create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)


@dataclass
class AgentSettings:
    """智能体运行参数"""
    use_vision: bool = True
    use_vision_for_planner: bool = False
    max_failures: int = 3
    retry_delay: float = 10.0
    max_input_tokens: int = 128000
    token_shrink_step: int = 500
    max_actions_per_step: int = 10
    planner_interval: int = 1
    wait_between_actions: float = 0.5
    viewport_expansion: int = 500
    highlight_elements: bool = True
    validate_output: bool = False
    include_attributes: List[str] = field(
        default_factory=lambda: [
            "title",
            "type",
            "name",
            "role",
            "aria-label",
            "placeholder",
            "value",
            "alt",
            "aria-expanded",
        ]
    )
    message_context: Optional[str] = None
    available_file_paths: Optional[List[str]] = None
    allowed_domains: Optional[List[str]] = None
    save_conversation_path: Optional[str] = None
    override_system_message: Optional[str] = None
    extend_system_message: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True, **overrides) -> "AgentSettings":
        """
        读取 WEBUI_AGENT_<字段名大写> 环境变量，例如 WEBUI_AGENT_MAX_FAILURES=5。

        列表字段用逗号分隔；显式传入的 overrides 优先于环境变量。
        """
        if dotenv:
            load_dotenv()
        settings = cls()
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            setattr(settings, f.name, _convert(raw, getattr(settings, f.name), f.name))
        for name, value in overrides.items():
            if not hasattr(settings, name):
                raise TypeError(f"Unknown setting: {name}")
            setattr(settings, name, value)
        return settings


_LIST_FIELDS = {"include_attributes", "available_file_paths", "allowed_domains"}


def _convert(raw: str, default, name: str):
    if name in _LIST_FIELDS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(default, bool):
        return raw.strip().lower() in TRUE_VALUES
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw

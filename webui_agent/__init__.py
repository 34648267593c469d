"""Web UI Agent 包

包含各个模块：
- models: DOM 节点与浏览器状态
- actions: 动作定义与模型输出校验
- driver: 页面驱动接口与 Playwright 实现
- perception: 感知模块
- fingerprint: 元素指纹
- memory: 记忆模块
- message_manager: 对话窗口管理
- planner: 规划模块
- controller: 执行模块
- core: 核心 Agent 类
"""

from .actions import ActionModel, AgentBrain, AgentOutput
from .config import AgentSettings, ModelConfig
from .controller import Controller
from .core import AgentState, StepOutcome, WebUIAgent
from .driver import PageDriver, PlaywrightDriver
from .fingerprint import ElementFingerprint, HistoryElement, fingerprint
from .llm import ModelService, OpenAIModelService
from .logging_config import setup_logging
from .memory import Memory, RunHistory, StepRecord
from .message_manager import MessageManager
from .models import ActionResult, BrowserState, ElementNode, TextNode
from .perception import Perception
from .planner import Planner

__all__ = [
    "ActionModel",
    "AgentBrain",
    "AgentOutput",
    "AgentSettings",
    "ModelConfig",
    "Controller",
    "AgentState",
    "StepOutcome",
    "WebUIAgent",
    "PageDriver",
    "PlaywrightDriver",
    "ElementFingerprint",
    "HistoryElement",
    "fingerprint",
    "ModelService",
    "OpenAIModelService",
    "setup_logging",
    "Memory",
    "RunHistory",
    "StepRecord",
    "MessageManager",
    "ActionResult",
    "BrowserState",
    "ElementNode",
    "TextNode",
    "Perception",
    "Planner",
]

"""动作定义：封闭的动作集合以及 LLM 输出的结构化校验"""

import json
from typing import ClassVar, Dict, Iterable, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ModelOutputError


class ActionModel(BaseModel):
    """
    所有动作的基类。

    每个动作声明自己的名字；需要元素编号的动作带 index 字段，
    回放时通过 get_index / set_index 改写编号，无需了解动作的其他语义。
    """
    name: ClassVar[str] = ""
    description: ClassVar[str] = ""

    def get_index(self) -> Optional[int]:
        return getattr(self, "index", None)

    def set_index(self, index: int) -> None:
        if "index" in type(self).model_fields:
            self.index = index

    def to_dict(self) -> Dict:
        return {self.name: self.model_dump()}


class ClickElementAction(ActionModel):
    name: ClassVar[str] = "click_element"
    description: ClassVar[str] = "点击指定编号的元素"
    index: int = Field(ge=0)


class InputTextAction(ActionModel):
    name: ClassVar[str] = "input_text"
    description: ClassVar[str] = "向指定编号的输入框填写文本"
    index: int = Field(ge=0)
    text: str


class GoToUrlAction(ActionModel):
    name: ClassVar[str] = "go_to_url"
    description: ClassVar[str] = "在当前标签页打开 URL"
    url: str


class GoBackAction(ActionModel):
    name: ClassVar[str] = "go_back"
    description: ClassVar[str] = "返回上一页"


class SendKeysAction(ActionModel):
    name: ClassVar[str] = "send_keys"
    description: ClassVar[str] = "发送按键，例如 Enter、Escape、Control+a"
    keys: str


class ScrollAction(ActionModel):
    name: ClassVar[str] = "scroll"
    description: ClassVar[str] = "上下滚动页面，amount 为像素，缺省滚动一屏"
    direction: Literal["up", "down"] = "down"
    amount: Optional[int] = None


class WaitAction(ActionModel):
    name: ClassVar[str] = "wait"
    description: ClassVar[str] = "等待若干秒"
    seconds: int = Field(default=3, ge=0)


class OpenTabAction(ActionModel):
    name: ClassVar[str] = "open_tab"
    description: ClassVar[str] = "在新标签页打开 URL"
    url: str


class SwitchTabAction(ActionModel):
    name: ClassVar[str] = "switch_tab"
    description: ClassVar[str] = "切换到指定 page_id 的标签页"
    page_id: int = Field(ge=0)


class DoneAction(ActionModel):
    name: ClassVar[str] = "done"
    description: ClassVar[str] = "结束任务，text 为最终答复，success 标记任务是否真正完成"
    text: str
    success: bool


ACTION_TYPES: Dict[str, Type[ActionModel]] = {
    cls.name: cls
    for cls in (
        ClickElementAction,
        InputTextAction,
        GoToUrlAction,
        GoBackAction,
        SendKeysAction,
        ScrollAction,
        WaitAction,
        OpenTabAction,
        SwitchTabAction,
        DoneAction,
    )
}


def parse_action(data: Dict, allowed: Optional[Iterable[str]] = None) -> ActionModel:
    """把 {"action_name": {参数}} 解析为具体的动作对象"""
    if not isinstance(data, dict) or len(data) != 1:
        raise ModelOutputError(f"Each action must be an object with exactly one key, got: {data!r}")

    name, params = next(iter(data.items()))
    allowed_names = set(allowed) if allowed is not None else set(ACTION_TYPES)
    if name not in ACTION_TYPES or name not in allowed_names:
        raise ModelOutputError(f"Unknown or disallowed action: {name}")

    try:
        return ACTION_TYPES[name].model_validate(params or {})
    except ValidationError as e:
        raise ModelOutputError(f"Invalid parameters for {name}: {e}") from e


def describe_actions(allowed: Optional[Iterable[str]] = None) -> str:
    """生成给 LLM 的动作说明"""
    names = list(allowed) if allowed is not None else list(ACTION_TYPES)
    lines = []
    for name in names:
        cls = ACTION_TYPES[name]
        params = {
            key: field_info.annotation.__name__ if hasattr(field_info.annotation, "__name__") else str(field_info.annotation)
            for key, field_info in cls.model_fields.items()
        }
        lines.append(f"{name}: {cls.description}. 参数: {json.dumps(params, ensure_ascii=False)}")
    return "\n".join(lines)


class AgentBrain(BaseModel):
    """LLM 对当前进度的判断"""
    evaluation_previous_goal: str = ""
    memory: str = ""
    next_goal: str = ""


class AgentOutput(BaseModel):
    """LLM 输出的结构化决策"""
    current_state: AgentBrain = Field(default_factory=AgentBrain)
    action: List[ActionModel] = Field(min_length=1)

    @field_validator("action", mode="before")
    @classmethod
    def _parse_actions(cls, value):
        if not isinstance(value, list):
            raise ValueError("action must be a list")
        return [item if isinstance(item, ActionModel) else parse_action(item) for item in value]

    @classmethod
    def parse(cls, data: Dict, allowed: Optional[Iterable[str]] = None) -> "AgentOutput":
        """
        校验 LLM 返回的 JSON。

        allowed 用于限制可用动作（例如最后一步只允许 done），
        任何不合法的输出都会抛出 ModelOutputError。
        """
        if not isinstance(data, dict):
            raise ModelOutputError(f"Could not parse response: expected an object, got {type(data).__name__}")

        actions = data.get("action")
        if not isinstance(actions, list) or not actions:
            raise ModelOutputError("Could not parse response: 'action' must be a non-empty list")
        parsed_actions = [parse_action(item, allowed) for item in actions]

        try:
            return cls(current_state=data.get("current_state") or {}, action=parsed_actions)
        except ValidationError as e:
            raise ModelOutputError(f"Could not parse response: {e}") from e

    def to_dict(self) -> Dict:
        return {
            "current_state": self.current_state.model_dump(),
            "action": [action.to_dict() for action in self.action],
        }

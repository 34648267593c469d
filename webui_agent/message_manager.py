"""对话窗口管理：在 token 上限内维护发送给 LLM 的消息序列"""

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from .actions import AgentOutput
from .exceptions import TokenLimitError
from .models import ActionResult, AgentStepInfo, BrowserState
from .prompts import build_state_text, build_task_text

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass
class MessageSegment:
    """多模态消息的一个片段：文本或图片"""
    type: Literal["text", "image"]
    text: Optional[str] = None
    image_url: Optional[str] = None  # data URL


MessageContent = Union[str, List[MessageSegment]]


@dataclass
class ConversationMessage:
    role: Role
    content: MessageContent
    tokens: int = 0

    @property
    def text(self) -> str:
        """消息中的全部文本（不含图片）"""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(segment.text for segment in self.content if segment.type == "text" and segment.text)


@dataclass
class ConversationState:
    """对话历史；可以在创建智能体时注入以继续之前的运行"""
    messages: List[ConversationMessage] = field(default_factory=list)
    current_tokens: int = 0
    max_tokens: int = 128000


@dataclass
class MessageManagerSettings:
    max_input_tokens: int = 128000
    estimated_characters_per_token: int = 4
    image_tokens: int = 800
    include_attributes: List[str] = field(default_factory=list)
    message_context: Optional[str] = None
    sensitive_data: Optional[Dict[str, str]] = None
    available_file_paths: Optional[List[str]] = None


class MessageManager:
    """
    对话窗口管理。

    历史的前两条永远是 system 消息和任务消息，裁剪时不会被移除。
    token 数只是按字符数估算的近似值，只保证确定且单调。
    """

    def __init__(
        self,
        task: str,
        system_message: str,
        settings: Optional[MessageManagerSettings] = None,
        state: Optional[ConversationState] = None,
    ):
        self.task = task
        self.system_message = system_message
        self.settings = settings or MessageManagerSettings()
        self.state = state if state is not None else ConversationState()
        self._state_message: Optional[ConversationMessage] = None

        # 恢复的状态保留之前缩小过的上限
        if not self.state.messages:
            self.state.max_tokens = self.settings.max_input_tokens
            self._init_messages()

    def _init_messages(self) -> None:
        self._add_message_with_tokens(ConversationMessage(role="system", content=self.system_message))
        task_text = build_task_text(
            self.task,
            message_context=self.settings.message_context,
            available_file_paths=self.settings.available_file_paths,
        )
        self._add_message_with_tokens(ConversationMessage(role="user", content=task_text))

    def estimate_tokens(self, content: MessageContent) -> int:
        chars_per_token = self.settings.estimated_characters_per_token
        if isinstance(content, str):
            return math.ceil(len(content) / chars_per_token)
        tokens = 0
        for segment in content:
            if segment.type == "image":
                tokens += self.settings.image_tokens
            else:
                tokens += math.ceil(len(segment.text or "") / chars_per_token)
        return tokens

    def _add_message_with_tokens(self, message: ConversationMessage, position: Optional[int] = None) -> None:
        message.tokens = self.estimate_tokens(message.content)
        if position is None:
            self.state.messages.append(message)
        else:
            self.state.messages.insert(position, message)
        self.state.current_tokens += message.tokens
        logger.debug(f"新增消息 ~{message.tokens} tokens，当前共 ~{self.state.current_tokens}")

    def add_new_task(self, new_task: str) -> None:
        content = f"新任务：{new_task}\n之前的任务已结束，请以新任务为准继续。"
        self._add_message_with_tokens(ConversationMessage(role="user", content=content))
        self.task = new_task

    def add_state(
        self,
        state: BrowserState,
        last_results: Optional[List[ActionResult]] = None,
        step_info: Optional[AgentStepInfo] = None,
        use_vision: bool = True,
    ) -> ConversationMessage:
        """
        添加当前页面状态消息并返回它。

        include_in_memory 的结果会作为独立消息长期保留；
        上一步的全部结果另外在本次状态消息中展示一次。
        状态消息只用于下一次模型调用，之后由 remove_last_state_message 移除。
        """
        for result in last_results or []:
            if not result.include_in_memory:
                continue
            if result.extracted_content:
                self._add_message_with_tokens(
                    ConversationMessage(role="user", content=self._redact(f"动作结果：{result.extracted_content}"))
                )
            if result.error:
                self._add_message_with_tokens(
                    ConversationMessage(role="user", content=self._redact(f"动作出错：{result.error[-400:]}"))
                )

        text = self._redact(
            build_state_text(
                state,
                results=last_results,
                include_attributes=self.settings.include_attributes,
                step_info=step_info,
            )
        )
        if use_vision and state.screenshot:
            content: MessageContent = [
                MessageSegment(type="text", text=text),
                MessageSegment(type="image", image_url=f"data:image/png;base64,{state.screenshot}"),
            ]
        else:
            content = text
        message = ConversationMessage(role="user", content=content)
        self._add_message_with_tokens(message)
        self._state_message = message
        return message

    def add_model_output(self, output: AgentOutput) -> None:
        content = json.dumps(output.to_dict(), ensure_ascii=False)
        self._add_message_with_tokens(ConversationMessage(role="assistant", content=content))

    def add_plan(self, plan: Optional[str], position: Optional[int] = None) -> None:
        """插入规划结果；position=-1 表示插在最后一条（状态消息）之前"""
        if not plan:
            return
        self._add_message_with_tokens(ConversationMessage(role="assistant", content=plan), position)

    def remove_last_state_message(self) -> None:
        """模型调用结束后移除本次添加的页面状态消息；它已不是最后一条时不做任何事"""
        message, self._state_message = self._state_message, None
        if message is None or len(self.state.messages) <= 2 or self.state.messages[-1] is not message:
            return
        self.state.messages.pop()
        self.state.current_tokens -= message.tokens
        logger.debug(f"移除状态消息 ~{message.tokens} tokens，当前共 ~{self.state.current_tokens}")

    def shrink_ceiling(self, amount: int) -> None:
        self.state.max_tokens = max(self.state.max_tokens - amount, 0)
        logger.info(f"缩小输入上限，新的 max_input_tokens: {self.state.max_tokens}")
        self.cut_to_fit()

    def cut_to_fit(self) -> None:
        """
        超出上限时裁剪历史。

        保留 system 和任务消息，以及位于末尾的当前状态消息；
        其余消息从最新往最旧贪心挑选放得下的，放不下的直接丢弃，所以中间可能出现空洞。
        状态消息加上前两条就超出上限时抛出 TokenLimitError，历史不做改动。
        """
        if self.state.current_tokens <= self.state.max_tokens:
            return

        messages = self.state.messages
        kept = messages[:2]
        tail = []
        middle = messages[2:]
        if middle and middle[-1] is self._state_message:
            tail = middle[-1:]
            middle = middle[:-1]

        total = sum(message.tokens for message in kept + tail)
        if tail and total > self.state.max_tokens:
            raise TokenLimitError(
                f"Current page state needs ~{total} tokens, above max_input_tokens {self.state.max_tokens}"
            )

        selected = []
        for message in reversed(middle):
            if total + message.tokens > self.state.max_tokens:
                continue
            selected.append(message)
            total += message.tokens

        selected.reverse()
        dropped = len(middle) - len(selected)
        self.state.messages = kept + selected + tail
        self.state.current_tokens = total
        logger.info(f"✂ 裁剪对话历史：丢弃 {dropped} 条，剩余 {len(self.state.messages)} 条 ~{total} tokens")

    def get_messages(self) -> List[ConversationMessage]:
        return list(self.state.messages)

    def _redact(self, text: str) -> str:
        if not self.settings.sensitive_data:
            return text
        for label, value in self.settings.sensitive_data.items():
            if value:
                text = text.replace(value, f"[REDACTED:{label}]")
        return text


def save_conversation(
    messages: List[ConversationMessage],
    output: AgentOutput,
    target: Union[str, Path],
    encoding: str = "utf-8",
) -> None:
    """把一次模型调用的输入和输出保存为可读文本"""
    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)

    parts = []
    for message in messages:
        parts.append(f" {message.role.upper()} ")
        parts.append(message.text)
        if not isinstance(message.content, str):
            images = sum(1 for segment in message.content if segment.type == "image")
            if images:
                parts.append(f"[{images} image(s)]")
        parts.append("")
    parts.append(" RESPONSE")
    parts.append(json.dumps(output.to_dict(), ensure_ascii=False, indent=2))

    path.write_text("\n".join(parts), encoding=encoding)

"""规划模块：调用 LLM 决策下一步、生成高层计划、校验最终结果"""

import logging
from typing import Iterable, List, Optional, Tuple

from .actions import AgentOutput
from .exceptions import ModelOutputError
from .llm import ModelService, extract_json_from_model_output, remove_think_tags
from .message_manager import ConversationMessage, MessageSegment
from .models import ActionResult, BrowserState
from .prompts import PLANNER_SYSTEM_PROMPT, VALIDATOR_SYSTEM_PROMPT, build_planner_text, format_results

logger = logging.getLogger(__name__)


class Planner:
    """规划模块：调用 LLM 决策下一步"""

    def __init__(
        self,
        model: ModelService,
        planner_model: Optional[ModelService] = None,
        max_actions_per_step: int = 10,
    ):
        self.model = model
        self.planner_model = planner_model
        self.max_actions_per_step = max_actions_per_step

    async def decide(
        self,
        messages: List[ConversationMessage],
        allowed_actions: Optional[Iterable[str]] = None,
    ) -> AgentOutput:
        """
        根据对话窗口输出决策。

        模型异常原样向上抛出，由调用方分类处理；
        动作数超过 max_actions_per_step 时截断。
        """
        raw = await self.model.invoke(messages, json_mode=True)
        data = extract_json_from_model_output(raw)
        output = AgentOutput.parse(data, allowed_actions)
        if len(output.action) > self.max_actions_per_step:
            logger.info(f"动作数 {len(output.action)} 超过上限，截断为 {self.max_actions_per_step}")
            output.action = output.action[: self.max_actions_per_step]
        return output

    async def plan(self, task: str, state: BrowserState, use_vision: bool = False) -> Optional[str]:
        """调用规划模型生成高层计划；未配置规划模型时返回 None"""
        if self.planner_model is None:
            return None

        text = build_planner_text(task, state)
        if use_vision and state.screenshot:
            content = [
                MessageSegment(type="text", text=text),
                MessageSegment(type="image", image_url=f"data:image/png;base64,{state.screenshot}"),
            ]
        else:
            content = text
        messages = [
            ConversationMessage(role="system", content=PLANNER_SYSTEM_PROMPT),
            ConversationMessage(role="user", content=content),
        ]
        raw = await self.planner_model.invoke(messages, json_mode=False)
        plan = remove_think_tags(raw)
        logger.info(f"📋 计划: {plan}")
        return plan

    async def validate(self, task: str, state: BrowserState, results: List[ActionResult]) -> Tuple[bool, str]:
        """让模型检查最终输出是否满足任务，返回 (是否通过, 原因)"""
        text = (
            f"当前 URL：{state.url}\n"
            f"页面标题：{state.title}\n\n"
            f"最终输出：\n{format_results(results)}"
        )
        messages = [
            ConversationMessage(role="system", content=VALIDATOR_SYSTEM_PROMPT.format(task=task)),
            ConversationMessage(role="user", content=text),
        ]
        data = extract_json_from_model_output(await self.model.invoke(messages, json_mode=True))
        if "is_valid" not in data:
            raise ModelOutputError("Could not parse validation response: missing 'is_valid'")
        is_valid = bool(data["is_valid"])
        reason = str(data.get("reason", ""))
        if is_valid:
            logger.info(f"✓ 结果校验通过: {reason}")
        else:
            logger.info(f"❌ 结果校验未通过: {reason}")
        return is_valid, reason

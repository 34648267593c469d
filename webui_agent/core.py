"""Web UI 自动化智能体核心类"""

import asyncio
import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .actions import ActionModel, AgentOutput, describe_actions, parse_action
from .config import AgentSettings
from .controller import Controller
from .driver import PageDriver
from .exceptions import AgentError, ElementResolutionError, ModelOutputError, TokenLimitError, TransientModelError
from .fingerprint import HistoryElement, fingerprint
from .llm import ModelService
from .logging_config import RESULT
from .memory import BrowserStateHistory, Memory, RunHistory, StepRecord
from .message_manager import ConversationState, MessageManager, MessageManagerSettings, save_conversation
from .models import ActionResult, AgentStepInfo, BrowserState, SelectorMap, StepMetadata
from .perception import Perception
from .planner import Planner
from .prompts import CORRECTIVE_HINT, build_system_prompt

logger = logging.getLogger(__name__)

PAUSED_MESSAGE = "The agent was paused - now continuing actions might need to be repeated"


class StepOutcome(Enum):
    CONTINUE = "continue"
    PAUSED = "paused"
    FAILED = "failed"
    DONE = "done"


@dataclass
class AgentState:
    """智能体的可变状态，可以序列化后在新实例中继续"""
    agent_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    n_steps: int = 1
    consecutive_failures: int = 0
    last_result: Optional[List[ActionResult]] = None
    history: RunHistory = field(default_factory=RunHistory)
    last_plan: Optional[str] = None
    paused: bool = False
    stopped: bool = False
    message_manager_state: ConversationState = field(default_factory=ConversationState)


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class WebUIAgent:
    """
    Web UI 自动化智能体。

    每一步：感知页面 -> 组装对话窗口 -> 调用模型 -> 执行动作 -> 记录历史。
    单步的结果用 StepOutcome 表示，暂停和失败都不会以异常的形式抛出 run()。
    """

    def __init__(
        self,
        task: str,
        model: ModelService,
        driver: PageDriver,
        settings: Optional[AgentSettings] = None,
        planner_model: Optional[ModelService] = None,
        controller: Optional[Controller] = None,
        sensitive_data: Optional[Dict[str, str]] = None,
        initial_actions: Optional[List[Dict[str, Dict[str, Any]]]] = None,
        state: Optional[AgentState] = None,
        new_step_callback: Optional[Callable] = None,
        done_callback: Optional[Callable] = None,
        external_stop_callback: Optional[Callable] = None,
    ):
        self.task = task
        self.driver = driver
        self.settings = settings or AgentSettings()
        self.state = state or AgentState()
        self.sensitive_data = sensitive_data

        self.perception = Perception(
            driver,
            viewport_expansion=self.settings.viewport_expansion,
            highlight_elements=self.settings.highlight_elements,
        )
        self.controller = controller or Controller(
            driver,
            allowed_domains=self.settings.allowed_domains,
            sensitive_data=sensitive_data,
        )
        self.planner = Planner(model, planner_model, max_actions_per_step=self.settings.max_actions_per_step)
        self.memory = Memory(self.state.history)

        system_message = build_system_prompt(
            describe_actions(),
            max_actions_per_step=self.settings.max_actions_per_step,
            override_system_message=self.settings.override_system_message,
            extend_system_message=self.settings.extend_system_message,
        )
        self.message_manager = MessageManager(
            task,
            system_message,
            MessageManagerSettings(
                max_input_tokens=self.settings.max_input_tokens,
                include_attributes=self.settings.include_attributes,
                message_context=self.settings.message_context,
                sensitive_data=sensitive_data,
                available_file_paths=self.settings.available_file_paths,
            ),
            state=self.state.message_manager_state,
        )

        self.initial_actions = [parse_action(a) for a in initial_actions] if initial_actions else None
        self.new_step_callback = new_step_callback
        self.done_callback = done_callback
        self.external_stop_callback = external_stop_callback

    # ------------------------------------------------------------------
    # 单步
    # ------------------------------------------------------------------

    async def step(self, step_info: Optional[AgentStepInfo] = None) -> StepOutcome:
        """执行一步"""
        logger.info(f"{'=' * 60}")
        logger.info(f"📍 Step {self.state.n_steps}")
        logger.info(f"{'=' * 60}")

        step_start_time = time.time()
        state: Optional[BrowserState] = None
        model_output: Optional[AgentOutput] = None
        results: List[ActionResult] = []
        tokens = 0

        try:
            # 1. 感知
            state = await self.perception.get_state(include_screenshot=self.settings.use_vision)
            logger.info(f"✓ 提取 {len(state.selector_map)} 个可交互元素")
            if await self._is_interrupted():
                return self._pause_step()

            # 2. 规划
            self.message_manager.add_state(state, self.state.last_result, step_info, self.settings.use_vision)
            try:
                await self._run_planner(state)
                allowed_actions = ["done"] if step_info and step_info.is_last_step() else None
                self.message_manager.cut_to_fit()
                messages = self.message_manager.get_messages()
                tokens = self.message_manager.state.current_tokens
                model_output = await self.planner.decide(messages, allowed_actions)
            finally:
                # 完整的页面状态只在本次调用中使用
                self.message_manager.remove_last_state_message()

            if self.settings.save_conversation_path:
                target = Path(self.settings.save_conversation_path) / f"conversation_{self.state.agent_id}_{self.state.n_steps}.txt"
                save_conversation(messages, model_output, target)

            if await self._is_interrupted():
                return self._pause_step()

            self._log_model_output(model_output)
            self.message_manager.add_model_output(model_output)

            # 3. 执行
            results, interrupted = await self._execute_actions(model_output.action, selector_map=state.selector_map)
            if interrupted:
                self.state.last_result = results
                return StepOutcome.PAUSED

            self.state.last_result = results
            self.state.consecutive_failures = 0
            outcome = StepOutcome.CONTINUE
            if results and results[-1].is_done:
                logger.log(RESULT, f"📄 结果: {results[-1].extracted_content}")
                outcome = StepOutcome.DONE

        except Exception as e:
            results = await self._handle_step_error(e)
            self.state.last_result = results
            outcome = StepOutcome.FAILED

        # 4. 记录
        if state is not None:
            metadata = StepMetadata(
                step_start_time=step_start_time,
                step_end_time=time.time(),
                input_tokens=tokens,
                step_number=self.state.n_steps,
            )
            self.memory.record(model_output, state, results, metadata)
            if self.new_step_callback is not None:
                await _maybe_await(self.new_step_callback(state, model_output, self.state.n_steps))

        self.state.n_steps += 1
        return outcome

    async def _handle_step_error(self, error: Exception) -> List[ActionResult]:
        """按错误类型处理单步失败，返回记录到历史中的结果"""
        self.state.consecutive_failures += 1
        prefix = f"❌ 第 {self.state.n_steps} 步失败 ({self.state.consecutive_failures}/{self.settings.max_failures})"

        if isinstance(error, TokenLimitError):
            logger.error(f"{prefix}: 输入超出上下文长度，缩小窗口后重试")
            self.message_manager.shrink_ceiling(self.settings.token_shrink_step)
            message = str(error)
        elif isinstance(error, ModelOutputError):
            logger.error(f"{prefix}: 模型输出无效: {error}")
            message = f"{error}\n{CORRECTIVE_HINT}"
        elif isinstance(error, TransientModelError):
            logger.warning(f"{prefix}: {error}，{self.settings.retry_delay} 秒后重试")
            await asyncio.sleep(self.settings.retry_delay)
            message = str(error)
        else:
            logger.exception(f"{prefix}: {error}")
            message = f"{type(error).__name__}: {error}"

        return [ActionResult(error=message, include_in_memory=True)]

    async def _is_interrupted(self) -> bool:
        if self.state.stopped or self.state.paused:
            return True
        if self.external_stop_callback is not None:
            return bool(await _maybe_await(self.external_stop_callback()))
        return False

    def _pause_step(self) -> StepOutcome:
        logger.info("⏸ 智能体已中断，本步不计入历史")
        self.state.last_result = [ActionResult(error=PAUSED_MESSAGE, include_in_memory=True)]
        return StepOutcome.PAUSED

    async def _run_planner(self, state: BrowserState) -> Optional[str]:
        if self.planner.planner_model is None:
            return None
        if self.state.n_steps % self.settings.planner_interval != 0:
            return None
        plan = await self.planner.plan(self.task, state, use_vision=self.settings.use_vision_for_planner)
        self.state.last_plan = plan
        # 插在状态消息之前
        self.message_manager.add_plan(plan, position=-1)
        return plan

    @staticmethod
    def _log_model_output(output: AgentOutput) -> None:
        brain = output.current_state
        logger.info(f"评估: {brain.evaluation_previous_goal}")
        logger.info(f"记忆: {brain.memory}")
        logger.info(f"目标: {brain.next_goal}")
        for i, action in enumerate(output.action, start=1):
            logger.info(f"动作 {i}/{len(output.action)}: {action.to_dict()}")

    # ------------------------------------------------------------------
    # 执行动作
    # ------------------------------------------------------------------

    async def multi_act(
        self,
        actions: List[ActionModel],
        check_for_new_elements: bool = True,
        selector_map: Optional[SelectorMap] = None,
    ) -> List[ActionResult]:
        """依次执行多个动作"""
        results, _ = await self._execute_actions(actions, check_for_new_elements, selector_map)
        return results

    async def _execute_actions(
        self,
        actions: List[ActionModel],
        check_for_new_elements: bool = True,
        selector_map: Optional[SelectorMap] = None,
    ) -> Tuple[List[ActionResult], bool]:
        """
        依次执行动作，返回 (结果列表, 是否被中断)。

        需要元素编号的动作在执行前会重新抓取快照，出现批次开始时没有的元素就停止，
        剩余动作交给下一步由模型重新决策。遇到 done 或出错也会停止。
        """
        if selector_map is None:
            _, selector_map = await self.perception.capture(highlight=False)
        cached = {fingerprint(element) for element in selector_map.values()}
        results: List[ActionResult] = []

        for i, action in enumerate(actions):
            if await self._is_interrupted():
                logger.info("⏸ 执行中断")
                results.append(ActionResult(error=PAUSED_MESSAGE, include_in_memory=True))
                return results, True

            if i > 0 and check_for_new_elements and action.get_index() is not None:
                _, new_selector_map = await self.perception.capture(highlight=False)
                new_fingerprints = {fingerprint(element) for element in new_selector_map.values()}
                if not new_fingerprints.issubset(cached):
                    message = f"Something new appeared after action {i} / {len(actions)}"
                    logger.info(f"⚠ {message}")
                    results.append(ActionResult(extracted_content=message, include_in_memory=True))
                    break
                selector_map = new_selector_map

            try:
                result = await self.controller.act(action, selector_map)
            except Exception as e:
                logger.exception(f"❌ 动作 {action.name} 执行异常: {e}")
                result = ActionResult(error=f"{type(e).__name__}: {e}", include_in_memory=True)
            results.append(result)

            if result.is_done or result.error or i == len(actions) - 1:
                break
            await asyncio.sleep(self.settings.wait_between_actions)

        return results, False

    # ------------------------------------------------------------------
    # 主循环
    # ------------------------------------------------------------------

    async def run(self, max_steps: int = 100) -> RunHistory:
        """
        执行任务的主循环。

        直到 done、步数用完、连续失败达到上限或被停止为止；
        没有以 done 结束时会追加一条失败的终止记录。
        """
        logger.info(f"🚀 开始任务: {self.task}")
        stop_reason = None
        try:
            if self.initial_actions:
                self.state.last_result = await self.multi_act(self.initial_actions, check_for_new_elements=False)

            step = 0
            while step < max_steps:
                if self.state.consecutive_failures >= self.settings.max_failures:
                    stop_reason = f"Stopped due to {self.state.consecutive_failures} consecutive failures"
                    logger.error(f"❌ 连续失败 {self.state.consecutive_failures} 次，停止运行")
                    break

                while self.state.paused and not self.state.stopped:
                    await asyncio.sleep(0.2)

                if self.state.stopped or (
                    self.external_stop_callback is not None and await _maybe_await(self.external_stop_callback())
                ):
                    stop_reason = "Stopped by request"
                    logger.info("🛑 智能体已停止")
                    break

                outcome = await self.step(AgentStepInfo(step_number=step, max_steps=max_steps))
                if outcome == StepOutcome.PAUSED:
                    continue
                step += 1

                if outcome == StepOutcome.DONE:
                    if self.settings.validate_output and step < max_steps:
                        if not await self._validate_output():
                            continue
                    logger.info("\n✓✓✓ 任务完成 ✓✓✓")
                    break
            else:
                stop_reason = f"Failed to complete task in maximum steps ({max_steps})"
                logger.error(f"❌ {max_steps} 步内未能完成任务")

            if stop_reason is not None and not self.state.history.is_done():
                self._record_terminal(stop_reason)
            return self.state.history
        finally:
            await self.perception.remove_highlights()
            if self.done_callback is not None:
                await _maybe_await(self.done_callback(self.state.history))

    def _record_terminal(self, message: str) -> None:
        last = self.state.history.history[-1].state if self.state.history.history else None
        record = StepRecord(
            model_output=None,
            result=[ActionResult(is_done=True, success=False, extracted_content=message, error=message, include_in_memory=True)],
            state=BrowserStateHistory(
                url=last.url if last else "",
                title=last.title if last else "",
                tabs=list(last.tabs) if last else [],
                interacted_element=[None],
            ),
        )
        self.state.history.append(record)
        logger.log(RESULT, f"❌ {message}")

    async def take_step(self) -> Tuple[bool, bool]:
        """执行单步，返回 (是否结束, 是否成功)；连续失败达到上限时直接记录失败并结束"""
        if self.state.consecutive_failures >= self.settings.max_failures:
            if not self.state.history.is_done():
                logger.error(f"❌ 连续失败 {self.state.consecutive_failures} 次，停止运行")
                self._record_terminal(f"Stopped due to {self.state.consecutive_failures} consecutive failures")
            return True, False

        outcome = await self.step()
        if outcome != StepOutcome.DONE:
            return False, False
        if self.settings.validate_output and not await self._validate_output():
            return True, False
        return True, bool(self.state.history.is_successful())

    async def _validate_output(self) -> bool:
        """让模型检查最终结果；不通过时把原因作为下一步的输入"""
        state = await self.perception.get_state(include_screenshot=False)
        is_valid, reason = await self.planner.validate(self.task, state, self.state.last_result or [])
        if not is_valid:
            self.state.last_result = [
                ActionResult(extracted_content=f"The output is not yet correct. {reason}.", include_in_memory=True)
            ]
        return is_valid

    # ------------------------------------------------------------------
    # 控制
    # ------------------------------------------------------------------

    def pause(self) -> None:
        logger.info("⏸ 暂停智能体")
        self.state.paused = True

    def resume(self) -> None:
        logger.info("▶ 恢复智能体")
        self.state.paused = False

    def stop(self) -> None:
        logger.info("⏹ 停止智能体")
        self.state.stopped = True

    def add_new_task(self, new_task: str) -> None:
        self.message_manager.add_new_task(new_task)
        self.task = new_task

    def save_history(self, filepath: Union[str, Path, None] = None) -> None:
        self.state.history.save_to_file(filepath or "AgentHistory.json")

    # ------------------------------------------------------------------
    # 回放
    # ------------------------------------------------------------------

    async def rerun_history(
        self,
        history: RunHistory,
        max_retries: int = 3,
        skip_failures: bool = True,
        delay_between_actions: float = 2.0,
    ) -> List[ActionResult]:
        """
        回放保存的历史。

        每个动作涉及的元素按指纹在当前页面重新定位，编号变化时改写动作的副本；
        某一步重试 max_retries 次仍失败时记录错误，skip_failures 为 False 则停止回放。
        """
        if self.initial_actions:
            self.state.last_result = await self.multi_act(self.initial_actions, check_for_new_elements=False)

        results: List[ActionResult] = []
        for i, record in enumerate(history.history):
            goal = record.model_output.current_state.next_goal if record.model_output else ""
            logger.info(f"🔁 回放第 {i + 1}/{len(history.history)} 步: {goal}")

            if not record.model_output or not record.model_output.action:
                logger.warning(f"⚠ 第 {i + 1} 步没有可回放的动作，跳过")
                results.append(ActionResult(error="No action to replay", include_in_memory=True))
                continue

            retry_count = 0
            while retry_count < max_retries:
                try:
                    results.extend(await self._execute_history_step(record, delay_between_actions))
                    break
                except AgentError as e:
                    retry_count += 1
                    if retry_count == max_retries:
                        message = f"Step {i + 1} failed after {max_retries} attempts: {e}"
                        logger.error(f"❌ {message}")
                        results.append(ActionResult(error=message, include_in_memory=True))
                        if not skip_failures:
                            return results
                    else:
                        logger.warning(f"⚠ 第 {i + 1} 步失败 (第 {retry_count}/{max_retries} 次)，稍后重试: {e}")
                        await asyncio.sleep(delay_between_actions)

        return results

    async def _execute_history_step(self, record: StepRecord, delay: float) -> List[ActionResult]:
        state = await self.perception.get_state(include_screenshot=False)
        updated_actions = []
        for i, action in enumerate(record.model_output.action):
            historical = record.state.interacted_element[i] if i < len(record.state.interacted_element) else None
            updated = self._update_action_index(historical, action, state)
            if updated is None:
                raise ElementResolutionError(f"Could not find matching element {i} in current page")
            updated_actions.append(updated)

        results = await self.multi_act(updated_actions, check_for_new_elements=False, selector_map=state.selector_map)
        await asyncio.sleep(delay)
        return results

    @staticmethod
    def _update_action_index(
        historical: Optional[HistoryElement],
        action: ActionModel,
        state: BrowserState,
    ) -> Optional[ActionModel]:
        """按指纹在当前树中找到元素并返回改写了编号的动作副本；找不到时返回 None"""
        if historical is None or action.get_index() is None:
            return action

        current = Memory.find_in_tree(historical, state.element_tree)
        if current is None or current.highlight_index is None:
            return None

        if current.highlight_index != action.get_index():
            updated = action.model_copy()
            updated.set_index(current.highlight_index)
            logger.info(f"元素编号变化: {action.get_index()} -> {current.highlight_index}")
            return updated
        return action

    async def load_and_rerun(self, history_file: Union[str, Path, None] = None, **kwargs) -> List[ActionResult]:
        history = RunHistory.load_from_file(history_file or "AgentHistory.json")
        return await self.rerun_history(history, **kwargs)

"""提示词模板"""

from typing import List, Optional

from .models import ActionResult, AgentStepInfo, BrowserState

SYSTEM_PROMPT_TEMPLATE = (
    "你是一个 Web UI 自动化智能体。\n"
    "你将根据用户任务、当前页面的可交互元素列表（以及截图）决定接下来的操作。\n"
    "元素格式为 [编号]<标签 属性>文本 />，只能通过方括号里的编号引用元素。\n"
    "没有编号的行只是页面上的文字，不能操作。\n"
    "\n"
    "【极其重要的规则】：\n"
    "1. 每一步最多输出 {max_actions} 个动作，它们会按顺序执行；页面发生变化后剩余动作会被中断。\n"
    "2. 如果页面上已经能看到任务要求的结果，立即使用 done 动作结束，不要重复执行已完成的操作。\n"
    "3. 参考历史消息中每一步的结果，出错时换一种方式，不要原地重试。\n"
    "4. 只有任务真正完成时 done 的 success 才能为 true。\n"
    "\n"
    "可用动作：\n"
    "{action_description}\n"
    "\n"
    "你必须且只能输出 JSON 字符串，格式如下：\n"
    "{{\n"
    "  \"current_state\": {{\n"
    "    \"evaluation_previous_goal\": \"Success|Failed|Unknown - 评估上一步目标是否达成\",\n"
    "    \"memory\": \"到目前为止做了什么、还需要记住什么\",\n"
    "    \"next_goal\": \"下一步要达成的目标\"\n"
    "  }},\n"
    "  \"action\": [{{\"动作名\": {{参数}}}}, ...]\n"
    "}}"
)

LAST_STEP_INSTRUCTION = (
    "现在是最后一步。只能使用 done 动作，动作列表长度必须为 1。\n"
    "如果任务还没有按用户要求全部完成，done 的 success 必须为 false；全部完成时才为 true。\n"
    "把你为这个任务找到的所有信息写进 done 的 text。"
)

PLANNER_SYSTEM_PROMPT = (
    "你是浏览器自动化任务的规划助手。\n"
    "根据当前浏览器状态和任务，给出完成任务的高层计划：\n"
    "1. 分析当前进度，指出已完成和未完成的部分\n"
    "2. 列出接下来 2-3 个具体步骤（例如“搜索 X”“点击 Y 按钮”）\n"
    "3. 考虑可能遇到的障碍\n"
    "只输出计划本身，不要额外解释。"
)

VALIDATOR_SYSTEM_PROMPT = (
    "你是浏览器智能体的结果校验员。\n"
    "判断最后的输出是否满足用户的任务。任务描述不清时可以放行；"
    "如果缺少内容或截图没有显示要求的结果，则不要放行，并给出下一步建议（滚动、点击等）。\n"
    "待校验的任务：{task}\n"
    "只输出 JSON：{{\"is_valid\": true 或 false, \"reason\": \"原因\"}}"
)

CORRECTIVE_HINT = "请返回符合格式的有效 JSON 对象，包含 current_state 和非空的 action 列表。"


def build_system_prompt(
    action_description: str,
    max_actions_per_step: int = 10,
    override_system_message: Optional[str] = None,
    extend_system_message: Optional[str] = None,
) -> str:
    if override_system_message:
        prompt = override_system_message
    else:
        prompt = SYSTEM_PROMPT_TEMPLATE.format(
            max_actions=max_actions_per_step,
            action_description=action_description,
        )
    if extend_system_message:
        prompt += f"\n{extend_system_message}"
    return prompt


def build_task_text(
    task: str,
    message_context: Optional[str] = None,
    available_file_paths: Optional[List[str]] = None,
) -> str:
    text = f"任务：{task}"
    if message_context:
        text += f"\n\n补充信息：{message_context}"
    if available_file_paths:
        text += "\n\n可用文件：" + "".join(f"\n- {path}" for path in available_file_paths)
    return text


def format_results(results: Optional[List[ActionResult]]) -> str:
    """把上一步的动作结果格式化成文本"""
    if not results:
        return ""
    lines = []
    for i, r in enumerate(results, start=1):
        if r.error:
            # 错误信息只保留最后一段，避免冗长的堆栈
            lines.append(f"动作 {i}/{len(results)} 出错: {r.error[-400:]}")
        elif r.extracted_content:
            lines.append(f"动作 {i}/{len(results)} 结果: {r.extracted_content}")
        elif r.is_done:
            lines.append(f"动作 {i}/{len(results)} 已结束: {'成功' if r.success else '失败'}")
        else:
            lines.append(f"动作 {i}/{len(results)} 执行成功")
    return "\n".join(lines)


def build_state_text(
    state: BrowserState,
    results: Optional[List[ActionResult]] = None,
    include_attributes: Optional[List[str]] = None,
    step_info: Optional[AgentStepInfo] = None,
) -> str:
    """当前页面状态描述（每一步都重新生成，发送后不保留在历史中）"""
    elements_text = state.element_tree.clickable_elements_to_string(include_attributes=include_attributes)

    if elements_text:
        if state.pixels_above > 0:
            elements_text = f"... 上方还有 {state.pixels_above} 像素 - 滚动查看更多 ...\n{elements_text}"
        else:
            elements_text = f"[页面顶部]\n{elements_text}"
        if state.pixels_below > 0:
            elements_text = f"{elements_text}\n... 下方还有 {state.pixels_below} 像素 - 滚动查看更多 ..."
        else:
            elements_text = f"{elements_text}\n[页面底部]"
    else:
        elements_text = "空页面"

    text = f"当前 URL：{state.url}\n"
    if state.tabs:
        text += "已打开的标签页：\n"
        for tab in state.tabs:
            text += f"  [{tab.page_id}] {tab.title} ({tab.url})\n"
    if step_info:
        text += f"当前步骤：{step_info.step_number + 1}/{step_info.max_steps}\n"

    results_text = format_results(results)
    if results_text:
        text += f"\n上一步的动作结果：\n{results_text}\n"

    text += f"\n当前可交互元素：\n{elements_text}"

    if step_info and step_info.is_last_step():
        text += f"\n\n{LAST_STEP_INSTRUCTION}"
    return text


def build_planner_text(task: str, state: BrowserState) -> str:
    elements_text = state.element_tree.clickable_elements_to_string()
    return (
        f"任务：{task}\n\n"
        f"当前 URL：{state.url}\n"
        f"页面标题：{state.title}\n\n"
        f"当前可交互元素：\n{elements_text or '空页面'}"
    )

"""执行模块：执行 LLM 决策的动作"""

import asyncio
import logging
from typing import Dict, List, Optional
from urllib.parse import urlparse

from .actions import ActionModel
from .driver import PageDriver
from .exceptions import BrowserError, ElementResolutionError, NavigationError
from .models import ActionResult, ElementNode, SelectorMap

logger = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 60


class Controller:
    """
    执行模块：执行 LLM 决策的动作。

    所有动作都经过 act 这一个入口分发；浏览器错误转换成带 error 的 ActionResult，
    其余异常向上抛出由调用方处理。
    """

    def __init__(
        self,
        driver: PageDriver,
        allowed_domains: Optional[List[str]] = None,
        sensitive_data: Optional[Dict[str, str]] = None,
    ):
        self.driver = driver
        self.allowed_domains = allowed_domains
        self.sensitive_data = sensitive_data or {}

    async def act(self, action: ActionModel, selector_map: SelectorMap) -> ActionResult:
        """执行单个动作"""
        try:
            return await self._dispatch(action, selector_map)
        except BrowserError as e:
            logger.error(f"❌ {action.name} 失败: {e}")
            return ActionResult(error=str(e), include_in_memory=True)

    async def _dispatch(self, action: ActionModel, selector_map: SelectorMap) -> ActionResult:
        name = action.name

        if name == "done":
            logger.info(f"✓ 任务结束: {action.text}")
            return ActionResult(is_done=True, success=action.success, extracted_content=action.text, include_in_memory=True)
        elif name == "click_element":
            return await self._click(action.index, selector_map)
        elif name == "input_text":
            return await self._input(action.index, action.text, selector_map)
        elif name == "go_to_url":
            return await self._go_to_url(action.url)
        elif name == "go_back":
            await self.driver.perform_action(None, "go_back", {})
            return self._success("🔙 返回上一页")
        elif name == "send_keys":
            await self.driver.perform_action(None, "press", {"keys": action.keys})
            return self._success(f"⌨️ 按键 {action.keys}")
        elif name == "scroll":
            await self.driver.perform_action(None, "scroll", {"direction": action.direction, "amount": action.amount})
            amount = f"{action.amount} 像素" if action.amount is not None else "一屏"
            return self._success(f"🔍 向{'下' if action.direction == 'down' else '上'}滚动 {amount}")
        elif name == "wait":
            seconds = min(action.seconds, MAX_WAIT_SECONDS)
            await asyncio.sleep(seconds)
            return self._success(f"🕒 等待 {seconds} 秒")
        elif name == "open_tab":
            self._check_url(action.url)
            await self.driver.perform_action(None, "open_tab", {"url": action.url})
            return self._success(f"🔗 在新标签页打开 {action.url}")
        elif name == "switch_tab":
            await self.driver.perform_action(None, "switch_tab", {"page_id": action.page_id})
            return self._success(f"🔄 切换到标签页 {action.page_id}")
        else:
            raise BrowserError(f"Unsupported action: {name}")

    @staticmethod
    def _success(message: str) -> ActionResult:
        logger.info(f"✓ {message}")
        return ActionResult(extracted_content=message, include_in_memory=True)

    async def _resolve(self, index: int, selector_map: SelectorMap):
        element = selector_map.get(index)
        if element is None:
            raise ElementResolutionError(f"Element with index {index} does not exist - retry or use alternative actions")
        handle = await self.driver.resolve_element(element)
        if handle is None:
            raise ElementResolutionError(f"Element with index {index} could not be located on the page")
        return element, handle

    async def _click(self, index: int, selector_map: SelectorMap) -> ActionResult:
        element, handle = await self._resolve(index, selector_map)
        await self.driver.perform_action(handle, "click", {})
        return self._success(f"🖱️ 点击 [{index}] {self._label(element)}")

    async def _input(self, index: int, text: str, selector_map: SelectorMap) -> ActionResult:
        element, handle = await self._resolve(index, selector_map)
        await self.driver.perform_action(handle, "fill", {"text": self._fill_secrets(text)})
        # 日志与结果中只出现占位符
        return self._success(f"⌨️ 在 [{index}] {self._label(element)} 输入 '{text}'")

    async def _go_to_url(self, url: str) -> ActionResult:
        self._check_url(url)
        await self.driver.perform_action(None, "navigate", {"url": url})
        return self._success(f"🔗 打开 {url}")

    def _fill_secrets(self, text: str) -> str:
        for label, value in self.sensitive_data.items():
            text = text.replace(f"[REDACTED:{label}]", value)
        return text

    def _check_url(self, url: str) -> None:
        if not self.is_url_allowed(url):
            raise NavigationError(f"Navigation to non-allowed URL: {url}", url=url)

    def is_url_allowed(self, url: str) -> bool:
        """allowed_domains 为空时不限制；支持 example.com 和 *.example.com 两种写法"""
        if not self.allowed_domains:
            return True
        if url.startswith("about:blank"):
            return True
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        for pattern in self.allowed_domains:
            pattern = pattern.lower()
            if pattern.startswith("*."):
                base = pattern[2:]
                if host == base or host.endswith("." + base):
                    return True
            elif host == pattern or host.endswith("." + pattern):
                return True
        return False

    @staticmethod
    def _label(element: ElementNode) -> str:
        text = element.get_all_text_till_next_clickable_element(max_depth=2)
        return f"<{element.tag_name}> {text[:40]}".strip()

"""浏览器驱动：核心只通过 PageDriver 接口访问浏览器"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .exceptions import BrowserError, NavigationError
from .models import ElementNode, TabInfo

logger = logging.getLogger(__name__)


class PageDriver(ABC):
    """
    页面驱动接口。

    所有方法都可能被重复调用，也可能瞬时失败；
    perform_action 的 handle 为 None 时表示页面级动作（跳转、按键、滚动等）。
    """

    @abstractmethod
    async def capture(self, highlight: bool, focus_index: int, viewport_expansion: int) -> Dict:
        """返回原始节点图：{"rootId": ..., "map": {id: 节点数据}}"""

    @abstractmethod
    async def resolve_element(self, element: ElementNode) -> Optional[Any]:
        """把快照中的元素解析为可操作的句柄，找不到时返回 None"""

    @abstractmethod
    async def perform_action(self, handle: Optional[Any], kind: str, params: Dict) -> None:
        ...

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def tabs(self) -> List[TabInfo]:
        ...

    @abstractmethod
    async def screenshot(self) -> bytes:
        ...

    async def scroll_info(self) -> Tuple[int, int]:
        """视口上方和下方还有多少像素"""
        return 0, 0

    async def remove_highlights(self) -> None:
        return None


# 在浏览器内执行的结构探测脚本：
# 构建节点图、判断可见/可交互/顶层/视口内，并为可操作元素分配连续编号
DOM_PROBE_JS = """
(args) => {
    const { doHighlightElements, focusHighlightIndex, viewportExpansion } = args;
    const HIGHLIGHT_CONTAINER_ID = 'webui-agent-highlight-container';
    const SKIP_TAGS = new Set(['script', 'style', 'noscript', 'meta', 'link', 'head', 'template']);
    const INTERACTIVE_TAGS = new Set(['a', 'button', 'input', 'select', 'textarea', 'details', 'summary', 'option']);
    const INTERACTIVE_ROLES = new Set([
        'button', 'link', 'checkbox', 'radio', 'tab', 'menuitem', 'option',
        'switch', 'combobox', 'textbox', 'searchbox', 'slider'
    ]);

    const nodeMap = {};
    let idCounter = 0;
    let highlightIndex = 0;

    // 清理上一次的编号和高亮
    document.querySelectorAll('[data-agent-id]').forEach(el => el.removeAttribute('data-agent-id'));
    const oldContainer = document.getElementById(HIGHLIGHT_CONTAINER_ID);
    if (oldContainer) oldContainer.remove();

    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        if (style.display === 'none') return false;
        if (style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        if (rect.width <= 0 || rect.height <= 0) return false;
        return true;
    };

    const isInteractive = (el) => {
        const tag = el.tagName.toLowerCase();
        if (tag === 'input') {
            const type = (el.getAttribute('type') || '').toLowerCase();
            if (type === 'hidden') return false;
        }
        if (tag === 'a') {
            return el.hasAttribute('href') || el.getAttribute('role') === 'button';
        }
        if (INTERACTIVE_TAGS.has(tag)) return true;
        const role = el.getAttribute('role');
        if (role && INTERACTIVE_ROLES.has(role)) return true;
        if (el.hasAttribute('onclick') || el.getAttribute('contenteditable') === 'true') return true;
        const tabindex = el.getAttribute('tabindex');
        return tabindex !== null && tabindex !== '-1';
    };

    const isTopElement = (el) => {
        const rect = el.getBoundingClientRect();
        const x = rect.left + rect.width / 2;
        const y = rect.top + rect.height / 2;
        // 视口外的元素无法用 elementFromPoint 判断
        if (x < 0 || y < 0 || x > window.innerWidth || y > window.innerHeight) return true;
        let top = document.elementFromPoint(x, y);
        while (top) {
            if (top === el) return true;
            top = top.parentElement;
        }
        return false;
    };

    const isInViewport = (el) => {
        if (viewportExpansion === -1) return true;
        const rect = el.getBoundingClientRect();
        return rect.bottom >= -viewportExpansion &&
            rect.top <= window.innerHeight + viewportExpansion &&
            rect.right >= -viewportExpansion &&
            rect.left <= window.innerWidth + viewportExpansion;
    };

    const getXPath = (el) => {
        const segments = [];
        let current = el;
        while (current && current.nodeType === Node.ELEMENT_NODE) {
            const tag = current.tagName.toLowerCase();
            let index = 0;
            let total = 0;
            const parent = current.parentNode;
            if (parent) {
                for (const sibling of parent.children || []) {
                    if (sibling.tagName === current.tagName) {
                        total += 1;
                        if (sibling === current) index = total;
                    }
                }
            }
            segments.unshift(total > 1 ? `${tag}[${index}]` : tag);
            current = current.parentNode;
        }
        return segments.join('/');
    };

    const coordinateSet = (rect, offsetX, offsetY) => ({
        top_left: { x: rect.left + offsetX, y: rect.top + offsetY },
        bottom_right: { x: rect.right + offsetX, y: rect.bottom + offsetY },
        center: { x: rect.left + rect.width / 2 + offsetX, y: rect.top + rect.height / 2 + offsetY },
        width: rect.width,
        height: rect.height,
    });

    const highlight = (el, index) => {
        let container = document.getElementById(HIGHLIGHT_CONTAINER_ID);
        if (!container) {
            container = document.createElement('div');
            container.id = HIGHLIGHT_CONTAINER_ID;
            container.style.position = 'fixed';
            container.style.pointerEvents = 'none';
            container.style.top = '0';
            container.style.left = '0';
            container.style.zIndex = '2147483647';
            document.body.appendChild(container);
        }
        const rect = el.getBoundingClientRect();
        const box = document.createElement('div');
        box.style.position = 'fixed';
        box.style.border = '2px solid #FF6B00';
        box.style.left = `${rect.left}px`;
        box.style.top = `${rect.top}px`;
        box.style.width = `${rect.width}px`;
        box.style.height = `${rect.height}px`;
        const label = document.createElement('div');
        label.textContent = String(index);
        label.style.position = 'absolute';
        label.style.top = '-16px';
        label.style.left = '0';
        label.style.background = '#FF6B00';
        label.style.color = 'white';
        label.style.fontSize = '11px';
        label.style.padding = '0 3px';
        box.appendChild(label);
        container.appendChild(box);
    };

    const buildNode = (node) => {
        if (!node) return null;

        if (node.nodeType === Node.TEXT_NODE) {
            const text = (node.textContent || '').trim();
            if (!text) return null;
            const parent = node.parentElement;
            const id = String(idCounter++);
            nodeMap[id] = { type: 'TEXT_NODE', text, isVisible: parent ? isVisible(parent) : false };
            return id;
        }

        if (node.nodeType !== Node.ELEMENT_NODE) return null;
        const tag = node.tagName.toLowerCase();
        if (SKIP_TAGS.has(tag) || node.id === HIGHLIGHT_CONTAINER_ID) return null;

        const data = { tagName: tag, xpath: getXPath(node), attributes: {}, children: [] };
        for (const attr of node.attributes) {
            if (attr.name === 'data-agent-id') continue;
            data.attributes[attr.name] = attr.value;
        }

        data.isVisible = isVisible(node);
        if (data.isVisible) {
            data.isTopElement = isTopElement(node);
            data.isInViewport = isInViewport(node);
            data.isInteractive = isInteractive(node);
            if (data.isInteractive && data.isTopElement && data.isInViewport) {
                data.highlightIndex = highlightIndex++;
                node.setAttribute('data-agent-id', String(data.highlightIndex));
                const rect = node.getBoundingClientRect();
                data.viewportCoordinates = coordinateSet(rect, 0, 0);
                data.pageCoordinates = coordinateSet(rect, window.scrollX, window.scrollY);
                data.viewport = {
                    scroll_x: window.scrollX, scroll_y: window.scrollY,
                    width: window.innerWidth, height: window.innerHeight,
                };
                if (focusHighlightIndex === data.highlightIndex) {
                    node.scrollIntoView({ block: 'center' });
                }
                if (doHighlightElements && (focusHighlightIndex < 0 || focusHighlightIndex === data.highlightIndex)) {
                    highlight(node, data.highlightIndex);
                }
            }
        }

        if (node.shadowRoot) {
            data.shadowRoot = true;
            for (const child of node.shadowRoot.childNodes) {
                const childId = buildNode(child);
                if (childId !== null) data.children.push(childId);
            }
        }

        if (tag === 'iframe') {
            try {
                const doc = node.contentDocument || node.contentWindow.document;
                if (doc && doc.body) {
                    const childId = buildNode(doc.body);
                    if (childId !== null) data.children.push(childId);
                }
            } catch (e) {
                // 跨域 iframe 无法访问
            }
        } else {
            for (const child of node.childNodes) {
                const childId = buildNode(child);
                if (childId !== null) data.children.push(childId);
            }
        }

        const id = String(idCounter++);
        nodeMap[id] = data;
        return id;
    };

    const rootId = buildNode(document.body);
    return { rootId, map: nodeMap };
}
"""

REMOVE_HIGHLIGHTS_JS = """
() => {
    const container = document.getElementById('webui-agent-highlight-container');
    if (container) container.remove();
}
"""


class PlaywrightDriver(PageDriver):
    """基于 Playwright 的页面驱动"""

    def __init__(self, context: BrowserContext, page: Optional[Page] = None, action_timeout: float = 10000):
        self.context = context
        self.page = page or (context.pages[0] if context.pages else None)
        self.action_timeout = action_timeout

    async def _get_page(self) -> Page:
        if self.page is None or self.page.is_closed():
            self.page = self.context.pages[-1] if self.context.pages else await self.context.new_page()
        return self.page

    async def capture(self, highlight: bool, focus_index: int, viewport_expansion: int) -> Dict:
        page = await self._get_page()
        args = {
            "doHighlightElements": highlight,
            "focusHighlightIndex": focus_index,
            "viewportExpansion": viewport_expansion,
        }
        try:
            return await page.evaluate(DOM_PROBE_JS, args)
        except PlaywrightError as e:
            raise BrowserError(f"DOM 探测失败: {e}") from e

    async def resolve_element(self, element: ElementNode):
        page = await self._get_page()
        if element.highlight_index is not None:
            locator = page.locator(f"[data-agent-id=\"{element.highlight_index}\"]")
            if await locator.count() > 0:
                return locator.first
        if element.xpath:
            locator = page.locator(f"xpath=/{element.xpath}")
            if await locator.count() > 0:
                return locator.first
        return None

    async def perform_action(self, handle, kind: str, params: Dict) -> None:
        page = await self._get_page()
        try:
            if kind == "click":
                await handle.click(timeout=self.action_timeout)
                await page.wait_for_load_state("domcontentloaded")
            elif kind == "fill":
                await handle.fill(params.get("text", ""), timeout=self.action_timeout)
            elif kind == "navigate":
                await self._navigate(page, params["url"])
            elif kind == "go_back":
                await page.go_back(timeout=self.action_timeout)
                await page.wait_for_load_state("domcontentloaded")
            elif kind == "press":
                await page.keyboard.press(params["keys"])
            elif kind == "scroll":
                amount = params.get("amount")
                if amount is None:
                    await page.keyboard.press("PageDown" if params.get("direction") == "down" else "PageUp")
                else:
                    delta = amount if params.get("direction") == "down" else -amount
                    await page.evaluate(f"window.scrollBy(0, {int(delta)})")
            elif kind == "open_tab":
                self.page = await self.context.new_page()
                await self._navigate(self.page, params["url"])
            elif kind == "switch_tab":
                pages = self.context.pages
                page_id = params["page_id"]
                if page_id >= len(pages):
                    raise BrowserError(f"No tab found with page_id: {page_id}")
                self.page = pages[page_id]
                await self.page.bring_to_front()
                await self.page.wait_for_load_state()
            else:
                raise BrowserError(f"Unsupported action kind: {kind}")
        except PlaywrightTimeoutError as e:
            raise BrowserError(f"{kind} 超时: {str(e).splitlines()[0]}") from e
        except PlaywrightError as e:
            raise BrowserError(f"{kind} 失败: {str(e).splitlines()[0]}") from e

    async def _navigate(self, page: Page, url: str) -> None:
        try:
            await page.goto(url)
            await page.wait_for_load_state()
        except PlaywrightError as e:
            raise NavigationError(f"打开 {url} 失败: {str(e).splitlines()[0]}", url=url) from e

    async def current_url(self) -> str:
        return (await self._get_page()).url

    async def title(self) -> str:
        try:
            return await (await self._get_page()).title()
        except PlaywrightError as e:
            raise BrowserError(f"读取标题失败: {str(e).splitlines()[0]}") from e

    async def tabs(self) -> List[TabInfo]:
        tabs = []
        for page_id, page in enumerate(self.context.pages):
            try:
                title = await page.title()
            except PlaywrightError as e:
                raise BrowserError(f"读取标签页 {page_id} 失败: {str(e).splitlines()[0]}") from e
            tabs.append(TabInfo(page_id=page_id, url=page.url, title=title))
        return tabs

    async def screenshot(self) -> bytes:
        page = await self._get_page()
        try:
            return await page.screenshot(full_page=False, animations="disabled")
        except PlaywrightError as e:
            raise BrowserError(f"截图失败: {str(e).splitlines()[0]}") from e

    async def scroll_info(self) -> Tuple[int, int]:
        page = await self._get_page()
        try:
            scroll_y, viewport_height, total_height = await page.evaluate(
                "() => [window.scrollY, window.innerHeight, document.documentElement.scrollHeight]"
            )
        except PlaywrightError as e:
            raise BrowserError(f"读取滚动位置失败: {str(e).splitlines()[0]}") from e
        pixels_above = int(scroll_y)
        pixels_below = max(int(total_height - (scroll_y + viewport_height)), 0)
        return pixels_above, pixels_below

    async def remove_highlights(self) -> None:
        try:
            await (await self._get_page()).evaluate(REMOVE_HIGHLIGHTS_JS)
        except PlaywrightError as e:
            logger.debug(f"移除高亮失败（通常可以忽略）: {e}")

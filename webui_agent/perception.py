"""感知模块：把页面转换成元素树和可操作元素索引"""

import base64
import logging
from typing import Dict, Optional, Tuple

from .driver import PageDriver
from .exceptions import BrowserError
from .models import (
    BrowserState,
    CoordinateSet,
    DOMNode,
    ElementNode,
    SelectorMap,
    TextNode,
    ViewportInfo,
)

logger = logging.getLogger(__name__)


def _placeholder_root() -> ElementNode:
    return ElementNode(tag_name="body", xpath="", is_visible=False)


class Perception:
    """
    感知模块：从 PageDriver 取得原始节点图，构建元素树和 selector map。

    编号由浏览器端的结构探测脚本分配，这里只读取；
    数据残缺时返回一个空的占位根节点，调用方需要容忍降级的快照。
    """

    def __init__(self, driver: PageDriver, viewport_expansion: int = 500, highlight_elements: bool = True):
        self.driver = driver
        self.viewport_expansion = viewport_expansion
        self.highlight_elements = highlight_elements

    async def capture(
        self,
        highlight: bool = True,
        focus_index: int = -1,
        viewport_expansion: Optional[int] = None,
    ) -> Tuple[ElementNode, SelectorMap]:
        """抓取一次快照，返回 (根节点, selector map)"""
        if viewport_expansion is None:
            viewport_expansion = self.viewport_expansion
        try:
            payload = await self.driver.capture(highlight, focus_index, viewport_expansion)
        except BrowserError as e:
            logger.error(f"❌ 获取页面结构失败: {e}")
            return _placeholder_root(), {}
        return self.construct_tree(payload)

    def construct_tree(self, payload: Dict) -> Tuple[ElementNode, SelectorMap]:
        """
        由原始节点图构建元素树。

        第一遍只创建节点，第二遍再连接父子关系，
        缺失的子节点 id 直接跳过，纯空白的文本节点不会被创建。
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("map"), dict) or payload.get("rootId") is None:
            logger.error("❌ 页面结构数据无效：缺少 map 或 rootId")
            return _placeholder_root(), {}

        js_node_map = payload["map"]
        root_id = str(payload["rootId"])
        node_map: Dict[str, DOMNode] = {}
        selector_map: SelectorMap = {}

        for node_id, node_data in js_node_map.items():
            node = self._parse_node(node_data)
            if node is None:
                continue
            node_map[str(node_id)] = node

            if isinstance(node, ElementNode) and node.highlight_index is not None:
                existing = selector_map.get(node.highlight_index)
                if existing is not None:
                    logger.warning(
                        f"⚠ 编号 {node.highlight_index} 重复：{existing.tag_name} 与 {node.tag_name}，保留前者"
                    )
                    node.highlight_index = None
                    continue
                selector_map[node.highlight_index] = node

        for node_id, node_data in js_node_map.items():
            node = node_map.get(str(node_id))
            if not isinstance(node, ElementNode) or not isinstance(node_data, dict):
                continue
            for child_id in node_data.get("children") or []:
                child = node_map.get(str(child_id))
                # 每个节点最多一个父节点，根节点不能再挂到别处
                if child is None or child.parent is not None or str(child_id) == root_id:
                    continue
                child.parent = node
                node.children.append(child)

        root = node_map.get(root_id)
        if not isinstance(root, ElementNode):
            logger.error(f"❌ 找不到根节点 {root_id}")
            return _placeholder_root(), {}

        # 只保留挂在根节点下的可操作元素，保证 selector map 与树一一对应
        reachable = {id(element) for element in root.iter_elements()}
        for index in [i for i, element in selector_map.items() if id(element) not in reachable]:
            logger.debug(f"编号 {index} 的元素不在树中，已忽略")
            selector_map[index].highlight_index = None
            del selector_map[index]

        return root, selector_map

    @staticmethod
    def _parse_node(node_data) -> Optional[DOMNode]:
        if not isinstance(node_data, dict):
            return None

        if node_data.get("type") == "TEXT_NODE":
            text = node_data.get("text") or ""
            if not text.strip():
                return None
            return TextNode(text=text, is_visible=bool(node_data.get("isVisible", False)))

        if not node_data.get("tagName"):
            return None

        return ElementNode(
            tag_name=node_data["tagName"],
            xpath=node_data.get("xpath") or "",
            attributes=dict(node_data.get("attributes") or {}),
            is_visible=bool(node_data.get("isVisible", False)),
            is_interactive=bool(node_data.get("isInteractive", False)),
            is_top_element=bool(node_data.get("isTopElement", False)),
            is_in_viewport=bool(node_data.get("isInViewport", False)),
            shadow_root=bool(node_data.get("shadowRoot", False)),
            highlight_index=node_data.get("highlightIndex"),
            viewport_coordinates=CoordinateSet.from_dict(node_data.get("viewportCoordinates")),
            page_coordinates=CoordinateSet.from_dict(node_data.get("pageCoordinates")),
            viewport_info=ViewportInfo.from_dict(node_data.get("viewport")),
        )

    async def get_state(self, include_screenshot: bool = False) -> BrowserState:
        """抓取快照并补充 URL、标题、标签页、滚动信息和截图"""
        element_tree, selector_map = await self.capture(highlight=self.highlight_elements)

        screenshot = None
        if include_screenshot:
            try:
                screenshot = base64.b64encode(await self.driver.screenshot()).decode("utf-8")
            except BrowserError as e:
                logger.warning(f"⚠ 截图失败: {e}")

        try:
            pixels_above, pixels_below = await self.driver.scroll_info()
        except BrowserError as e:
            logger.warning(f"⚠ 读取滚动位置失败: {e}")
            pixels_above, pixels_below = 0, 0
        return BrowserState(
            element_tree=element_tree,
            selector_map=selector_map,
            url=await self.driver.current_url(),
            title=await self.driver.title(),
            tabs=await self.driver.tabs(),
            screenshot=screenshot,
            pixels_above=pixels_above,
            pixels_below=pixels_below,
        )

    async def remove_highlights(self) -> None:
        await self.driver.remove_highlights()

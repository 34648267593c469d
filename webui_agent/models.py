"""数据模型定义"""

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Union


@dataclass
class Coordinates:
    x: float
    y: float


@dataclass
class CoordinateSet:
    """元素的矩形区域（视口坐标或页面坐标）"""
    top_left: Coordinates
    bottom_right: Coordinates
    center: Coordinates
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["CoordinateSet"]:
        if not data:
            return None
        return cls(
            top_left=Coordinates(**data["top_left"]),
            bottom_right=Coordinates(**data["bottom_right"]),
            center=Coordinates(**data["center"]),
            width=data.get("width", 0),
            height=data.get("height", 0),
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ViewportInfo:
    scroll_x: float
    scroll_y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["ViewportInfo"]:
        if not data:
            return None
        return cls(
            scroll_x=data.get("scroll_x", 0),
            scroll_y=data.get("scroll_y", 0),
            width=data.get("width", 0),
            height=data.get("height", 0),
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(eq=False)
class TextNode:
    """文本节点"""
    text: str
    is_visible: bool = False
    parent: Optional["ElementNode"] = field(default=None, repr=False)

    def has_parent_with_highlight_index(self) -> bool:
        current = self.parent
        while current is not None:
            if current.highlight_index is not None:
                return True
            current = current.parent
        return False


@dataclass(eq=False)
class ElementNode:
    """
    元素节点。

    children 由父节点独占；parent 只是向上遍历用的反向引用。
    highlight_index 仅在元素当前可操作时存在，并且与该快照的 selector map 一一对应。
    """
    tag_name: str
    xpath: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List[Union["ElementNode", TextNode]] = field(default_factory=list, repr=False)
    is_visible: bool = False
    is_interactive: bool = False
    is_top_element: bool = False
    is_in_viewport: bool = False
    shadow_root: bool = False
    highlight_index: Optional[int] = None
    viewport_coordinates: Optional[CoordinateSet] = None
    page_coordinates: Optional[CoordinateSet] = None
    viewport_info: Optional[ViewportInfo] = None
    parent: Optional["ElementNode"] = field(default=None, repr=False)

    def __str__(self) -> str:
        tag_str = f"<{self.tag_name}"
        for key, value in self.attributes.items():
            tag_str += f' {key}="{value}"'
        tag_str += ">"

        extras = []
        if self.is_interactive:
            extras.append("interactive")
        if self.is_top_element:
            extras.append("top")
        if self.shadow_root:
            extras.append("shadow-root")
        if self.highlight_index is not None:
            extras.append(f"highlight:{self.highlight_index}")
        if self.is_in_viewport:
            extras.append("in-viewport")
        if extras:
            tag_str += f" [{', '.join(extras)}]"
        return tag_str

    def iter_elements(self):
        """按文档顺序深度优先遍历所有元素节点（包含自身）"""
        yield self
        for child in self.children:
            if isinstance(child, ElementNode):
                yield from child.iter_elements()

    def get_all_text_till_next_clickable_element(self, max_depth: int = -1) -> str:
        """收集子树中的文本，遇到下一个带编号的元素即停止"""
        text_parts = []

        def collect_text(node, current_depth: int):
            if max_depth != -1 and current_depth > max_depth:
                return
            # 其他可操作元素的文本由它自己负责展示
            if isinstance(node, ElementNode) and node is not self and node.highlight_index is not None:
                return
            if isinstance(node, TextNode):
                text = node.text.strip()
                if text:
                    text_parts.append(text)
            elif isinstance(node, ElementNode):
                for child in node.children:
                    collect_text(child, current_depth + 1)

        collect_text(self, 0)
        return "\n".join(text_parts).strip()

    def clickable_elements_to_string(self, include_attributes: Optional[List[str]] = None) -> str:
        """生成给 LLM 看的元素列表，格式：[编号]<tag 属性>文本 />"""
        lines = []

        def process_node(node):
            if isinstance(node, ElementNode):
                if node.highlight_index is not None:
                    text = node.get_all_text_till_next_clickable_element()
                    attributes_str = ""
                    if include_attributes:
                        values = []
                        for key, value in node.attributes.items():
                            if key in include_attributes and value and value != node.tag_name:
                                if str(value) not in values:
                                    values.append(str(value))
                        if text in values:
                            values.remove(text)
                        attributes_str = ";".join(values)

                    line = f"[{node.highlight_index}]<{node.tag_name} "
                    if attributes_str:
                        line += attributes_str
                    if text:
                        line += f">{text}" if attributes_str else text
                    line += " />"
                    lines.append(line)

                for child in node.children:
                    process_node(child)
            elif isinstance(node, TextNode):
                if not node.has_parent_with_highlight_index() and node.is_visible:
                    lines.append(node.text)

        process_node(self)
        return "\n".join(lines)


DOMNode = Union[ElementNode, TextNode]

# 编号 -> 元素，只在产生它的那次快照内有效
SelectorMap = Dict[int, ElementNode]


@dataclass
class TabInfo:
    page_id: int
    url: str
    title: str

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BrowserState:
    """一次观察得到的完整浏览器状态"""
    element_tree: ElementNode
    selector_map: SelectorMap
    url: str
    title: str
    tabs: List[TabInfo] = field(default_factory=list)
    screenshot: Optional[str] = None  # base64 PNG
    pixels_above: int = 0
    pixels_below: int = 0


@dataclass
class ActionResult:
    """单个动作的执行结果"""
    is_done: bool = False
    success: Optional[bool] = None
    extracted_content: Optional[str] = None
    error: Optional[str] = None
    include_in_memory: bool = False  # 是否保留到后续对话轮次

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "ActionResult":
        return cls(
            is_done=data.get("is_done", False),
            success=data.get("success"),
            extracted_content=data.get("extracted_content"),
            error=data.get("error"),
            include_in_memory=data.get("include_in_memory", False),
        )


@dataclass
class StepMetadata:
    step_start_time: float
    step_end_time: float
    input_tokens: int
    step_number: int

    @property
    def duration_seconds(self) -> float:
        return self.step_end_time - self.step_start_time

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AgentStepInfo:
    step_number: int  # 从 0 开始
    max_steps: int

    def is_last_step(self) -> bool:
        return self.step_number >= self.max_steps - 1

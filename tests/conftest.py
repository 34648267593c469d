import copy
import json
from typing import Callable, Dict, List, Optional

import pytest

from webui_agent.config import AgentSettings
from webui_agent.driver import PageDriver
from webui_agent.llm import ModelService
from webui_agent.models import BrowserState, TabInfo
from webui_agent.perception import Perception


def element(tag: str, children=(), index: Optional[int] = None, xpath: Optional[str] = None, attributes=None, visible=True) -> Dict:
    data = {
        "tagName": tag,
        "xpath": xpath if xpath is not None else f"html/body/{tag}",
        "attributes": attributes or {},
        "children": list(children),
        "isVisible": visible,
        "isInteractive": index is not None,
        "isTopElement": True,
        "isInViewport": True,
    }
    if index is not None:
        data["highlightIndex"] = index
    return data


def text(value: str, visible: bool = True) -> Dict:
    return {"type": "TEXT_NODE", "text": value, "isVisible": visible}


def buttons_page(labels: List[str]) -> Dict:
    """body 下依次排列若干按钮，第 i 个按钮编号为 i"""
    node_map = {}
    body_children = []
    for i, label in enumerate(labels):
        button_id = f"b{i}"
        text_id = f"t{i}"
        node_map[button_id] = element(
            "button",
            children=[text_id],
            index=i,
            xpath=f"html/body/button[{i + 1}]",
            attributes={"id": f"btn-{label}"},
        )
        node_map[text_id] = text(label)
        body_children.append(button_id)
    node_map["root"] = element("body", children=body_children, xpath="html/body")
    return {"rootId": "root", "map": node_map}


def button_and_text_page() -> Dict:
    return {
        "rootId": "0",
        "map": {
            "0": element("body", children=["1", "3"], xpath="html/body"),
            "1": element("button", children=["2"], index=0, xpath="html/body/button"),
            "2": text("Submit"),
            "3": text("Hello"),
        },
    }


class FakeDriver(PageDriver):
    """内存中的页面驱动：capture 返回当前 payload，动作只做记录"""

    def __init__(self, payload: Optional[Dict] = None, url: str = "https://example.com/"):
        self.payload = payload if payload is not None else buttons_page(["A", "B"])
        self.url = url
        self.page_title = "Example"
        self.performed = []
        self.capture_calls = 0
        self.capture_error: Optional[Exception] = None
        self.action_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.scroll_error: Optional[Exception] = None
        self.unresolvable = False
        self.on_action: Optional[Callable[["FakeDriver", str, Dict], None]] = None

    async def capture(self, highlight: bool, focus_index: int, viewport_expansion: int) -> Dict:
        self.capture_calls += 1
        if self.capture_error is not None:
            raise self.capture_error
        return copy.deepcopy(self.payload)

    async def resolve_element(self, element):
        if self.unresolvable:
            return None
        return f"handle-{element.highlight_index}"

    async def perform_action(self, handle, kind: str, params: Dict) -> None:
        if self.action_error is not None:
            raise self.action_error
        self.performed.append((handle, kind, dict(params)))
        if kind == "navigate":
            self.url = params["url"]
        if self.on_action is not None:
            self.on_action(self, kind, params)

    async def current_url(self) -> str:
        return self.url

    async def title(self) -> str:
        return self.page_title

    async def tabs(self) -> List[TabInfo]:
        return [TabInfo(page_id=0, url=self.url, title=self.page_title)]

    async def screenshot(self) -> bytes:
        if self.screenshot_error is not None:
            raise self.screenshot_error
        return b"png"

    async def scroll_info(self):
        if self.scroll_error is not None:
            raise self.scroll_error
        return 0, 0


def done_response(text: str = "finished", success: bool = True) -> Dict:
    return {
        "current_state": {"evaluation_previous_goal": "Success", "memory": "", "next_goal": "finish"},
        "action": [{"done": {"text": text, "success": success}}],
    }


def actions_response(*actions: Dict) -> Dict:
    return {
        "current_state": {"evaluation_previous_goal": "Unknown", "memory": "", "next_goal": "act"},
        "action": list(actions),
    }


class FakeModel(ModelService):
    """按顺序返回预设输出；元素是异常时抛出，用完后一直点击编号 0"""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def invoke(self, messages, json_mode: bool = True) -> str:
        self.calls.append(list(messages))
        if self.responses:
            response = self.responses.pop(0)
        else:
            response = actions_response({"click_element": {"index": 0}})
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return response
        return json.dumps(response)


def make_state(payload: Optional[Dict] = None, url: str = "https://example.com/", screenshot: Optional[str] = None) -> BrowserState:
    root, selector_map = Perception(FakeDriver()).construct_tree(payload if payload is not None else buttons_page(["A", "B"]))
    return BrowserState(
        element_tree=root,
        selector_map=selector_map,
        url=url,
        title="Example",
        tabs=[TabInfo(page_id=0, url=url, title="Example")],
        screenshot=screenshot,
    )


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def settings():
    return AgentSettings(use_vision=False, wait_between_actions=0, retry_delay=0, max_failures=3)

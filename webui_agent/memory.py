"""记忆模块：保存每一步的决策、结果和操作过的元素指纹，支持持久化与回放"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from .actions import AgentBrain, AgentOutput
from .fingerprint import ElementFingerprint, HistoryElement, fingerprint
from .models import ActionResult, BrowserState, ElementNode, SelectorMap, StepMetadata, TabInfo

logger = logging.getLogger(__name__)


@dataclass
class BrowserStateHistory:
    """执行某一步时的浏览器状态摘要"""
    url: str
    title: str
    tabs: List[TabInfo] = field(default_factory=list)
    interacted_element: List[Optional[HistoryElement]] = field(default_factory=list)
    screenshot: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "url": self.url,
            "title": self.title,
            "tabs": [tab.to_dict() for tab in self.tabs],
            "interacted_element": [el.to_dict() if el else None for el in self.interacted_element],
            "screenshot": self.screenshot,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BrowserStateHistory":
        return cls(
            url=data.get("url", ""),
            title=data.get("title", ""),
            tabs=[TabInfo(**tab) for tab in data.get("tabs", [])],
            interacted_element=[
                HistoryElement.from_dict(el) if el else None for el in data.get("interacted_element", [])
            ],
            screenshot=data.get("screenshot"),
        )


@dataclass
class StepRecord:
    """单步历史记录"""
    model_output: Optional[AgentOutput]
    result: List[ActionResult]
    state: BrowserStateHistory
    metadata: Optional[StepMetadata] = None

    def to_dict(self) -> Dict:
        return {
            "model_output": self.model_output.to_dict() if self.model_output else None,
            "result": [r.to_dict() for r in self.result],
            "state": self.state.to_dict(),
            "metadata": self.metadata.to_dict() if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "StepRecord":
        model_output = data.get("model_output")
        metadata = data.get("metadata")
        return cls(
            model_output=AgentOutput.parse(model_output) if model_output else None,
            result=[ActionResult.from_dict(r) for r in data.get("result", [])],
            state=BrowserStateHistory.from_dict(data.get("state", {})),
            metadata=StepMetadata(**metadata) if metadata else None,
        )


class RunHistory:
    """整次运行的历史，只追加"""

    def __init__(self, history: Optional[List[StepRecord]] = None):
        self.history: List[StepRecord] = history or []

    def __len__(self) -> int:
        return len(self.history)

    def __repr__(self) -> str:
        return f"RunHistory({len(self.history)} steps)"

    def append(self, record: StepRecord) -> None:
        self.history.append(record)

    def _results(self) -> List[ActionResult]:
        return [r for record in self.history for r in record.result]

    def is_done(self) -> bool:
        if not self.history:
            return False
        return any(r.is_done for r in self.history[-1].result)

    def is_successful(self) -> Optional[bool]:
        """最近一个 done 结果的成功标记，还没结束时返回 None"""
        for record in reversed(self.history):
            for r in record.result:
                if r.is_done:
                    return r.success
        return None

    def final_result(self) -> Optional[str]:
        if self.history and self.history[-1].result and self.history[-1].result[-1].extracted_content:
            return self.history[-1].result[-1].extracted_content
        return None

    def errors(self) -> List[str]:
        return [r.error for r in self._results() if r.error]

    def has_errors(self) -> bool:
        return bool(self.errors())

    def urls(self) -> List[str]:
        return [record.state.url for record in self.history]

    def screenshots(self) -> List[Optional[str]]:
        return [record.state.screenshot for record in self.history]

    def action_names(self) -> List[str]:
        return [action.name for output in self.model_outputs() for action in output.action]

    def model_thoughts(self) -> List[AgentBrain]:
        return [output.current_state for output in self.model_outputs()]

    def model_outputs(self) -> List[AgentOutput]:
        return [record.model_output for record in self.history if record.model_output]

    def model_actions(self) -> List[Dict]:
        return [action.to_dict() for output in self.model_outputs() for action in output.action]

    def extracted_content(self) -> List[str]:
        return [r.extracted_content for r in self._results() if r.extracted_content]

    def total_duration_seconds(self) -> float:
        return sum(record.metadata.duration_seconds for record in self.history if record.metadata)

    def total_input_tokens(self) -> int:
        return sum(record.metadata.input_tokens for record in self.history if record.metadata)

    def number_of_steps(self) -> int:
        return len(self.history)

    def to_dict(self) -> Dict:
        return {"history": [record.to_dict() for record in self.history]}

    def save_to_file(self, filepath: Union[str, Path]) -> None:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")

    @classmethod
    def load_from_file(cls, filepath: Union[str, Path]) -> "RunHistory":
        data = json.loads(Path(filepath).read_text(encoding="utf-8"))
        return cls([StepRecord.from_dict(item) for item in data.get("history", [])])


class Memory:
    """
    记忆模块：记录每一步并保存被操作元素的指纹。

    编号只在一次快照内有效，所以历史里保存的是指纹而不是编号。
    """

    def __init__(self, history: Optional[RunHistory] = None):
        self.history = history if history is not None else RunHistory()

    def record(
        self,
        model_output: Optional[AgentOutput],
        state: BrowserState,
        results: List[ActionResult],
        metadata: Optional[StepMetadata] = None,
    ) -> StepRecord:
        """记录单步操作"""
        interacted = self.get_interacted_elements(model_output, state.selector_map) if model_output else [None]
        record = StepRecord(
            model_output=model_output,
            result=results,
            state=BrowserStateHistory(
                url=state.url,
                title=state.title,
                tabs=list(state.tabs),
                interacted_element=interacted,
                screenshot=state.screenshot,
            ),
            metadata=metadata,
        )
        self.history.append(record)
        return record

    @staticmethod
    def get_interacted_elements(model_output: AgentOutput, selector_map: SelectorMap) -> List[Optional[HistoryElement]]:
        """每个动作对应一个元素记录；不涉及元素或编号已失效的动作记为 None"""
        elements = []
        for action in model_output.action:
            index = action.get_index()
            if index is not None and index in selector_map:
                elements.append(HistoryElement.from_element(selector_map[index]))
            else:
                elements.append(None)
        return elements

    @staticmethod
    def find_in_tree(
        target: Union[ElementFingerprint, HistoryElement],
        root: ElementNode,
    ) -> Optional[ElementNode]:
        """
        在另一次快照的树中查找结构相同的元素。

        按文档顺序深度优先遍历，只比较带编号的元素，第一个匹配即返回；
        找不到时返回 None，调用方应视为“元素已无法定位”。
        """
        expected = target.fingerprint if isinstance(target, HistoryElement) else target
        for element in root.iter_elements():
            if element.highlight_index is not None and fingerprint(element) == expected:
                return element
        return None

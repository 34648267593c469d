"""元素指纹：在不同快照之间重新定位同一个元素"""

import hashlib
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import CoordinateSet, ElementNode, ViewportInfo


@dataclass(frozen=True)
class ElementFingerprint:
    """三段哈希，全部相等才视为同一个元素（精确匹配，不做相似度打分）"""
    branch_path_hash: str
    attributes_hash: str
    xpath_hash: str


def _hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def get_branch_path(element: ElementNode) -> List[str]:
    """从根到元素自身的 "tag:编号" 路径"""
    path = []
    current = element
    while current is not None:
        index = current.highlight_index if current.highlight_index is not None else "null"
        path.append(f"{current.tag_name}:{index}")
        current = current.parent
    path.reverse()
    return path


def branch_path_hash(branch_path: List[str]) -> str:
    return _hash("->".join(branch_path))


def attributes_hash(attributes: Dict[str, str]) -> str:
    # 与属性顺序无关，但对属性值敏感
    attribute_string = ";".join(f"{key}:{attributes[key]}" for key in sorted(attributes))
    return _hash(attribute_string)


def xpath_hash(xpath: str) -> str:
    return _hash(xpath)


def fingerprint(element: ElementNode) -> ElementFingerprint:
    return ElementFingerprint(
        branch_path_hash=branch_path_hash(get_branch_path(element)),
        attributes_hash=attributes_hash(element.attributes),
        xpath_hash=xpath_hash(element.xpath),
    )


@dataclass
class HistoryElement:
    """
    历史记录中保存的元素信息。

    快照里的编号只在当次有效，回放时依靠这里保存的结构信息重新计算指纹。
    """
    tag_name: str
    xpath: str
    highlight_index: Optional[int]
    entire_parent_branch_path: List[str]
    attributes: Dict[str, str] = field(default_factory=dict)
    shadow_root: bool = False
    page_coordinates: Optional[CoordinateSet] = None
    viewport_coordinates: Optional[CoordinateSet] = None
    viewport_info: Optional[ViewportInfo] = None

    @classmethod
    def from_element(cls, element: ElementNode) -> "HistoryElement":
        return cls(
            tag_name=element.tag_name,
            xpath=element.xpath,
            highlight_index=element.highlight_index,
            entire_parent_branch_path=get_branch_path(element),
            attributes=dict(element.attributes),
            shadow_root=element.shadow_root,
            page_coordinates=element.page_coordinates,
            viewport_coordinates=element.viewport_coordinates,
            viewport_info=element.viewport_info,
        )

    @property
    def fingerprint(self) -> ElementFingerprint:
        return ElementFingerprint(
            branch_path_hash=branch_path_hash(self.entire_parent_branch_path),
            attributes_hash=attributes_hash(self.attributes),
            xpath_hash=xpath_hash(self.xpath),
        )

    def to_dict(self) -> Dict:
        return {
            "tag_name": self.tag_name,
            "xpath": self.xpath,
            "highlight_index": self.highlight_index,
            "entire_parent_branch_path": list(self.entire_parent_branch_path),
            "attributes": dict(self.attributes),
            "shadow_root": self.shadow_root,
            "page_coordinates": self.page_coordinates.to_dict() if self.page_coordinates else None,
            "viewport_coordinates": self.viewport_coordinates.to_dict() if self.viewport_coordinates else None,
            "viewport_info": self.viewport_info.to_dict() if self.viewport_info else None,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "HistoryElement":
        return cls(
            tag_name=data["tag_name"],
            xpath=data.get("xpath", ""),
            highlight_index=data.get("highlight_index"),
            entire_parent_branch_path=list(data.get("entire_parent_branch_path", [])),
            attributes=dict(data.get("attributes", {})),
            shadow_root=data.get("shadow_root", False),
            page_coordinates=CoordinateSet.from_dict(data.get("page_coordinates")),
            viewport_coordinates=CoordinateSet.from_dict(data.get("viewport_coordinates")),
            viewport_info=ViewportInfo.from_dict(data.get("viewport_info")),
        )

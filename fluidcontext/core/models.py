# fluidcontext/core/models.py
"""FluidContext 核心数据模型"""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Dict, Any, List


@dataclass(frozen=True)
class FileFingerprint:
    """
    某个路径上一次被发送给模型时的内容指纹。
    只用于判断 new/changed/unchanged/deleted，永远不作为项目内容的权威来源。
    """
    length: int
    sha256: str
    shared_at: float = field(default_factory=time.time)

    @classmethod
    def of(cls, content: str) -> 'FileFingerprint':
        return cls(length=len(content), sha256=hashlib.sha256(content.encode('utf-8')).hexdigest())

    def matches(self, content: str) -> bool:
        # 先比较长度，长度不同时无需计算哈希
        if len(content) != self.length:
            return False
        return hashlib.sha256(content.encode('utf-8')).hexdigest() == self.sha256

    def to_dict(self) -> Dict[str, Any]:
        return {"length": self.length, "sha256": self.sha256, "shared_at": self.shared_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileFingerprint':
        return cls(
            length=int(data["length"]),
            sha256=str(data["sha256"]),
            shared_at=float(data.get("shared_at", 0.0)),
        )


@dataclass
class FileDelta:
    """相对上一次提示词的文件分类结果（各列表均按路径排序）"""
    new: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new or self.changed or self.deleted)

    def to_send(self) -> List[str]:
        """需要发送完整内容的路径"""
        return sorted(self.new + self.changed)

    def to_dict(self) -> Dict[str, List[str]]:
        return {
            "new": list(self.new),
            "changed": list(self.changed),
            "unchanged": list(self.unchanged),
            "deleted": list(self.deleted),
        }

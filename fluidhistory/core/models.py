# fluidhistory/core/models.py
"""
FluidHistory 核心数据模型
定义了版本化文件存储 (VersionedFileStore) 与持久化层之间传递的数据结构。
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Any, List

from ..utils.id_generator import generate_entry_id, generate_timestamp


class EntryType(Enum):
    AUTO = "auto"          # 自动生成的条目（如 "Modified 3 files"）
    MANUAL = "manual"      # 调用方显式给出 label 的条目
    SNAPSHOT = "snapshot"  # 用户命名的检查点


@dataclass(frozen=True)
class HistoryEntry:
    """
    历史中的一个快照。files 是完整的 FileMap（路径 -> 内容），
    一旦写入历史便不再修改。
    """
    files: Dict[str, str]
    label: str
    id: str = field(default_factory=generate_entry_id)
    timestamp: float = field(default_factory=generate_timestamp)
    type: EntryType = EntryType.AUTO
    changed_files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["files"] = dict(self.files)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryEntry':
        """
        从字典创建 HistoryEntry，兼容缺省字段和字符串形式的 type。
        """
        data = data.copy()

        type_value = data.get("type", EntryType.AUTO.value)
        if isinstance(type_value, str):
            try:
                data["type"] = EntryType(type_value.strip())
            except ValueError:
                data["type"] = EntryType.AUTO
        elif not isinstance(type_value, EntryType):
            data["type"] = EntryType.AUTO

        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise ValueError("history entry 'files' must be a mapping")
        data["files"] = {str(k): str(v) for k, v in files.items()}
        data["changed_files"] = list(data.get("changed_files") or [])
        data.setdefault("label", "Restored")

        known = {"files", "label", "id", "timestamp", "type", "changed_files"}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class HistoryExport:
    """exportHistory() 的返回值，交给持久化协作者保存"""
    entries: List[HistoryEntry]
    current_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "history": [entry.to_dict() for entry in self.entries],
            "current_index": self.current_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HistoryExport':
        raw_history = data.get("history", [])
        entries = [HistoryEntry.from_dict(item) for item in raw_history]
        return cls(entries=entries, current_index=int(data.get("current_index", 0)))

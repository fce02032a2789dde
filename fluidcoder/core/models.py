# fluidcoder/core/models.py
"""
定义 FluidCoder 核心数据结构。
这些模型在模型响应解析、变更合并、差异审阅和历史提交之间传递数据。

两种线格式被建模为带标签的变体：
- ChangeSet               标记格式（整文件块）
- SearchReplaceChangeSet  搜索/替换格式（补丁对）
合并引擎按类型分派，而不是探测字段。
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

# 项目相对路径 -> 完整文本内容
FileMap = Dict[str, str]


class FileAction(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ResponseFormat(Enum):
    MARKER_V1 = "marker-v1"
    MARKER_V2 = "marker-v2"
    SEARCH_REPLACE = "search-replace"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ContinuationInfo:
    """
    多批次生成的续写元数据。
    不变量: completed_files 与 remaining_files 不相交，两者之并为整个任务计划的文件集合。
    """
    next_prompt: str
    remaining_files: Tuple[str, ...]
    current_batch: int
    total_batches: int
    total_files_planned: int
    completed_files: Tuple[str, ...]


def unrecovered_paths(
    planned: Iterable[str],
    received: Iterable[str],
    incomplete: Iterable[str] = (),
) -> Tuple[str, ...]:
    """计划中但没有完整收到的文件，按计划顺序，再加上被截断的文件"""
    done = set(received)
    ordered: List[str] = []
    for path in list(planned) + list(incomplete):
        if path not in done and path not in ordered:
            ordered.append(path)
    return tuple(ordered)


@dataclass(frozen=True)
class ChangeSet:
    """
    标记格式的一次解析结果；每次解析产生一个，之后不再修改。
    files 和 actions 构造时包装成只读映射。
    planned_files 为 PLAN 中 create + update 的文件。
    """
    explanation: str
    files: Mapping[str, str]              # created / updated
    deleted: FrozenSet[str] = frozenset()
    truncated: bool = False
    continuation: Optional[ContinuationInfo] = None
    incomplete_files: Tuple[str, ...] = ()
    recovered_files: Tuple[str, ...] = ()
    actions: Mapping[str, FileAction] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
    format: ResponseFormat = ResponseFormat.MARKER_V2
    planned_files: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))
        object.__setattr__(self, "actions", MappingProxyType(dict(self.actions)))

    @property
    def is_empty(self) -> bool:
        return not self.files and not self.deleted

    @property
    def unrecovered_files(self) -> Tuple[str, ...]:
        """截断时需要重新生成的文件；未截断时为空"""
        if not self.truncated:
            return ()
        return unrecovered_paths(self.planned_files, set(self.files) | self.deleted, self.incomplete_files)


@dataclass(frozen=True)
class Replacement:
    search: str
    replace: str


@dataclass(frozen=True)
class NewFile:
    content: str


@dataclass(frozen=True)
class PatchFile:
    replacements: Tuple[Replacement, ...]


@dataclass(frozen=True)
class DeleteFile:
    pass


# 每个文件恰好是三种形态之一
FileChange = Union[NewFile, PatchFile, DeleteFile]


@dataclass(frozen=True)
class SearchReplaceChangeSet:
    """搜索/替换格式的一次解析结果；changes 为只读映射，planned_files 来自 // PLAN: 注释"""
    explanation: str
    changes: Mapping[str, FileChange]
    deleted: FrozenSet[str] = frozenset()
    truncated: bool = False
    continuation: Optional[ContinuationInfo] = None
    incomplete_files: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    format: ResponseFormat = ResponseFormat.SEARCH_REPLACE
    planned_files: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "changes", MappingProxyType(dict(self.changes)))

    @property
    def is_empty(self) -> bool:
        return not self.changes and not self.deleted

    @property
    def unrecovered_files(self) -> Tuple[str, ...]:
        if not self.truncated:
            return ()
        return unrecovered_paths(self.planned_files, set(self.changes) | self.deleted, self.incomplete_files)


ParsedResponse = Union[ChangeSet, SearchReplaceChangeSet]


@dataclass
class MergeStats:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    replacements_applied: int = 0
    replacements_failed: int = 0


@dataclass(frozen=True)
class MergeError:
    """
    单条合并错误。kind:
    - patch_miss    某个 search 文本未找到
    - missing_file  要打补丁的文件不存在
    """
    path: str
    reason: str
    kind: str = "patch_miss"


@dataclass
class MergeResult:
    files: FileMap
    stats: MergeStats = field(default_factory=MergeStats)
    errors: List[MergeError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        # 派生字段：有补丁未命中，或要打补丁的文件不存在，即为 False
        return self.stats.replacements_failed == 0 and not any(
            e.kind == "missing_file" for e in self.errors
        )

    @property
    def failed_paths(self) -> List[str]:
        return sorted({e.path for e in self.errors})


@dataclass(frozen=True)
class PendingReview:
    """从“产生变更”到“用户决定”之间存在的临时对象"""
    label: str
    candidate_files: FileMap
    skip_history: bool = False
    incomplete_files: Tuple[str, ...] = ()

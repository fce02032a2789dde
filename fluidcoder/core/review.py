# fluidcoder/core/review.py
"""
差异审阅关卡：候选 FileMap 在提交到版本存储之前，先计算逐行差异供用户确认或取消。
"""

import difflib
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from fluidhistory.core.models import HistoryEntry
from fluidhistory.core.store import VersionedFileStore

from .errors import ReviewStateError
from .models import FileMap, PendingReview


@dataclass(frozen=True)
class DiffLine:
    kind: str                      # added | removed | unchanged
    content: str
    old_number: Optional[int] = None
    new_number: Optional[int] = None


@dataclass
class FileDiff:
    path: str
    status: str                    # added | deleted | modified | unchanged
    lines: List[DiffLine] = field(default_factory=list)
    added: int = 0
    removed: int = 0


@dataclass
class DiffSummary:
    files: List[FileDiff] = field(default_factory=list)

    @property
    def total_added(self) -> int:
        return sum(f.added for f in self.files)

    @property
    def total_removed(self) -> int:
        return sum(f.removed for f in self.files)

    @property
    def changed_files(self) -> List[FileDiff]:
        return [f for f in self.files if f.status != "unchanged"]

    def get(self, path: str) -> Optional[FileDiff]:
        for diff in self.files:
            if diff.path == path:
                return diff
        return None


def diff_lines(old: str, new: str) -> List[DiffLine]:
    """单个文件的逐行差异，每行带旧/新行号"""
    old_lines = old.splitlines() if old else []
    new_lines = new.splitlines() if new else []
    result: List[DiffLine] = []
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            for offset in range(i2 - i1):
                result.append(DiffLine("unchanged", old_lines[i1 + offset], i1 + offset + 1, j1 + offset + 1))
            continue
        # replace 拆成先删后增
        for i in range(i1, i2):
            result.append(DiffLine("removed", old_lines[i], old_number=i + 1))
        for j in range(j1, j2):
            result.append(DiffLine("added", new_lines[j], new_number=j + 1))
    return result


def compute_file_diff(path: str, old: Optional[str], new: Optional[str]) -> FileDiff:
    if old is None and new is not None:
        status = "added"
    elif new is None and old is not None:
        status = "deleted"
    elif old == new:
        status = "unchanged"
    else:
        status = "modified"
    lines = diff_lines(old or "", new or "")
    return FileDiff(
        path=path,
        status=status,
        lines=lines,
        added=sum(1 for line in lines if line.kind == "added"),
        removed=sum(1 for line in lines if line.kind == "removed"),
    )


def compute_diff(old_files: FileMap, new_files: FileMap) -> DiffSummary:
    """两个 FileMap 之间的差异，按路径排序"""
    paths = sorted(set(old_files) | set(new_files))
    return DiffSummary([compute_file_diff(p, old_files.get(p), new_files.get(p)) for p in paths])


def drop_incomplete(candidate: FileMap, current: FileMap, incomplete_files: Iterable[str]) -> FileMap:
    """不完整的文件不进入提交：保留当前内容，当前不存在则不出现"""
    files = dict(candidate)
    for path in incomplete_files:
        if path in current:
            files[path] = current[path]
        else:
            files.pop(path, None)
    return files


class ReviewGate:
    """
    propose -> (confirm | cancel)
    auto_accept 模式下 propose 直接提交，不产生待审阅对象。
    """

    def __init__(
        self,
        store: VersionedFileStore,
        auto_accept: bool = False,
        on_commit: Optional[Callable[[FileMap], None]] = None,
    ):
        self.store = store
        self.auto_accept = auto_accept
        self.on_commit = on_commit
        self.pending: Optional[PendingReview] = None
        self.last_entry: Optional[HistoryEntry] = None

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def propose(
        self,
        candidate_files: FileMap,
        label: str,
        skip_history: bool = False,
        incomplete_files: Iterable[str] = (),
    ) -> DiffSummary:
        """
        登记一个候选变更并返回与当前状态的差异。
        新的 propose 会替换尚未决定的旧候选。
        """
        incomplete = tuple(incomplete_files)
        current = self.store.files
        candidate = drop_incomplete(candidate_files, current, incomplete)
        summary = compute_diff(current, candidate)
        self.pending = PendingReview(
            label=label,
            candidate_files=candidate,
            skip_history=skip_history,
            incomplete_files=incomplete,
        )
        if self.auto_accept:
            self.confirm()
        return summary

    def diff(self) -> DiffSummary:
        if self.pending is None:
            raise ReviewStateError("No pending review")
        return compute_diff(self.store.files, self.pending.candidate_files)

    def confirm(self) -> HistoryEntry:
        if self.pending is None:
            raise ReviewStateError("No pending review to confirm")
        pending, self.pending = self.pending, None
        if pending.skip_history:
            entry = self.store.replace_current(pending.candidate_files)
        else:
            entry = self.store.commit(pending.candidate_files, pending.label)
        self.last_entry = entry
        if self.on_commit:
            self.on_commit(dict(pending.candidate_files))
        return entry

    def cancel(self) -> PendingReview:
        if self.pending is None:
            raise ReviewStateError("No pending review to cancel")
        pending, self.pending = self.pending, None
        return pending

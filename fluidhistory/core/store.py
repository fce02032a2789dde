# fluidhistory/core/store.py
"""
FluidHistory 核心实现 - 版本化文件存储 (VersionedFileStore)

一个只追加的 FileMap 快照序列 + 游标 (current_index)：
- commit 丢弃游标之后的所有“未来”条目，再追加新条目（线性撤销，不支持分支历史）
- undo / redo / go_to_index 只移动游标，从不修改已存储的条目
- reset 用单个新条目替换整个历史
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .models import HistoryEntry, EntryType, HistoryExport

DEFAULT_MAX_ENTRIES = 50
INITIAL_LABEL = "Initial State"


class HistoryIndexError(IndexError):
    """非法的历史位置（越界跳转、空的恢复数据等）"""
    pass


def calculate_changed_files(old_files: Dict[str, str], new_files: Dict[str, str]) -> List[str]:
    """计算两个 FileMap 之间内容不同的路径（新增、修改、删除）"""
    all_paths = set(old_files) | set(new_files)
    return sorted(p for p in all_paths if old_files.get(p) != new_files.get(p))


class IVersionStore(ABC):
    """
    版本化文件存储接口。
    UI / 会话层只依赖这个接口，便于替换为其他实现（例如带持久化的实现）。
    """

    @abstractmethod
    def commit(self, files: Dict[str, str], label: Optional[str] = None) -> HistoryEntry:
        """ 提交一个新快照。 """
        pass

    @abstractmethod
    def undo(self) -> bool:
        pass

    @abstractmethod
    def redo(self) -> bool:
        pass

    @abstractmethod
    def go_to_index(self, index: int) -> HistoryEntry:
        pass

    @abstractmethod
    def export_history(self) -> HistoryExport:
        pass

    @abstractmethod
    def restore_history(self, entries: List[HistoryEntry], current_index: int) -> None:
        pass


class VersionedFileStore(IVersionStore):
    """
    单写者的版本化文件存储。所有写操作持有同一把锁，
    保证 commit 不会与另一个 commit 交错执行。
    """

    def __init__(self, initial_files: Optional[Dict[str, str]] = None, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._lock = threading.RLock()
        self._entries: List[HistoryEntry] = []
        self._index = 0
        self.reset(initial_files or {})

    # ------------------------------
    # 只读属性
    # ------------------------------

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_entry(self) -> HistoryEntry:
        return self._entries[self._index]

    @property
    def files(self) -> Dict[str, str]:
        """当前游标处的 FileMap（返回副本，调用方修改不会影响历史）"""
        return dict(self._entries[self._index].files)

    @property
    def history(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    @property
    def can_undo(self) -> bool:
        return self._index > 0

    @property
    def can_redo(self) -> bool:
        return self._index < len(self._entries) - 1

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------
    # 写操作
    # ------------------------------

    def commit(self, files: Dict[str, str], label: Optional[str] = None) -> HistoryEntry:
        with self._lock:
            current = self._entries[self._index]
            new_files = dict(files)
            if new_files == current.files:
                # 内容未变化，不产生新条目
                return current

            changed = calculate_changed_files(current.files, new_files)
            auto_label = f"Modified {len(changed)} file{'s' if len(changed) != 1 else ''}"
            entry = HistoryEntry(
                files=new_files,
                label=label or auto_label,
                type=EntryType.MANUAL if label else EntryType.AUTO,
                changed_files=changed,
            )
            self._append(entry)
            return entry

    def snapshot(self, name: str) -> HistoryEntry:
        """保存一个命名检查点（内容与当前一致，changed_files 为空）"""
        with self._lock:
            entry = HistoryEntry(
                files=dict(self._entries[self._index].files),
                label=f"📌 {name}",
                type=EntryType.SNAPSHOT,
            )
            self._append(entry)
            return entry

    def replace_current(self, files: Dict[str, str]) -> HistoryEntry:
        """
        静默覆盖当前条目的文件内容，不产生新的历史条目 (skip_history)。
        用于程序化恢复等不希望出现在撤销栈里的场景。
        """
        with self._lock:
            entry = replace(self._entries[self._index], files=dict(files))
            self._entries[self._index] = entry
            return entry

    def undo(self) -> bool:
        with self._lock:
            if self._index == 0:
                return False
            self._index -= 1
            return True

    def redo(self) -> bool:
        with self._lock:
            if self._index >= len(self._entries) - 1:
                return False
            self._index += 1
            return True

    def go_to_index(self, index: int) -> HistoryEntry:
        """时间旅行：跳转到任意条目，不丢弃前向历史"""
        with self._lock:
            if index < 0 or index >= len(self._entries):
                raise HistoryIndexError(
                    f"History index {index} out of range (0..{len(self._entries) - 1})"
                )
            self._index = index
            return self._entries[index]

    def reset(self, files: Dict[str, str]) -> HistoryEntry:
        """新建/空白项目：整个历史替换为一个新条目"""
        with self._lock:
            entry = HistoryEntry(
                files=dict(files),
                label=INITIAL_LABEL,
                type=EntryType.AUTO,
                changed_files=sorted(files),
            )
            self._entries = [entry]
            self._index = 0
            return entry

    def changed_files(self, index: int) -> List[str]:
        if index < 0 or index >= len(self._entries):
            return []
        return list(self._entries[index].changed_files)

    # ------------------------------
    # 导出 / 恢复（交给持久化协作者）
    # ------------------------------

    def export_history(self) -> HistoryExport:
        with self._lock:
            return HistoryExport(entries=list(self._entries), current_index=self._index)

    def restore_history(self, entries: List[HistoryEntry], current_index: int) -> None:
        if not entries:
            raise HistoryIndexError("Cannot restore an empty history")
        with self._lock:
            self._entries = list(entries)
            # 越界的索引被夹到合法范围内
            self._index = max(0, min(current_index, len(self._entries) - 1))

    # ------------------------------
    # 内部辅助
    # ------------------------------

    def _append(self, entry: HistoryEntry) -> None:
        del self._entries[self._index + 1:]
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[0:len(self._entries) - self.max_entries]
        self._index = len(self._entries) - 1

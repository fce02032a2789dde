# fluidhistory/__init__.py
"""
FluidHistory 库 - 项目文件的版本化存储（撤销/重做、检查点、时间旅行）。
"""

from typing import Dict, Optional

from .core.models import HistoryEntry, HistoryExport, EntryType
from .core.store import IVersionStore, VersionedFileStore, HistoryIndexError
from .storage.file_history_store import FileHistoryStore


def init(initial_files: Optional[Dict[str, str]] = None, max_entries: int = 50) -> VersionedFileStore:
    """创建一个新的版本化文件存储"""
    return VersionedFileStore(initial_files or {}, max_entries=max_entries)


__all__ = [
    'HistoryEntry', 'HistoryExport', 'EntryType',
    'IVersionStore', 'VersionedFileStore', 'HistoryIndexError',
    'FileHistoryStore', 'init',
]

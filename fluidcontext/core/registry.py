# fluidcontext/core/registry.py
"""ContextTrackerRegistry - 按 context_id 管理跟踪器，显式的 create/clear 生命周期"""

import threading
from typing import Dict, List

from .models import FileDelta
from .tracker import FileContextTracker


class ContextTrackerRegistry:
    """
    显式传递给生成管线的注册表对象（不使用模块级全局变量）。
    不同 context 之间互相独立；同一个 context 同一时刻只应由一条管线写入。
    """

    def __init__(self):
        self._trackers: Dict[str, FileContextTracker] = {}
        self._lock = threading.Lock()

    def create(self, context_id: str) -> FileContextTracker:
        """创建（或返回已存在的）跟踪器"""
        with self._lock:
            tracker = self._trackers.get(context_id)
            if tracker is None:
                tracker = FileContextTracker(context_id)
                self._trackers[context_id] = tracker
            return tracker

    def get(self, context_id: str) -> FileContextTracker:
        return self.create(context_id)

    def delta(self, context_id: str, current_files: Dict[str, str]) -> FileDelta:
        return self.create(context_id).delta(current_files)

    def mark_shared(self, context_id: str, files: Dict[str, str]) -> None:
        self.create(context_id).mark_shared(files)

    def clear(self, context_id: str) -> bool:
        """切换项目/上下文时调用，防止旧指纹泄漏到无关项目"""
        with self._lock:
            return self._trackers.pop(context_id, None) is not None

    def clear_all(self) -> None:
        with self._lock:
            self._trackers.clear()

    def register(self, tracker: FileContextTracker) -> None:
        """登记一个从持久化数据恢复的跟踪器"""
        with self._lock:
            self._trackers[tracker.context_id] = tracker

    def contexts(self) -> List[str]:
        return sorted(self._trackers)

    def __contains__(self, context_id: str) -> bool:
        return context_id in self._trackers

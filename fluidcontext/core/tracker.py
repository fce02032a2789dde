# fluidcontext/core/tracker.py
"""单个对话上下文的文件增量跟踪器"""

from typing import Dict, Any, Optional

from .models import FileFingerprint, FileDelta


class FileContextTracker:
    """
    记住某个 context 上一次共享给模型的文件指纹，计算当前文件相对它的增量。
    从不修改项目文件。
    """

    def __init__(self, context_id: str):
        self.context_id = context_id
        self._shared: Dict[str, FileFingerprint] = {}

    @property
    def is_empty(self) -> bool:
        return not self._shared

    @property
    def tracked_paths(self):
        return sorted(self._shared)

    def delta(self, current_files: Dict[str, str]) -> FileDelta:
        result = FileDelta()
        for path in sorted(current_files):
            fingerprint = self._shared.get(path)
            if fingerprint is None:
                result.new.append(path)
            elif fingerprint.matches(current_files[path]):
                result.unchanged.append(path)
            else:
                result.changed.append(path)
        result.deleted = sorted(p for p in self._shared if p not in current_files)
        return result

    def mark_shared(self, files: Dict[str, str], now: Optional[float] = None) -> None:
        """
        提示词真正发送后调用：以本次发送的文件集合作为新的基线。
        未出现在 files 中的旧路径被视为已告知模型删除，不再跟踪。
        """
        fresh: Dict[str, FileFingerprint] = {}
        for path, content in files.items():
            old = self._shared.get(path)
            if old is not None and old.matches(content):
                fresh[path] = old
            else:
                fp = FileFingerprint.of(content)
                if now is not None:
                    fp = FileFingerprint(length=fp.length, sha256=fp.sha256, shared_at=now)
                fresh[path] = fp
        self._shared = fresh

    def clear(self) -> None:
        self._shared.clear()

    def fingerprint(self, path: str) -> Optional[FileFingerprint]:
        return self._shared.get(path)

    # --- 导出 / 恢复（CLI 在进程之间保存跟踪状态时使用） ---

    def to_dict(self) -> Dict[str, Any]:
        return {
            "context_id": self.context_id,
            "files": {path: fp.to_dict() for path, fp in sorted(self._shared.items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileContextTracker':
        tracker = cls(str(data.get("context_id", "default")))
        for path, fp_data in (data.get("files") or {}).items():
            tracker._shared[path] = FileFingerprint.from_dict(fp_data)
        return tracker

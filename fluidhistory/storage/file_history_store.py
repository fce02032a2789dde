# fluidhistory/storage/file_history_store.py
"""
FluidHistory 持久化 - 文件历史存储 (FileHistoryStore)
把 VersionedFileStore.export_history() 的结果以 JSON 形式按项目保存，
并在下次会话中恢复。
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from .file_lock import FileLock
from ..core.models import HistoryExport
from ..core.store import VersionedFileStore
from ..utils.checksum import file_map_checksum

# 默认存储目录
DEFAULT_HISTORY_DIR = Path(".fluidcoder") / "history"


class FileHistoryStore:
    """
    基于文件系统的历史存储。
    每个项目一个 JSON 文件：{project_id}.json，写入时先写临时文件再原子替换。
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else DEFAULT_HISTORY_DIR
        self.locks_dir = self.base_dir / ".locks"
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_history_file_path(self, project_id: str) -> Path:
        # 防止路径穿越
        safe_id = "".join(c for c in project_id if c.isalnum() or c in ('-', '_')).rstrip()
        if not safe_id:
            raise ValueError("Invalid project_id")
        return self.base_dir / f"{safe_id}.json"

    def _lock_for(self, project_id: str) -> FileLock:
        return FileLock(self.locks_dir / f"{self._get_history_file_path(project_id).stem}.lock")

    def save(self, project_id: str, export: HistoryExport) -> Path:
        """保存导出的历史，返回写入的文件路径"""
        history_file = self._get_history_file_path(project_id)
        data = export.to_dict()
        data["project_id"] = project_id
        data["checksum"] = file_map_checksum(export.entries[export.current_index].files) if export.entries else ""

        with self._lock_for(project_id):
            temp_file = history_file.with_suffix(".json.tmp")
            try:
                temp_file.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
                temp_file.replace(history_file)
            except OSError:
                temp_file.unlink(missing_ok=True)
                raise
        return history_file

    def load(self, project_id: str) -> Optional[HistoryExport]:
        """加载历史；文件不存在返回 None，文件损坏抛出 ValueError"""
        history_file = self._get_history_file_path(project_id)
        if not history_file.exists():
            return None
        with self._lock_for(project_id):
            try:
                data = json.loads(history_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ValueError(f"Corrupted history file {history_file}: {e}") from e
        export = HistoryExport.from_dict(data)

        # 校验当前条目的内容与保存时一致（旧文件没有 checksum 字段时跳过）
        expected = data.get("checksum")
        if expected and 0 <= export.current_index < len(export.entries):
            actual = file_map_checksum(export.entries[export.current_index].files)
            if actual != expected:
                raise ValueError(f"Checksum mismatch in history file {history_file}")
        return export

    def save_store(self, project_id: str, store: VersionedFileStore) -> Path:
        return self.save(project_id, store.export_history())

    def load_store(self, project_id: str, max_entries: int = 50) -> VersionedFileStore:
        """加载为一个可直接使用的 VersionedFileStore；没有历史时返回空项目"""
        store = VersionedFileStore(max_entries=max_entries)
        export = self.load(project_id)
        if export and export.entries:
            store.restore_history(export.entries, export.current_index)
        return store

    def delete(self, project_id: str) -> bool:
        history_file = self._get_history_file_path(project_id)
        if history_file.exists():
            history_file.unlink()
            return True
        return False

    def list_projects(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    def summary(self, project_id: str) -> Optional[Dict]:
        """精简信息（推荐用于 UI 列表）"""
        export = self.load(project_id)
        if export is None:
            return None
        current = export.entries[export.current_index] if export.entries else None
        return {
            "project_id": project_id,
            "entries": len(export.entries),
            "current_index": export.current_index,
            "current_label": current.label if current else None,
            "file_count": len(current.files) if current else 0,
        }

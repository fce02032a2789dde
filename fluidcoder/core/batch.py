# fluidcoder/core/batch.py
"""
批次指令（BATCH 块 / JSON "batch" 字段）与续写元数据的构造。
两种线格式共用。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .models import ContinuationInfo
from .prompt import render_continuation_prompt


@dataclass
class BatchInfo:
    current: int = 1
    total: int = 1
    is_complete: bool = True
    completed: List[str] = field(default_factory=list)
    remaining: List[str] = field(default_factory=list)
    next_batch_hint: Optional[str] = None

    @classmethod
    def from_lines(cls, body: str) -> 'BatchInfo':
        """解析 "key: value" 形式的 BATCH 块内容，未知键忽略"""
        batch = cls()
        for line in body.strip().splitlines():
            key, sep, value = line.partition(":")
            if not sep:
                continue
            key = key.strip().lower()
            value = value.strip()
            if key == "current":
                batch.current = _to_int(value, 1)
            elif key == "total":
                batch.total = _to_int(value, 1)
            elif key == "iscomplete":
                batch.is_complete = value.lower() == "true"
            elif key == "completed":
                batch.completed = _split_list(value)
            elif key == "remaining":
                batch.remaining = _split_list(value)
            elif key == "nextbatchhint":
                batch.next_batch_hint = value or None
        return batch

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BatchInfo':
        return cls(
            current=_to_int(data.get("current"), 1),
            total=_to_int(data.get("total"), 1),
            is_complete=data.get("isComplete") is not False,
            completed=[str(p) for p in data.get("completed") or [] if p],
            remaining=[str(p) for p in data.get("remaining") or [] if p],
            next_batch_hint=data.get("nextBatchHint") or None,
        )


def _to_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _unique(paths: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for path in paths:
        if path not in seen:
            seen.add(path)
            ordered.append(path)
    return ordered


def build_continuation(
    batch: Optional[BatchInfo],
    emitted_files: Iterable[str],
    incomplete_files: Iterable[str] = (),
) -> Optional[ContinuationInfo]:
    """
    由批次指令和本次实际输出的文件构造 ContinuationInfo。

    - completed = 声明的已完成文件 ∪ 本次完整输出的文件
    - remaining = 声明的剩余文件 - completed，再加上被截断的文件
    批次已完成或没有剩余文件时返回 None（响应视为最终结果）。
    """
    if batch is None:
        return None

    completed = _unique(list(batch.completed) + list(emitted_files))
    done = set(completed)
    remaining = _unique(
        [p for p in batch.remaining if p not in done]
        + [p for p in incomplete_files if p not in done]
    )
    if batch.is_complete or not remaining:
        return None

    current = max(1, batch.current)
    total = max(batch.total, current)
    return ContinuationInfo(
        next_prompt=render_continuation_prompt(
            completed, remaining, current, total, hint=batch.next_batch_hint
        ),
        remaining_files=tuple(remaining),
        current_batch=current,
        total_batches=total,
        total_files_planned=len(completed) + len(remaining),
        completed_files=tuple(completed),
    )

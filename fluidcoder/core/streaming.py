# fluidcoder/core/streaming.py
"""
流式接收：只追加的缓冲区 + 可取消的生成令牌。

每个上下文同一时刻只有一个活动令牌；发起新生成时旧令牌被取消。
取消在每个挂起点检查：每收到一个分片之后、触发续写之前。
"""

import threading
import uuid
from typing import Callable, Iterable, List, Optional

from .errors import GenerationCancelled
from .grammar import MarkerGrammar
from .parser import PROGRESS_CHECKPOINT, ProgressSnapshot, scan_progress


class GenerationToken:
    def __init__(self, context_id: str = "default"):
        self.id = uuid.uuid4().hex[:12]
        self.context_id = context_id
        self._cancelled = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled.is_set():
            self.reason = reason
            self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def raise_if_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise GenerationCancelled(f"Generation {self.id} {self.reason or 'cancelled'}")

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"<GenerationToken {self.id} context={self.context_id} {state}>"


class StreamAccumulator:
    """
    累积响应分片。每跨过一个检查点（默认 2048 字符）扫描一次进度并回调，
    扫描只读取缓冲区，不会产生或修改任何变更集。
    """

    def __init__(
        self,
        token: Optional[GenerationToken] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        checkpoint: int = PROGRESS_CHECKPOINT,
        grammar: Optional[MarkerGrammar] = None,
    ):
        self.token = token
        self.on_progress = on_progress
        self.checkpoint = max(1, checkpoint)
        self.grammar = grammar
        self._chunks: List[str] = []
        self._length = 0
        self._next_checkpoint = self.checkpoint
        self.done = False

    def append(self, chunk: str) -> None:
        if self.done:
            raise RuntimeError("Cannot append to a finished stream")
        if chunk:
            self._chunks.append(chunk)
            self._length += len(chunk)
        if self.token is not None:
            self.token.raise_if_cancelled()
        if self.on_progress and self._length >= self._next_checkpoint:
            self._next_checkpoint = (self._length // self.checkpoint + 1) * self.checkpoint
            self.on_progress(self.progress())

    def consume(self, chunks: Iterable[str]) -> str:
        """读完整个分片流，返回完整文本"""
        for chunk in chunks:
            self.append(chunk)
        return self.finish()

    def finish(self) -> str:
        if self.token is not None:
            self.token.raise_if_cancelled()
        self.done = True
        text = self.text
        if self.on_progress:
            self.on_progress(self.progress())
        return text

    def progress(self) -> ProgressSnapshot:
        return scan_progress(self.text, self.grammar)

    @property
    def text(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    def __len__(self) -> int:
        return self._length

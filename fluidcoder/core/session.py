# fluidcoder/core/session.py
"""
生成会话：把控制器、审阅关卡、版本存储和上下文增量跟踪串成一条管线。

    原始文本流 → 解析 → 合并 → 候选 FileMap → 审阅 → (确认) → 版本存储.commit
                                                         (取消) → 丢弃

每个会话（上下文）同一时刻只有一个活动的生成令牌；新的生成会取消旧令牌和自动续写倒计时。
"""

import threading
from dataclasses import replace
from typing import Callable, Optional

from fluidcontext import ContextTrackerRegistry, FileDelta
from fluidhistory import VersionedFileStore

from .config import PipelineConfig
from .continuation import GenerationController, GenerationOutcome, GenerationState, Transport
from .models import FileMap
from .parser import ProgressSnapshot
from .prompt import render_file_context
from .review import DiffSummary, ReviewGate
from .streaming import GenerationToken


def default_label(outcome: GenerationOutcome, prompt: str) -> str:
    explanation = outcome.explanation.strip()
    if explanation:
        first_line = explanation.splitlines()[0].strip()
        return first_line if len(first_line) <= 60 else first_line[:57] + "..."
    text = " ".join(prompt.split())
    return f"AI: {text[:40]}" if text else "AI change"


class GenerationSession:
    def __init__(
        self,
        store: Optional[VersionedFileStore] = None,
        config: Optional[PipelineConfig] = None,
        registry: Optional[ContextTrackerRegistry] = None,
        context_id: str = "default",
        transport: Optional[Transport] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        timer_factory=threading.Timer,
    ):
        self.config = config or PipelineConfig()
        self.store = store or VersionedFileStore(max_entries=self.config.history_max_entries)
        self.registry = registry or ContextTrackerRegistry()
        self.context_id = context_id
        self.transport = transport
        self.on_progress = on_progress
        self.timer_factory = timer_factory
        self.gate = ReviewGate(self.store, auto_accept=self.config.auto_accept, on_commit=self._on_commit)
        self.controller: Optional[GenerationController] = None
        self.last_diff: Optional[DiffSummary] = None
        self._token: Optional[GenerationToken] = None
        self._lock = threading.Lock()
        self.registry.create(context_id)

    # ------------------------------
    # 令牌
    # ------------------------------

    @property
    def active_token(self) -> Optional[GenerationToken]:
        return self._token

    def _new_token(self) -> GenerationToken:
        with self._lock:
            if self.controller is not None:
                self.controller.cancel_continuation()
            if self._token is not None:
                self._token.cancel("superseded by a new generation")
            self._token = GenerationToken(self.context_id)
            return self._token

    def cancel(self) -> None:
        with self._lock:
            if self.controller is not None:
                self.controller.cancel_continuation()
            if self._token is not None:
                self._token.cancel()

    # ------------------------------
    # 生成
    # ------------------------------

    def start_generation(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        transport: Optional[Transport] = None,
        label: Optional[str] = None,
    ) -> GenerationOutcome:
        generate = transport or self.transport
        if generate is None:
            raise ValueError("No transport configured for generation")
        token = self._new_token()
        self.controller = GenerationController(
            generate, config=self.config, token=token, on_progress=self.on_progress
        )
        outcome = self.controller.run(prompt, system_instruction, base_files=self.store.files)
        self._handle_outcome(outcome, label or default_label(outcome, prompt))
        return outcome

    def apply_response(self, text: str, label: Optional[str] = None, fmt: Optional[str] = None) -> GenerationOutcome:
        """处理一段已经完整接收的响应文本（单次尝试，不重试）"""
        config = replace(self.config, max_retries=1, response_format=fmt or self.config.response_format)
        token = self._new_token()
        self.controller = GenerationController(
            lambda prompt, system: [text], config=config, token=token, on_progress=self.on_progress
        )
        outcome = self.controller.run("", base_files=self.store.files)
        self._handle_outcome(outcome, label or default_label(outcome, ""))
        return outcome

    def continue_generation(self) -> GenerationOutcome:
        if self.controller is None:
            raise RuntimeError("No generation to continue")
        outcome = self.controller.continue_generation(base_files=self.store.files)
        self._handle_outcome(outcome, default_label(outcome, "continuation"))
        return outcome

    def retry_incomplete(self) -> GenerationOutcome:
        if self.controller is None:
            raise RuntimeError("No generation to retry")
        outcome = self.controller.retry_incomplete(base_files=self.store.files)
        self._handle_outcome(outcome, default_label(outcome, "retry incomplete files"))
        return outcome

    def _handle_outcome(self, outcome: GenerationOutcome, label: str) -> None:
        self.last_diff = None
        if outcome.failed or outcome.merge_result is None:
            return

        if outcome.state is GenerationState.AWAITING_CONTINUATION:
            # 多批次任务的一步：直接提交本批结果
            info = outcome.continuation
            batch_label = f"{label} (batch {info.current_batch}/{info.total_batches})"
            self.last_diff = self.gate.propose(
                outcome.merge_result.files, batch_label, incomplete_files=outcome.incomplete_files
            )
            if self.gate.has_pending:
                self.gate.confirm()
            if self.config.auto_continue:
                self.controller.schedule_continuation(self._auto_continue, timer_factory=self.timer_factory)
            return

        self.last_diff = self.gate.propose(
            outcome.merge_result.files, label, incomplete_files=outcome.incomplete_files
        )

    def _auto_continue(self) -> None:
        self.continue_generation()

    # ------------------------------
    # 审阅
    # ------------------------------

    def confirm(self):
        return self.gate.confirm()

    def reject(self):
        return self.gate.cancel()

    def _on_commit(self, files: FileMap) -> None:
        self.registry.mark_shared(self.context_id, files)

    # ------------------------------
    # 上下文
    # ------------------------------

    def delta(self) -> FileDelta:
        return self.registry.delta(self.context_id, self.store.files)

    def build_file_context(self, mark_shared: bool = True) -> str:
        """渲染下一轮提示词的文件部分；mark_shared 为 True 时视为已发送"""
        files = self.store.files
        text = render_file_context(self.registry.delta(self.context_id, files), files)
        if mark_shared:
            self.registry.mark_shared(self.context_id, files)
        return text

    def switch_context(self, context_id: str) -> None:
        """切换项目/上下文时清空旧上下文的指纹"""
        self.cancel()
        self.registry.clear(self.context_id)
        self.context_id = context_id
        if context_id not in self.registry:
            self.registry.create(context_id)

    def reset(self, files: FileMap) -> None:
        self.cancel()
        self.store.reset(files)
        self.registry.clear(self.context_id)
        self.registry.create(self.context_id)

# fluidcoder/core/continuation.py
"""
截断 / 续写控制器。

每个生成请求一个 GenerationController 实例，状态机：
    Idle → Streaming → Parsing → {Complete | TruncatedRecovered | AwaitingContinuation | Failed}

- 截断且没有恢复出任何文件：用相同的提示词和系统指令重试，最多 max_retries 次，仍失败则 Failed
- 部分恢复：TruncatedRecovered，已恢复的文件照常合并送审，另提供只针对未完成文件的重试
- 有续写元数据且 remaining 非空：AwaitingContinuation，手动确认或倒计时后自动触发下一批
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from .config import PipelineConfig
from .grammar import MarkerGrammar, get_grammar
from .merger import merge
from .models import (
    ChangeSet,
    ContinuationInfo,
    DeleteFile,
    FileMap,
    MergeResult,
    ParsedResponse,
)
from .parser import ProgressSnapshot, parse_response
from .prompt import render_continuation_prompt, render_missing_files_prompt
from .streaming import GenerationToken, StreamAccumulator

# (prompt, system_instruction) -> 响应分片流
Transport = Callable[[str, Optional[str]], Iterable[str]]


class GenerationState(Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    PARSING = "parsing"
    COMPLETE = "complete"
    TRUNCATED_RECOVERED = "truncated_recovered"
    AWAITING_CONTINUATION = "awaiting_continuation"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            GenerationState.COMPLETE,
            GenerationState.TRUNCATED_RECOVERED,
            GenerationState.AWAITING_CONTINUATION,
            GenerationState.FAILED,
        )


@dataclass
class GenerationOutcome:
    state: GenerationState
    parsed: Optional[ParsedResponse] = None
    merge_result: Optional[MergeResult] = None
    continuation: Optional[ContinuationInfo] = None
    incomplete_files: Tuple[str, ...] = ()   # 截断后需要重新生成的文件
    attempts: int = 0
    error: Optional[str] = None
    retry_prompt: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def candidate_files(self) -> Optional[FileMap]:
        return self.merge_result.files if self.merge_result else None

    @property
    def explanation(self) -> str:
        return self.parsed.explanation if self.parsed else ""

    @property
    def failed(self) -> bool:
        return self.state is GenerationState.FAILED


def emitted_paths(parsed: ParsedResponse) -> List[str]:
    """本次响应完整输出的文件（不含删除）"""
    if isinstance(parsed, ChangeSet):
        return list(parsed.files)
    return [p for p, c in parsed.changes.items() if not isinstance(c, DeleteFile)]


class ContinuationJob:
    """
    一次多批次生成任务。
    不变量：completed 只增不减；current_batch <= total_batches。
    达到 max_batches 或某一批没有新增完成文件时强制结束，避免无限续写。
    """

    def __init__(self, original_request: str = "", max_batches: int = 5):
        self.original_request = original_request
        self.max_batches = max_batches
        self.completed: List[str] = []
        self.remaining: List[str] = []
        self.current_batch = 0
        self.total_batches = 1
        self.batches_run = 0
        self.force_completed = False
        self.reason: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.force_completed or (self.batches_run > 0 and not self.remaining)

    def record(self, info: Optional[ContinuationInfo], emitted: Iterable[str]) -> bool:
        """记录一批的结果，返回是否还需要继续"""
        before = len(self.completed)
        declared = list(info.completed_files) if info else []
        for path in declared + list(emitted):
            if path not in self.completed:
                self.completed.append(path)
        done = set(self.completed)
        # 没有批次指令的一批（例如针对未完成文件的重试）沿用之前的剩余列表
        source = info.remaining_files if info else self.remaining
        self.remaining = [p for p in source if p not in done]
        self.batches_run += 1

        if info:
            self.current_batch = max(self.current_batch, info.current_batch)
            self.total_batches = max(self.total_batches, info.total_batches)
        else:
            self.current_batch = max(self.current_batch, self.batches_run)
        self.total_batches = max(self.total_batches, self.current_batch)

        if not self.remaining:
            return False
        if self.batches_run >= self.max_batches:
            self.force_completed = True
            self.reason = f"Stopped after {self.batches_run} batches (limit {self.max_batches})"
            return False
        if len(self.completed) == before:
            self.force_completed = True
            self.reason = f"Batch {self.current_batch} made no progress"
            return False
        return True

    def info(self) -> Optional[ContinuationInfo]:
        if self.finished:
            return None
        return ContinuationInfo(
            next_prompt=render_continuation_prompt(
                self.completed,
                self.remaining,
                self.current_batch,
                self.total_batches,
                original_request=self.original_request or None,
            ),
            remaining_files=tuple(self.remaining),
            current_batch=self.current_batch,
            total_batches=self.total_batches,
            total_files_planned=len(self.completed) + len(self.remaining),
            completed_files=tuple(self.completed),
        )


class CountdownTimer:
    """可取消的倒计时，到点后在后台线程调用 callback"""

    def __init__(self, seconds: float, callback: Callable[[], None], timer_factory=threading.Timer):
        self.seconds = seconds
        self.callback = callback
        self._timer_factory = timer_factory
        self._timer = None
        self._lock = threading.Lock()
        self.fired = False

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None:
                return
            self._timer = None
            self.fired = True
        self.callback()

    def start(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self.fired = False
            self._timer = self._timer_factory(self.seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> bool:
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
            self._timer = None
            return True

    @property
    def active(self) -> bool:
        return self._timer is not None


class GenerationController:
    def __init__(
        self,
        generate: Transport,
        config: Optional[PipelineConfig] = None,
        token: Optional[GenerationToken] = None,
        grammar: Optional[MarkerGrammar] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        on_state: Optional[Callable[[GenerationState], None]] = None,
    ):
        self.generate = generate
        self.config = config or PipelineConfig()
        self.token = token or GenerationToken()
        self.grammar = grammar or get_grammar(self.config.grammar_version)
        self.on_progress = on_progress
        self.on_state = on_state
        self.state = GenerationState.IDLE
        self.job: Optional[ContinuationJob] = None
        self.last_outcome: Optional[GenerationOutcome] = None
        self._prompt: Optional[str] = None
        self._system_instruction: Optional[str] = None
        self._countdown: Optional[CountdownTimer] = None

    def _set_state(self, state: GenerationState) -> None:
        self.state = state
        if self.on_state:
            self.on_state(state)

    def _attempt(self, prompt: str, system_instruction: Optional[str]) -> Optional[ParsedResponse]:
        self._set_state(GenerationState.STREAMING)
        accumulator = StreamAccumulator(token=self.token, on_progress=self.on_progress, grammar=self.grammar)
        text = accumulator.consume(self.generate(prompt, system_instruction))
        self._set_state(GenerationState.PARSING)
        return parse_response(
            text,
            fmt=self.config.response_format,
            grammar=self.grammar,
            max_response_size=self.config.max_response_size,
            ignored_paths=self.config.ignored_paths,
        )

    def run(self, prompt: str, system_instruction: Optional[str] = None, base_files: Optional[FileMap] = None) -> GenerationOutcome:
        """
        执行一次生成（含重试）。每次重试都使用相同的提示词和系统指令，
        各次尝试之间除计数外不共享状态。取消会以 GenerationCancelled 抛出。
        """
        if self.job is None:
            self.job = ContinuationJob(original_request=prompt, max_batches=self.config.max_batches)
            self._prompt = prompt
            self._system_instruction = system_instruction
        base = dict(base_files or {})

        parsed = None
        error = None
        attempts = 0
        while attempts < self.config.max_retries:
            attempts += 1
            parsed = self._attempt(prompt, system_instruction)
            if parsed is None:
                error = "No recognizable file content in response"
                continue
            if parsed.truncated and parsed.is_empty:
                error = "Response was truncated before any file was complete"
                continue
            break
        else:
            self._set_state(GenerationState.FAILED)
            self.last_outcome = GenerationOutcome(
                state=GenerationState.FAILED,
                parsed=parsed,
                attempts=attempts,
                error=f"{error} (after {attempts} attempts)",
                incomplete_files=parsed.unrecovered_files if parsed else (),
            )
            return self.last_outcome

        result = merge(base, parsed)
        warnings = list(parsed.warnings) + [e.reason for e in result.errors]
        outcome = GenerationOutcome(
            state=GenerationState.COMPLETE,
            parsed=parsed,
            merge_result=result,
            incomplete_files=parsed.unrecovered_files,
            attempts=attempts,
            warnings=warnings,
        )

        if parsed.continuation is not None or self.job.batches_run > 0:
            wants_more = self.job.record(parsed.continuation, emitted_paths(parsed))
            if wants_more:
                outcome.state = GenerationState.AWAITING_CONTINUATION
                outcome.continuation = self.job.info()
            elif self.job.force_completed:
                outcome.warnings.append(self.job.reason)

        # 截断但计划内的文件都已收到（例如断在 batch 字段里）时仍是 Complete
        if outcome.state is GenerationState.COMPLETE and outcome.incomplete_files:
            outcome.state = GenerationState.TRUNCATED_RECOVERED
            outcome.retry_prompt = render_missing_files_prompt(
                outcome.incomplete_files,
                existing_files=result.files,
                original_request=self._prompt,
                reason="The previous response was cut off before these files were finished.",
            )

        self._set_state(outcome.state)
        self.last_outcome = outcome
        return outcome

    @property
    def next_prompt(self) -> Optional[str]:
        if self.last_outcome and self.last_outcome.continuation:
            return self.last_outcome.continuation.next_prompt
        return None

    def continue_generation(self, base_files: Optional[FileMap] = None) -> GenerationOutcome:
        """用续写提示词生成下一批；触发前检查令牌"""
        self.cancel_continuation()
        prompt = self.next_prompt
        if prompt is None:
            raise RuntimeError("No continuation is pending")
        self.token.raise_if_cancelled()
        return self.run(prompt, self._system_instruction, base_files)

    def retry_incomplete(self, base_files: Optional[FileMap] = None) -> GenerationOutcome:
        """只针对上次未完成的文件重新生成"""
        outcome = self.last_outcome
        if outcome is None or not outcome.retry_prompt:
            raise RuntimeError("No incomplete files to retry")
        self.token.raise_if_cancelled()
        return self.run(outcome.retry_prompt, self._system_instruction, base_files)

    def schedule_continuation(self, callback: Callable[[], None], seconds: Optional[float] = None,
                              timer_factory=threading.Timer) -> CountdownTimer:
        """倒计时结束后调用 callback（通常是 session 的续写入口），令牌已取消则不触发"""
        if self.next_prompt is None:
            raise RuntimeError("No continuation is pending")
        self.cancel_continuation()

        def fire():
            if not self.token.cancelled:
                callback()

        delay = self.config.auto_continue_seconds if seconds is None else seconds
        self._countdown = CountdownTimer(delay, fire, timer_factory=timer_factory)
        self._countdown.start()
        return self._countdown

    def cancel_continuation(self) -> bool:
        if self._countdown is None:
            return False
        cancelled = self._countdown.cancel()
        self._countdown = None
        return cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        self.cancel_continuation()
        self.token.cancel(reason)

# tests/test_continuation.py
"""
生成控制器测试：重试、截断恢复、多批次续写、倒计时与取消。
模型传输层用预先写好的响应代替。
"""

import pytest

from fluidcoder.core.config import PipelineConfig
from fluidcoder.core.continuation import (
    ContinuationJob,
    CountdownTimer,
    GenerationController,
    GenerationState,
)
from fluidcoder.core.errors import GenerationCancelled
from fluidcoder.core.models import ContinuationInfo
from fluidcoder.core.streaming import GenerationToken, StreamAccumulator

from conftest import batch_block, file_block, scripted_transport

PLANNED = [f"src/f{i}.ts" for i in range(10)]


def _files(paths):
    return "\n".join(file_block(p, f"export const id = '{p}';") for p in paths)


class TestRetries:

    def test_success_on_first_attempt(self):
        generate = scripted_transport(_files(["a.ts"]))
        states = []
        controller = GenerationController(generate, on_state=states.append)
        outcome = controller.run("make a", system_instruction="sys")

        assert outcome.state is GenerationState.COMPLETE
        assert outcome.attempts == 1
        assert outcome.candidate_files == {"a.ts": "export const id = 'a.ts';"}
        assert states == [GenerationState.STREAMING, GenerationState.PARSING, GenerationState.COMPLETE]

    def test_retries_with_same_prompt(self):
        generate = scripted_transport("sorry", "<!-- FILE:a.ts -->\npartial", _files(["a.ts"]))
        controller = GenerationController(generate, PipelineConfig(max_retries=3))
        outcome = controller.run("make a", system_instruction="sys")

        assert outcome.state is GenerationState.COMPLETE
        assert outcome.attempts == 3
        assert generate.calls == [("make a", "sys")] * 3

    def test_fails_after_max_retries(self):
        generate = scripted_transport("sorry", "still no files")
        controller = GenerationController(generate, PipelineConfig(max_retries=2))
        outcome = controller.run("make a")

        assert outcome.failed
        assert outcome.candidate_files is None
        assert outcome.error == "No recognizable file content in response (after 2 attempts)"

    def test_truncated_without_files_fails(self):
        generate = scripted_transport("<!-- FILE:a.ts -->\npart")
        controller = GenerationController(generate, PipelineConfig(max_retries=1))
        outcome = controller.run("make a")

        assert outcome.failed
        assert outcome.error.startswith("Response was truncated before any file was complete")
        assert outcome.incomplete_files == ("a.ts",)


class TestTruncationRecovery:

    def test_partial_recovery_offers_retry(self):
        response = _files(["a.ts"]) + "\n<!-- FILE:b.ts -->\nexport const"
        generate = scripted_transport(response, _files(["b.ts"]))
        controller = GenerationController(generate)
        outcome = controller.run("make a and b", base_files={"README.md": "# x"})

        assert outcome.state is GenerationState.TRUNCATED_RECOVERED
        assert set(outcome.candidate_files) == {"README.md", "a.ts"}
        assert outcome.incomplete_files == ("b.ts",)
        assert "1. b.ts" in outcome.retry_prompt
        assert "cut off" in outcome.retry_prompt

        retried = controller.retry_incomplete(base_files=outcome.candidate_files)
        assert retried.state is GenerationState.COMPLETE
        assert set(retried.candidate_files) == {"README.md", "a.ts", "b.ts"}
        assert generate.calls[1][0] == outcome.retry_prompt

    def test_retry_covers_planned_files_never_started(self):
        response = (
            "<!-- PLAN -->\nCREATE: a.ts, b.ts, c.ts, d.ts\n<!-- /PLAN -->\n"
            + _files(["a.ts"]) + "\n<!-- FILE:b.ts -->\nexport const"
        )
        controller = GenerationController(scripted_transport(response))
        outcome = controller.run("make four files")

        assert outcome.state is GenerationState.TRUNCATED_RECOVERED
        assert set(outcome.candidate_files) == {"a.ts"}
        assert outcome.incomplete_files == ("b.ts", "c.ts", "d.ts")
        assert "1. b.ts\n2. c.ts\n3. d.ts" in outcome.retry_prompt

    def test_retry_covers_json_plan(self):
        response = '// PLAN: {"create": ["a.ts", "b.ts", "c.ts"]}\n{"changes": {"a.ts": "x", "b.ts": "y'
        controller = GenerationController(scripted_transport(response))
        outcome = controller.run("make three files")

        assert outcome.state is GenerationState.TRUNCATED_RECOVERED
        assert outcome.incomplete_files == ("b.ts", "c.ts")
        assert "2. c.ts" in outcome.retry_prompt

    def test_cut_after_changes_is_complete(self):
        response = '{"changes": {"a.ts": "x"}, "batch": {"current": 1, "tot'
        controller = GenerationController(scripted_transport(response))
        outcome = controller.run("make a")

        assert outcome.state is GenerationState.COMPLETE
        assert outcome.candidate_files == {"a.ts": "x"}
        assert outcome.incomplete_files == ()
        assert outcome.retry_prompt is None
        assert "Response JSON was truncated and has been repaired" in outcome.warnings
        with pytest.raises(RuntimeError):
            controller.retry_incomplete()

    def test_retry_incomplete_without_pending(self):
        controller = GenerationController(scripted_transport(_files(["a.ts"])))
        controller.run("x")
        with pytest.raises(RuntimeError):
            controller.retry_incomplete()


class TestContinuation:

    def test_two_batches_complete(self):
        first = _files(PLANNED[:4]) + "\n" + batch_block(1, 2, False, PLANNED[:4], PLANNED[4:])
        second = _files(PLANNED[4:]) + "\n" + batch_block(2, 2, True, PLANNED, [])
        generate = scripted_transport(first, second)
        controller = GenerationController(generate)

        outcome = controller.run("build ten files")
        assert outcome.state is GenerationState.AWAITING_CONTINUATION
        assert outcome.continuation.remaining_files == tuple(PLANNED[4:])
        assert "ORIGINAL REQUEST:\nbuild ten files" in controller.next_prompt
        assert "This is batch 2 of 2." in controller.next_prompt

        final = controller.continue_generation(base_files=outcome.candidate_files)
        assert final.state is GenerationState.COMPLETE
        assert sorted(final.candidate_files) == sorted(PLANNED)
        assert controller.job.completed == PLANNED
        assert controller.job.remaining == []
        assert controller.next_prompt is None

    def test_no_progress_forces_completion(self):
        first = _files(["a.ts"]) + "\n" + batch_block(1, 3, False, ["a.ts"], ["b.ts", "c.ts"])
        second = _files(["a.ts"]) + "\n" + batch_block(2, 3, False, ["a.ts"], ["b.ts", "c.ts"])
        controller = GenerationController(scripted_transport(first, second))
        controller.run("x")
        outcome = controller.continue_generation()

        assert outcome.state is GenerationState.COMPLETE
        assert controller.job.force_completed
        assert "Batch 2 made no progress" in outcome.warnings

    def test_max_batches(self):
        first = _files(["a.ts"]) + "\n" + batch_block(1, 3, False, ["a.ts"], ["b.ts"])
        controller = GenerationController(scripted_transport(first), PipelineConfig(max_batches=1))
        outcome = controller.run("x")

        assert outcome.state is GenerationState.COMPLETE
        assert "Stopped after 1 batches (limit 1)" in outcome.warnings

    def test_continue_without_pending(self):
        controller = GenerationController(scripted_transport(_files(["a.ts"])))
        controller.run("x")
        with pytest.raises(RuntimeError):
            controller.continue_generation()


class TestContinuationJob:

    def _info(self, current, completed, remaining):
        return ContinuationInfo(
            next_prompt="",
            remaining_files=tuple(remaining),
            current_batch=current,
            total_batches=3,
            total_files_planned=len(completed) + len(remaining),
            completed_files=tuple(completed),
        )

    def test_completed_is_monotone(self):
        job = ContinuationJob("req")
        assert job.record(self._info(1, ["a"], ["b", "c"]), ["a"])
        # 下一批的批次指令漏报了 a，已完成集合不应缩小
        assert job.record(self._info(2, [], ["c"]), ["b"])
        assert job.completed == ["a", "b"]
        assert job.remaining == ["c"]
        assert not job.record(None, ["c"])
        assert job.finished
        assert job.info() is None

    def test_current_batch_never_exceeds_total(self):
        job = ContinuationJob()
        job.record(self._info(5, ["a"], ["b"]), ["a"])
        assert job.current_batch <= job.total_batches


class TestCountdown:

    def test_schedule_and_fire(self, fake_timer):
        first = _files(["a.ts"]) + "\n" + batch_block(1, 2, False, ["a.ts"], ["b.ts"])
        controller = GenerationController(scripted_transport(first))
        controller.run("x")

        fired = []
        countdown = controller.schedule_continuation(lambda: fired.append(True), seconds=3,
                                                     timer_factory=fake_timer)
        timer = fake_timer.created[-1]
        assert timer.seconds == 3
        assert timer.started and timer.daemon
        assert countdown.active

        timer.fire()
        assert fired == [True]
        assert countdown.fired
        assert not countdown.active

    def test_cancelled_token_suppresses_callback(self, fake_timer):
        first = _files(["a.ts"]) + "\n" + batch_block(1, 2, False, ["a.ts"], ["b.ts"])
        controller = GenerationController(scripted_transport(first))
        controller.run("x")

        fired = []
        controller.schedule_continuation(lambda: fired.append(True), timer_factory=fake_timer)
        controller.token.cancel("superseded")
        fake_timer.created[-1].fire()
        assert fired == []

    def test_cancel_continuation(self, fake_timer):
        first = _files(["a.ts"]) + "\n" + batch_block(1, 2, False, ["a.ts"], ["b.ts"])
        controller = GenerationController(scripted_transport(first))
        controller.run("x")
        controller.schedule_continuation(lambda: None, timer_factory=fake_timer)

        assert controller.cancel_continuation() is True
        assert fake_timer.created[-1].cancelled
        assert controller.cancel_continuation() is False

    def test_schedule_without_pending(self, fake_timer):
        controller = GenerationController(scripted_transport(_files(["a.ts"])))
        controller.run("x")
        with pytest.raises(RuntimeError):
            controller.schedule_continuation(lambda: None, timer_factory=fake_timer)

    def test_countdown_restart_cancels_previous(self, fake_timer):
        countdown = CountdownTimer(1, lambda: None, timer_factory=fake_timer)
        countdown.start()
        countdown.start()
        assert fake_timer.created[0].cancelled
        assert not fake_timer.created[1].cancelled


class TestCancellation:

    def test_cancel_mid_stream(self):
        token = GenerationToken("ctx")

        def generate(prompt, system_instruction=None):
            yield "<!-- FILE:a.ts -->\n"
            token.cancel("user stopped")
            yield "const a = 1;"

        controller = GenerationController(generate, token=token)
        with pytest.raises(GenerationCancelled):
            controller.run("x")
        assert controller.last_outcome is None

    def test_accumulator_progress_checkpoints(self):
        snapshots = []
        accumulator = StreamAccumulator(on_progress=snapshots.append, checkpoint=10)
        text = accumulator.consume(["<!-- FILE:a.ts -->\n", "1\n<!-- /FILE:a.ts -->"])

        assert text == "<!-- FILE:a.ts -->\n1\n<!-- /FILE:a.ts -->"
        assert len(accumulator) == len(text)
        assert snapshots[-1].completed_files == ["a.ts"]
        with pytest.raises(RuntimeError):
            accumulator.append("more")

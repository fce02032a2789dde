# tests/test_parser.py
"""标记格式解析、格式检测与流式进度扫描的测试"""

import pytest

from fluidcoder.core.errors import HardParseFailure
from fluidcoder.core.grammar import MarkerGrammar, get_grammar, register_grammar
from fluidcoder.core.models import ChangeSet, FileAction, ResponseFormat, SearchReplaceChangeSet
from fluidcoder.core.parser import (
    detect_format,
    parse_manifest,
    parse_marker,
    parse_or_raise,
    parse_plan,
    parse_response,
    scan_progress,
)

from conftest import batch_block, file_block


class TestDetectFormat:

    def test_marker_v1(self):
        text = file_block("src/App.tsx", "x")
        assert detect_format(text) is ResponseFormat.MARKER_V1

    def test_marker_v2_with_batch(self):
        text = file_block("a.ts", "x") + "\n" + batch_block(1, 2, False, ["a.ts"], ["b.ts"])
        assert detect_format(text) is ResponseFormat.MARKER_V2

    def test_plan_and_explanation_without_files(self):
        text = "<!-- PLAN -->\nDELETE: old.ts\n<!-- /PLAN -->\n<!-- EXPLANATION -->\nbye\n<!-- /EXPLANATION -->"
        assert detect_format(text) is ResponseFormat.MARKER_V1

    def test_search_replace(self):
        assert detect_format('{"changes": {"a.ts": "x"}}') is ResponseFormat.SEARCH_REPLACE

    def test_search_replace_deletion_only(self):
        text = '{"explanation": "remove old page", "deletedFiles": ["src/Old.tsx"]}'
        assert detect_format(text) is ResponseFormat.SEARCH_REPLACE
        result = parse_response(text)
        assert isinstance(result, SearchReplaceChangeSet)
        assert result.deleted == frozenset({"src/Old.tsx"})
        assert result.changes == {}

    def test_unknown(self):
        assert detect_format("I cannot help with that.") is ResponseFormat.UNKNOWN
        assert detect_format("") is ResponseFormat.UNKNOWN


class TestParseMarker:

    def test_complete_response(self):
        text = (
            "<!-- EXPLANATION -->\nAdded a button.\n<!-- /EXPLANATION -->\n"
            + file_block("src/Button.tsx", "export const Button = () => null;")
            + "\n"
            + file_block("src/App.tsx", "```tsx\nimport { Button } from './Button';\n```")
        )
        result = parse_response(text)
        assert isinstance(result, ChangeSet)
        assert result.explanation == "Added a button."
        assert result.files == {
            "src/Button.tsx": "export const Button = () => null;",
            "src/App.tsx": "import { Button } from './Button';",
        }
        assert not result.truncated
        assert result.incomplete_files == ()
        assert result.continuation is None

    def test_truncated_last_block_is_incomplete(self):
        text = file_block("a.ts", "const a = 1;") + "\n<!-- FILE:b.ts -->\nconst b = "
        result = parse_marker(text)
        assert result.files == {"a.ts": "const a = 1;"}
        assert result.incomplete_files == ("b.ts",)
        assert result.truncated is True

    def test_truncation_keeps_unreached_plan_files(self):
        text = (
            "<!-- PLAN -->\nCREATE: a.ts, b.ts, c.ts, d.ts\n<!-- /PLAN -->\n"
            + file_block("a.ts", "1") + "\n<!-- FILE:b.ts -->\nconst b = "
        )
        result = parse_marker(text)
        assert result.planned_files == ("a.ts", "b.ts", "c.ts", "d.ts")
        assert result.incomplete_files == ("b.ts",)
        assert result.unrecovered_files == ("b.ts", "c.ts", "d.ts")

    def test_truncated_batch_remaining_includes_unreached_plan_files(self):
        text = (
            "<!-- PLAN -->\nCREATE: a.ts, b.ts, c.ts\n<!-- /PLAN -->\n"
            + batch_block(1, 2, False, ["a.ts"], ["b.ts"]) + "\n"
            + file_block("a.ts", "1") + "\n<!-- FILE:b.ts -->\nconst b = "
        )
        info = parse_marker(text).continuation
        assert info.remaining_files == ("b.ts", "c.ts")
        assert info.completed_files == ("a.ts",)

    def test_complete_response_has_nothing_unrecovered(self):
        text = "<!-- PLAN -->\nCREATE: a.ts, b.ts\n<!-- /PLAN -->\n" + file_block("a.ts", "1")
        assert parse_marker(text).unrecovered_files == ()

    def test_change_set_maps_are_read_only(self):
        result = parse_marker(file_block("a.ts", "1"))
        with pytest.raises(TypeError):
            result.files["a.ts"] = "changed"
        with pytest.raises(TypeError):
            result.actions["a.ts"] = FileAction.DELETE
        assert result.files == {"a.ts": "1"}

    def test_files_and_incomplete_are_disjoint(self):
        text = (
            file_block("a.ts", "1") + "\n"
            + "<!-- FILE:b.ts -->\n2\n"
            + file_block("c.ts", "3") + "\n"
            + "<!-- FILE:d.ts -->\n4"
        )
        result = parse_marker(text)
        assert set(result.files).isdisjoint(result.incomplete_files)
        assert result.incomplete_files == ("d.ts",)

    def test_unclosed_block_followed_by_opener_is_recovered(self):
        text = "<!-- FILE:a.ts -->\nconst a = 1;\n" + file_block("b.ts", "const b = 2;")
        result = parse_marker(text)
        assert result.files["a.ts"] == "const a = 1;"
        assert result.files["b.ts"] == "const b = 2;"
        assert result.recovered_files == ("a.ts",)
        assert not result.truncated
        assert any("missing closing marker" in w for w in result.warnings)

    def test_explanation_from_prose(self):
        text = "Sure, here you go.\n\n" + file_block("a.ts", "1")
        assert parse_marker(text).explanation == "Sure, here you go."

    def test_action_in_opener(self):
        text = file_block("a.ts", "1", action="update") + "\n" + file_block("old.ts", "", action="delete")
        result = parse_marker(text)
        assert result.actions["a.ts"] is FileAction.UPDATE
        assert result.deleted == frozenset({"old.ts"})
        assert "old.ts" not in result.files

    def test_plan_delete_without_blocks(self):
        text = "<!-- PLAN -->\nCREATE:\nDELETE: src/old.ts, src/legacy.ts\n<!-- /PLAN -->"
        result = parse_marker(text)
        assert result is not None
        assert result.files == {}
        assert result.deleted == frozenset({"src/old.ts", "src/legacy.ts"})

    def test_unsafe_and_ignored_paths_are_dropped(self):
        text = (
            file_block("../escape.ts", "x") + "\n"
            + file_block("node_modules/x/index.js", "y") + "\n"
            + file_block("src/ok.ts", "z")
        )
        result = parse_marker(text)
        assert list(result.files) == ["src/ok.ts"]
        assert any("unsafe path" in w for w in result.warnings)
        assert any("Ignored path" in w for w in result.warnings)

    def test_manifest_mismatch_warns(self):
        text = (
            "<!-- MANIFEST -->\n"
            "| File | Action | Lines | Tokens | Status |\n"
            "|------|--------|-------|--------|--------|\n"
            "| a.ts | create | 10 | 50 | included |\n"
            "| b.ts | create | 10 | 50 | included |\n"
            "<!-- /MANIFEST -->\n"
            + file_block("a.ts", "1")
        )
        result = parse_marker(text)
        assert result.format is ResponseFormat.MARKER_V2
        assert any("'b.ts'" in w for w in result.warnings)

    def test_no_markers_returns_none(self):
        assert parse_marker("just some prose") is None
        assert parse_response("just some prose") is None

    def test_crlf_input(self):
        text = file_block("a.ts", "line1\nline2").replace("\n", "\r\n")
        assert parse_marker(text).files["a.ts"] == "line1\nline2"


class TestBatch:

    def test_first_of_three_batches(self):
        planned = [f"src/f{i}.ts" for i in range(10)]
        emitted = planned[:4]
        text = "\n".join(file_block(p, f"// {p}") for p in emitted)
        text += "\n" + batch_block(1, 3, False, emitted, planned[4:])
        result = parse_response(text)

        info = result.continuation
        assert info is not None
        assert info.current_batch == 1
        assert info.total_batches == 3
        assert list(info.completed_files) == emitted
        assert list(info.remaining_files) == planned[4:]
        assert info.total_files_planned == 10
        assert "Continue generating the remaining 6 files." in info.next_prompt
        assert "This is batch 2 of 3." in info.next_prompt
        assert not result.truncated

    def test_complete_batch_has_no_continuation(self):
        text = file_block("a.ts", "1") + "\n" + batch_block(2, 2, True, ["a.ts"], [])
        assert parse_response(text).continuation is None

    def test_emitted_files_are_removed_from_remaining(self):
        text = file_block("a.ts", "1") + "\n" + batch_block(1, 2, False, [], ["a.ts", "b.ts"])
        info = parse_response(text).continuation
        assert info.completed_files == ("a.ts",)
        assert info.remaining_files == ("b.ts",)

    def test_truncated_file_joins_remaining(self):
        text = batch_block(1, 2, False, [], ["c.ts"]) + "\n" + file_block("a.ts", "1") + "\n<!-- FILE:b.ts -->\npart"
        result = parse_response(text)
        assert result.truncated
        assert result.continuation.remaining_files == ("c.ts", "b.ts")
        assert set(result.continuation.completed_files).isdisjoint(result.continuation.remaining_files)


class TestGrammar:

    def test_custom_grammar(self):
        custom = MarkerGrammar(version="brackets", open_token="[[", close_token="]]")
        register_grammar(custom)
        text = "[[ FILE:src/a.ts ]]\nconst a = 1;\n[[ /FILE:src/a.ts ]]"
        result = parse_response(text, grammar=get_grammar("brackets"))
        assert result.files == {"src/a.ts": "const a = 1;"}
        assert custom.render_file("x.ts", "y") == "[[ FILE:x.ts ]]\ny\n[[ /FILE:x.ts ]]"

    def test_unknown_grammar_version(self):
        with pytest.raises(ValueError):
            get_grammar("v9")


class TestEntryPoints:

    def test_search_replace_dispatch(self):
        result = parse_response('{"changes": {"a.ts": {"isNew": true, "content": "x"}}}')
        assert isinstance(result, SearchReplaceChangeSet)

    def test_forced_format(self):
        assert parse_response(file_block("a.ts", "1"), fmt="search_replace") is None
        with pytest.raises(ValueError):
            parse_response("x", fmt="yaml")

    def test_oversized_response(self):
        text = file_block("a.ts", "x" * 200)
        assert parse_response(text, max_response_size=100) is None
        with pytest.raises(HardParseFailure) as exc:
            parse_or_raise(text, max_response_size=100)
        assert "too large" in str(exc.value)

    def test_parse_or_raise_on_prose(self):
        with pytest.raises(HardParseFailure):
            parse_or_raise("no files here")

    def test_parse_is_deterministic(self):
        text = file_block("a.ts", "1") + "\n<!-- FILE:b.ts -->\n2"
        assert parse_response(text) == parse_response(text)


def test_parse_plan_and_manifest():
    text = (
        "<!-- PLAN -->\nCREATE: a.ts, b.ts\nUPDATE: ./c.ts\nDELETE:\n<!-- /PLAN -->\n"
        "<!-- MANIFEST -->\n| a.ts | create | 1 | 2 | pending |\n<!-- /MANIFEST -->"
    )
    plan = parse_plan(text)
    assert plan.create == ["a.ts", "b.ts"]
    assert plan.update == ["c.ts"]
    assert plan.all_files == ["a.ts", "b.ts", "c.ts"]
    assert parse_manifest(text) == [("a.ts", "create", "pending")]


class TestScanProgress:

    def test_marker_progress(self):
        text = (
            "<!-- PLAN -->\nCREATE: a.ts, b.ts, c.ts\n<!-- /PLAN -->\n"
            "<!-- FILE:a.ts -->\n1\n"
            + file_block("b.ts", "2") + "\n"
            + "<!-- FILE:c.ts -->\npartial"
        )
        snapshot = scan_progress(text)
        assert snapshot.plan.create == ["a.ts", "b.ts", "c.ts"]
        assert snapshot.completed_files == ["a.ts", "b.ts"]
        assert snapshot.streaming_file == "c.ts"
        assert snapshot.chars_received == len(text)

    def test_json_progress(self):
        text = '// PLAN: {"create": ["a.ts", "b.ts"]}\n{"changes": {"a.ts": "x", "b.ts": "y'
        snapshot = scan_progress(text)
        assert snapshot.plan.create == ["a.ts", "b.ts"]
        assert snapshot.completed_files == ["a.ts"]
        assert snapshot.streaming_file == "b.ts"

    def test_empty_text(self):
        snapshot = scan_progress("")
        assert snapshot.file_status == {}
        assert snapshot.plan.is_empty()

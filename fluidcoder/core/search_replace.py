# fluidcoder/core/search_replace.py
"""
搜索/替换格式（JSON）的解析。

支持：
- ```json 围栏包裹的响应
- 开头的 // PLAN: {...} 注释
- 被截断的 JSON：补全字符串、去掉悬空键、补齐括号；修复过的结果 truncated=True
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .batch import BatchInfo, build_continuation
from .cleaner import clean_generated_code, is_ignored_path, is_unsafe_path, normalize_path
from .models import (
    DeleteFile,
    FileChange,
    NewFile,
    PatchFile,
    Replacement,
    SearchReplaceChangeSet,
    unrecovered_paths,
)

_INVISIBLE_PREFIX = re.compile(r"^[\ufeff\u200b-\u200d\u00a0]+")
_JSON_FENCE_OPEN = re.compile(r"```(?:json)?[ \t]*\n?")
_PLAN_COMMENT = re.compile(r"\A//\s*PLAN:\s*")

_TRAILING_COMMA = re.compile(r",\s*\Z")
_DANGLING_KEY = re.compile(r",?\s*\"(?:[^\"\\]|\\.)*\"\s*:\s*\Z")
_PARTIAL_LITERAL = re.compile(r",?\s*\"(?:[^\"\\]|\\.)*\"\s*:\s*(?:t|tr|tru|f|fa|fal|fals|n|nu|nul)\Z")
_BARE_KEY = re.compile(r"([{,])\s*\"(?:[^\"\\]|\\.)*\"\Z")

# "changes" 的别名
CHANGE_KEYS = ("changes", "files")
DELETED_KEY = "deletedFiles"


@dataclass
class _ScanState:
    in_string: bool = False
    escape: bool = False
    in_key: bool = False
    stack: List[str] = field(default_factory=list)
    top_key: Optional[str] = None


def _scan(text: str) -> _ScanState:
    """逐字符扫描 JSON 文本，记录括号栈、字符串状态和最后一个顶层键"""
    state = _ScanState()
    expect_key = False
    key_start = -1
    for i, ch in enumerate(text):
        if state.in_string:
            if state.escape:
                state.escape = False
            elif ch == "\\":
                state.escape = True
            elif ch == '"':
                state.in_string = False
                if state.in_key and len(state.stack) == 1:
                    state.top_key = text[key_start + 1:i]
                state.in_key = False
            continue
        if ch == '"':
            state.in_string = True
            state.in_key = expect_key
            key_start = i
            expect_key = False
        elif ch in "{[":
            state.stack.append(ch)
            expect_key = ch == "{"
        elif ch in "}]":
            if state.stack:
                state.stack.pop()
            expect_key = False
        elif ch == ",":
            expect_key = bool(state.stack) and state.stack[-1] == "{"
    return state


def repair_json(text: str) -> str:
    """
    尽力修复被截断的 JSON 文本：
    1. 未闭合的字符串补上引号（去掉半个转义符）
    2. 去掉结尾的逗号、悬空键、半截字面量
    3. 按栈的顺序补齐 } 与 ]
    """
    state = _scan(text)
    if state.in_string:
        if state.escape:
            text = text[:-1]
        text += '"'

    previous = None
    while text != previous:
        previous = text
        text = text.rstrip()
        text = _TRAILING_COMMA.sub("", text)
        text = _DANGLING_KEY.sub("", text)
        text = _PARTIAL_LITERAL.sub("", text)
        stack = _scan(text).stack
        if stack and stack[-1] == "{":
            text = _BARE_KEY.sub(r"\1", text)

    closers = {"{": "}", "[": "]"}
    return text + "".join(closers[ch] for ch in reversed(_scan(text).stack))


def _plan_span(text: str) -> Optional[Tuple[int, int]]:
    """开头 // PLAN: {...} 注释中 JSON 对象的位置，用括号计数定位结束"""
    match = _PLAN_COMMENT.match(text)
    if not match:
        return None
    start = text.find("{", match.end())
    if start == -1:
        return None
    depth = 0
    for i in range(start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return start, i + 1
    return None


def _strip_plan_comment(text: str) -> str:
    span = _plan_span(text)
    return text[span[1]:].strip() if span else text


def parse_json_plan(text: str) -> Dict[str, List[str]]:
    """
    解析 // PLAN: {"create": [...], "update": [...], "delete": [...]} 注释。
    注释可以出现在 ```json 围栏之内；没有或无法解析时各列表为空。
    """
    plan: Dict[str, List[str]] = {"create": [], "update": [], "delete": []}
    body = _INVISIBLE_PREFIX.sub("", (text or "").strip())
    fence = _JSON_FENCE_OPEN.match(body)
    if fence:
        body = body[fence.end():].lstrip()
    span = _plan_span(body)
    if span is None:
        return plan
    try:
        data = json.loads(body[span[0]:span[1]])
    except ValueError:
        return plan
    if isinstance(data, dict):
        for key, paths in plan.items():
            values = data.get(key)
            if isinstance(values, list):
                paths.extend(normalize_path(str(v)) for v in values if v)
    return plan


def extract_json_payload(text: str) -> str:
    """从响应中取出 JSON 主体：去掉不可见前缀、PLAN 注释和 markdown 围栏"""
    payload = _INVISIBLE_PREFIX.sub("", text.strip())
    payload = _strip_plan_comment(payload)
    fence = _JSON_FENCE_OPEN.search(payload)
    if fence and not payload.startswith("{"):
        body = payload[fence.end():]
        closing = body.rfind("```")
        # 围栏没有闭合说明响应被截断，取到结尾
        payload = body[:closing] if closing != -1 else body
        payload = _strip_plan_comment(payload.strip())
    return payload.strip()


def looks_like_search_replace(text: str) -> bool:
    payload = extract_json_payload(text)
    if not payload.startswith("{"):
        return False
    if any(re.search(rf'"{key}"\s*:\s*\{{', payload) for key in CHANGE_KEYS):
        return True
    # 只删除文件的响应没有 changes
    return re.search(rf'"{DELETED_KEY}"\s*:\s*\[', payload) is not None


def _load(payload: str) -> Tuple[Optional[Any], bool, _ScanState]:
    """返回 (解析结果, 是否修复过, 原文扫描状态)"""
    state = _scan(payload)
    try:
        return json.loads(payload), False, state
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(repair_json(payload)), True, state
    except json.JSONDecodeError:
        return None, True, state


def _cut_inside_change(state: _ScanState) -> bool:
    """截断点是否落在某个文件的变更内容内部"""
    if state.top_key not in CHANGE_KEYS:
        return False
    depth = len(state.stack)
    return depth >= 3 or (depth == 2 and state.in_string and not state.in_key)


def _parse_change(path: str, value: Any, warnings: List[str]) -> Optional[FileChange]:
    if isinstance(value, str):
        return NewFile(clean_generated_code(value))
    if not isinstance(value, dict):
        warnings.append(f"Ignored change for '{path}': unsupported value type {type(value).__name__}")
        return None

    is_deleted = value.get("isDeleted") is True
    is_new = value.get("isNew") is True
    replacements = value.get("replacements")
    shapes = sum([is_deleted, is_new, isinstance(replacements, list)])
    if shapes > 1:
        warnings.append(f"Conflicting change flags for '{path}'")

    if is_deleted:
        return DeleteFile()
    if is_new or (replacements is None and isinstance(value.get("content"), str)):
        content = value.get("content")
        if not isinstance(content, str):
            warnings.append(f"New file '{path}' has no content")
            content = ""
        return NewFile(clean_generated_code(content))
    if isinstance(replacements, list):
        pairs = []
        for item in replacements:
            if not isinstance(item, dict):
                warnings.append(f"Ignored malformed replacement for '{path}'")
                continue
            search = item.get("search")
            replace = item.get("replace", "")
            if not isinstance(search, str) or not search:
                warnings.append(f"Dropped replacement with empty search for '{path}'")
                continue
            if not isinstance(replace, str):
                warnings.append(f"Ignored malformed replacement for '{path}'")
                continue
            pairs.append(Replacement(search=search, replace=replace))
        if not pairs:
            warnings.append(f"No usable replacements for '{path}'")
            return None
        return PatchFile(tuple(pairs))

    warnings.append(f"Ignored change for '{path}': no content, replacements or delete flag")
    return None


def _safe_path(raw: Any, ignored_paths: Optional[Iterable[str]], warnings: List[str]) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    path = normalize_path(raw)
    if is_unsafe_path(path):
        warnings.append(f"Rejected unsafe path '{raw}'")
        return None
    if is_ignored_path(path, ignored_paths):
        warnings.append(f"Ignored path '{raw}'")
        return None
    return path


def parse_search_replace(
    text: str,
    ignored_paths: Optional[Iterable[str]] = None,
) -> Optional[SearchReplaceChangeSet]:
    """
    解析搜索/替换格式响应。
    没有任何可识别的文件变更（也没有被截断的文件）时返回 None。
    """
    if not text or not text.strip():
        return None

    data, repaired, state = _load(extract_json_payload(text))
    if not isinstance(data, dict):
        return None

    raw_changes = None
    for key in CHANGE_KEYS:
        if isinstance(data.get(key), dict):
            raw_changes = data[key]
            break
    raw_changes = dict(raw_changes or {})

    warnings: List[str] = []
    incomplete: List[str] = []
    if repaired:
        warnings.append("Response JSON was truncated and has been repaired")
        if raw_changes and _cut_inside_change(state):
            last_path = list(raw_changes)[-1]
            raw_changes.pop(last_path)
            path = _safe_path(last_path, ignored_paths, [])
            if path:
                incomplete.append(path)

    changes: Dict[str, FileChange] = {}
    for raw_path, value in raw_changes.items():
        path = _safe_path(raw_path, ignored_paths, warnings)
        if path is None:
            continue
        change = _parse_change(path, value, warnings)
        if change is not None:
            changes[path] = change

    deleted = set()
    raw_deleted = data.get(DELETED_KEY) or []
    if isinstance(raw_deleted, list):
        for raw_path in raw_deleted:
            path = _safe_path(raw_path, ignored_paths, warnings)
            if path:
                deleted.add(path)

    if not changes and not deleted and not incomplete:
        return None

    plan = parse_json_plan(text)
    planned = tuple(dict.fromkeys(
        p for p in plan["create"] + plan["update"]
        if not is_unsafe_path(p) and not is_ignored_path(p, ignored_paths)
    ))
    # 截断时，计划中没有收到的文件和被截断的文件一起进入续写
    unrecovered = unrecovered_paths(planned, set(changes) | deleted, incomplete) if repaired else ()

    batch = BatchInfo.from_dict(data["batch"]) if isinstance(data.get("batch"), dict) else None
    emitted = [p for p, c in changes.items() if not isinstance(c, DeleteFile)]
    explanation = data.get("explanation")

    return SearchReplaceChangeSet(
        explanation=explanation.strip() if isinstance(explanation, str) else "",
        changes=changes,
        deleted=frozenset(deleted),
        truncated=repaired,
        continuation=build_continuation(batch, emitted, unrecovered),
        incomplete_files=tuple(incomplete),
        warnings=tuple(warnings),
        planned_files=planned,
    )

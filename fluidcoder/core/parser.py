# fluidcoder/core/parser.py
"""
模型响应解析器。

parse_response(text) -> ChangeSet | SearchReplaceChangeSet | None
- 纯函数，无副作用，结果确定
- 返回 None 表示完全没有可识别的文件内容（硬失败，调用方必须当作生成失败处理）
- 对被截断的响应：完整闭合的文件块照常返回，最后一个未闭合的块列入 incomplete_files
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .batch import BatchInfo, build_continuation
from .cleaner import clean_generated_code, is_ignored_path, is_unsafe_path, normalize_line_endings, normalize_path
from .errors import HardParseFailure
from .grammar import MarkerGrammar, get_grammar
from .models import ChangeSet, FileAction, ParsedResponse, ResponseFormat, unrecovered_paths
from .search_replace import looks_like_search_replace, parse_json_plan, parse_search_replace

DEFAULT_MAX_RESPONSE_SIZE = 500000
PROGRESS_CHECKPOINT = 2048

FORMAT_ALIASES = {
    "auto": None,
    "marker": ResponseFormat.MARKER_V2,
    "marker-v1": ResponseFormat.MARKER_V1,
    "marker-v2": ResponseFormat.MARKER_V2,
    "search_replace": ResponseFormat.SEARCH_REPLACE,
    "search-replace": ResponseFormat.SEARCH_REPLACE,
}


@dataclass
class FilePlan:
    create: List[str] = field(default_factory=list)
    update: List[str] = field(default_factory=list)
    delete: List[str] = field(default_factory=list)

    @property
    def all_files(self) -> List[str]:
        return self.create + self.update + self.delete

    def is_empty(self) -> bool:
        return not self.all_files


@dataclass
class ProgressSnapshot:
    """流式接收过程中的进度（仅供展示，不影响任何已提交状态）"""
    chars_received: int
    plan: FilePlan
    file_status: Dict[str, str]      # path -> streaming | complete
    format: ResponseFormat = ResponseFormat.UNKNOWN

    @property
    def completed_files(self) -> List[str]:
        return [p for p, s in self.file_status.items() if s == "complete"]

    @property
    def streaming_file(self) -> Optional[str]:
        for path, status in self.file_status.items():
            if status == "streaming":
                return path
        return None


@dataclass
class _FileBlock:
    path: str
    action: Optional[str]
    start: int          # 开始标记起始位置
    body_start: int     # 开始标记之后
    body_end: int = -1
    end: int = -1       # 结束标记之后
    closed: bool = False


# ------------------------------------------------------------------
# 格式检测
# ------------------------------------------------------------------

def detect_format(text: str, grammar: Optional[MarkerGrammar] = None) -> ResponseFormat:
    if not text or not text.strip():
        return ResponseFormat.UNKNOWN
    grammar = grammar or get_grammar()

    has_files = grammar.has_file_markers(text)
    if has_files or (grammar.has_block(text, grammar.plan_tag) and grammar.has_block(text, grammar.explanation_tag)):
        v2_only = (grammar.meta_tag, grammar.batch_tag, grammar.manifest_tag)
        if has_files and any(grammar.has_block(text, tag) for tag in v2_only):
            return ResponseFormat.MARKER_V2
        return ResponseFormat.MARKER_V1

    if looks_like_search_replace(text):
        return ResponseFormat.SEARCH_REPLACE
    return ResponseFormat.UNKNOWN


# ------------------------------------------------------------------
# 标记格式
# ------------------------------------------------------------------

def _block_body(text: str, grammar: MarkerGrammar, tag: str) -> Optional[str]:
    match = grammar.block_pattern(tag).search(text)
    return match.group("body") if match else None


def parse_plan(text: str, grammar: Optional[MarkerGrammar] = None) -> FilePlan:
    grammar = grammar or get_grammar()
    plan = FilePlan()
    body = _block_body(text, grammar, grammar.plan_tag)
    if body is None:
        return plan
    for line in body.strip().splitlines():
        key, sep, value = line.partition(":")
        key = key.strip().lower()
        if not sep or key not in ("create", "update", "delete"):
            continue
        paths = [normalize_path(p) for p in value.split(",") if p.strip()]
        getattr(plan, key).extend(paths)
    return plan


def parse_manifest(text: str, grammar: Optional[MarkerGrammar] = None) -> List[Tuple[str, str, str]]:
    """
    解析 MANIFEST 表格，返回 (path, action, status) 列表。
    表格形如：| File | Action | Lines | Tokens | Status |
    """
    grammar = grammar or get_grammar()
    body = _block_body(text, grammar, grammar.manifest_tag)
    if body is None:
        return []
    entries = []
    for line in body.strip().splitlines():
        line = line.strip()
        if not line.startswith("|") or line.startswith("| File") or line.startswith("|--") or line.startswith("|-"):
            continue
        cells = [c.strip() for c in line.split("|") if c.strip()]
        if len(cells) < 4:
            continue
        action = cells[1].lower() if cells[1].lower() in ("create", "update", "delete") else "create"
        status = cells[4].lower() if len(cells) > 4 else "included"
        if status not in ("included", "pending", "marked", "skipped"):
            status = "included"
        entries.append((normalize_path(cells[0]), action, status))
    return entries


def _find_file_blocks(text: str, grammar: MarkerGrammar) -> List[_FileBlock]:
    """
    按出现顺序找出所有 FILE 块。
    每个块的结束标记只在它和下一个开始标记之间查找；找不到则 closed=False。
    """
    opener = grammar.file_open_pattern()
    openings = list(opener.finditer(text))
    blocks = []
    for i, match in enumerate(openings):
        limit = openings[i + 1].start() if i + 1 < len(openings) else len(text)
        block = _FileBlock(
            path=match.group("path").strip(),
            action=(match.group("action") or "").lower() or None,
            start=match.start(),
            body_start=match.end(),
        )
        close = grammar.file_close_pattern(block.path).search(text, match.end(), limit)
        if close:
            block.body_end = close.start()
            block.end = close.end()
            block.closed = True
        else:
            block.body_end = limit
            block.end = limit
        blocks.append(block)
    return blocks


def _strip_stray_markers(content: str, grammar: MarkerGrammar) -> str:
    """去掉未闭合块内容中残留的其它结束标记和 BATCH 等尾部块"""
    content = grammar.any_file_close_pattern().sub("", content)
    batch = grammar.marker_pattern(grammar.batch_tag).search(content)
    if batch:
        content = content[:batch.start()]
    return content


def _prose_explanation(text: str, grammar: MarkerGrammar, first_block: Optional[int]) -> str:
    """没有 EXPLANATION 块时，用第一个文件块之前、去掉其它块之后的文字作为说明"""
    prose = text[:first_block] if first_block is not None else text
    for tag in (grammar.meta_tag, grammar.plan_tag, grammar.manifest_tag, grammar.batch_tag):
        prose = grammar.block_pattern(tag).sub("", prose)
    prose = re.sub(re.escape(grammar.open_token) + r".*?" + re.escape(grammar.close_token), "", prose, flags=re.DOTALL)
    return prose.strip()


def _resolve_action(block: _FileBlock, plan: FilePlan) -> FileAction:
    if block.action:
        return FileAction(block.action)
    if block.path in plan.delete:
        return FileAction.DELETE
    if block.path in plan.update:
        return FileAction.UPDATE
    return FileAction.CREATE


def parse_marker(
    text: str,
    grammar: Optional[MarkerGrammar] = None,
    ignored_paths: Optional[Iterable[str]] = None,
) -> Optional[ChangeSet]:
    """解析标记格式响应。没有任何文件标记（也没有计划删除的文件）时返回 None。"""
    grammar = grammar or get_grammar()
    text = normalize_line_endings(text or "")
    plan = parse_plan(text, grammar)
    blocks = _find_file_blocks(text, grammar)
    if not blocks and not plan.delete:
        return None

    warnings: List[str] = []
    files: Dict[str, str] = {}
    actions: Dict[str, FileAction] = {}
    deleted = set()
    recovered: List[str] = []
    incomplete: List[str] = []

    def accept_path(raw: str) -> Optional[str]:
        path = normalize_path(raw)
        if is_unsafe_path(path):
            warnings.append(f"Rejected unsafe path '{raw}'")
            return None
        if is_ignored_path(path, ignored_paths):
            warnings.append(f"Ignored path '{raw}'")
            return None
        return path

    for raw_path in plan.delete:
        path = accept_path(raw_path)
        if path:
            deleted.add(path)
            actions[path] = FileAction.DELETE

    for i, block in enumerate(blocks):
        is_last = i == len(blocks) - 1
        path = accept_path(block.path)
        if path is None:
            continue
        action = _resolve_action(block, plan)

        if action is FileAction.DELETE:
            deleted.add(path)
            files.pop(path, None)
            actions[path] = action
            continue

        if not block.closed and is_last:
            # 响应在这个块中途结束：丢弃，交给续写/重试处理
            if path not in files:
                incomplete.append(path)
            continue

        content = text[block.body_start:block.body_end]
        if not block.closed:
            content = _strip_stray_markers(content, grammar)
        content = clean_generated_code(content)

        if not block.closed:
            if not content:
                continue
            recovered.append(path)
            warnings.append(f"File '{path}' had missing closing marker - recovered")

        deleted.discard(path)
        files[path] = content
        actions[path] = action

    for path, action, status in parse_manifest(text, grammar):
        if status == "included" and action != "delete" and path not in files:
            warnings.append(f"Manifest lists '{path}' as included but it was not received")

    truncated = bool(incomplete)
    planned = tuple(dict.fromkeys(
        p for p in plan.create + plan.update
        if not is_unsafe_path(p) and not is_ignored_path(p, ignored_paths)
    ))
    unrecovered = unrecovered_paths(planned, set(files) | deleted, incomplete) if truncated else ()
    batch_body = _block_body(text, grammar, grammar.batch_tag)
    batch = BatchInfo.from_lines(batch_body) if batch_body is not None else None

    explanation = _block_body(text, grammar, grammar.explanation_tag)
    if explanation is None:
        explanation = _prose_explanation(text, grammar, blocks[0].start if blocks else None)

    has_v2_blocks = any(
        grammar.has_block(text, tag) for tag in (grammar.meta_tag, grammar.batch_tag, grammar.manifest_tag)
    )
    return ChangeSet(
        explanation=explanation.strip(),
        files=files,
        deleted=frozenset(deleted),
        truncated=truncated,
        continuation=build_continuation(batch, list(files), unrecovered),
        incomplete_files=tuple(incomplete),
        recovered_files=tuple(recovered),
        actions=actions,
        warnings=tuple(warnings),
        format=ResponseFormat.MARKER_V2 if has_v2_blocks else ResponseFormat.MARKER_V1,
        planned_files=planned,
    )


# ------------------------------------------------------------------
# 入口
# ------------------------------------------------------------------

def _resolve_format(fmt) -> Optional[ResponseFormat]:
    if isinstance(fmt, ResponseFormat):
        return None if fmt is ResponseFormat.UNKNOWN else fmt
    try:
        return FORMAT_ALIASES[fmt]
    except KeyError:
        raise ValueError(f"Unknown response format '{fmt}'")


def parse_response(
    text: str,
    fmt="auto",
    grammar: Optional[MarkerGrammar] = None,
    max_response_size: int = DEFAULT_MAX_RESPONSE_SIZE,
    ignored_paths: Optional[Iterable[str]] = None,
) -> Optional[ParsedResponse]:
    """
    解析完整的模型响应。
    fmt 为 "auto" 时先做格式检测；超过 max_response_size 的响应按硬失败处理（返回 None）。
    """
    if not text or len(text) > max_response_size:
        return None
    grammar = grammar or get_grammar()
    target = _resolve_format(fmt) or detect_format(text, grammar)

    if target is ResponseFormat.SEARCH_REPLACE:
        return parse_search_replace(text, ignored_paths=ignored_paths)
    if target in (ResponseFormat.MARKER_V1, ResponseFormat.MARKER_V2):
        return parse_marker(text, grammar=grammar, ignored_paths=ignored_paths)
    return None


def parse_or_raise(text: str, **kwargs) -> ParsedResponse:
    """同 parse_response，但硬失败时抛出 HardParseFailure"""
    max_size = kwargs.get("max_response_size", DEFAULT_MAX_RESPONSE_SIZE)
    length = len(text or "")
    if length > max_size:
        raise HardParseFailure(
            f"Response too large ({length} chars, limit {max_size})", response_length=length
        )
    parsed = parse_response(text, **kwargs)
    if parsed is None:
        raise HardParseFailure(response_length=length)
    return parsed


# ------------------------------------------------------------------
# 流式进度
# ------------------------------------------------------------------

_JSON_FILE_KEY = re.compile(r'"([^"\n]+\.[A-Za-z0-9]+)"\s*:\s*[{"]')


def scan_progress(partial_text: str, grammar: Optional[MarkerGrammar] = None) -> ProgressSnapshot:
    """
    扫描尚未接收完的响应，给出文件计划和每个文件的状态。
    只读取文本，不产生 ChangeSet。
    """
    grammar = grammar or get_grammar()
    text = partial_text or ""
    fmt = detect_format(text, grammar)
    status: Dict[str, str] = {}

    if fmt is ResponseFormat.SEARCH_REPLACE or (fmt is ResponseFormat.UNKNOWN and "{" in text):
        plan = _scan_json_plan(text)
        for match in _JSON_FILE_KEY.finditer(text):
            status[match.group(1)] = "complete"
        if status:
            # 最后出现的文件可能还在输出中
            status[list(status)[-1]] = "streaming"
        return ProgressSnapshot(len(text), plan, status, fmt)

    plan = parse_plan(text, grammar)
    blocks = _find_file_blocks(text, grammar)
    for i, block in enumerate(blocks):
        # 后面已经开始了新的文件块，说明这个块已经输出完毕
        done = block.closed or i < len(blocks) - 1
        status[normalize_path(block.path)] = "complete" if done else "streaming"
    return ProgressSnapshot(len(text), plan, status, fmt)


def _scan_json_plan(text: str) -> FilePlan:
    return FilePlan(**parse_json_plan(text))

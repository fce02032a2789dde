# fluidcoder/core/merger.py
"""
合并引擎：把解析结果应用到基础 FileMap 上，得到新的 FileMap、统计与错误列表。

- 纯函数：不修改 base，不抛出补丁失败（失败记录在 MergeResult.errors 中）
- 按变更集的类型分派：ChangeSet（整文件）/ SearchReplaceChangeSet（补丁）
"""

from typing import List, Tuple

from .models import (
    ChangeSet,
    DeleteFile,
    FileMap,
    MergeError,
    MergeResult,
    MergeStats,
    NewFile,
    ParsedResponse,
    PatchFile,
    Replacement,
    SearchReplaceChangeSet,
)


def apply_replacements(content: str, replacements: Tuple[Replacement, ...]) -> Tuple[str, int, List[str]]:
    """
    依次应用替换对：每一对在“已被前面的对修改过的内容”中做精确、区分大小写的子串匹配，
    只替换第一次出现的位置。
    返回 (新内容, 成功数, 未命中的 search 列表)。
    """
    applied = 0
    missed = []
    for pair in replacements:
        index = content.find(pair.search)
        if index == -1:
            missed.append(pair.search)
            continue
        content = content[:index] + pair.replace + content[index + len(pair.search):]
        applied += 1
    return content, applied, missed


def _preview(text: str, limit: int = 60) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else text
    return first_line if len(first_line) <= limit else first_line[:limit] + "..."


def merge_change_set(base: FileMap, change_set: ChangeSet) -> MergeResult:
    """整文件模式：{**base, **files}，再去掉 deleted 中的路径"""
    stats = MergeStats()
    files = dict(base)
    for path, content in change_set.files.items():
        if path in base:
            stats.updated += 1
        else:
            stats.created += 1
        files[path] = content
    for path in change_set.deleted:
        # 删除不存在的文件是空操作
        if files.pop(path, None) is not None and path in base:
            stats.deleted += 1
    return MergeResult(files=files, stats=stats)


def merge_search_replace(base: FileMap, change_set: SearchReplaceChangeSet) -> MergeResult:
    """
    搜索/替换模式。单个补丁未命中只记一条错误，其余补丁和其余文件照常处理。
    """
    stats = MergeStats()
    errors: List[MergeError] = []
    files = dict(base)

    for path, change in change_set.changes.items():
        if isinstance(change, NewFile):
            if path in files:
                stats.updated += 1
            else:
                stats.created += 1
            files[path] = change.content
        elif isinstance(change, DeleteFile):
            if files.pop(path, None) is not None:
                stats.deleted += 1
        elif isinstance(change, PatchFile):
            if path not in files:
                errors.append(MergeError(
                    path=path,
                    reason=f"Cannot patch '{path}': file does not exist",
                    kind="missing_file",
                ))
                continue
            patched, applied, missed = apply_replacements(files[path], change.replacements)
            stats.replacements_applied += applied
            stats.replacements_failed += len(missed)
            for search in missed:
                errors.append(MergeError(path=path, reason=f"Search text not found: {_preview(search)!r}"))
            if applied:
                files[path] = patched
                stats.updated += 1
        else:
            raise TypeError(f"Unsupported file change type: {type(change).__name__}")

    for path in change_set.deleted:
        if files.pop(path, None) is not None:
            stats.deleted += 1

    return MergeResult(files=files, stats=stats, errors=errors)


def merge(base: FileMap, parsed: ParsedResponse) -> MergeResult:
    """按变更集类型分派到对应的合并实现"""
    if isinstance(parsed, ChangeSet):
        return merge_change_set(base, parsed)
    if isinstance(parsed, SearchReplaceChangeSet):
        return merge_search_replace(base, parsed)
    raise TypeError(f"Cannot merge object of type {type(parsed).__name__}")

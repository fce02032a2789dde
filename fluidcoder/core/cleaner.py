# fluidcoder/core/cleaner.py
"""
生成代码清洗：去掉包裹内容的 markdown 围栏和说明文字、统一换行符。
清洗是幂等的：对已清洗的内容再清洗一次结果不变。
"""

import re
from typing import Iterable, Optional

from .config import DEFAULT_IGNORED_PATHS

_INVISIBLE_PREFIX = re.compile(r"^[\ufeff\u200b-\u200d]+")
_LEADING_BLANK_LINES = re.compile(r"\A(?:[ \t]*\n)+")
# 整段内容被一个围栏包裹，围栏前允许有一行以冒号结尾的说明（"Here is the file:"）
_WRAPPING_FENCE = re.compile(
    r"\A(?:[^\n`]*:[ \t]*\n+)?```[\w.+#-]*[ \t]*\n(?P<body>.*?)\n?```[ \t]*\Z",
    re.DOTALL,
)


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _clean_once(code: str) -> str:
    cleaned = _INVISIBLE_PREFIX.sub("", normalize_line_endings(code))
    cleaned = _LEADING_BLANK_LINES.sub("", cleaned).rstrip()
    match = _WRAPPING_FENCE.match(cleaned)
    if match:
        cleaned = _LEADING_BLANK_LINES.sub("", match.group("body")).rstrip()
    return cleaned


def clean_generated_code(code: Optional[str]) -> str:
    """
    清洗模型生成的文件内容。反复应用单步清洗直到不再变化，
    因此对同一内容调用多次与调用一次的结果相同。
    """
    if not code:
        return ""
    previous = None
    cleaned = code
    while cleaned != previous:
        previous = cleaned
        cleaned = _clean_once(cleaned)
    return cleaned


def is_ignored_path(path: str, ignored: Optional[Iterable[str]] = None) -> bool:
    """是否位于 .git、node_modules 等不应进入虚拟文件系统的目录下"""
    normalized = path.replace("\\", "/")
    parts = normalized.split("/")
    return any(name in parts for name in (ignored if ignored is not None else DEFAULT_IGNORED_PATHS))


def is_unsafe_path(path: str) -> bool:
    """绝对路径、盘符路径或包含 .. 的路径不允许写入项目"""
    normalized = path.replace("\\", "/")
    if not normalized or normalized.startswith("/") or re.match(r"^[A-Za-z]:/", normalized):
        return True
    return ".." in normalized.split("/")


def normalize_path(path: str) -> str:
    """去掉首尾空白、反斜杠转斜杠、去掉开头的 ./"""
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized

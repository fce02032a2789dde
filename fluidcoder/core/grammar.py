# fluidcoder/core/grammar.py
"""
标记格式的分隔符语法。

分隔符是产品约定而不是公开标准，会随格式版本演进，
因此集中定义为可配置、带版本号的 MarkerGrammar，解析器只依赖这里生成的正则。
"""

import re
from dataclasses import dataclass
from typing import Dict, Pattern


@dataclass(frozen=True)
class MarkerGrammar:
    version: str
    open_token: str = "<!--"
    close_token: str = "-->"
    file_tag: str = "FILE"
    explanation_tag: str = "EXPLANATION"
    plan_tag: str = "PLAN"
    batch_tag: str = "BATCH"
    meta_tag: str = "META"
    manifest_tag: str = "MANIFEST"

    def _wrap(self, inner: str) -> str:
        return rf"{re.escape(self.open_token)}\s*{inner}\s*{re.escape(self.close_token)}"

    def block_pattern(self, tag: str) -> Pattern:
        """<!-- TAG --> ... <!-- /TAG -->"""
        return re.compile(
            self._wrap(re.escape(tag)) + r"(?P<body>.*?)" + self._wrap("/" + re.escape(tag)),
            re.DOTALL,
        )

    def marker_pattern(self, tag: str) -> Pattern:
        """只匹配开始标记，用于格式检测"""
        return re.compile(self._wrap(re.escape(tag)))

    def file_open_pattern(self) -> Pattern:
        """<!-- FILE:path [create|update|delete] -->"""
        return re.compile(
            self._wrap(
                re.escape(self.file_tag) + r":\s*(?P<path>[^\s>]+?)(?:\s+(?P<action>create|update|delete))?"
            ),
            re.IGNORECASE,
        )

    def file_close_pattern(self, path: str) -> Pattern:
        return re.compile(self._wrap("/" + re.escape(self.file_tag) + r":\s*" + re.escape(path)))

    def any_file_close_pattern(self) -> Pattern:
        return re.compile(self._wrap("/" + re.escape(self.file_tag) + r":[^\n]*?"))

    def has_file_markers(self, text: str) -> bool:
        return re.search(re.escape(self.open_token) + r"\s*" + re.escape(self.file_tag) + ":", text) is not None

    def has_block(self, text: str, tag: str) -> bool:
        return self.marker_pattern(tag).search(text) is not None

    def render_file(self, path: str, content: str) -> str:
        """按本语法输出一个文件块（供测试与示例响应使用）"""
        return (
            f"{self.open_token} {self.file_tag}:{path} {self.close_token}\n"
            f"{content}\n"
            f"{self.open_token} /{self.file_tag}:{path} {self.close_token}"
        )


GRAMMARS: Dict[str, MarkerGrammar] = {
    # v1: 只有 FILE / EXPLANATION / PLAN
    "v1": MarkerGrammar(version="v1"),
    # v2: 增加 META / MANIFEST / BATCH
    "v2": MarkerGrammar(version="v2"),
}


def register_grammar(grammar: MarkerGrammar) -> None:
    GRAMMARS[grammar.version] = grammar


def get_grammar(version: str = "v2") -> MarkerGrammar:
    try:
        return GRAMMARS[version]
    except KeyError:
        raise ValueError(f"Unknown marker grammar version '{version}'. Known: {', '.join(sorted(GRAMMARS))}")

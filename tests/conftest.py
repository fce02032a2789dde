# tests/conftest.py
"""
FluidCoder 测试配置和共享 fixtures
"""

import os
import tempfile
from pathlib import Path

import pytest

from fluidcoder.core.grammar import get_grammar


def file_block(path: str, content: str, action: str = None) -> str:
    """按默认 v2 语法输出一个完整的 FILE 块"""
    opener = f"<!-- FILE:{path} {action} -->" if action else f"<!-- FILE:{path} -->"
    return f"{opener}\n{content}\n<!-- /FILE:{path} -->"


def batch_block(current: int, total: int, complete: bool, completed, remaining) -> str:
    return (
        "<!-- BATCH -->\n"
        f"current: {current}\n"
        f"total: {total}\n"
        f"isComplete: {'true' if complete else 'false'}\n"
        f"completed: {', '.join(completed)}\n"
        f"remaining: {', '.join(remaining)}\n"
        "<!-- /BATCH -->"
    )


def scripted_transport(*responses, chunk_size: int = 16):
    """
    按顺序返回预先写好的响应，按 chunk_size 切成分片。
    调用记录保存在 generate.calls 中：[(prompt, system_instruction), ...]
    """
    remaining = list(responses)
    calls = []

    def generate(prompt, system_instruction=None):
        calls.append((prompt, system_instruction))
        text = remaining.pop(0)
        return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]

    generate.calls = calls
    return generate


class FakeTimer:
    """threading.Timer 的替身：不启动线程，由测试手动触发"""

    created = []

    def __init__(self, seconds, function):
        self.seconds = seconds
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


# --- Pytest Fixtures ---

@pytest.fixture(scope="function")
def isolated_filesystem():
    """
    提供一个隔离的临时文件系统。
    在测试前后自动创建和清理临时目录，并切换当前工作目录。
    """
    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)
        original_cwd = os.getcwd()
        os.chdir(temp_path)
        (temp_path / ".fluidcoder").mkdir(parents=True, exist_ok=True)
        yield temp_path
        os.chdir(original_cwd)


@pytest.fixture
def runner():
    """提供一个 Click CliRunner 实例用于测试 CLI 命令"""
    from click.testing import CliRunner
    return CliRunner()


@pytest.fixture
def grammar():
    return get_grammar("v2")


@pytest.fixture
def base_files():
    return {
        "src/App.tsx": "import React from 'react';\n\nexport default function App() {\n  return <div>Hello</div>;\n}",
        "src/index.ts": "import App from './App';",
        "README.md": "# Demo",
    }


@pytest.fixture
def fake_timer():
    FakeTimer.created = []
    yield FakeTimer
    FakeTimer.created = []

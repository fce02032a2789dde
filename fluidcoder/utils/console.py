# fluidcoder/utils/console.py
"""
统一的控制台输出工具，基于 rich 实现结构化的 CLI 交互。
"""
from rich.console import Console as RichConsole
from rich.theme import Theme
from rich.table import Table
from typing import Iterable, Optional

# 自定义主题
CUSTOM_THEME = Theme({
    "info": "cyan bold",
    "success": "green bold",
    "warning": "yellow bold",
    "error": "red bold",
    "heading": "bold underline",
    "path": "magenta",
    "added": "green",
    "removed": "red",
    "lineno": "dim",
    "prompt": "green",
})

# 全局控制台实例（单例）
console = RichConsole(theme=CUSTOM_THEME, soft_wrap=True)


# --- 便捷输出函数 ---

def info(message: str):
    console.print(f"💡 [info]INFO[/info]: {message}")


def success(message: str):
    console.print(f"✅ [success]SUCCESS[/success]: {message}")


def warning(message: str):
    console.print(f"⚠️  [warning]WARNING[/warning]: {message}")


def error(message: str):
    console.print(f"❌ [error]ERROR[/error]: {message}")


def heading(title: str):
    console.print(f"\n🎯 [heading]{title}[/heading]\n")


# --- 交互式输入 ---

def confirm(prompt: str, default: bool = True) -> bool:
    """确认对话（Y/N）"""
    yes_no = "\\[Y/n]" if default else "\\[y/N]"
    response = console.input(f"❓ {prompt} {yes_no}: ").strip().lower()
    if not response:
        return default
    return response in ("y", "yes", "是")


# --- 表格与结构化输出 ---

def print_table(data: list, headers: list = None, title: str = "📋 结果列表"):
    table = Table(title=title, show_header=True, header_style="bold magenta")

    if headers:
        for h in headers:
            table.add_column(h)
    else:
        table.add_column("字段")
        table.add_column("值")

    for row in data:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def print_warnings(messages: Iterable[str], limit: int = 20):
    messages = list(messages)
    for message in messages[:limit]:
        warning(message)
    if len(messages) > limit:
        console.print(f"   ... 另有 {len(messages) - limit} 条警告")


# --- 差异输出 ---

_STATUS_STYLE = {
    "added": "[added]A[/added]",
    "deleted": "[removed]D[/removed]",
    "modified": "[warning]M[/warning]",
    "unchanged": " ",
}


def print_diff_summary(summary, title: str = "📝 变更概览"):
    """文件列表 + 每个文件的增删行数"""
    rows = [
        (_STATUS_STYLE.get(f.status, "?"), f"[path]{f.path}[/path]", f"[added]+{f.added}[/added]",
         f"[removed]-{f.removed}[/removed]")
        for f in summary.changed_files
    ]
    rows.append(("", "[bold]Total[/bold]", f"[added]+{summary.total_added}[/added]",
                 f"[removed]-{summary.total_removed}[/removed]"))
    print_table(rows, headers=["", "File", "Added", "Removed"], title=title)


def print_file_diff(file_diff, context: int = 3, max_lines: Optional[int] = 400):
    """逐行差异，只显示变更行附近 context 行"""
    lines = file_diff.lines
    keep = set()
    for i, line in enumerate(lines):
        if line.kind != "unchanged":
            keep.update(range(max(0, i - context), min(len(lines), i + context + 1)))

    console.print(f"\n[heading]{file_diff.path}[/heading] ({file_diff.status})")
    shown = 0
    previous = None
    for i in sorted(keep):
        if previous is not None and i != previous + 1:
            console.print("[lineno]   ...[/lineno]")
        previous = i
        line = lines[i]
        old_no = str(line.old_number or "").rjust(4)
        new_no = str(line.new_number or "").rjust(4)
        text = line.content.replace("[", "\\[")
        if line.kind == "added":
            console.print(f"[lineno]{old_no} {new_no}[/lineno] [added]+ {text}[/added]")
        elif line.kind == "removed":
            console.print(f"[lineno]{old_no} {new_no}[/lineno] [removed]- {text}[/removed]")
        else:
            console.print(f"[lineno]{old_no} {new_no}[/lineno]   {text}")
        shown += 1
        if max_lines is not None and shown >= max_lines:
            console.print("[lineno]   ... (truncated)[/lineno]")
            break


def print_diff(summary, show_lines: bool = True):
    print_diff_summary(summary)
    if show_lines:
        for file_diff in summary.changed_files:
            print_file_diff(file_diff)


def show_welcome():
    console.print("\n" + "═" * 50, style="bold blue")
    console.print("🚀 [bold green]FluidCoder CLI[/bold green] - 模型响应 → 可审阅的项目变更")
    console.print("═" * 50 + "\n", style="bold blue")

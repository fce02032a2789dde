# fluidcoder/cli.py
"""
FluidCoder CLI 主入口：把模型响应文件应用到版本化的项目状态上（带差异审阅）。
"""
import click
import yaml
from datetime import datetime
from pathlib import Path
from typing import Dict

from rich.panel import Panel

from fluidcontext import ContextTrackerRegistry, FileContextTracker
from fluidhistory import FileHistoryStore, HistoryIndexError

from fluidcoder import __version__
from fluidcoder.core.cleaner import is_ignored_path
from fluidcoder.core.config import CONFIG_DIR, CONFIG_FILE, PipelineConfig, load_config
from fluidcoder.core.continuation import GenerationOutcome, GenerationState
from fluidcoder.core.errors import ConfigError
from fluidcoder.core.grammar import get_grammar
from fluidcoder.core.merger import merge
from fluidcoder.core.parser import parse_response
from fluidcoder.core.prompt import render_file_context
from fluidcoder.core.review import compute_diff
from fluidcoder.core.session import GenerationSession
from fluidcoder.init import init_project, validate_config_content
from fluidcoder.utils.console import (
    console, info, success, warning, error,
    heading, show_welcome, confirm, print_table, print_diff, print_warnings
)

HISTORY_DIR = CONFIG_DIR / "history"
CONTEXT_DIR = CONFIG_DIR / "context"

# ------------------------------
# CLI 主入口
# ------------------------------

@click.group(invoke_without_command=True)
@click.version_option(__version__, message="FluidCoder CLI v%(version)s")
@click.option("--project", "-p", default=None, help="Project id used for history storage")
@click.pass_context
def cli(ctx, project):
    """🤖 FluidCoder - apply model responses to a versioned project"""
    ctx.ensure_object(dict)
    ctx.obj['PROJECT'] = project
    if ctx.invoked_subcommand is None:
        show_welcome()
        click.echo(ctx.get_help())

# ------------------------------
# 辅助函数
# ------------------------------

def _load_pipeline_config() -> PipelineConfig:
    try:
        return load_config(CONFIG_FILE)
    except ConfigError as e:
        error(str(e))
        raise click.Abort()


def _project_id(ctx) -> str:
    """--project 优先，其次 config.yaml 中的 project.name，最后是当前目录名"""
    if ctx.obj.get('PROJECT'):
        return ctx.obj['PROJECT']
    if CONFIG_FILE.exists():
        try:
            data = yaml.safe_load(CONFIG_FILE.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            error(f"Failed to read config.yaml: {e}")
            raise click.Abort()
        name = (data.get("project") or {}).get("name") if isinstance(data, dict) else None
        if name:
            return str(name)
    return Path(".").resolve().name


def _history_store() -> FileHistoryStore:
    return FileHistoryStore(HISTORY_DIR)


def _context_file(context_id: str) -> Path:
    safe_id = "".join(c for c in context_id if c.isalnum() or c in ('-', '_'))
    if not safe_id:
        error(f"Invalid context id: {context_id}")
        raise click.Abort()
    return CONTEXT_DIR / f"{safe_id}.yaml"


def _load_registry(context_id: str) -> ContextTrackerRegistry:
    registry = ContextTrackerRegistry()
    path = _context_file(context_id)
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            error(f"Failed to read context state {path}: {e}")
            raise click.Abort()
        registry.register(FileContextTracker.from_dict(data))
    return registry


def _save_registry(registry: ContextTrackerRegistry, context_id: str) -> None:
    path = _context_file(context_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(registry.get(context_id).to_dict(), allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )


def _load_session(ctx, context_id: str = "default") -> GenerationSession:
    """
    Helper function: load config, history and context state, then build a GenerationSession.
    """
    config = _load_pipeline_config()
    try:
        store = _history_store().load_store(_project_id(ctx), max_entries=config.history_max_entries)
    except ValueError as e:
        error(str(e))
        raise click.Abort()
    return GenerationSession(
        store=store, config=config, registry=_load_registry(context_id), context_id=context_id
    )


def _save_session(ctx, session: GenerationSession) -> None:
    _history_store().save_store(_project_id(ctx), session.store)
    _save_registry(session.registry, session.context_id)


def _read_response(response_file: str) -> str:
    try:
        return Path(response_file).read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        error(f"Failed to read response file '{response_file}': {e}")
        raise click.Abort()


def _read_tree(directory: Path, ignored) -> Dict[str, str]:
    files = {}
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        rel = path.relative_to(directory).as_posix()
        if is_ignored_path(rel, ignored) or rel.startswith(".fluidcoder/"):
            continue
        try:
            files[rel] = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            warning(f"Skipped binary file: {rel}")
    return files


def _report_outcome(outcome: GenerationOutcome) -> None:
    if outcome.explanation:
        console.print(Panel(outcome.explanation, title="💬 Explanation", border_style="blue"))
    print_warnings(outcome.warnings)
    result = outcome.merge_result
    if result is not None:
        stats = result.stats
        info(
            f"created {stats.created}, updated {stats.updated}, deleted {stats.deleted}, "
            f"replacements {stats.replacements_applied} applied / {stats.replacements_failed} failed"
        )
        if not result.success:
            warning(f"Some edits did not apply: {', '.join(result.failed_paths)}")
    if outcome.incomplete_files:
        warning(f"Incomplete files (not applied): {', '.join(outcome.incomplete_files)}")
    if outcome.state is GenerationState.AWAITING_CONTINUATION and outcome.continuation:
        cont = outcome.continuation
        info(
            f"Batch {cont.current_batch}/{cont.total_batches}: "
            f"{len(cont.completed_files)}/{cont.total_files_planned} files done"
        )
        console.print(Panel(cont.next_prompt, title="➡️  Next prompt", border_style="green"))
    elif outcome.retry_prompt:
        console.print(Panel(outcome.retry_prompt, title="🔁 Retry prompt for incomplete files", border_style="yellow"))

# ------------------------------
# 命令: init / validate
# ------------------------------

@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Use defaults without prompting")
def init(yes):
    """🔧 Initialize project configuration"""
    heading("Project Initialization")
    if CONFIG_FILE.exists() and not yes:
        if not confirm(f"{CONFIG_FILE} already exists. Overwrite?", default=False):
            info("Cancelled.")
            return
    config_content = init_project(interactive=not yes)
    validate_config_content(config_content)
    CONFIG_DIR.mkdir(exist_ok=True)
    HISTORY_DIR.mkdir(exist_ok=True)
    CONFIG_FILE.write_text(config_content, encoding="utf-8")
    success(f"Generated: {CONFIG_FILE}")


@cli.command(name="validate")
def config_validate():
    """✅ Validate config.yaml"""
    heading("Validating Configuration")
    if not CONFIG_FILE.exists():
        error("Configuration file missing. Please run `fluidcoder init` first.")
        raise click.Abort()
    validate_config_content(CONFIG_FILE.read_text(encoding="utf-8"))
    success("Configuration file validated successfully!")

# ------------------------------
# 命令: import / export
# ------------------------------

@cli.command(name="import")
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.pass_context
def import_tree(ctx, directory):
    """📥 Reset project history from a directory tree"""
    session = _load_session(ctx)
    files = _read_tree(Path(directory), session.config.ignored_paths)
    if len(session.store) > 1 and not confirm("This replaces the existing history. Continue?", default=False):
        info("Cancelled.")
        return
    session.reset(files)
    _save_session(ctx, session)
    success(f"Imported {len(files)} files from {directory}")


@cli.command()
@click.argument("directory", type=click.Path(file_okay=False))
@click.pass_context
def export(ctx, directory):
    """📤 Write the current project files to a directory"""
    session = _load_session(ctx)
    target = Path(directory)
    for path, content in session.store.files.items():
        out = target / path
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(content, encoding="utf-8")
    success(f"Exported {len(session.store.files)} files to {target}")

# ------------------------------
# 命令: apply / diff
# ------------------------------

@cli.command()
@click.argument("response_file", type=click.Path(exists=True))
@click.option("--format", "fmt", type=click.Choice(["auto", "marker", "search_replace"]), default=None,
              help="Response format (default: from config)")
@click.option("--label", "-l", default=None, help="History label for the commit")
@click.option("--yes", "-y", is_flag=True, help="Commit without the review prompt")
@click.option("--context", "context_id", default="default", help="Conversation context id")
@click.pass_context
def apply(ctx, response_file, fmt, label, yes, context_id):
    """💾 Parse a model response, review the diff and commit it"""
    heading(f"Applying response: {response_file}")
    session = _load_session(ctx, context_id)
    outcome = session.apply_response(_read_response(response_file), label=label, fmt=fmt)
    _report_outcome(outcome)

    if outcome.failed:
        error(outcome.error or "Generation failed")
        raise click.Abort()

    if session.gate.has_pending:
        if session.last_diff is not None:
            print_diff(session.last_diff)
        if yes or confirm("Apply these changes?", default=True):
            entry = session.confirm()
            success(f"Committed: {entry.label}")
        else:
            session.reject()
            info("Changes discarded.")
    else:
        success(f"Committed: {session.store.current_entry.label}")

    _save_session(ctx, session)


@cli.command()
@click.argument("response_file", type=click.Path(exists=True))
@click.option("--format", "fmt", type=click.Choice(["auto", "marker", "search_replace"]), default=None)
@click.pass_context
def diff(ctx, response_file, fmt):
    """🔍 Preview the diff a response would produce (nothing is committed)"""
    session = _load_session(ctx)
    config = session.config
    parsed = parse_response(
        _read_response(response_file),
        fmt=fmt or config.response_format,
        grammar=get_grammar(config.grammar_version),
        max_response_size=config.max_response_size,
        ignored_paths=config.ignored_paths,
    )
    if parsed is None:
        error("No recognizable file content in response")
        raise click.Abort()
    print_warnings(parsed.warnings)
    if parsed.unrecovered_files:
        warning(f"Incomplete files (not applied): {', '.join(parsed.unrecovered_files)}")
    result = merge(session.store.files, parsed)
    print_warnings(e.reason for e in result.errors)
    print_diff(compute_diff(session.store.files, result.files))

# ------------------------------
# history 命令组
# ------------------------------

@cli.group()
def history():
    """🕘 Undo / redo / time travel"""
    pass


@history.command(name="list")
@click.pass_context
def history_list(ctx):
    """📄 List history entries"""
    session = _load_session(ctx)
    rows = []
    for i, entry in enumerate(session.store.history):
        marker = "👉" if i == session.store.current_index else ""
        ts = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S")
        rows.append((marker, i, entry.label, entry.type.value, len(entry.changed_files), ts))
    print_table(rows, headers=["", "#", "Label", "Type", "Changed", "Time"], title="🕘 History")


@history.command(name="undo")
@click.pass_context
def history_undo(ctx):
    session = _load_session(ctx)
    if not session.store.undo():
        warning("Nothing to undo.")
        return
    _save_session(ctx, session)
    success(f"Now at #{session.store.current_index}: {session.store.current_entry.label}")


@history.command(name="redo")
@click.pass_context
def history_redo(ctx):
    session = _load_session(ctx)
    if not session.store.redo():
        warning("Nothing to redo.")
        return
    _save_session(ctx, session)
    success(f"Now at #{session.store.current_index}: {session.store.current_entry.label}")


@history.command(name="goto")
@click.argument("index", type=int)
@click.pass_context
def history_goto(ctx, index):
    """⏪ Jump to a history entry without discarding later entries"""
    session = _load_session(ctx)
    try:
        entry = session.store.go_to_index(index)
    except HistoryIndexError as e:
        error(str(e))
        raise click.Abort()
    _save_session(ctx, session)
    success(f"Now at #{index}: {entry.label}")


@history.command(name="snapshot")
@click.argument("name")
@click.pass_context
def history_snapshot(ctx, name):
    """📌 Save a named checkpoint"""
    session = _load_session(ctx)
    entry = session.store.snapshot(name)
    _save_session(ctx, session)
    success(f"Snapshot saved: {entry.label}")

# ------------------------------
# context 命令组
# ------------------------------

@cli.group()
def context():
    """🧠 File context delta tracking"""
    pass


@context.command(name="delta")
@click.argument("context_id", default="default")
@click.option("--render", is_flag=True, help="Render the prompt file section")
@click.option("--mark-shared", is_flag=True, help="Record the current files as sent")
@click.pass_context
def context_delta(ctx, context_id, render, mark_shared):
    """📊 Show what changed since files were last shared with the model"""
    session = _load_session(ctx, context_id)
    delta = session.delta()
    rows = [(kind, len(paths), ", ".join(paths[:8]) + (" ..." if len(paths) > 8 else ""))
            for kind, paths in delta.to_dict().items()]
    print_table(rows, headers=["Kind", "Count", "Files"], title=f"🧠 Context: {context_id}")
    if render:
        console.print(render_file_context(delta, session.store.files), markup=False)
    if mark_shared:
        session.registry.mark_shared(context_id, session.store.files)
        _save_registry(session.registry, context_id)
        success("Marked current files as shared.")


@context.command(name="clear")
@click.argument("context_id")
def context_clear(context_id):
    """🧹 Forget what was shared in a context"""
    path = _context_file(context_id)
    if path.exists():
        path.unlink()
        success(f"Cleared context '{context_id}'")
    else:
        info(f"Context '{context_id}' has no saved state")

# ------------------------------
# 主入口
# ------------------------------
if __name__ == '__main__':
    cli(obj={})

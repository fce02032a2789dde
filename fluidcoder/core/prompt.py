# fluidcoder/core/prompt.py
"""
续写 / 补齐缺失文件 / 文件上下文 提示词的渲染（Jinja2 模板）。
"""

from pathlib import Path
from typing import Dict, Iterable, Optional

import jinja2

from fluidcontext.core.models import FileDelta

# 📁 模板根目录（相对于包目录）
TEMPLATES_DIR = Path(__file__).parent.parent / "templates"

ALIASES = {
    'continuation': 'prompts/continuation.md.j2',
    'missing': 'prompts/missing_files.md.j2',
    'context': 'prompts/file_context.md.j2',
    'config': 'config.yaml.j2',
}

_env: Optional[jinja2.Environment] = None


def _get_env() -> jinja2.Environment:
    global _env
    if _env is None:
        loader = jinja2.FileSystemLoader(str(TEMPLATES_DIR))
        _env = jinja2.Environment(loader=loader, autoescape=False, trim_blocks=True, lstrip_blocks=True)
    return _env


def _resolve_template_path(template: str) -> str:
    if template in ALIASES:
        template = ALIASES[template]
    if not template.endswith('.j2'):
        template += '.j2'
    return template


def render(template: str, **context) -> str:
    template_path = _resolve_template_path(template)
    try:
        tpl = _get_env().get_template(template_path)
    except jinja2.TemplateNotFound:
        raise FileNotFoundError(f"Template not found: {template_path}")
    return tpl.render(**context).strip()


def render_continuation_prompt(
    completed_files: Iterable[str],
    remaining_files: Iterable[str],
    current_batch: int,
    total_batches: int,
    hint: Optional[str] = None,
    original_request: Optional[str] = None,
) -> str:
    return render(
        'continuation',
        completed_files=list(completed_files),
        remaining_files=list(remaining_files),
        next_batch=current_batch + 1,
        total_batches=max(total_batches, current_batch + 1),
        hint=hint,
        original_request=original_request,
    )


def render_missing_files_prompt(
    missing_files: Iterable[str],
    existing_files: Iterable[str] = (),
    original_request: Optional[str] = None,
    reason: str = "These files are missing from the project.",
) -> str:
    return render(
        'missing',
        missing_files=list(missing_files),
        existing_files=sorted(existing_files),
        original_request=original_request,
        reason=reason,
    )


def render_file_context(delta: FileDelta, files: Dict[str, str]) -> str:
    """根据增量渲染提示词的项目文件部分：新增/修改的文件给全文，其余只列路径"""
    return render(
        'context',
        files=files,
        new_files=delta.new,
        changed_files=delta.changed,
        unchanged_files=delta.unchanged,
        deleted_files=delta.deleted,
    )

# fluidcoder/init.py
"""
项目初始化模块 (CLI 层交互与渲染)
此模块通过 CLI 交互收集信息并渲染配置文件内容，
文件的实际创建由 CLI 层 (fluidcoder/cli.py) 执行。
"""

from pathlib import Path

import click
import yaml

from fluidcoder.core.config import DEFAULT_IGNORED_PATHS, PipelineConfig
from fluidcoder.core.errors import ConfigError
from fluidcoder.core.prompt import render


def render_config(
    project_name: str,
    response_format: str = "auto",
    auto_accept: bool = False,
    auto_continue: bool = False,
    ignored_paths=None,
) -> str:
    """渲染 config.yaml 内容"""
    return render(
        'config',
        project_name=project_name,
        response_format=response_format,
        auto_accept=auto_accept,
        auto_continue=auto_continue,
        ignored_paths=list(ignored_paths if ignored_paths is not None else DEFAULT_IGNORED_PATHS),
    ) + "\n"


def init_project(interactive: bool = True) -> str:
    """
    交互式初始化项目，返回渲染好的 config 内容字符串。
    """
    project_name = Path(".").resolve().name
    if not interactive:
        return render_config(project_name)

    response_format = click.prompt(
        "响应格式",
        type=click.Choice(["auto", "marker", "search_replace"]),
        default="auto",
    )
    auto_accept = click.confirm("跳过审阅，自动接受变更?", default=False)
    auto_continue = click.confirm("多批次生成时自动续写?", default=False)
    return render_config(project_name, response_format, auto_accept, auto_continue)


def validate_config_content(content: str) -> PipelineConfig:
    """验证配置内容字符串的合法性"""
    click.echo("🔍 正在验证配置内容... ")
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        click.echo(click.style("❌ YAML 语法错误！", fg="red"))
        click.echo(f"   {e}")
        raise click.Abort()

    try:
        config = PipelineConfig.from_dict(data)
    except ConfigError as e:
        click.echo(click.style(f"❌ 错误：{e}", fg="red"))
        raise click.Abort()

    click.echo(f"📦 响应格式: {config.response_format} / 标记语法 {config.grammar_version}")
    click.echo(click.style(f"✅ ignored_paths: {len(config.ignored_paths)} 个忽略目录", fg="green"))
    click.echo(click.style("🎉 配置内容验证通过！", fg="green"))
    return config

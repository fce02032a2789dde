# fluidcoder/core/config.py
"""
管线配置：从 .fluidcoder/config.yaml 读取，缺省项使用默认值。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigError

CONFIG_DIR = Path(".fluidcoder")
CONFIG_FILE = CONFIG_DIR / "config.yaml"

DEFAULT_IGNORED_PATHS = [
    ".git", "node_modules", ".next", ".nuxt", "dist", "build", ".cache", ".DS_Store", "Thumbs.db",
]

RESPONSE_FORMATS = ("auto", "marker", "search_replace")


@dataclass
class PipelineConfig:
    response_format: str = "auto"
    grammar_version: str = "v2"
    max_response_size: int = 500000
    max_retries: int = 3
    auto_continue_seconds: float = 10.0
    auto_continue: bool = False
    max_batches: int = 5
    auto_accept: bool = False
    history_max_entries: int = 50
    ignored_paths: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORED_PATHS))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'PipelineConfig':
        """
        从 YAML 结构创建配置。未知字段被忽略，类型错误抛出 ConfigError。
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("Config content must be a YAML mapping")

        pipeline = _section(data, "pipeline")
        review = _section(data, "review")
        history = _section(data, "history")
        config = cls()

        config.response_format = _typed(pipeline, "response_format", str, config.response_format)
        if config.response_format not in RESPONSE_FORMATS:
            raise ConfigError(
                f"pipeline.response_format must be one of {', '.join(RESPONSE_FORMATS)}, "
                f"got '{config.response_format}'"
            )
        config.grammar_version = _typed(pipeline, "grammar_version", str, config.grammar_version)
        config.max_response_size = _typed(pipeline, "max_response_size", int, config.max_response_size)
        config.max_retries = _typed(pipeline, "max_retries", int, config.max_retries)
        config.auto_continue_seconds = float(
            _typed(pipeline, "auto_continue_seconds", (int, float), config.auto_continue_seconds)
        )
        config.auto_continue = _typed(pipeline, "auto_continue", bool, config.auto_continue)
        config.max_batches = _typed(pipeline, "max_batches", int, config.max_batches)
        config.auto_accept = _typed(review, "auto_accept", bool, config.auto_accept)
        config.history_max_entries = _typed(history, "max_entries", int, config.history_max_entries)

        ignored = data.get("ignored_paths", config.ignored_paths)
        if not isinstance(ignored, list):
            raise ConfigError("ignored_paths must be a list")
        config.ignored_paths = [str(p) for p in ignored]

        if config.max_retries < 1:
            raise ConfigError("pipeline.max_retries must be >= 1")
        return config


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _typed(section: Dict[str, Any], key: str, expected, default):
    if key not in section or section[key] is None:
        return default
    value = section[key]
    # bool 是 int 的子类，单独排除
    if expected is int and isinstance(value, bool):
        raise ConfigError(f"'{key}' must be an integer")
    if not isinstance(value, expected):
        raise ConfigError(f"'{key}' has invalid type {type(value).__name__}")
    return value


def load_config(path: Union[str, Path, None] = None) -> PipelineConfig:
    """加载配置文件；文件不存在时返回默认配置"""
    config_path = Path(path) if path else CONFIG_FILE
    if not config_path.exists():
        return PipelineConfig()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read {config_path}: {e}") from e
    return PipelineConfig.from_dict(data)

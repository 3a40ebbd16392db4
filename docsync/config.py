"""Configuration loading for docsync (.docsync.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

CONFIG_FILENAME = ".docsync.yml"


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed or is invalid."""


@dataclass
class KnowledgeConfig:
    """Where the knowledge pack and its routing table live."""

    root: str = ".knowledge"
    routing_table: str = "ROUTING.md"
    include: List[str] = field(default_factory=lambda: ["**/*.md"])
    appendix_heading: str = "Appendix"


@dataclass
class DiffConfig:
    """Diff extraction settings passed to git."""

    similarity_threshold: int = 50
    context_lines: int = 3


@dataclass
class GuardConfig:
    """Safety limits applied to every run."""

    budget_bytes: int = 24_000
    file_count_ceiling: int = 20
    max_revision_requests: Optional[int] = 10
    min_interval_seconds: float = 60.0


@dataclass
class LLMConfig:
    """Content-revision runtime settings."""

    runner: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: float = 120.0
    concurrency: int = 4


@dataclass
class PublishConfig:
    """Branch and review-request settings."""

    branch_prefix: str = "docsync/"
    base_branch: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    push: bool = True


@dataclass
class DocSyncConfig:
    """Represents the settings defined in .docsync.yml."""

    root: Path
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    guards: GuardConfig = field(default_factory=GuardConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    templates_dir: Optional[Path] = None

    @property
    def knowledge_root(self) -> Path:
        return self.root / self.knowledge.root

    @property
    def routing_table_path(self) -> Path:
        return self.knowledge_root / self.knowledge.routing_table

    @property
    def state_dir(self) -> Path:
        return self.root / ".docsync"


def load_config(config_path: Path) -> DocSyncConfig:
    """Load configuration from disk, falling back to defaults when absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return DocSyncConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    config = DocSyncConfig(root=root)

    knowledge_data = _as_dict(data.get("knowledge"))
    if knowledge_data:
        knowledge = config.knowledge
        knowledge.root = _as_str(knowledge_data.get("root")) or knowledge.root
        knowledge.routing_table = (
            _as_str(knowledge_data.get("routing_table")) or knowledge.routing_table
        )
        include = _as_str_list(knowledge_data.get("include"))
        if include:
            knowledge.include = include
        knowledge.appendix_heading = (
            _as_str(knowledge_data.get("appendix_heading")) or knowledge.appendix_heading
        )

    diff_data = _as_dict(data.get("diff"))
    if diff_data:
        threshold = _as_int(diff_data.get("similarity_threshold"))
        if threshold is not None:
            if not 0 <= threshold <= 100:
                raise ConfigError("diff.similarity_threshold must be between 0 and 100")
            config.diff.similarity_threshold = threshold
        context = _as_int(diff_data.get("context_lines"))
        if context is not None:
            config.diff.context_lines = _non_negative(context, "diff.context_lines")

    guard_data = _as_dict(data.get("guards"))
    if guard_data:
        guards = config.guards
        budget = _as_int(guard_data.get("budget_bytes"))
        if budget is not None:
            guards.budget_bytes = _positive(budget, "guards.budget_bytes")
        ceiling = _as_int(guard_data.get("file_count_ceiling"))
        if ceiling is not None:
            guards.file_count_ceiling = _non_negative(ceiling, "guards.file_count_ceiling")
        if "max_revision_requests" in guard_data:
            limit = _as_int(guard_data.get("max_revision_requests"))
            guards.max_revision_requests = (
                _non_negative(limit, "guards.max_revision_requests") if limit is not None else None
            )
        interval = _as_float(guard_data.get("min_interval_seconds"))
        if interval is not None:
            if interval < 0:
                raise ConfigError("guards.min_interval_seconds must not be negative")
            guards.min_interval_seconds = interval

    llm_data = _as_dict(data.get("llm"))
    if llm_data:
        llm = config.llm
        llm.runner = _as_str(llm_data.get("runner"))
        llm.model = _as_str(llm_data.get("model"))
        llm.temperature = _as_float(llm_data.get("temperature"))
        llm.max_tokens = _as_int(llm_data.get("max_tokens"))
        llm.base_url = _as_str(llm_data.get("base_url"))
        llm.api_key = _as_str(llm_data.get("api_key"))
        timeout = _as_float(llm_data.get("request_timeout"))
        if timeout is not None:
            if timeout <= 0:
                raise ConfigError("llm.request_timeout must be positive")
            llm.request_timeout = timeout
        concurrency = _as_int(llm_data.get("concurrency"))
        if concurrency is not None:
            llm.concurrency = _positive(concurrency, "llm.concurrency")

    templates_dir = _as_str(data.get("templates_dir"))
    if templates_dir:
        config.templates_dir = root / templates_dir

    publish_data = _as_dict(data.get("publish"))
    if publish_data:
        publish = config.publish
        publish.branch_prefix = _as_str(publish_data.get("branch_prefix")) or publish.branch_prefix
        publish.base_branch = _as_str(publish_data.get("base_branch"))
        publish.labels = _as_str_list(publish_data.get("labels"))
        push = _as_bool(publish_data.get("push"))
        if push is not None:
            publish.push = push

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _positive(value: int, name: str) -> int:
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value


def _non_negative(value: int, name: str) -> int:
    if value < 0:
        raise ConfigError(f"{name} must not be negative")
    return value


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []

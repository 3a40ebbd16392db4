"""Jinja2 rendering for revision prompts and review-request bodies."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, FileSystemLoader

_TEMPLATES_DIR = Path(__file__).with_name("templates")
_ENV: Optional[Environment] = None


def environment(templates_dir: Path | None = None) -> Environment:
    """Return the template environment; a custom directory takes precedence over the bundled one."""
    global _ENV
    if templates_dir is not None:
        return _create_env(templates_dir)
    if _ENV is None:
        _ENV = _create_env(None)
    return _ENV


def render(name: str, templates_dir: Path | None = None, **context: Any) -> str:
    template = environment(templates_dir).get_template(name)
    return template.render(**context).strip() + "\n"


def _create_env(templates_dir: Path | None) -> Environment:
    directories = []
    if templates_dir:
        directories.append(str(templates_dir))
    directories.append(str(_TEMPLATES_DIR))
    loader = FileSystemLoader(list(dict.fromkeys(directories)))
    return Environment(loader=loader, autoescape=False, trim_blocks=True, lstrip_blocks=True)


__all__ = ["environment", "render"]

"""Change summarizer variants and selection by file type."""

from __future__ import annotations

from importlib import metadata
from typing import Iterable, List, Sequence

from .base import ChangeSummarizer, Definition
from .curly import CurlyBraceSummarizer
from .plain import PlainSummarizer
from .python import PythonSummarizer

_ENTRY_POINT_GROUP = "docsync.summarizers"


def discover_summarizers() -> List[ChangeSummarizer]:
    """Return built-in summarizers followed by any registered via entry points."""
    summarizers: List[ChangeSummarizer] = [PythonSummarizer(), CurlyBraceSummarizer()]
    for entry in _iter_entry_points():
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover - defensive guard
            raise RuntimeError(f"Failed to load summarizer entry point '{entry.name}': {exc}") from exc
        summarizers.append(_coerce_summarizer(loaded))
    return summarizers


def summarizer_for(
    path: str, summarizers: Sequence[ChangeSummarizer] | None = None
) -> ChangeSummarizer:
    """Pick the summarizer for `path`; unknown file types get the plain variant."""
    candidates = summarizers if summarizers is not None else _DEFAULTS
    for summarizer in candidates:
        if summarizer.supports(path):
            return summarizer
    return _PLAIN


def _coerce_summarizer(obj: object) -> ChangeSummarizer:
    if isinstance(obj, ChangeSummarizer):
        return obj
    if isinstance(obj, type) and issubclass(obj, ChangeSummarizer):
        return obj()
    raise TypeError("Summarizer entry point must be a ChangeSummarizer subclass or instance")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


_DEFAULTS: Sequence[ChangeSummarizer] = (PythonSummarizer(), CurlyBraceSummarizer())
_PLAIN = PlainSummarizer()


__all__ = [
    "ChangeSummarizer",
    "CurlyBraceSummarizer",
    "Definition",
    "PlainSummarizer",
    "PythonSummarizer",
    "discover_summarizers",
    "summarizer_for",
]

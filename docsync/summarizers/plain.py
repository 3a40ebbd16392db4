"""Fallback summarizer for files without a language-specific heuristic."""

from __future__ import annotations

from typing import Optional

from .base import ChangeSummarizer, Definition


class PlainSummarizer(ChangeSummarizer):
    """Recognises nothing; every edit is treated as plain line movement."""

    name = "plain"

    def supports(self, path: str) -> bool:
        return True

    def definition(self, line: str) -> Optional[Definition]:
        return None


__all__ = ["PlainSummarizer"]

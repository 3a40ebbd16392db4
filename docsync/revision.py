"""Content revision: prompt the model with an excerpt plus its scoped diff."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Protocol

from . import templates
from .logging import get_logger

NO_CHANGES_SENTINEL = "NO_CHANGES_NEEDED"

_FENCE_PATTERN = re.compile(r"^```[\w-]*\n(?P<body>.*?)\n```\s*$", re.DOTALL)


class CompletionRunner(Protocol):
    def run(self, prompt: str, *, system: str | None = None) -> str:
        ...


class ContentReviser:
    """Wraps the model transport with the revise and summarize prompts."""

    SYSTEM_PROMPT = (
        "You maintain developer knowledge documents. Edit only what the code change makes "
        "inaccurate and never invent behaviour the diff does not show."
    )

    def __init__(self, runner: CompletionRunner, *, templates_dir: Path | None = None) -> None:
        self.runner = runner
        self.templates_dir = templates_dir
        self.logger = get_logger("revision")

    def revise(self, doc_id: str, excerpt: str, diff_text: str) -> Optional[str]:
        """Return replacement text for `excerpt`, or None when no change is needed."""
        prompt = templates.render(
            "revise.md.j2",
            self.templates_dir,
            doc_id=doc_id,
            excerpt=excerpt,
            diff=diff_text,
            sentinel=NO_CHANGES_SENTINEL,
        )
        response = self.runner.run(prompt, system=self.SYSTEM_PROMPT)
        cleaned = _strip_fence(response.strip())
        if not cleaned or cleaned == NO_CHANGES_SENTINEL:
            self.logger.debug("%s: reviser reported no changes needed", doc_id)
            return None
        if cleaned.strip() == excerpt.strip():
            return None
        if excerpt.endswith("\n") and not cleaned.endswith("\n"):
            cleaned += "\n"
        return cleaned

    def summarize_diff(self, diff_text: str, limit: int) -> str:
        """Ask for a condensed diff that keeps paths, hunk positions and signatures."""
        prompt = templates.render(
            "summarize.md.j2", self.templates_dir, diff=diff_text, limit=limit
        )
        return self.runner.run(prompt, system=self.SYSTEM_PROMPT).strip()


def _strip_fence(text: str) -> str:
    match = _FENCE_PATTERN.match(text)
    return match.group("body") if match else text


__all__ = ["ContentReviser", "NO_CHANGES_SENTINEL"]

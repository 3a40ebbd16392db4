"""Change summarizer for Python sources."""

from __future__ import annotations

import re
from typing import Optional

from .base import ChangeSummarizer, Definition

_DEFINITION = re.compile(
    r"^\s*(?P<kind>async\s+def|def|class)\s+(?P<name>[A-Za-z_]\w*)\s*(?P<tail>[(:].*)?$"
)


class PythonSummarizer(ChangeSummarizer):
    """Recognises `def`, `async def` and `class` openings."""

    name = "python"
    suffixes = (".py", ".pyi", ".pyx")
    comment_prefixes = ("#",)

    def definition(self, line: str) -> Optional[Definition]:
        match = _DEFINITION.match(line)
        if not match:
            return None
        kind = "class" if match.group("kind") == "class" else "function"
        signature = line.strip().rstrip(":").rstrip()
        return Definition(kind=kind, name=match.group("name"), signature=signature)


__all__ = ["PythonSummarizer"]

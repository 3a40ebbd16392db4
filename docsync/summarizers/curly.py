"""Change summarizer for brace-delimited languages (C family, Go, Rust, JS/TS)."""

from __future__ import annotations

import re
from typing import Optional, Sequence, Tuple

from .base import ChangeSummarizer, Definition

_PATTERNS: Sequence[Tuple[str, re.Pattern[str]]] = (
    (
        "function",
        re.compile(
            r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(?P<name>[A-Za-z_$][\w$]*)\s*\("
        ),
    ),
    (
        "function",
        re.compile(
            r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:(?:private|public|internal|protected|override|suspend|const|async|unsafe)\s+)*(?:fn|fun)\s+(?P<name>[A-Za-z_]\w*)"
        ),
    ),
    (
        "function",
        re.compile(r"^\s*func\s+(?:\([^)]*\)\s*)?(?P<name>[A-Za-z_]\w*)\s*[\[(]"),
    ),
    (
        "type",
        re.compile(
            r"^\s*(?:export\s+)?(?:pub(?:\([^)]*\))?\s+)?(?:public\s+|private\s+|protected\s+|internal\s+)?"
            r"(?:abstract\s+|final\s+|sealed\s+|static\s+|data\s+)*"
            r"(?:class|struct|interface|enum|trait|record|union)\s+(?P<name>[A-Za-z_]\w*)"
        ),
    ),
    (
        "type",
        re.compile(r"^\s*type\s+(?P<name>[A-Za-z_]\w*)\s+(?:struct|interface)\b"),
    ),
)

# Typed function heads: `static int parse_input(const char *buf) {`
_C_STYLE = re.compile(
    r"^\s*(?:[A-Za-z_][\w:<>,\*&\[\]]*\s+[\*&]*)+(?P<name>[A-Za-z_][\w:~]*)\s*\([^;=]*\)\s*"
    r"(?:const\s*)?(?:noexcept\s*)?(?:override\s*)?(?:throws\s+[\w.,\s]+)?\{?\s*$"
)
_CONTROL_WORDS = {
    "if",
    "for",
    "while",
    "switch",
    "return",
    "sizeof",
    "catch",
    "else",
    "do",
    "new",
    "delete",
    "throw",
    "case",
    "goto",
}


class CurlyBraceSummarizer(ChangeSummarizer):
    """Recognises function and type openings in brace-delimited languages."""

    name = "curly"
    suffixes = (
        ".c",
        ".h",
        ".cc",
        ".cpp",
        ".cxx",
        ".hpp",
        ".java",
        ".kt",
        ".kts",
        ".cs",
        ".go",
        ".rs",
        ".js",
        ".jsx",
        ".mjs",
        ".ts",
        ".tsx",
        ".swift",
        ".scala",
        ".php",
        ".m",
        ".mm",
    )
    comment_prefixes = ("//", "/*", "*", "*/")

    def definition(self, line: str) -> Optional[Definition]:
        stripped = line.strip()
        if not stripped or stripped.startswith(self.comment_prefixes):
            return None
        for kind, pattern in _PATTERNS:
            match = pattern.match(line)
            if match:
                return Definition(kind=kind, name=match.group("name"), signature=_signature(stripped))
        match = _C_STYLE.match(line)
        if match:
            first_word = stripped.split(None, 1)[0].split("(", 1)[0]
            name = match.group("name")
            if first_word in _CONTROL_WORDS or name in _CONTROL_WORDS:
                return None
            return Definition(kind="function", name=name, signature=_signature(stripped))
        return None


def _signature(line: str) -> str:
    return line.rstrip("{").rstrip()


__all__ = ["CurlyBraceSummarizer"]

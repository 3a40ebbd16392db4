"""Base class for per-language change summarizers."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import Hunk, SymbolChange, SymbolChangeKind

_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Definition:
    """A definition-opening line recognised in diff text."""

    kind: str
    name: str
    signature: str


class ChangeSummarizer(ABC):
    """Contract for heuristics that extract symbol events from hunks.

    Implementations only ever report names they literally matched in the
    diff text; missing a symbol is acceptable, inventing one is not.
    """

    name: str = "base"
    suffixes: Tuple[str, ...] = ()
    comment_prefixes: Tuple[str, ...] = ()

    def supports(self, path: str) -> bool:
        return PurePosixPath(path).suffix.lower() in self.suffixes

    @abstractmethod
    def definition(self, line: str) -> Optional[Definition]:
        """Return the definition opened by `line`, if any."""

    def summarize(self, hunks: Sequence[Hunk]) -> List[SymbolChange]:
        removed: Dict[str, Tuple[int, Definition]] = {}
        added: Dict[str, Tuple[int, Definition]] = {}
        for index, hunk in enumerate(hunks):
            for raw in hunk.lines:
                marker, content = raw[:1], raw[1:]
                if marker not in {"+", "-"}:
                    continue
                found = self.definition(content)
                if found is None:
                    continue
                target = removed if marker == "-" else added
                target.setdefault(found.name, (index, found))

        events: List[SymbolChange] = []
        for name in [name for name in removed if name in added]:
            _, old = removed.pop(name)
            hunk_index, new = added.pop(name)
            if _normalise(old.signature) != _normalise(new.signature):
                events.append(
                    SymbolChange(
                        kind=SymbolChangeKind.SIGNATURE_CHANGED,
                        name=name,
                        old_signature=old.signature,
                        new_signature=new.signature,
                        hunk_index=hunk_index,
                    )
                )

        for index in range(len(hunks)):
            gone = [item for item in removed.values() if item[0] == index]
            fresh = [item for item in added.values() if item[0] == index]
            if len(gone) == 1 and len(fresh) == 1 and gone[0][1].kind == fresh[0][1].kind:
                old, new = gone[0][1], fresh[0][1]
                removed.pop(old.name)
                added.pop(new.name)
                events.append(
                    SymbolChange(
                        kind=SymbolChangeKind.RENAMED,
                        name=new.name,
                        old_name=old.name,
                        old_signature=old.signature,
                        new_signature=new.signature,
                        hunk_index=index,
                    )
                )

        for index, definition in removed.values():
            events.append(
                SymbolChange(
                    kind=SymbolChangeKind.DELETED,
                    name=definition.name,
                    old_signature=definition.signature,
                    hunk_index=index,
                )
            )
        for index, definition in added.values():
            events.append(
                SymbolChange(
                    kind=SymbolChangeKind.ADDED,
                    name=definition.name,
                    new_signature=definition.signature,
                    hunk_index=index,
                )
            )

        seen = {event.name for event in events}
        for index, hunk in enumerate(hunks):
            enclosing = self.definition(hunk.header) if hunk.header else None
            if enclosing is not None and enclosing.name not in seen:
                seen.add(enclosing.name)
                events.append(
                    SymbolChange(
                        kind=SymbolChangeKind.BODY_CHANGED,
                        name=enclosing.name,
                        hunk_index=index,
                    )
                )
        return events

    def is_comment_only(self, hunks: Sequence[Hunk]) -> bool:
        """True when every non-blank changed line is a comment."""
        if not self.comment_prefixes:
            return False
        changed = [
            raw[1:].strip()
            for hunk in hunks
            for raw in hunk.lines
            if raw[:1] in {"+", "-"} and raw[1:].strip()
        ]
        if not changed:
            return False
        return all(line.startswith(self.comment_prefixes) for line in changed)


def _normalise(signature: str) -> str:
    return _WHITESPACE.sub(" ", signature).strip()


__all__ = ["ChangeSummarizer", "Definition"]

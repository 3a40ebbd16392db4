"""Relevance resolution: which documents a change touches, and which hunks matter to each."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Set

from .logging import get_logger
from .models import ChangeStatus, DocMapping, FileChange, Hunk, Reference, UnmappedChange

_HEADING = re.compile(r"^#{1,6}\s")
_FENCE = re.compile(r"^\s*(```|~~~)")


@dataclass
class DocImpact:
    """One change as seen from one document."""

    change: FileChange
    references: List[Reference] = field(default_factory=list)
    hunks: List[Hunk] = field(default_factory=list)
    mentioned_symbols: Set[str] = field(default_factory=set)

    @property
    def cites_old_path(self) -> bool:
        return self.change.old_path is not None and any(
            ref.path == self.change.old_path for ref in self.references
        )


@dataclass
class Resolution:
    affected: List[str] = field(default_factory=list)
    impacts: Dict[str, List[DocImpact]] = field(default_factory=dict)
    unmapped: List[UnmappedChange] = field(default_factory=list)

    def changes_for(self, doc_id: str) -> List[FileChange]:
        return [impact.change for impact in self.impacts.get(doc_id, [])]


class RelevanceResolver:
    """Intersects file changes with the document mapping."""

    def __init__(self) -> None:
        self.logger = get_logger("resolver")

    def resolve(
        self,
        changes: Sequence[FileChange],
        mapping: DocMapping,
        documents: Mapping[str, str] | None = None,
    ) -> Resolution:
        resolution = Resolution()
        bodies = documents or {}
        for change in changes:
            doc_ids = _docs_for_change(change, mapping)
            if not doc_ids:
                resolution.unmapped.append(UnmappedChange(path=change.path, status=change.status))
                self.logger.debug("Unmapped %s change: %s", change.status.value, change.path)
                continue
            for doc_id in doc_ids:
                references = [
                    ref for ref in mapping.references(doc_id) if ref.path in change.paths
                ]
                mentioned = _mentioned_symbols(change, bodies.get(doc_id, ""), references)
                impact = DocImpact(
                    change=change,
                    references=references,
                    hunks=scope_hunks(change, references, mentioned),
                    mentioned_symbols=mentioned,
                )
                resolution.impacts.setdefault(doc_id, []).append(impact)

        resolution.affected = sorted(resolution.impacts)
        self.logger.info(
            "%d affected document(s), %d unmapped change(s)",
            len(resolution.affected),
            len(resolution.unmapped),
        )
        return resolution


def scope_hunks(
    change: FileChange, references: Iterable[Reference], mentioned: Set[str]
) -> List[Hunk]:
    """Hunks at or above a referenced line, plus hunks that touch a mentioned symbol."""
    if change.status in {ChangeStatus.ADDED, ChangeStatus.DELETED}:
        return list(change.hunks)
    refs = [ref for ref in references if not _cites_new_location(change, ref)]
    deepest = max((ref.end_line or ref.line for ref in refs), default=0)
    by_symbol: Set[int] = set()
    for symbol in change.changed_symbols:
        names = {symbol.name, symbol.old_name}
        if symbol.hunk_index is not None and names & mentioned:
            by_symbol.add(symbol.hunk_index)
    scoped: List[Hunk] = []
    for index, hunk in enumerate(change.hunks):
        if hunk.old_start <= deepest or index in by_symbol:
            scoped.append(hunk)
    return scoped


def mentions(body: str, name: str) -> bool:
    return bool(re.search(rf"(?<![\w]){re.escape(name)}(?![\w])", body))


def _cites_new_location(change: FileChange, ref: Reference) -> bool:
    # A document that already cites the post-rename path uses post-change line numbers.
    return change.status is ChangeStatus.RENAMED and ref.path == change.path


def _docs_for_change(change: FileChange, mapping: DocMapping) -> List[str]:
    doc_ids: Dict[str, None] = {}
    for path in change.paths:
        for doc_id in mapping.docs_for(path):
            doc_ids.setdefault(doc_id, None)
    return list(doc_ids)


def _mentioned_symbols(
    change: FileChange, body: str, references: Sequence[Reference]
) -> Set[str]:
    annotated = {ref.symbol_name for ref in references if ref.symbol_name}
    found: Set[str] = set()
    for symbol in change.changed_symbols:
        for name in (symbol.name, symbol.old_name):
            if not name:
                continue
            if name in annotated or (body and mentions(body, name)):
                found.add(name)
    return found


def scoped_excerpt(body: str, lines: Iterable[int]) -> "Excerpt":
    """Cut the contiguous run of Markdown sections that contain the given body lines."""
    text_lines = body.splitlines(keepends=True)
    starts = [
        index
        for index, line in enumerate(text_lines)
        if _HEADING.match(line) and not _in_fence(text_lines, index)
    ]
    targets = sorted(set(lines))
    if not targets or not starts:
        return Excerpt(text=body, start=0, end=len(text_lines))

    def _section_bounds(line_index: int) -> tuple[int, int]:
        start = 0
        for candidate in starts:
            if candidate <= line_index:
                start = candidate
            else:
                break
        following = [candidate for candidate in starts if candidate > line_index]
        end = following[0] if following else len(text_lines)
        return start, end

    first_start, _ = _section_bounds(targets[0])
    _, last_end = _section_bounds(targets[-1])
    return Excerpt(
        text="".join(text_lines[first_start:last_end]), start=first_start, end=last_end
    )


def _in_fence(lines: Sequence[str], index: int) -> bool:
    opened = False
    for line in lines[:index]:
        if _FENCE.match(line):
            opened = not opened
    return opened


@dataclass(frozen=True)
class Excerpt:
    """A slice of a document body by line index; `splice` puts a revision back."""

    text: str
    start: int
    end: int

    def splice(self, body: str, replacement: str) -> str:
        lines = body.splitlines(keepends=True)
        if replacement and not replacement.endswith("\n") and self.end < len(lines):
            replacement += "\n"
        return "".join(lines[: self.start]) + replacement + "".join(lines[self.end :])


def relevant_lines(body: str, names: Iterable[str], literals: Iterable[str]) -> List[int]:
    """0-based body line indexes that cite a changed path or mention a changed symbol."""
    needles = [item for item in dict.fromkeys([*literals, *names]) if item]
    found: List[int] = []
    for index, line in enumerate(body.splitlines()):
        if any(mentions(line, needle) for needle in needles):
            found.append(index)
    return found


__all__ = [
    "DocImpact",
    "Excerpt",
    "RelevanceResolver",
    "Resolution",
    "mentions",
    "relevant_lines",
    "scope_hunks",
    "scoped_excerpt",
]

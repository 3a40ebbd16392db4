"""Core data models shared across docsync components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


class ChangeStatus(str, Enum):
    """Version-control status of a changed file."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"
    RENAMED = "renamed"


class Action(str, Enum):
    """What the run does with an affected document."""

    AUTO_UPDATE = "auto-update"
    FLAG = "flag"
    SKIP = "skip"


class SymbolChangeKind(str, Enum):
    ADDED = "added"
    DELETED = "deleted"
    RENAMED = "renamed"
    SIGNATURE_CHANGED = "signature-changed"
    BODY_CHANGED = "body-changed"


class ChangeKind(str, Enum):
    """Classification of one change as seen from one document."""

    FILE_DELETED = "file-deleted"
    NEW_FILE = "new-file"
    BINARY = "binary"
    SYMBOL_DELETED = "symbol-deleted"
    SYMBOL_ADDED = "symbol-added"
    REFERENCE_REMOVED = "reference-removed"
    SIGNATURE_CHANGED = "signature-changed"
    SYMBOL_RENAMED = "symbol-renamed"
    FILE_RENAMED = "file-renamed"
    LINE_SHIFT = "line-shift"
    COMMENT_ONLY = "comment-only"
    UNREFERENCED_REGION = "unreferenced-region"


@dataclass(frozen=True)
class Reference:
    """A `path:line` pointer discovered in a knowledge document."""

    path: str
    line: int
    literal: str
    symbol_name: Optional[str] = None
    end_line: Optional[int] = None


@dataclass
class RouteEntry:
    """A single path defined by the routing table."""

    path: str
    section: str
    line_no: int
    doc_hints: Tuple[str, ...] = ()
    concept: Optional[str] = None


@dataclass
class DocMapping:
    """Bidirectional view between source paths and knowledge documents."""

    path_to_docs: Dict[str, List[str]] = field(default_factory=dict)
    doc_to_references: Dict[str, List[Reference]] = field(default_factory=dict)
    entries: Dict[str, RouteEntry] = field(default_factory=dict)
    concepts: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def docs_for(self, path: str) -> List[str]:
        return list(self.path_to_docs.get(path, []))

    def references(self, doc_id: str, path: str | None = None) -> List[Reference]:
        refs = self.doc_to_references.get(doc_id, [])
        if path is None:
            return list(refs)
        return [ref for ref in refs if ref.path == path]

    @property
    def known_paths(self) -> List[str]:
        return sorted(self.entries)


@dataclass
class Hunk:
    """A contiguous block of a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    header: str = ""
    lines: List[str] = field(default_factory=list)

    @property
    def added(self) -> int:
        return sum(1 for line in self.lines if line.startswith("+"))

    @property
    def removed(self) -> int:
        return sum(1 for line in self.lines if line.startswith("-"))

    @property
    def net_delta(self) -> int:
        return self.added - self.removed

    @property
    def old_last(self) -> int:
        """Last old line covered by the hunk; pure insertions sit after `old_start`."""
        if self.old_count == 0:
            return self.old_start
        return self.old_start + self.old_count - 1

    def is_above(self, line: int) -> bool:
        return self.old_last < line

    def contains(self, line: int) -> bool:
        return self.old_count > 0 and self.old_start <= line <= self.old_last

    def remap(self, line: int) -> Optional[int]:
        """Map an old line inside this hunk to its new position, None if removed.

        A run of removals followed by additions is an in-place edit: the k-th
        removed line maps to the k-th added line while there is one.
        """
        old_no = self.old_start
        new_no = self.new_start
        index = 0
        while index < len(self.lines):
            marker = self.lines[index][:1]
            if marker in {"-", "+"}:
                end = index
                while end < len(self.lines) and self.lines[end][:1] in {"-", "+"}:
                    end += 1
                block = self.lines[index:end]
                removed = sum(1 for raw in block if raw.startswith("-"))
                added = len(block) - removed
                if old_no <= line < old_no + removed:
                    offset = line - old_no
                    return new_no + offset if offset < added else None
                old_no += removed
                new_no += added
                index = end
                continue
            if old_no == line:
                return new_no
            old_no += 1
            new_no += 1
            index += 1
        return None

    def render(self) -> str:
        header = f"@@ -{self.old_start},{self.old_count} +{self.new_start},{self.new_count} @@"
        if self.header:
            header = f"{header} {self.header}"
        return "\n".join([header, *self.lines])


@dataclass(frozen=True)
class SymbolChange:
    """A definition-level event observed in diff text."""

    kind: SymbolChangeKind
    name: str
    old_name: Optional[str] = None
    old_signature: Optional[str] = None
    new_signature: Optional[str] = None
    hunk_index: Optional[int] = None


@dataclass
class FileChange:
    """Structured change record for one file."""

    path: str
    status: ChangeStatus
    old_path: Optional[str] = None
    hunks: List[Hunk] = field(default_factory=list)
    changed_symbols: List[SymbolChange] = field(default_factory=list)
    similarity: Optional[int] = None
    binary: bool = False
    comment_only: bool = False

    def __post_init__(self) -> None:
        if (self.status is ChangeStatus.RENAMED) != (self.old_path is not None):
            raise ValueError(
                f"{self.path}: old_path must be set exactly when status is renamed"
            )
        self.hunks.sort(key=lambda hunk: hunk.old_start)

    @property
    def line_shift(self) -> int:
        return sum(hunk.net_delta for hunk in self.hunks)

    @property
    def paths(self) -> Tuple[str, ...]:
        if self.old_path:
            return (self.path, self.old_path)
        return (self.path,)

    def remap_line(self, line: int) -> Optional[int]:
        """Re-anchor an old line number; None when that line was removed."""
        shift = 0
        for hunk in self.hunks:
            if hunk.is_above(line):
                shift += hunk.net_delta
                continue
            if hunk.contains(line):
                return hunk.remap(line)
            break
        return line + shift

    def render_diff(self, hunks: Sequence[Hunk] | None = None) -> str:
        selected = self.hunks if hunks is None else list(hunks)
        old_label = self.old_path or self.path
        lines = [f"diff --git a/{old_label} b/{self.path}"]
        if self.status is ChangeStatus.RENAMED:
            lines.append(f"rename from {self.old_path}")
            lines.append(f"rename to {self.path}")
        elif self.status is ChangeStatus.ADDED:
            lines.append("new file")
        elif self.status is ChangeStatus.DELETED:
            lines.append("deleted file")
        if self.binary:
            lines.append("binary content changed")
        lines.extend(hunk.render() for hunk in selected)
        return "\n".join(lines)


@dataclass
class ScopedChange:
    """A change restricted to the hunks that matter to one document."""

    change: FileChange
    hunks: List[Hunk] = field(default_factory=list)
    kinds: List[ChangeKind] = field(default_factory=list)
    details: List[Tuple[ChangeKind, str]] = field(default_factory=list)

    def note(self, kind: ChangeKind, detail: str) -> None:
        if kind not in self.kinds:
            self.kinds.append(kind)
        self.details.append((kind, detail))

    def render_diff(self) -> str:
        return self.change.render_diff(self.hunks)


@dataclass
class UpdateDecision:
    """Per-document outcome of the update policy."""

    doc_id: str
    action: Action
    scoped_changes: List[ScopedChange] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    @property
    def scoped_hunks(self) -> List[Hunk]:
        return [hunk for scoped in self.scoped_changes for hunk in scoped.hunks]

    @property
    def reason(self) -> Optional[str]:
        return "; ".join(self.reasons) if self.reasons else None

    def render_diff(self) -> str:
        return "\n".join(scoped.render_diff() for scoped in self.scoped_changes)

    def downgrade(self, reason: str) -> None:
        self.action = Action.FLAG
        self.reasons.append(reason)


@dataclass(frozen=True)
class UnmappedChange:
    path: str
    status: ChangeStatus


@dataclass
class RunSummary:
    """Aggregate carried into the review request and surfaced on failure."""

    commit_range: str = ""
    head: Optional[str] = None
    unmapped: List[UnmappedChange] = field(default_factory=list)
    flagged: Dict[str, List[str]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    written: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    guard_triggered: bool = False
    branch: Optional[str] = None
    review_request: Optional[str] = None

    def flag(self, doc_id: str, reason: str) -> None:
        reasons = self.flagged.setdefault(doc_id, [])
        if reason not in reasons:
            reasons.append(reason)

    @property
    def flagged_count(self) -> int:
        return len(self.flagged)

    def to_dict(self) -> Dict[str, object]:
        return {
            "commit_range": self.commit_range,
            "head": self.head,
            "unmapped": [
                {"path": item.path, "status": item.status.value} for item in self.unmapped
            ],
            "flagged": {doc: list(reasons) for doc, reasons in self.flagged.items()},
            "skipped": list(self.skipped),
            "written": list(self.written),
            "warnings": list(self.warnings),
            "guard_triggered": self.guard_triggered,
            "branch": self.branch,
            "review_request": self.review_request,
        }

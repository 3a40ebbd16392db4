"""Reference scanning and mechanical rewriting of `path:line` pointers."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..models import ChangeStatus, FileChange, Reference, SymbolChangeKind

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .parser import RoutingTable

# `server/input_handler.py:214`, `input_handler:10-20 (parse)`, ``handler.go:7 `Serve` ``
REFERENCE_PATTERN = re.compile(
    r"(?<![\w./-])(?P<path>[\w.-]+(?:/[\w.-]+)*):(?P<line>\d+)"
    r"(?:(?P<sep>[-–])(?P<end>\d+))?"
    r"(?:\s*\((?P<paren>[A-Za-z_][\w.]*)\)|\s+`(?P<tick>[A-Za-z_][\w.]*)`)?"
)
_CODE_SPAN_PATTERN = re.compile(r"`[^`\n]+`")


def reference_from_match(match: re.Match[str], path: str) -> Reference:
    end = match.group("end")
    return Reference(
        path=path,
        line=int(match.group("line")),
        literal=match.group("path"),
        symbol_name=match.group("paren") or match.group("tick"),
        end_line=int(end) if end else None,
    )


@dataclass
class RewriteResult:
    """Outcome of a mechanical rewrite pass over one document."""

    text: str
    rewritten: int = 0
    removed: List[Reference] = field(default_factory=list)


def index_changes(changes: Iterable[FileChange]) -> Dict[str, FileChange]:
    """Index changes by every path a document may still cite (new and old)."""
    indexed: Dict[str, FileChange] = {}
    for change in changes:
        indexed[change.path] = change
        if change.old_path:
            indexed[change.old_path] = change
    return indexed


def rewrite_references(
    body: str,
    doc_id: str,
    table: "RoutingTable",
    changes: Mapping[str, FileChange],
) -> RewriteResult:
    """Re-anchor line numbers, retarget renamed paths and renamed symbol annotations."""
    result = RewriteResult(text=body)

    def _replace(match: re.Match[str]) -> str:
        literal = match.group("path")
        path, _ = table.resolve(literal, doc_id)
        if path is None:
            return match.group(0)
        change = changes.get(path)
        if change is None or change.status is ChangeStatus.DELETED:
            return match.group(0)
        if change.status is ChangeStatus.RENAMED and path == change.path:
            # Already cites the new location; line numbers are post-change.
            return match.group(0)

        reference = reference_from_match(match, path)
        replacements: List[Tuple[str, str]] = []

        new_line = change.remap_line(reference.line)
        if new_line is None:
            result.removed.append(reference)
        elif new_line != reference.line:
            replacements.append(("line", str(new_line)))

        if reference.end_line is not None:
            new_end = change.remap_line(reference.end_line)
            if new_end is None:
                if reference not in result.removed:
                    result.removed.append(reference)
            elif new_end != reference.end_line:
                replacements.append(("end", str(new_end)))

        if change.status is ChangeStatus.RENAMED and change.old_path == path:
            replacements.append(("path", retarget_literal(literal, change.old_path, change.path)))

        if reference.symbol_name:
            renamed = _renamed_symbol(change, reference.symbol_name)
            if renamed:
                group = "paren" if match.group("paren") else "tick"
                replacements.append((group, renamed))

        if not replacements:
            return match.group(0)
        result.rewritten += 1
        return _splice(match, replacements)

    result.text = REFERENCE_PATTERN.sub(_replace, body)
    return result


def rename_symbol_mentions(text: str, old_name: str, new_name: str) -> str:
    """Rename a symbol inside inline code spans only; prose is left to revision."""
    word = re.compile(rf"(?<![\w]){re.escape(old_name)}(?![\w])")

    def _span(match: re.Match[str]) -> str:
        return word.sub(new_name, match.group(0))

    return _CODE_SPAN_PATTERN.sub(_span, text)


def replace_signature(text: str, old_signature: str, new_signature: str) -> str:
    if not old_signature or old_signature == new_signature:
        return text
    return text.replace(old_signature, new_signature)


def retarget_literal(literal: str, old_path: str, new_path: str) -> str:
    """Rewrite a literal that cited `old_path`, keeping the same suffix depth."""
    if literal == old_path or literal.removeprefix("./") == old_path:
        return new_path
    depth = len(literal.split("/"))
    parts = new_path.split("/")
    return "/".join(parts[-depth:])


def rewrite_routing_rows(
    text: str, renames: Sequence[Tuple[str, str]], deleted: Sequence[str] = ()
) -> Tuple[str, List[str]]:
    """Point routing rows at renamed paths.

    Rows are rewritten in place when the new path stays under the row's
    section base (or the row carries a full path); anything else is returned
    as a warning for manual routing-table maintenance.
    """
    from .parser import _BACKTICK_PATTERN, _HEADING_PATTERN, _split_row, _normalise_path

    pending = dict(renames)
    warnings: List[str] = []
    handled: set[str] = set()
    base = ""
    lines = text.splitlines(keepends=True)
    for index, raw in enumerate(lines):
        stripped = raw.strip()
        heading = _HEADING_PATTERN.match(stripped)
        if heading:
            title = heading.group("title")
            backtick = _BACKTICK_PATTERN.search(title)
            if backtick:
                base = _normalise_path(backtick.group(1))
            elif title.endswith("/"):
                base = _normalise_path(title.split()[-1])
            else:
                base = ""
            continue
        if not stripped.startswith("|"):
            continue
        cells = _split_row(stripped)
        for position, cell in enumerate(cells[:2]):
            value = cell.strip().strip("`").strip()
            if not value:
                continue
            candidates = [_normalise_path(value)]
            if position == 0:
                candidates.insert(0, _normalise_path(posixpath.join(base, value)))
            for candidate in candidates:
                if candidate not in pending:
                    continue
                new_path = pending[candidate]
                if candidate == _normalise_path(value):
                    replacement = new_path
                elif posixpath.dirname(new_path) == base:
                    replacement = posixpath.basename(new_path)
                else:
                    warnings.append(
                        f"routing table: {candidate} moved to {new_path} outside section "
                        f"'{base or '/'}'; update the routing table manually"
                    )
                    handled.add(candidate)
                    break
                lines[index] = raw.replace(value, replacement, 1)
                handled.add(candidate)
                break
    for old_path in pending:
        if old_path not in handled:
            warnings.append(f"routing table: no row found for renamed path {old_path}")
    for path in deleted:
        warnings.append(f"routing table: {path} was deleted; its routing row needs review")
    return "".join(lines), warnings


def _renamed_symbol(change: FileChange, name: str) -> Optional[str]:
    for symbol in change.changed_symbols:
        if symbol.kind is SymbolChangeKind.RENAMED and symbol.old_name == name:
            return symbol.name
    return None


def _splice(match: re.Match[str], replacements: Sequence[Tuple[str, str]]) -> str:
    text = match.group(0)
    offset = match.start()
    ordered = sorted(replacements, key=lambda item: match.start(item[0]), reverse=True)
    for group, value in ordered:
        start = match.start(group) - offset
        end = match.end(group) - offset
        text = text[:start] + value + text[end:]
    return text


__all__ = [
    "REFERENCE_PATTERN",
    "RewriteResult",
    "index_changes",
    "reference_from_match",
    "rename_symbol_mentions",
    "replace_signature",
    "retarget_literal",
    "rewrite_references",
    "rewrite_routing_rows",
]

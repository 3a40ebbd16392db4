"""Routing table parsing into a bidirectional path/document mapping."""

from __future__ import annotations

import posixpath
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..logging import get_logger
from ..models import DocMapping, Reference, RouteEntry
from .references import REFERENCE_PATTERN, reference_from_match

_HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(?P<title>.*?)\s*#*\s*$")
_BACKTICK_PATTERN = re.compile(r"`([^`]+)`")
_SEPARATOR_CELL = re.compile(r"^:?-+:?$")
_DOC_COLUMNS = {"doc", "docs", "document", "documents"}

logger = get_logger("routing")


class RoutingTableError(RuntimeError):
    """Raised when the routing table cannot be read at all."""


@dataclass
class RoutingSection:
    title: str
    base_path: str
    is_appendix: bool


@dataclass
class RoutingTable:
    """Parsed routing table: full paths, concept labels and parse warnings."""

    entries: Dict[str, RouteEntry] = field(default_factory=dict)
    concepts: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    _suffixes: Optional[Dict[str, List[str]]] = field(default=None, repr=False)

    def define(self, entry: RouteEntry) -> None:
        previous = self.entries.pop(entry.path, None)
        if previous is not None:
            logger.debug(
                "Path %s redefined on line %d (previously line %d); keeping the later definition",
                entry.path,
                entry.line_no,
                previous.line_no,
            )
        self.entries[entry.path] = entry
        self._suffixes = None

    def resolve(self, token: str, doc_id: str | None = None) -> Tuple[Optional[str], List[str]]:
        """Resolve a literal path token to a known full path.

        Returns the resolved path (or None) and the candidate list, so callers
        can report ambiguity.
        """
        cleaned = _normalise_path(token)
        if cleaned in self.entries:
            return cleaned, [cleaned]
        candidates = self._suffix_index().get(cleaned, [])
        if len(candidates) == 1:
            return candidates[0], candidates
        if doc_id is not None and candidates:
            hinted = [path for path in candidates if doc_id in self.entries[path].doc_hints]
            if len(hinted) == 1:
                return hinted[0], candidates
        return None, candidates

    def _suffix_index(self) -> Dict[str, List[str]]:
        if self._suffixes is None:
            index: Dict[str, List[str]] = defaultdict(list)
            for path in sorted(self.entries):
                parts = path.split("/")
                for start in range(1, len(parts)):
                    index["/".join(parts[start:])].append(path)
            self._suffixes = dict(index)
        return self._suffixes


class FileMapParser:
    """Builds the path/document mapping from the routing table and document bodies."""

    def __init__(self, *, appendix_heading: str = "Appendix") -> None:
        self.appendix_heading = appendix_heading.strip().lower()

    def build(self, routing_text: str, documents: Mapping[str, str]) -> DocMapping:
        table = self.parse_routing_table(routing_text)
        return self.build_from_table(table, documents)

    def build_from_table(self, table: RoutingTable, documents: Mapping[str, str]) -> DocMapping:
        mapping = DocMapping(
            entries=dict(table.entries),
            concepts=dict(table.concepts),
            warnings=list(table.warnings),
        )
        for doc_id in sorted(documents):
            refs = self.scan_references(doc_id, documents[doc_id], table, warnings=mapping.warnings)
            mapping.doc_to_references[doc_id] = refs
            for path in dict.fromkeys(ref.path for ref in refs):
                mapping.path_to_docs.setdefault(path, []).append(doc_id)
        logger.debug(
            "Mapped %d path(s) across %d document(s)",
            len(mapping.path_to_docs),
            len(mapping.doc_to_references),
        )
        return mapping

    def parse_routing_table(self, text: str) -> RoutingTable:
        table = RoutingTable()
        section = RoutingSection(title="", base_path="", is_appendix=False)
        header: Optional[List[str]] = None
        doc_column: Optional[int] = None

        for line_no, raw in enumerate(text.splitlines(), start=1):
            stripped = raw.strip()
            heading = _HEADING_PATTERN.match(stripped)
            if heading:
                section = self._section_from_heading(heading.group("title"))
                header = None
                continue
            if not stripped.startswith("|"):
                header = None
                continue

            cells = _split_row(stripped)
            if header is None:
                header = [cell.lower() for cell in cells]
                doc_column = next(
                    (index for index, name in enumerate(header) if name in _DOC_COLUMNS),
                    None,
                )
                continue
            if all(_SEPARATOR_CELL.match(cell) for cell in cells if cell):
                continue
            if len(cells) != len(header):
                table.warnings.append(
                    f"routing table line {line_no}: expected {len(header)} columns, "
                    f"found {len(cells)}; row skipped"
                )
                continue

            if section.is_appendix:
                self._add_concept(table, cells, line_no, section)
            else:
                self._add_row(table, cells, line_no, section, doc_column)

        logger.debug(
            "Routing table defines %d path(s), %d concept(s), %d warning(s)",
            len(table.entries),
            len(table.concepts),
            len(table.warnings),
        )
        return table

    def scan_references(
        self,
        doc_id: str,
        body: str,
        table: RoutingTable,
        *,
        warnings: List[str] | None = None,
    ) -> List[Reference]:
        references: List[Reference] = []
        for match in REFERENCE_PATTERN.finditer(body):
            literal = match.group("path")
            path, candidates = table.resolve(literal, doc_id)
            if path is None:
                if len(candidates) > 1 and warnings is not None:
                    message = (
                        f"{doc_id}: reference '{literal}' is ambiguous "
                        f"({', '.join(candidates)}); not mapped"
                    )
                    if message not in warnings:
                        warnings.append(message)
                continue
            references.append(reference_from_match(match, path))
        return references

    def _section_from_heading(self, title: str) -> RoutingSection:
        is_appendix = self.appendix_heading in title.lower()
        base = ""
        backtick = _BACKTICK_PATTERN.search(title)
        if backtick:
            base = backtick.group(1).strip()
        elif title.endswith("/"):
            base = title.split()[-1]
        return RoutingSection(title=title, base_path=_normalise_path(base), is_appendix=is_appendix)

    @staticmethod
    def _add_row(
        table: RoutingTable,
        cells: Sequence[str],
        line_no: int,
        section: RoutingSection,
        doc_column: Optional[int],
    ) -> None:
        filename = _strip_code(cells[0])
        if not filename:
            table.warnings.append(f"routing table line {line_no}: empty filename; row skipped")
            return
        path = _normalise_path(posixpath.join(section.base_path, filename))
        hints: Tuple[str, ...] = ()
        if doc_column is not None and doc_column > 0:
            hints = tuple(
                _strip_code(item) for item in cells[doc_column].split(",") if _strip_code(item)
            )
        table.define(RouteEntry(path=path, section=section.title, line_no=line_no, doc_hints=hints))

    @staticmethod
    def _add_concept(
        table: RoutingTable,
        cells: Sequence[str],
        line_no: int,
        section: RoutingSection,
    ) -> None:
        if len(cells) < 2:
            table.warnings.append(
                f"routing table line {line_no}: appendix rows need a concept and a path; row skipped"
            )
            return
        concept = cells[0].strip()
        path = _normalise_path(_strip_code(cells[1]))
        if not concept or not path:
            table.warnings.append(f"routing table line {line_no}: empty appendix cell; row skipped")
            return
        table.concepts[concept] = path
        table.define(RouteEntry(path=path, section=section.title, line_no=line_no, concept=concept))


def _split_row(line: str) -> List[str]:
    inner = line.strip()
    if inner.startswith("|"):
        inner = inner[1:]
    if inner.endswith("|"):
        inner = inner[:-1]
    return [cell.strip() for cell in inner.split("|")]


def _strip_code(value: str) -> str:
    return value.strip().strip("`").strip()


def _normalise_path(path: str) -> str:
    cleaned = path.strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = re.sub(r"/{2,}", "/", cleaned)
    if cleaned in {"", ".", "/"}:
        return ""
    return cleaned.strip("/")


__all__ = ["FileMapParser", "RoutingTable", "RoutingTableError"]

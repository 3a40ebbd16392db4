"""Tests for relevance resolution and excerpt scoping."""

from __future__ import annotations

import textwrap

from docsync.models import ChangeStatus, FileChange, Hunk, SymbolChange, SymbolChangeKind
from docsync.resolver import RelevanceResolver, relevant_lines, scoped_excerpt
from docsync.routing import FileMapParser

ROUTING = textwrap.dedent(
    """
    ## Server (`server/`)
    | File | Notes |
    |------|-------|
    | input_handler | parsing |
    | session.py | sessions |
    | unused.py | nobody cites this |
    """
)


def _hunk(start: int, lines: list[str], header: str = "") -> Hunk:
    removed = sum(1 for line in lines if line.startswith("-"))
    added = sum(1 for line in lines if line.startswith("+"))
    context = len(lines) - removed - added
    return Hunk(start, removed + context, start, added + context, header, lines)


def test_resolve_groups_changes_by_document_and_records_unmapped() -> None:
    documents = {
        "server.doc": "Parsing: input_handler:214\n",
        "sessions.doc": "Sessions: session.py:40\n",
    }
    mapping = FileMapParser().build(ROUTING, documents)
    changes = [
        FileChange(path="server/input_handler", status=ChangeStatus.MODIFIED, hunks=[_hunk(10, ["+x"])]),
        FileChange(path="server/unused.py", status=ChangeStatus.MODIFIED, hunks=[_hunk(1, ["+y"])]),
        FileChange(path="scripts/new_tool.py", status=ChangeStatus.ADDED, hunks=[_hunk(1, ["+z"])]),
    ]

    resolution = RelevanceResolver().resolve(changes, mapping, documents)

    assert resolution.affected == ["server.doc"]
    assert [change.path for change in resolution.changes_for("server.doc")] == ["server/input_handler"]
    assert [(item.path, item.status) for item in resolution.unmapped] == [
        ("server/unused.py", ChangeStatus.MODIFIED),
        ("scripts/new_tool.py", ChangeStatus.ADDED),
    ]


def test_renamed_change_matches_references_under_old_path() -> None:
    documents = {"sessions.doc": "Sessions: session.py:40\n"}
    mapping = FileMapParser().build(ROUTING, documents)
    change = FileChange(
        path="server/sessions.py", old_path="server/session.py", status=ChangeStatus.RENAMED
    )

    resolution = RelevanceResolver().resolve([change], mapping, documents)

    impact = resolution.impacts["sessions.doc"][0]
    assert impact.cites_old_path is True
    assert [ref.line for ref in impact.references] == [40]


def test_scoped_hunks_exclude_edits_below_every_reference() -> None:
    documents = {"server.doc": "See input_handler:50 and `parse`.\n"}
    mapping = FileMapParser().build(ROUTING, documents)
    above = _hunk(10, ["+a"])
    below = _hunk(90, ["+b"])
    symbol_hunk = _hunk(200, ["-def parse(data):", "+def parse(data, strict):"])
    change = FileChange(
        path="server/input_handler",
        status=ChangeStatus.MODIFIED,
        hunks=[above, below, symbol_hunk],
        changed_symbols=[
            SymbolChange(kind=SymbolChangeKind.SIGNATURE_CHANGED, name="parse", hunk_index=2)
        ],
    )

    impact = RelevanceResolver().resolve([change], mapping, documents).impacts["server.doc"][0]

    assert impact.hunks == [above, symbol_hunk]
    assert impact.mentioned_symbols == {"parse"}


def test_scoped_excerpt_spans_only_relevant_sections() -> None:
    body = textwrap.dedent(
        """
        # Server

        Intro text.

        ## Parsing

        Requests go through input_handler:214.

        ## Sessions

        Unrelated.

        ```
        # not a heading
        ```
        """
    ).lstrip("\n")

    excerpt = scoped_excerpt(body, relevant_lines(body, [], ["input_handler"]))

    assert excerpt.text == "## Parsing\n\nRequests go through input_handler:214.\n\n"
    replaced = excerpt.splice(body, "## Parsing\n\nRequests go through input_handler:228.\n\n")
    assert "input_handler:228" in replaced
    assert replaced.startswith("# Server\n")
    assert replaced.endswith("```\n# not a heading\n```\n")


def test_scoped_excerpt_falls_back_to_whole_body_without_matches() -> None:
    body = "# Title\n\nNo references.\n"
    excerpt = scoped_excerpt(body, [])
    assert excerpt.text == body

"""Tests for mechanical reference rewriting."""

from __future__ import annotations

import textwrap

from docsync.models import ChangeStatus, FileChange, Hunk, SymbolChange, SymbolChangeKind
from docsync.routing import FileMapParser, rewrite_references, rewrite_routing_rows
from docsync.routing.references import (
    index_changes,
    rename_symbol_mentions,
    replace_signature,
    retarget_literal,
)

ROUTING = textwrap.dedent(
    """
    ## Server (`server/`)
    | File | Docs | Notes |
    |------|------|-------|
    | input_handler | server.doc | request parsing |
    | session.py | server.doc | sessions |
    """
)


def _insertion(at: int, count: int) -> Hunk:
    return Hunk(
        old_start=at,
        old_count=1,
        new_start=at,
        new_count=count + 1,
        lines=[" anchor", *[f"+added {index}" for index in range(count)]],
    )


def test_rewrite_references_reanchors_lines_below_insertion() -> None:
    table = FileMapParser().parse_routing_table(ROUTING)
    change = FileChange(path="server/input_handler", status=ChangeStatus.MODIFIED, hunks=[_insertion(10, 14)])
    body = "Parsing happens at input_handler:214 and input_handler:5.\n"

    result = rewrite_references(body, "server.doc", table, index_changes([change]))

    assert result.text == "Parsing happens at input_handler:228 and input_handler:5.\n"
    assert result.rewritten == 1
    assert result.removed == []


def test_rewrite_references_reports_removed_lines() -> None:
    table = FileMapParser().parse_routing_table(ROUTING)
    hunk = Hunk(old_start=20, old_count=2, new_start=20, new_count=0, lines=["-gone", "-also gone"])
    change = FileChange(path="server/session.py", status=ChangeStatus.MODIFIED, hunks=[hunk])

    result = rewrite_references("see session.py:21\n", "server.doc", table, index_changes([change]))

    assert result.text == "see session.py:21\n"
    assert [ref.line for ref in result.removed] == [21]


def test_rewrite_references_follows_renamed_file_and_symbol() -> None:
    table = FileMapParser().parse_routing_table(ROUTING)
    change = FileChange(
        path="server/sessions.py",
        old_path="server/session.py",
        status=ChangeStatus.RENAMED,
        changed_symbols=[
            SymbolChange(kind=SymbolChangeKind.RENAMED, name="open_session", old_name="open")
        ],
    )
    body = "Sessions start at server/session.py:12 (open) and session.py:30.\n"

    result = rewrite_references(body, "server.doc", table, index_changes([change]))

    assert result.text == (
        "Sessions start at server/sessions.py:12 (open_session) and sessions.py:30.\n"
    )


def test_retarget_literal_keeps_suffix_depth() -> None:
    assert retarget_literal("server/a.py", "server/a.py", "core/b.py") == "core/b.py"
    assert retarget_literal("a.py", "server/a.py", "core/b.py") == "b.py"
    assert retarget_literal("server/a.py", "x/server/a.py", "y/core/b.py") == "core/b.py"


def test_rename_symbol_mentions_only_touches_code_spans() -> None:
    text = "Call `parse(data)` to parse input; `parser` stays.\n"
    assert rename_symbol_mentions(text, "parse", "decode") == (
        "Call `decode(data)` to parse input; `parser` stays.\n"
    )


def test_replace_signature_is_verbatim() -> None:
    text = "Signature: `def parse(data)`\n"
    assert replace_signature(text, "def parse(data)", "def parse(data, strict=False)") == (
        "Signature: `def parse(data, strict=False)`\n"
    )
    assert replace_signature(text, "", "anything") == text


def test_rewrite_routing_rows_updates_rows_within_section() -> None:
    updated, warnings = rewrite_routing_rows(
        ROUTING,
        [("server/input_handler", "server/request_handler"), ("server/session.py", "core/session.py")],
    )

    assert "| request_handler | server.doc | request parsing |" in updated
    assert "| session.py | server.doc | sessions |" in updated
    assert len(warnings) == 1
    assert "core/session.py" in warnings[0]


def test_rewrite_routing_rows_reports_deleted_paths() -> None:
    updated, warnings = rewrite_routing_rows(ROUTING, [], deleted=["server/session.py"])

    assert updated == ROUTING
    assert warnings == ["routing table: server/session.py was deleted; its routing row needs review"]

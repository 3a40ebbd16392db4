"""Tests for the update policy engine."""

from __future__ import annotations

import pytest

from docsync.models import (
    Action,
    ChangeKind,
    ChangeStatus,
    FileChange,
    Hunk,
    Reference,
    ScopedChange,
    SymbolChange,
    SymbolChangeKind,
)
from docsync.policy import BudgetExceededError, UpdatePolicyEngine, action_for
from docsync.resolver import DocImpact, Resolution

PATH = "server/input_handler.py"


def _ref(line: int, symbol: str | None = None) -> Reference:
    return Reference(path=PATH, line=line, literal="input_handler.py", symbol_name=symbol)


def _insert(at: int, count: int) -> Hunk:
    return Hunk(at, 1, at, count + 1, "", [" keep", *["+new"] * count])


def _classify(
    change: FileChange,
    refs: list[Reference],
    mentioned: set[str] | None = None,
    hunks: list[Hunk] | None = None,
) -> ScopedChange:
    impact = DocImpact(
        change=change,
        references=refs,
        hunks=list(change.hunks if hunks is None else hunks),
        mentioned_symbols=mentioned or set(),
    )
    return UpdatePolicyEngine().classify(impact)


def test_every_change_kind_has_an_action() -> None:
    for kind in ChangeKind:
        assert isinstance(action_for(kind), Action)


def test_pure_line_shift_is_auto_update() -> None:
    change = FileChange(path=PATH, status=ChangeStatus.MODIFIED, hunks=[_insert(10, 14)])
    scoped = _classify(change, [_ref(214)])
    assert scoped.kinds == [ChangeKind.LINE_SHIFT]


def test_deleted_file_always_flags() -> None:
    change = FileChange(path=PATH, status=ChangeStatus.DELETED)
    scoped = _classify(change, [_ref(3)])
    assert scoped.kinds == [ChangeKind.FILE_DELETED]
    assert action_for(scoped.kinds[0]) is Action.FLAG


def test_deleted_mentioned_symbol_flags() -> None:
    change = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(40, 2, 40, 0, "", ["-def parse(data):", "-    return data"])],
        changed_symbols=[SymbolChange(kind=SymbolChangeKind.DELETED, name="parse", hunk_index=0)],
    )
    scoped = _classify(change, [_ref(5, "parse")], {"parse"}, hunks=[])
    assert ChangeKind.SYMBOL_DELETED in scoped.kinds


def test_signature_change_on_referenced_line_is_auto_update() -> None:
    change = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(5, 1, 5, 1, "", ["-def parse(data):", "+def parse(data, strict=False):"])],
        changed_symbols=[
            SymbolChange(
                kind=SymbolChangeKind.SIGNATURE_CHANGED,
                name="parse",
                old_signature="def parse(data)",
                new_signature="def parse(data, strict=False)",
                hunk_index=0,
            )
        ],
    )
    scoped = _classify(change, [_ref(5, "parse")], {"parse"})
    assert scoped.kinds == [ChangeKind.SIGNATURE_CHANGED]


def test_removed_referenced_line_flags() -> None:
    change = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(200, 21, 200, 0, "", ["-gone"] * 21)],
    )
    scoped = _classify(change, [_ref(214)])
    assert scoped.kinds == [ChangeKind.REFERENCE_REMOVED]


def test_comment_only_skips_unless_a_reference_moves() -> None:
    in_place = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(10, 1, 10, 1, "", ["-# old", "+# new"])],
        comment_only=True,
    )
    assert _classify(in_place, [_ref(214)]).kinds == [ChangeKind.COMMENT_ONLY]

    grown = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(10, 1, 10, 3, "", ["-# old", "+# new", "+# more", "+# lines"])],
        comment_only=True,
    )
    assert _classify(grown, [_ref(214)]).kinds == [ChangeKind.LINE_SHIFT]


def test_edits_below_every_reference_skip() -> None:
    change = FileChange(path=PATH, status=ChangeStatus.MODIFIED, hunks=[_insert(300, 2)])
    assert _classify(change, [_ref(214)], hunks=[]).kinds == [ChangeKind.UNREFERENCED_REGION]


def test_new_symbol_in_scope_flags() -> None:
    change = FileChange(
        path=PATH,
        status=ChangeStatus.MODIFIED,
        hunks=[Hunk(10, 1, 10, 3, "", [" keep", "+def extra():", "+    pass"])],
        changed_symbols=[SymbolChange(kind=SymbolChangeKind.ADDED, name="extra", hunk_index=0)],
    )
    assert ChangeKind.SYMBOL_ADDED in _classify(change, [_ref(214)]).kinds


def _resolution(doc_ids: list[str]) -> Resolution:
    resolution = Resolution(affected=list(doc_ids))
    for doc_id in doc_ids:
        change = FileChange(path=PATH, status=ChangeStatus.MODIFIED, hunks=[_insert(10, 14)])
        resolution.impacts[doc_id] = [
            DocImpact(change=change, references=[_ref(214)], hunks=list(change.hunks))
        ]
    return resolution


def test_file_count_ceiling_flags_every_decision() -> None:
    engine = UpdatePolicyEngine(file_count_ceiling=20)

    result = engine.decide(_resolution(["a.doc", "b.doc"]), changed_file_count=21)

    assert result.guard_triggered is True
    assert {decision.action for decision in result.decisions} == {Action.FLAG}
    assert "21 > 20" in (result.decisions[0].reason or "")

    within = engine.decide(_resolution(["a.doc"]), changed_file_count=20)
    assert within.guard_triggered is False
    assert within.decisions[0].action is Action.AUTO_UPDATE


def test_revision_request_limit_flags_the_rest() -> None:
    engine = UpdatePolicyEngine(max_revision_requests=1)

    result = engine.decide(_resolution(["a.doc", "b.doc"]), changed_file_count=1)

    assert [decision.action for decision in result.decisions] == [Action.AUTO_UPDATE, Action.FLAG]


def test_enforce_budget_summarizes_then_flags() -> None:
    engine = UpdatePolicyEngine(budget_bytes=100)
    requested: list[int] = []

    def summarize(diff_text: str, limit: int) -> str:
        requested.append(limit)
        return "short summary"

    assert engine.enforce_budget("excerpt", "small diff", summarize) == "small diff"
    assert requested == []

    assert engine.enforce_budget("excerpt", "x" * 500, summarize) == "short summary"
    assert requested == [93]

    with pytest.raises(BudgetExceededError):
        engine.enforce_budget("excerpt", "x" * 500, lambda diff, limit: "y" * 200)

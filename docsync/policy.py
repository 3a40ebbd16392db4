"""Conservative update policy: classify changes per document and apply run guards."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .logging import get_logger
from .models import (
    Action,
    ChangeKind,
    ChangeStatus,
    ScopedChange,
    SymbolChangeKind,
    UpdateDecision,
)
from .resolver import DocImpact, Resolution

_ACTION_FOR_KIND: Dict[ChangeKind, Action] = {
    ChangeKind.FILE_DELETED: Action.FLAG,
    ChangeKind.NEW_FILE: Action.FLAG,
    ChangeKind.BINARY: Action.FLAG,
    ChangeKind.SYMBOL_DELETED: Action.FLAG,
    ChangeKind.SYMBOL_ADDED: Action.FLAG,
    ChangeKind.REFERENCE_REMOVED: Action.FLAG,
    ChangeKind.SIGNATURE_CHANGED: Action.AUTO_UPDATE,
    ChangeKind.SYMBOL_RENAMED: Action.AUTO_UPDATE,
    ChangeKind.FILE_RENAMED: Action.AUTO_UPDATE,
    ChangeKind.LINE_SHIFT: Action.AUTO_UPDATE,
    ChangeKind.COMMENT_ONLY: Action.SKIP,
    ChangeKind.UNREFERENCED_REGION: Action.SKIP,
}

_missing = set(ChangeKind) - set(_ACTION_FOR_KIND)
if _missing:  # pragma: no cover - guards future enum additions
    raise RuntimeError(f"No action defined for change kind(s): {sorted(kind.value for kind in _missing)}")

_SEVERITY = {Action.SKIP: 0, Action.AUTO_UPDATE: 1, Action.FLAG: 2}


class BudgetExceededError(RuntimeError):
    """Raised when a revision payload stays over budget even after summarizing the diff."""


def action_for(kind: ChangeKind) -> Action:
    return _ACTION_FOR_KIND[kind]


def most_severe(actions: Sequence[Action]) -> Action:
    return max(actions, key=_SEVERITY.__getitem__, default=Action.SKIP)


@dataclass
class PolicyResult:
    decisions: List[UpdateDecision] = field(default_factory=list)
    guard_triggered: bool = False

    def with_action(self, action: Action) -> List[UpdateDecision]:
        return [decision for decision in self.decisions if decision.action is action]


class UpdatePolicyEngine:
    """Turns per-document impacts into auto-update, flag or skip decisions."""

    def __init__(
        self,
        *,
        file_count_ceiling: int = 20,
        max_revision_requests: Optional[int] = None,
        budget_bytes: int = 24_000,
    ) -> None:
        self.file_count_ceiling = file_count_ceiling
        self.max_revision_requests = max_revision_requests
        self.budget_bytes = budget_bytes
        self.logger = get_logger("policy")

    def classify(self, impact: DocImpact) -> ScopedChange:
        """Classify one change for one document; every matching kind is collected."""
        change = impact.change
        scoped = ScopedChange(change=change, hunks=list(impact.hunks))

        if change.status is ChangeStatus.DELETED:
            scoped.note(ChangeKind.FILE_DELETED, f"{change.path} was deleted")
            return scoped
        if change.binary:
            scoped.note(ChangeKind.BINARY, f"{change.path} is a binary change")
        if change.status is ChangeStatus.ADDED:
            scoped.note(ChangeKind.NEW_FILE, f"{change.path} is a new file")
        if change.status is ChangeStatus.RENAMED and impact.cites_old_path:
            scoped.note(ChangeKind.FILE_RENAMED, f"{change.old_path} renamed to {change.path}")

        in_scope = {id(hunk) for hunk in impact.hunks}
        mentioned = impact.mentioned_symbols
        for symbol in change.changed_symbols:
            hunk_in_scope = (
                symbol.hunk_index is not None
                and 0 <= symbol.hunk_index < len(change.hunks)
                and id(change.hunks[symbol.hunk_index]) in in_scope
            )
            if symbol.kind is SymbolChangeKind.DELETED and symbol.name in mentioned:
                scoped.note(ChangeKind.SYMBOL_DELETED, f"symbol {symbol.name} was deleted")
            elif symbol.kind is SymbolChangeKind.ADDED and hunk_in_scope:
                scoped.note(ChangeKind.SYMBOL_ADDED, f"new symbol {symbol.name} in {change.path}")
            elif symbol.kind is SymbolChangeKind.SIGNATURE_CHANGED and symbol.name in mentioned:
                scoped.note(ChangeKind.SIGNATURE_CHANGED, f"signature of {symbol.name} changed")
            elif symbol.kind is SymbolChangeKind.RENAMED and symbol.old_name in mentioned:
                scoped.note(
                    ChangeKind.SYMBOL_RENAMED, f"symbol {symbol.old_name} renamed to {symbol.name}"
                )

        moved = False
        for ref in impact.references:
            if change.status is ChangeStatus.RENAMED and ref.path == change.path:
                continue
            lines = [ref.line] if ref.end_line is None else [ref.line, ref.end_line]
            for line in lines:
                new_line = change.remap_line(line)
                if new_line is None:
                    scoped.note(
                        ChangeKind.REFERENCE_REMOVED,
                        f"referenced line {ref.literal}:{line} was removed",
                    )
                elif new_line != line:
                    moved = True

        if not scoped.kinds and impact.hunks:
            if change.comment_only and not moved:
                scoped.note(ChangeKind.COMMENT_ONLY, f"{change.path}: comment-only edits")
            else:
                scoped.note(ChangeKind.LINE_SHIFT, f"{change.path}: referenced lines moved or edited")
        if not scoped.kinds:
            scoped.note(
                ChangeKind.UNREFERENCED_REGION, f"{change.path}: edits below every reference"
            )
        return scoped

    def decide(self, resolution: Resolution, *, changed_file_count: int) -> PolicyResult:
        result = PolicyResult()
        for doc_id in resolution.affected:
            scoped_changes = [self.classify(impact) for impact in resolution.impacts[doc_id]]
            action, reasons = self._document_action(scoped_changes)
            result.decisions.append(
                UpdateDecision(
                    doc_id=doc_id,
                    action=action,
                    scoped_changes=scoped_changes,
                    reasons=reasons,
                )
            )

        if changed_file_count > self.file_count_ceiling:
            result.guard_triggered = True
            reason = (
                f"changed-file ceiling exceeded ({changed_file_count} > {self.file_count_ceiling})"
            )
            self.logger.warning("%s; every decision becomes flag", reason)
            for decision in result.decisions:
                decision.downgrade(reason)
            return result

        if self.max_revision_requests is not None:
            updates = result.with_action(Action.AUTO_UPDATE)
            for decision in updates[self.max_revision_requests :]:
                decision.downgrade(
                    f"revision request limit reached ({self.max_revision_requests} per run)"
                )

        for decision in result.decisions:
            self.logger.debug(
                "%s -> %s (%s)",
                decision.doc_id,
                decision.action.value,
                ", ".join(kind.value for scoped in decision.scoped_changes for kind in scoped.kinds),
            )
        return result

    def enforce_budget(
        self,
        excerpt: str,
        diff_text: str,
        summarize: Callable[[str, int], str],
        *,
        budget: Optional[int] = None,
    ) -> str:
        """Return the diff text to send; summarize once when over budget, never truncate."""
        limit = budget if budget is not None else self.budget_bytes
        size = payload_size(excerpt, diff_text)
        if size <= limit:
            return diff_text
        remaining = max(limit - payload_size(excerpt, ""), 0)
        self.logger.info("Payload of %d bytes exceeds budget %d; requesting a summarized diff", size, limit)
        if remaining == 0:
            raise BudgetExceededError(
                f"document excerpt alone exceeds the payload budget ({size} > {limit} bytes)"
            )
        summary = summarize(diff_text, remaining)
        summarized_size = payload_size(excerpt, summary)
        if summarized_size > limit:
            raise BudgetExceededError(
                f"payload over budget even with a summarized diff ({summarized_size} > {limit} bytes)"
            )
        return summary

    @staticmethod
    def _document_action(scoped_changes: Sequence[ScopedChange]) -> Tuple[Action, List[str]]:
        kinds = [kind for scoped in scoped_changes for kind in scoped.kinds]
        action = most_severe([action_for(kind) for kind in kinds])
        reasons: List[str] = []
        for scoped in scoped_changes:
            for kind, detail in scoped.details:
                if action_for(kind) is action and detail not in reasons:
                    reasons.append(detail)
        return action, reasons


def payload_size(excerpt: str, diff_text: str) -> int:
    return len(excerpt.encode("utf-8")) + len(diff_text.encode("utf-8"))


__all__ = [
    "BudgetExceededError",
    "PolicyResult",
    "UpdatePolicyEngine",
    "action_for",
    "most_severe",
    "payload_size",
]

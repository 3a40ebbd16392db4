"""Run orchestration: map, extract, resolve, decide, revise, publish."""

from __future__ import annotations

import difflib
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple

from . import templates
from .config import DocSyncConfig, load_config
from .git.diff import ChangeSetExtractor, CommitRange
from .git.publisher import PublishError, Publisher
from .llm.runner import LLMRunner
from .logging import get_logger
from .models import (
    Action,
    ChangeKind,
    ChangeStatus,
    DocMapping,
    FileChange,
    RunSummary,
    SymbolChangeKind,
    UpdateDecision,
)
from .policy import BudgetExceededError, UpdatePolicyEngine, action_for
from .resolver import RelevanceResolver, Resolution, relevant_lines, scoped_excerpt
from .revision import ContentReviser
from .routing.parser import FileMapParser, RoutingTable, RoutingTableError
from .routing.references import (
    index_changes,
    rename_symbol_mentions,
    replace_signature,
    rewrite_references,
    rewrite_routing_rows,
)
from .stores.run_state import RunLockedError, RunStateStore
from .summarizers import discover_summarizers

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_GUARDED = 3

_POLL_SECONDS = 0.05


class SyncError(RuntimeError):
    """Fatal run failure; carries whatever summary the run had built."""

    def __init__(self, message: str, summary: RunSummary) -> None:
        super().__init__(message)
        self.summary = summary


class RunStatus(str, Enum):
    PUBLISHED = "published"
    NO_CHANGES = "no-changes"
    DRY_RUN = "dry-run"
    ALREADY_OPEN = "already-open"
    DEBOUNCED = "debounced"
    LOCKED = "locked"
    GUARDED = "guarded"


@dataclass
class RunOptions:
    """Per-run knobs supplied by the CLI or service."""

    commit_range: str = "HEAD~1..HEAD"
    dry_run: bool = False
    budget_override: Optional[int] = None
    file_count_ceiling: Optional[int] = None


@dataclass
class RunOutcome:
    """Result of one sync run."""

    status: RunStatus
    summary: RunSummary
    decisions: List[UpdateDecision] = field(default_factory=list)
    diffs: Dict[str, str] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return EXIT_GUARDED if self.status is RunStatus.GUARDED else EXIT_OK

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "summary": self.summary.to_dict(),
            "decisions": [
                {
                    "doc_id": decision.doc_id,
                    "action": decision.action.value,
                    "reason": decision.reason,
                    "kinds": sorted(
                        {kind.value for scoped in decision.scoped_changes for kind in scoped.kinds}
                    ),
                }
                for decision in self.decisions
            ],
            "diffs": dict(self.diffs),
        }


@dataclass
class RunContext:
    """Everything one run knows; built at entry and dropped at exit."""

    repo_path: Path
    config: DocSyncConfig
    options: RunOptions
    commit_range: CommitRange
    head: str
    table: RoutingTable
    mapping: DocMapping
    documents: Dict[str, str]
    changes: List[FileChange]
    summary: RunSummary

    def document_path(self, doc_id: str) -> str:
        """Repository-relative path of a knowledge document."""
        return (Path(self.config.knowledge.root) / doc_id).as_posix()

    @property
    def routing_table_path(self) -> str:
        return (Path(self.config.knowledge.root) / self.config.knowledge.routing_table).as_posix()


class Reviser(Protocol):
    def revise(self, doc_id: str, excerpt: str, diff_text: str) -> Optional[str]:
        ...

    def summarize_diff(self, diff_text: str, limit: int) -> str:
        ...


class _RevisionSlots:
    """Concurrency slots for revision calls, with per-call start times."""

    def __init__(self, size: int) -> None:
        self._gate = threading.Semaphore(max(size, 1))
        self._lock = threading.Lock()
        self._started: Dict[str, float] = {}
        self._returned: Set[str] = set()

    @contextmanager
    def hold(self, doc_id: str) -> Iterator[None]:
        self._gate.acquire()
        with self._lock:
            self._started[doc_id] = time.monotonic()
        try:
            yield
        finally:
            self.reclaim(doc_id)

    def elapsed(self, doc_id: str) -> float:
        """Seconds since the call for `doc_id` took its slot; 0 while still queued."""
        with self._lock:
            started = self._started.get(doc_id)
        return 0.0 if started is None else time.monotonic() - started

    def reclaim(self, doc_id: str) -> None:
        with self._lock:
            if doc_id in self._returned:
                return
            self._returned.add(doc_id)
        self._gate.release()


class Orchestrator:
    """Coordinates one knowledge-pack sync run per trigger."""

    def __init__(
        self,
        extractor: ChangeSetExtractor | None = None,
        parser: FileMapParser | None = None,
        resolver: RelevanceResolver | None = None,
        reviser: Reviser | None = None,
        publisher: Publisher | None = None,
        llm_runner: LLMRunner | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._extractor = extractor
        self._parser = parser
        self.resolver = resolver or RelevanceResolver()
        self._reviser = reviser
        self.publisher = publisher or Publisher()
        self._llm_runner = llm_runner
        self._clock = clock
        self.logger = get_logger("orchestrator")

    def run(self, repo_path: str, options: RunOptions | None = None) -> RunOutcome:
        """Execute one sync run; raises SyncError on fatal failures."""
        options = options or RunOptions()
        repo = Path(repo_path).expanduser().resolve()
        self.logger.info("Starting sync run for %s (%s)", repo, options.commit_range)
        config = load_config(repo)
        store = RunStateStore(config.state_dir, clock=self._clock)

        if options.dry_run:
            return self._execute(repo, config, options, store)
        try:
            with store.lock():
                return self._execute(repo, config, options, store)
        except RunLockedError as exc:
            self.logger.warning("%s", exc)
            return RunOutcome(
                status=RunStatus.LOCKED, summary=RunSummary(commit_range=options.commit_range)
            )

    def load_mapping(self, repo_path: str) -> DocMapping:
        """Build the path/document mapping without looking at any diff."""
        repo = Path(repo_path).expanduser().resolve()
        config = load_config(repo)
        table, documents = self._read_knowledge(config)
        return self._parser_for(config).build_from_table(table, documents)

    # ------------------------------------------------------------------
    # Run stages

    def _execute(
        self,
        repo: Path,
        config: DocSyncConfig,
        options: RunOptions,
        store: RunStateStore,
    ) -> RunOutcome:
        summary = RunSummary(commit_range=options.commit_range)
        try:
            context = self._build_context(repo, config, options, summary)
        except (RoutingTableError, RuntimeError, ValueError) as exc:
            self._log_exception("Unable to prepare the run", exc)
            raise SyncError(str(exc), summary) from exc

        if not options.dry_run and store.is_debounced(
            context.head, config.guards.min_interval_seconds
        ):
            self.logger.info(
                "Head %s was processed less than %.0fs ago; skipping",
                context.head[:7],
                config.guards.min_interval_seconds,
            )
            return RunOutcome(status=RunStatus.DEBOUNCED, summary=summary)

        resolution = self.resolver.resolve(context.changes, context.mapping, context.documents)
        policy = self._policy_for(config, options)
        result = policy.decide(resolution, changed_file_count=len(context.changes))
        self._record_decisions(context, resolution, result.decisions)

        if result.guard_triggered:
            summary.guard_triggered = True
            self.logger.warning("Run guarded: %d document(s) flagged, no writes", summary.flagged_count)
            if not options.dry_run:
                store.record(context.head, commit_range=str(context.commit_range))
            return RunOutcome(status=RunStatus.GUARDED, summary=summary, decisions=result.decisions)

        revised = self._revise_all(context, policy, result.with_action(Action.AUTO_UPDATE))
        files = self._write_set(context, revised)
        summary.written = sorted(files)
        self.logger.info(
            "%d auto-update(s), %d flagged, %d skipped, %d file(s) to write",
            len(result.with_action(Action.AUTO_UPDATE)),
            summary.flagged_count,
            len(summary.skipped),
            len(files),
        )

        if options.dry_run:
            diffs = {
                path: self._render_diff(path, self._current_text(context, path), content)
                for path, content in files.items()
            }
            return RunOutcome(
                status=RunStatus.DRY_RUN, summary=summary, decisions=result.decisions, diffs=diffs
            )

        if not files:
            store.record(context.head, commit_range=str(context.commit_range))
            return RunOutcome(status=RunStatus.NO_CHANGES, summary=summary, decisions=result.decisions)

        status = self._publish(context, files)
        store.record(context.head, commit_range=str(context.commit_range))
        return RunOutcome(status=status, summary=summary, decisions=result.decisions)

    def _build_context(
        self,
        repo: Path,
        config: DocSyncConfig,
        options: RunOptions,
        summary: RunSummary,
    ) -> RunContext:
        commit_range = CommitRange.parse(options.commit_range)
        extractor = self._extractor_for(config)
        head = extractor.resolve_commit(str(repo), commit_range.head)
        summary.head = head

        table, documents = self._read_knowledge(config)
        mapping = self._parser_for(config).build_from_table(table, documents)
        summary.warnings.extend(mapping.warnings)
        for warning in mapping.warnings:
            self.logger.warning("%s", warning)

        changes = extractor.extract(str(repo), commit_range)
        self.logger.info(
            "Context ready: %d document(s), %d mapped path(s), %d change(s)",
            len(documents),
            len(mapping.path_to_docs),
            len(changes),
        )
        return RunContext(
            repo_path=repo,
            config=config,
            options=options,
            commit_range=commit_range,
            head=head,
            table=table,
            mapping=mapping,
            documents=documents,
            changes=changes,
            summary=summary,
        )

    def _record_decisions(
        self,
        context: RunContext,
        resolution: Resolution,
        decisions: Sequence[UpdateDecision],
    ) -> None:
        summary = context.summary
        summary.unmapped = list(resolution.unmapped)
        for item in resolution.unmapped:
            if item.status is ChangeStatus.ADDED:
                summary.flag(item.path, "new file not covered by the routing table")
        for decision in decisions:
            if decision.action is Action.FLAG:
                for reason in decision.reasons or ["flagged"]:
                    summary.flag(decision.doc_id, reason)
            elif decision.action is Action.SKIP:
                summary.skipped.append(decision.doc_id)

    def _revise_all(
        self,
        context: RunContext,
        policy: UpdatePolicyEngine,
        decisions: Sequence[UpdateDecision],
    ) -> Dict[str, str]:
        """Revise every auto-update document in parallel; failures flag only that document.

        Each document gets its own worker thread, gated by `llm.concurrency`
        slots. The timeout runs from the moment a call takes its slot, and a
        call that times out hands its slot back so queued documents still run.
        """
        if not decisions:
            return {}
        reviser = self._reviser_for(context.config)
        timeout = context.config.llm.request_timeout
        slots = _RevisionSlots(context.config.llm.concurrency)
        revised: Dict[str, str] = {}

        def _task(decision: UpdateDecision) -> str:
            with slots.hold(decision.doc_id):
                return self._revise_document(context, policy, reviser, decision)

        executor = ThreadPoolExecutor(
            max_workers=len(decisions), thread_name_prefix="docsync-revise"
        )
        try:
            pending: Dict[Future[str], UpdateDecision] = {
                executor.submit(_task, decision): decision for decision in decisions
            }
            while pending:
                for future in [item for item in pending if item.done()]:
                    decision = pending.pop(future)
                    try:
                        revised[decision.doc_id] = future.result()
                    except BudgetExceededError as exc:
                        self._fail(context, decision, str(exc))
                    except Exception as exc:
                        self._fail(context, decision, f"revision failed: {exc}")
                for future, decision in list(pending.items()):
                    if slots.elapsed(decision.doc_id) >= timeout:
                        pending.pop(future)
                        slots.reclaim(decision.doc_id)
                        self._fail(context, decision, f"revision timed out after {timeout:g}s")
                if pending:
                    wait(list(pending), timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
        finally:
            # Timed-out calls keep their thread until the transport's own timeout fires.
            executor.shutdown(wait=False)
        return revised

    def _revise_document(
        self,
        context: RunContext,
        policy: UpdatePolicyEngine,
        reviser: Reviser,
        decision: UpdateDecision,
    ) -> str:
        doc_id = decision.doc_id
        body = context.documents[doc_id]
        updating = [
            scoped
            for scoped in decision.scoped_changes
            if any(action_for(kind) is Action.AUTO_UPDATE for kind in scoped.kinds)
        ]

        rewrite = rewrite_references(
            body, doc_id, context.table, index_changes(scoped.change for scoped in updating)
        )
        text = rewrite.text
        names: List[str] = []
        for scoped in updating:
            for symbol in scoped.change.changed_symbols:
                if (
                    symbol.kind is SymbolChangeKind.RENAMED
                    and ChangeKind.SYMBOL_RENAMED in scoped.kinds
                    and symbol.old_name
                ):
                    text = rename_symbol_mentions(text, symbol.old_name, symbol.name)
                    names.append(symbol.old_name)
                elif (
                    symbol.kind is SymbolChangeKind.SIGNATURE_CHANGED
                    and ChangeKind.SIGNATURE_CHANGED in scoped.kinds
                ):
                    text = replace_signature(
                        text, symbol.old_signature or "", symbol.new_signature or ""
                    )
                    names.append(symbol.name)
        self.logger.debug("%s: %d reference(s) rewritten mechanically", doc_id, rewrite.rewritten)

        literals = [
            ref.literal
            for scoped in updating
            for ref in context.mapping.references(doc_id)
            if ref.path in scoped.change.paths
        ]
        excerpt = scoped_excerpt(text, relevant_lines(body, names, literals))
        diff_text = "\n".join(scoped.render_diff() for scoped in updating)
        diff_text = policy.enforce_budget(
            excerpt.text,
            diff_text,
            reviser.summarize_diff,
            budget=context.options.budget_override,
        )
        replacement = reviser.revise(doc_id, excerpt.text, diff_text)
        if replacement is None:
            return text
        return excerpt.splice(text, replacement)

    def _write_set(self, context: RunContext, revised: Dict[str, str]) -> Dict[str, str]:
        files: Dict[str, str] = {}
        for doc_id in sorted(revised):
            if revised[doc_id] != context.documents[doc_id]:
                files[context.document_path(doc_id)] = revised[doc_id]
            else:
                self.logger.debug("%s unchanged after revision", doc_id)

        renames: List[Tuple[str, str]] = []
        for change in context.changes:
            if (
                change.status is not ChangeStatus.RENAMED
                or not change.old_path
                or change.old_path not in context.table.entries
            ):
                continue
            pending = [
                doc_id
                for doc_id in context.mapping.docs_for(change.old_path)
                if context.document_path(doc_id) not in files
            ]
            if pending:
                context.summary.warnings.append(
                    f"routing table: row for {change.old_path} kept because "
                    f"{', '.join(pending)} still cite(s) it; move it to {change.path} "
                    "after review"
                )
                continue
            renames.append((change.old_path, change.path))
        deleted = [
            change.path
            for change in context.changes
            if change.status is ChangeStatus.DELETED and change.path in context.table.entries
        ]
        if renames or deleted:
            routing_text = self._current_text(context, context.routing_table_path)
            updated, warnings = rewrite_routing_rows(routing_text, renames, deleted)
            context.summary.warnings.extend(warnings)
            if updated != routing_text:
                files[context.routing_table_path] = updated
        return files

    def _publish(self, context: RunContext, files: Dict[str, str]) -> RunStatus:
        publish_cfg = context.config.publish
        branch_name = self._build_branch_name(publish_cfg.branch_prefix, context.head)
        summary = context.summary
        summary.branch = branch_name
        try:
            existing = self.publisher.find_open_review_request(str(context.repo_path), branch_name)
            if existing:
                self.logger.info("Review request already open for %s: %s", branch_name, existing)
                summary.review_request = existing
                return RunStatus.ALREADY_OPEN
            result = self.publisher.publish(
                str(context.repo_path),
                files,
                branch_name=branch_name,
                start_point=context.head,
                base_branch=publish_cfg.base_branch,
                title=self._build_title(context),
                body=templates.render(
                    "summary.md.j2", context.config.templates_dir, summary=summary
                ),
                message=f"docs: sync knowledge pack with {context.commit_range}",
                push=publish_cfg.push,
                labels=publish_cfg.labels,
            )
        except PublishError as exc:
            self._log_exception("Publishing failed", exc)
            raise SyncError(str(exc), summary) from exc
        summary.review_request = result.review_request
        return RunStatus.PUBLISHED

    # ------------------------------------------------------------------
    # Helpers

    def _read_knowledge(self, config: DocSyncConfig) -> Tuple[RoutingTable, Dict[str, str]]:
        routing_path = config.routing_table_path
        if not routing_path.is_file():
            raise RoutingTableError(f"Routing table not found: {routing_path}")
        table = self._parser_for(config).parse_routing_table(
            routing_path.read_text(encoding="utf-8")
        )
        documents: Dict[str, str] = {}
        root = config.knowledge_root
        for pattern in config.knowledge.include:
            for path in sorted(root.glob(pattern)):
                if not path.is_file() or path == routing_path:
                    continue
                doc_id = path.relative_to(root).as_posix()
                documents.setdefault(doc_id, path.read_text(encoding="utf-8"))
        return table, documents

    def _current_text(self, context: RunContext, relative: str) -> str:
        path = context.repo_path / relative
        return path.read_text(encoding="utf-8") if path.exists() else ""

    def _fail(self, context: RunContext, decision: UpdateDecision, reason: str) -> None:
        self.logger.warning("%s: %s; flagging", decision.doc_id, reason)
        decision.downgrade(reason)
        context.summary.flag(decision.doc_id, reason)

    def _policy_for(self, config: DocSyncConfig, options: RunOptions) -> UpdatePolicyEngine:
        guards = config.guards
        ceiling = (
            options.file_count_ceiling
            if options.file_count_ceiling is not None
            else guards.file_count_ceiling
        )
        return UpdatePolicyEngine(
            file_count_ceiling=ceiling,
            max_revision_requests=guards.max_revision_requests,
            budget_bytes=guards.budget_bytes,
        )

    def _parser_for(self, config: DocSyncConfig) -> FileMapParser:
        if self._parser is not None:
            return self._parser
        return FileMapParser(appendix_heading=config.knowledge.appendix_heading)

    def _extractor_for(self, config: DocSyncConfig) -> ChangeSetExtractor:
        if self._extractor is not None:
            return self._extractor
        return ChangeSetExtractor(
            similarity_threshold=config.diff.similarity_threshold,
            context_lines=config.diff.context_lines,
            summarizers=discover_summarizers(),
        )

    def _reviser_for(self, config: DocSyncConfig) -> Reviser:
        if self._reviser is not None:
            return self._reviser
        if config.templates_dir is not None:
            self.logger.debug("Using custom templates from %s", config.templates_dir)
        return ContentReviser(
            self._llm_runner or self._build_llm_runner(config),
            templates_dir=config.templates_dir,
        )

    @staticmethod
    def _build_llm_runner(config: DocSyncConfig) -> LLMRunner:
        llm_cfg = config.llm
        kwargs: Dict[str, object] = {"request_timeout": llm_cfg.request_timeout}
        if llm_cfg.runner:
            kwargs["executable"] = llm_cfg.runner
        if llm_cfg.model:
            kwargs["model"] = llm_cfg.model
        if llm_cfg.base_url is not None:
            kwargs["base_url"] = llm_cfg.base_url
        if llm_cfg.temperature is not None:
            kwargs["temperature"] = llm_cfg.temperature
        if llm_cfg.max_tokens is not None:
            kwargs["max_tokens"] = llm_cfg.max_tokens
        if llm_cfg.api_key is not None:
            kwargs["api_key"] = llm_cfg.api_key
        return LLMRunner(**kwargs)  # type: ignore[arg-type]

    def _log_exception(self, message: str, exc: Exception) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.exception("%s: %s", message, exc)
        else:
            self.logger.error("%s: %s", message, exc)

    @staticmethod
    def _render_diff(path: str, original: str, updated: str) -> str:
        diff = difflib.unified_diff(
            original.splitlines(keepends=True),
            updated.splitlines(keepends=True),
            fromfile=f"{path} (original)",
            tofile=f"{path} (updated)",
        )
        return "".join(diff)

    @staticmethod
    def _build_branch_name(prefix: str, head: str) -> str:
        sanitized = prefix.strip().replace(" ", "-") or "docsync/"
        if sanitized.endswith("/"):
            return f"{sanitized}{head[:7]}"
        return f"{sanitized}-{head[:7]}"

    @staticmethod
    def _build_title(context: RunContext) -> str:
        written = context.summary.written
        if written:
            preview = ", ".join(written[:3])
            if len(written) > 3:
                preview += ", ..."
            return f"docs: sync knowledge pack ({preview})"
        return f"docs: sync knowledge pack for {context.head[:7]}"


__all__ = [
    "EXIT_FATAL",
    "EXIT_GUARDED",
    "EXIT_OK",
    "Orchestrator",
    "RunContext",
    "RunOptions",
    "RunOutcome",
    "RunStatus",
    "SyncError",
]

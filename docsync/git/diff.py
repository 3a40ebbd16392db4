"""Diff extraction: raw git output to structured per-file change records."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from ..logging import get_logger
from ..models import ChangeStatus, FileChange, Hunk
from ..summarizers import ChangeSummarizer, summarizer_for

_DIFF_HEADER = re.compile(r"^diff --git (?P<paths>.+)$")
_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@ ?(.*)$")
_SIMILARITY = re.compile(r"^similarity index (\d+)%$")
_DEV_NULL = "/dev/null"


@dataclass(frozen=True)
class CommitRange:
    """A pair of revisions to diff, as given on the command line."""

    base: str
    head: str
    symmetric: bool = False

    @classmethod
    def parse(cls, value: str) -> "CommitRange":
        text = value.strip()
        if not text:
            raise ValueError("commit range must not be empty")
        if "..." in text:
            base, head = text.split("...", 1)
            return cls(base=base or "HEAD", head=head or "HEAD", symmetric=True)
        if ".." in text:
            base, head = text.split("..", 1)
            return cls(base=base or "HEAD", head=head or "HEAD")
        return cls(base=f"{text}~1", head=text)

    def diff_args(self) -> List[str]:
        if self.symmetric:
            return [f"{self.base}...{self.head}"]
        return [self.base, self.head]

    def __str__(self) -> str:
        joiner = "..." if self.symmetric else ".."
        return f"{self.base}{joiner}{self.head}"


@dataclass
class RawFileDiff:
    """One `diff --git` block before heuristics are applied."""

    old_path: Optional[str] = None
    new_path: Optional[str] = None
    status: ChangeStatus = ChangeStatus.MODIFIED
    similarity: Optional[int] = None
    binary: bool = False
    hunks: List[Hunk] = field(default_factory=list)

    @property
    def path(self) -> str:
        return self.new_path or self.old_path or ""


class ChangeSetExtractor:
    """Turns `git diff` output for a commit range into ordered FileChange records."""

    def __init__(
        self,
        runner: Callable[..., str] | None = None,
        *,
        similarity_threshold: int = 50,
        context_lines: int = 3,
        summarizers: Sequence[ChangeSummarizer] | None = None,
    ) -> None:
        self._runner = runner or self._default_runner
        self.similarity_threshold = similarity_threshold
        self.context_lines = context_lines
        self._summarizers = summarizers
        self.logger = get_logger("diff")

    def extract(self, repo_path: str, commit_range: CommitRange | str) -> List[FileChange]:
        repo = Path(repo_path)
        if not (repo / ".git").exists():
            raise RuntimeError(f"{repo_path} is not a Git repository")
        rng = CommitRange.parse(commit_range) if isinstance(commit_range, str) else commit_range

        args = [
            "git",
            "diff",
            "--no-color",
            "--no-ext-diff",
            "--src-prefix=a/",
            "--dst-prefix=b/",
            f"-M{self.similarity_threshold}%",
            f"-U{self.context_lines}",
            *rng.diff_args(),
        ]
        output = self._run(args, cwd=repo)
        changes = self.changes_from_diff(output)
        self.logger.info("Extracted %d changed file(s) for %s", len(changes), rng)
        return changes

    def changes_from_diff(self, diff_text: str) -> List[FileChange]:
        changes: List[FileChange] = []
        for raw in parse_unified_diff(diff_text):
            changes.extend(self._to_changes(raw))
        return changes

    def resolve_commit(self, repo_path: str, ref: str) -> str:
        output = self._run(
            ["git", "rev-parse", "--verify", f"{ref}^{{commit}}"], cwd=Path(repo_path)
        )
        return output.strip()

    # ------------------------------------------------------------------
    # Internals

    def _to_changes(self, raw: RawFileDiff) -> List[FileChange]:
        if (
            raw.status is ChangeStatus.RENAMED
            and raw.similarity is not None
            and raw.similarity < self.similarity_threshold
        ):
            self.logger.debug(
                "Rename %s -> %s below similarity threshold (%d%% < %d%%); splitting",
                raw.old_path,
                raw.new_path,
                raw.similarity,
                self.similarity_threshold,
            )
            return [
                FileChange(path=raw.old_path or "", status=ChangeStatus.DELETED),
                self._build(raw.path, ChangeStatus.ADDED, None, raw),
            ]
        old_path = raw.old_path if raw.status is ChangeStatus.RENAMED else None
        return [self._build(raw.path, raw.status, old_path, raw)]

    def _build(
        self, path: str, status: ChangeStatus, old_path: Optional[str], raw: RawFileDiff
    ) -> FileChange:
        summarizer = summarizer_for(path, self._summarizers)
        symbols = [] if raw.binary else summarizer.summarize(raw.hunks)
        comment_only = False if raw.binary else summarizer.is_comment_only(raw.hunks)
        change = FileChange(
            path=path,
            status=status,
            old_path=old_path,
            hunks=list(raw.hunks),
            changed_symbols=symbols,
            similarity=raw.similarity,
            binary=raw.binary,
            comment_only=comment_only,
        )
        self.logger.debug(
            "%s %s: %d hunk(s), shift %+d, %d symbol event(s) via %s",
            status.value,
            path,
            len(change.hunks),
            change.line_shift,
            len(symbols),
            summarizer.name,
        )
        return change

    def _run(self, args: Iterable[str], *, cwd: Path) -> str:
        return self._runner(args, cwd=cwd, capture_output=True)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        capture_output: bool = False,
    ) -> str:
        command = list(args)
        try:
            completed = subprocess.run(
                command,
                cwd=str(cwd),
                check=True,
                text=True,
                capture_output=capture_output,
            )
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit code {exc.returncode}"
            raise RuntimeError(f"{' '.join(command[:2])} failed: {detail}") from exc
        return completed.stdout if capture_output else ""


def parse_unified_diff(text: str) -> List[RawFileDiff]:
    """Parse `git diff` output into per-file blocks with hunks."""
    files: List[RawFileDiff] = []
    current: Optional[RawFileDiff] = None
    hunk: Optional[Hunk] = None
    old_left = new_left = 0

    for line in text.splitlines():
        if hunk is not None and (old_left > 0 or new_left > 0):
            marker = line[:1]
            if marker == " " or line == "":
                hunk.lines.append(line if line else " ")
                old_left -= 1
                new_left -= 1
                continue
            if marker == "-":
                hunk.lines.append(line)
                old_left -= 1
                continue
            if marker == "+":
                hunk.lines.append(line)
                new_left -= 1
                continue
            if marker == "\\":
                continue
        if hunk is not None and line.startswith("\\"):
            continue

        header = _DIFF_HEADER.match(line)
        if header:
            current = RawFileDiff()
            old_path, new_path = _split_header_paths(header.group("paths"))
            current.old_path, current.new_path = old_path, new_path
            files.append(current)
            hunk = None
            continue
        if current is None:
            continue

        hunk_header = _HUNK_HEADER.match(line)
        if hunk_header:
            old_start, old_count, new_start, new_count, context = hunk_header.groups()
            hunk = Hunk(
                old_start=int(old_start),
                old_count=int(old_count) if old_count is not None else 1,
                new_start=int(new_start),
                new_count=int(new_count) if new_count is not None else 1,
                header=context.strip(),
            )
            old_left, new_left = hunk.old_count, hunk.new_count
            current.hunks.append(hunk)
            continue

        if line.startswith("new file mode"):
            current.status = ChangeStatus.ADDED
        elif line.startswith("deleted file mode"):
            current.status = ChangeStatus.DELETED
        elif line.startswith("rename from "):
            current.status = ChangeStatus.RENAMED
            current.old_path = _unquote(line[len("rename from ") :])
        elif line.startswith("rename to "):
            current.status = ChangeStatus.RENAMED
            current.new_path = _unquote(line[len("rename to ") :])
        elif line.startswith("copy to "):
            current.status = ChangeStatus.ADDED
            current.new_path = _unquote(line[len("copy to ") :])
        elif line.startswith("similarity index "):
            similarity = _SIMILARITY.match(line)
            if similarity:
                current.similarity = int(similarity.group(1))
        elif line.startswith("Binary files ") or line == "GIT binary patch":
            current.binary = True
        elif line.startswith("--- "):
            path = _strip_prefix(_unquote(line[4:]), "a/")
            if path != _DEV_NULL:
                current.old_path = path
        elif line.startswith("+++ "):
            path = _strip_prefix(_unquote(line[4:]), "b/")
            if path != _DEV_NULL:
                current.new_path = path

    for item in files:
        if item.status is ChangeStatus.ADDED and item.new_path:
            item.old_path = None
        elif item.status is ChangeStatus.DELETED:
            item.new_path = None
    return files


def _split_header_paths(paths: str) -> tuple[Optional[str], Optional[str]]:
    if paths.startswith('"'):
        closing = paths.find('" ', 1)
        if closing != -1:
            old = _unquote(paths[: closing + 1])
            new = _unquote(paths[closing + 2 :])
            return _strip_prefix(old, "a/"), _strip_prefix(new, "b/")
    marker = paths.find(" b/")
    if marker == -1:
        return None, None
    old = _unquote(paths[:marker])
    new = _unquote(paths[marker + 1 :])
    return _strip_prefix(old, "a/"), _strip_prefix(new, "b/")


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix) :] if path.startswith(prefix) else path


def _unquote(value: str) -> str:
    text = value.strip()
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        inner = text[1:-1]
        return inner.encode("latin-1", "backslashreplace").decode("unicode_escape").encode(
            "latin-1"
        ).decode("utf-8", "replace")
    return text


__all__ = ["ChangeSetExtractor", "CommitRange", "RawFileDiff", "parse_unified_diff"]

"""Git publishing: one branch, one batched commit, one review request."""

from __future__ import annotations

import json
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Sequence

from ..logging import get_logger


class PublishError(RuntimeError):
    """Raised when the version-control or hosting step fails."""


@dataclass(frozen=True)
class PublishResult:
    branch: str
    commit: str
    review_request: str


class Publisher:
    """Writes decided documents to a fresh branch and opens a pull request via `gh`."""

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner
        self.logger = get_logger("publisher")

    def find_open_review_request(self, repo_path: str, branch_name: str) -> Optional[str]:
        """Return the URL of an open pull request whose head is `branch_name`."""
        repo = Path(repo_path)
        try:
            output = self._run(
                [
                    "gh",
                    "pr",
                    "list",
                    "--head",
                    branch_name,
                    "--state",
                    "open",
                    "--json",
                    "url",
                ],
                cwd=repo,
                capture_output=True,
            )
        except (subprocess.CalledProcessError, OSError) as exc:
            raise PublishError(f"Unable to query open pull requests: {exc}") from exc
        try:
            payload = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise PublishError("gh pr list returned invalid JSON") from exc
        if isinstance(payload, list):
            for item in payload:
                if isinstance(item, dict) and isinstance(item.get("url"), str):
                    return item["url"]
        return None

    def publish(
        self,
        repo_path: str,
        files: Mapping[str, str],
        *,
        branch_name: str,
        start_point: str,
        base_branch: str | None = None,
        title: str,
        body: str,
        message: str,
        push: bool = True,
        labels: Sequence[str] | None = None,
    ) -> PublishResult:
        """Commit every file in one commit on `branch_name` and open one pull request.

        On any failure before the push the working tree is restored to the
        ref it was on, so no partial commit survives the run.
        """
        repo = Path(repo_path)
        if not (repo / ".git").exists():
            raise PublishError(f"{repo_path} is not a Git repository")
        if not files:
            raise PublishError("Nothing to publish")

        original_ref = self._current_ref(repo)
        try:
            self._run(["git", "checkout", "-B", branch_name, start_point], cwd=repo)
            for relative, content in files.items():
                target = repo / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
            for relative in files:
                self._run(["git", "add", "--", relative], cwd=repo)
            self._run(["git", "commit", "-m", message], cwd=repo, env=self._commit_env())
            commit = self._run(["git", "rev-parse", "HEAD"], cwd=repo, capture_output=True).strip()
        except (subprocess.CalledProcessError, OSError) as exc:
            self._rollback(repo, original_ref, branch_name)
            raise PublishError(f"Failed to commit knowledge updates: {exc}") from exc

        try:
            if push:
                self._run(["git", "push", "-u", "origin", branch_name], cwd=repo)
            pr_args = ["gh", "pr", "create", "--title", title, "--body", body, "--head", branch_name]
            if base_branch:
                pr_args.extend(["--base", base_branch])
            for label in labels or []:
                if label:
                    pr_args.extend(["--label", label])
            url = self._run(pr_args, cwd=repo, capture_output=True).strip()
        except (subprocess.CalledProcessError, OSError) as exc:
            raise PublishError(
                f"Committed {commit[:7]} on {branch_name} but failed to open the pull request: {exc}"
            ) from exc
        finally:
            self._restore(repo, original_ref)

        self.logger.info("Opened review request %s from %s", url, branch_name)
        return PublishResult(branch=branch_name, commit=commit, review_request=url)

    # ------------------------------------------------------------------
    # Helpers

    def _current_ref(self, repo: Path) -> str:
        try:
            ref = self._run(
                ["git", "rev-parse", "--abbrev-ref", "HEAD"], cwd=repo, capture_output=True
            ).strip()
            if ref and ref != "HEAD":
                return ref
            return self._run(["git", "rev-parse", "HEAD"], cwd=repo, capture_output=True).strip()
        except (subprocess.CalledProcessError, OSError) as exc:
            raise PublishError(f"Unable to determine the current ref: {exc}") from exc

    def _rollback(self, repo: Path, original_ref: str, branch_name: str) -> None:
        for args in (
            ["git", "reset", "--hard"],
            ["git", "checkout", original_ref],
            ["git", "branch", "-D", branch_name],
        ):
            try:
                self._run(args, cwd=repo)
            except (subprocess.CalledProcessError, OSError) as exc:
                self.logger.warning("Rollback step '%s' failed: %s", " ".join(args), exc)

    def _restore(self, repo: Path, original_ref: str) -> None:
        try:
            self._run(["git", "checkout", original_ref], cwd=repo)
        except (subprocess.CalledProcessError, OSError) as exc:
            self.logger.warning("Unable to return to %s: %s", original_ref, exc)

    @staticmethod
    def _commit_env() -> dict[str, str]:
        env = os.environ.copy()
        env.setdefault("GIT_AUTHOR_NAME", "docsync")
        env.setdefault("GIT_AUTHOR_EMAIL", "docsync@example.com")
        env.setdefault("GIT_COMMITTER_NAME", env["GIT_AUTHOR_NAME"])
        env.setdefault("GIT_COMMITTER_EMAIL", env["GIT_AUTHOR_EMAIL"])
        return env

    def _run(
        self,
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        return self._runner(args, cwd=cwd, env=env, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            env=env,
            check=True,
            text=True,
            capture_output=capture_output,
        )
        if capture_output:
            return completed.stdout
        return ""


__all__ = ["PublishError", "PublishResult", "Publisher"]

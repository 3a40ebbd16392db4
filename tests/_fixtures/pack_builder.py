"""Helpers for building throwaway repositories that carry a knowledge pack."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Dict, List, Mapping

HEAD_SHA = "4f2c9e1a7b3d5c6e8f90a1b2c3d4e5f60718293a"


class PackBuilder:
    """Writes source files, knowledge documents and config into a fake repository."""

    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "repo"
        self.root.mkdir()
        (self.root / ".git").mkdir()

    def write(self, files: Mapping[str, str]) -> None:
        for relative, content in files.items():
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")

    def knowledge(self, documents: Mapping[str, str], routing: str) -> None:
        files = {f".knowledge/{doc_id}": body for doc_id, body in documents.items()}
        files[".knowledge/ROUTING.md"] = routing
        self.write(files)

    def config(self, text: str) -> None:
        self.write({".docsync.yml": text})

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def path(self) -> Path:
        return self.root


class FakeGit:
    """Runner double answering `git diff` and `git rev-parse` with canned output."""

    def __init__(self, diff_text: str, head: str = HEAD_SHA) -> None:
        self.diff_text = textwrap.dedent(diff_text).lstrip("\n")
        self.head = head
        self.calls: List[List[str]] = []

    def __call__(self, args, *, cwd, capture_output=False, env=None):  # type: ignore[no-untyped-def]
        command = list(args)
        self.calls.append(command)
        if command[:2] == ["git", "diff"]:
            return self.diff_text
        if command[:2] == ["git", "rev-parse"]:
            return f"{self.head}\n"
        raise AssertionError(f"unexpected command: {command}")


class RecordingPublisher:
    """Publisher double that remembers published branches as open review requests."""

    def __init__(self) -> None:
        self.publish_calls: List[Dict[str, object]] = []
        self.open_requests: Dict[str, str] = {}
        self.queries: List[str] = []

    def find_open_review_request(self, repo_path: str, branch_name: str):  # type: ignore[no-untyped-def]
        self.queries.append(branch_name)
        return self.open_requests.get(branch_name)

    def publish(self, repo_path: str, files, **kwargs):  # type: ignore[no-untyped-def]
        from docsync.git.publisher import PublishResult

        self.publish_calls.append({"repo_path": repo_path, "files": dict(files), **kwargs})
        branch = str(kwargs["branch_name"])
        url = f"https://example.test/pulls/{len(self.publish_calls)}"
        self.open_requests[branch] = url
        return PublishResult(branch=branch, commit="c0ffee0", review_request=url)


class RecordingReviser:
    """Reviser double; answers "no changes" unless a replacement function is given."""

    def __init__(self, replace=None, *, fail_for=(), summary: str | None = None) -> None:  # type: ignore[no-untyped-def]
        self.replace = replace
        self.fail_for = set(fail_for)
        self.summary = summary
        self.calls: List[Dict[str, str]] = []
        self.summaries: List[int] = []

    def revise(self, doc_id: str, excerpt: str, diff_text: str):  # type: ignore[no-untyped-def]
        self.calls.append({"doc_id": doc_id, "excerpt": excerpt, "diff": diff_text})
        if doc_id in self.fail_for:
            raise RuntimeError("model unavailable")
        if self.replace is None:
            return None
        return self.replace(excerpt)

    def summarize_diff(self, diff_text: str, limit: int) -> str:
        self.summaries.append(limit)
        return self.summary if self.summary is not None else diff_text


__all__ = ["FakeGit", "HEAD_SHA", "PackBuilder", "RecordingPublisher", "RecordingReviser"]

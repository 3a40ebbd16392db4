"""Tests for the git publisher."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from docsync.git.publisher import PublishError, Publisher


def _repo(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    (repo / ".git").mkdir(parents=True)
    return repo


def _recording_runner(calls: list, *, fail_on: tuple[str, ...] | None = None, pr_list: str = "[]"):  # type: ignore[no-untyped-def]
    def runner(args, cwd, env=None, capture_output=False):  # type: ignore[no-untyped-def]
        command = list(args)
        calls.append((command, Path(cwd), env, capture_output))
        if fail_on and tuple(command[: len(fail_on)]) == fail_on:
            raise subprocess.CalledProcessError(1, command, stderr="boom")
        if command == ["git", "rev-parse", "--abbrev-ref", "HEAD"]:
            return "main\n"
        if command == ["git", "rev-parse", "HEAD"]:
            return "deadbeefcafe\n"
        if command[:3] == ["gh", "pr", "list"]:
            return pr_list
        if command[:3] == ["gh", "pr", "create"]:
            return "https://example.test/pulls/7\n"
        return ""

    return runner


def test_publish_commits_all_files_once_and_opens_review_request(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    calls: list = []
    publisher = Publisher(runner=_recording_runner(calls))

    result = publisher.publish(
        str(repo),
        {".knowledge/a.md": "A\n", ".knowledge/b.md": "B\n"},
        branch_name="docsync/abc1234",
        start_point="abc1234ffff",
        base_branch="main",
        title="docs: sync",
        body="summary",
        message="docs: sync knowledge pack",
        labels=["docs"],
    )

    commands = [call[0] for call in calls]
    assert commands[1] == ["git", "checkout", "-B", "docsync/abc1234", "abc1234ffff"]
    assert ["git", "add", "--", ".knowledge/a.md"] in commands
    assert ["git", "add", "--", ".knowledge/b.md"] in commands
    assert sum(1 for command in commands if command[:2] == ["git", "commit"]) == 1
    assert ["git", "push", "-u", "origin", "docsync/abc1234"] in commands
    create = next(command for command in commands if command[:3] == ["gh", "pr", "create"])
    assert create[create.index("--base") + 1] == "main"
    assert create[create.index("--label") + 1] == "docs"
    assert commands[-1] == ["git", "checkout", "main"]
    assert (repo / ".knowledge" / "a.md").read_text(encoding="utf-8") == "A\n"
    assert result.review_request == "https://example.test/pulls/7"
    assert result.commit == "deadbeefcafe"


def test_publish_rolls_back_when_commit_fails(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    calls: list = []
    publisher = Publisher(runner=_recording_runner(calls, fail_on=("git", "commit")))

    with pytest.raises(PublishError):
        publisher.publish(
            str(repo),
            {"doc.md": "x\n"},
            branch_name="docsync/abc1234",
            start_point="abc1234",
            title="t",
            body="b",
            message="m",
        )

    commands = [call[0] for call in calls]
    assert ["git", "reset", "--hard"] in commands
    assert ["git", "branch", "-D", "docsync/abc1234"] in commands
    assert not any(command[:2] == ["git", "push"] for command in commands)
    assert not any(command[:3] == ["gh", "pr", "create"] for command in commands)


def test_publish_requires_git_repository(tmp_path: Path) -> None:
    publisher = Publisher(runner=_recording_runner([]))
    with pytest.raises(PublishError):
        publisher.publish(
            str(tmp_path),
            {"doc.md": "x"},
            branch_name="b",
            start_point="s",
            title="t",
            body="b",
            message="m",
        )


def test_find_open_review_request(tmp_path: Path) -> None:
    repo = _repo(tmp_path)
    calls: list = []
    payload = json.dumps([{"url": "https://example.test/pulls/3"}])
    publisher = Publisher(runner=_recording_runner(calls, pr_list=payload))

    assert publisher.find_open_review_request(str(repo), "docsync/abc1234") == "https://example.test/pulls/3"
    assert calls[0][0][:5] == ["gh", "pr", "list", "--head", "docsync/abc1234"]

    empty = Publisher(runner=_recording_runner([], pr_list="[]"))
    assert empty.find_open_review_request(str(repo), "docsync/abc1234") is None

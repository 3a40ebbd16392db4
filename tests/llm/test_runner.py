"""Tests for the model transport."""

from __future__ import annotations

import json
import subprocess

import pytest

from docsync.llm.runner import LLMRunner


def test_llm_runner_constructs_request() -> None:
    captured = {}

    def fake_runner(request):
        captured["prompt"] = request.prompt
        captured["system"] = request.system
        captured["model"] = request.model
        captured["temperature"] = request.temperature
        captured["max_tokens"] = request.max_tokens
        captured["executable"] = request.executable
        captured["base_url"] = request.base_url
        captured["api_key"] = request.api_key
        captured["request_timeout"] = request.request_timeout
        return "response"

    runner = LLMRunner(
        model="custom-model",
        base_url=None,
        executable="ollama",
        temperature=0.15,
        max_tokens=256,
        api_key=None,
        request_timeout=42.0,
        runner=fake_runner,
    )
    result = runner.run("Hello world", system="system message")

    assert result == "response"
    assert captured == {
        "prompt": "Hello world",
        "system": "system message",
        "model": "custom-model",
        "temperature": 0.15,
        "max_tokens": 256,
        "executable": "ollama",
        "base_url": None,
        "api_key": None,
        "request_timeout": 42.0,
    }


def test_llm_runner_http_posts_payload(monkeypatch) -> None:
    captured = {}

    class FakeResponse:
        def __init__(self, payload):
            self._payload = payload

        def read(self):
            return json.dumps(self._payload).encode("utf-8")

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

    def fake_urlopen(request, timeout=None):
        captured["url"] = request.full_url
        captured["headers"] = {k.lower(): v for k, v in request.header_items()}
        captured["payload"] = json.loads(request.data.decode("utf-8"))
        captured["timeout"] = timeout
        return FakeResponse({"choices": [{"message": {"content": "Parsing starts at line 228.\n"}}]})

    monkeypatch.setattr("docsync.llm.runner.urlopen", fake_urlopen)

    runner = LLMRunner(
        model="gpt-4o-mini",
        base_url="http://localhost:12434/engines/v1/",
        api_key="local-key",
        temperature=0.0,
        max_tokens=512,
        request_timeout=25.0,
    )
    result = runner.run("Revise this excerpt.", system="You maintain knowledge documents.")

    assert result == "Parsing starts at line 228."
    assert captured["url"] == "http://localhost:12434/engines/v1/chat/completions"
    headers = captured["headers"]
    assert headers["content-type"] == "application/json"
    assert headers["authorization"] == "Bearer local-key"
    payload = captured["payload"]
    assert payload["model"] == "gpt-4o-mini"
    assert payload["messages"] == [
        {"role": "system", "content": "You maintain knowledge documents."},
        {"role": "user", "content": "Revise this excerpt."},
    ]
    assert payload["temperature"] == 0.0
    assert payload["max_tokens"] == 512
    assert captured["timeout"] == 25.0


def test_llm_runner_reads_environment(monkeypatch) -> None:
    monkeypatch.delenv("DOCSYNC_LLM_BASE_URL", raising=False)
    monkeypatch.delenv("DOCSYNC_LLM_API_KEY", raising=False)
    monkeypatch.setenv("DOCSYNC_LLM_MODEL", "env-model")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://api.example.test/v1")
    monkeypatch.setenv("OPENAI_API_KEY", "env-key")

    runner = LLMRunner()

    assert runner.model == "env-model"
    assert runner.base_url == "https://api.example.test/v1"
    assert runner.api_key == "env-key"
    assert LLMRunner.environment_configured() is True


def test_llm_runner_cli_pipes_prompt(monkeypatch) -> None:
    for key in (*LLMRunner.ENV_MODEL_KEYS, *LLMRunner.ENV_BASE_URL_KEYS, *LLMRunner.ENV_API_KEY_KEYS):
        monkeypatch.delenv(key, raising=False)
    captured = {}

    def fake_run(args, **kwargs):
        captured["args"] = args
        captured["input"] = kwargs["input"]
        captured["timeout"] = kwargs["timeout"]
        return subprocess.CompletedProcess(args, 0, stdout="  revised text \n", stderr="")

    monkeypatch.setattr("docsync.llm.runner.subprocess.run", fake_run)

    runner = LLMRunner(model="llama3", request_timeout=9.0)
    result = runner.run("prompt body", system="system text")

    assert result == "revised text"
    assert captured["args"] == ["ollama", "run", "llama3"]
    assert captured["input"] == "system text\n\nprompt body"
    assert captured["timeout"] == 9.0
    assert LLMRunner.environment_configured() is False


def test_llm_runner_rejects_invalid_json(monkeypatch) -> None:
    class BrokenResponse:
        def read(self):
            return b"not json"

        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

    monkeypatch.setattr("docsync.llm.runner.urlopen", lambda request, timeout=None: BrokenResponse())

    runner = LLMRunner(model="m", base_url="http://localhost:1/v1", api_key=None)

    with pytest.raises(RuntimeError, match="invalid JSON"):
        runner.run("prompt")

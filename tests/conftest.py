"""Pytest configuration and fixtures for lumen tests."""

import json

import pytest

from lumen.core.providers import HttpResponse
from lumen.utils.token_resolver import TokenCounter

LUMEN_ENV_VARS = [
    "LUMEN_AI_PROVIDER",
    "LUMEN_AI_MODEL",
    "LUMEN_API_KEY",
    "LUMEN_DEBUG",
    "OPENAI_API_KEY",
    "GROQ_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENROUTER_API_KEY",
    "DEEPSEEK_API_KEY",
]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the user's environment, home directory and cwd out of tests."""
    for name in LUMEN_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))

    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    # Never download tiktoken tables during tests
    monkeypatch.setattr(TokenCounter, "_get_encoding", lambda self: None)
    return tmp_path


class StubTransport:
    """Transport double that records requests and returns a canned response."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def send(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def called(self):
        return bool(self.requests)


def chat_body(content):
    return json.dumps({"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def stub_transport():
    """Factory for StubTransport instances."""

    def _make(status_code=200, body="", error=None):
        return StubTransport(HttpResponse(status_code=status_code, text=body), error)

    return _make


@pytest.fixture
def write_config(tmp_path):
    """Write a config file and return its path."""

    def _write(data, name="lumen.config.json", directory=None):
        directory = directory or tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write

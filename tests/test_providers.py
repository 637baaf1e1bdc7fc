"""Tests for provider descriptors."""

import json

import pytest

from conftest import chat_body
from lumen.core.prompt_engine import PromptPair
from lumen.core.providers import (
    PROVIDERS,
    get_provider,
    supported_providers,
    validate_api_key,
)
from lumen.errors import MalformedResponseError

PROMPT = PromptPair(system="You write commit messages.", user="Diff: +x")


class TestRegistry:
    """Test the provider registry."""

    def test_supported_providers(self):
        assert supported_providers() == [
            "openai",
            "groq",
            "claude",
            "openrouter",
            "deepseek",
            "ollama",
            "phind",
        ]

    def test_key_requirements(self):
        optional = {p for p, d in PROVIDERS.items() if not d.requires_api_key}

        assert optional == {"ollama", "phind"}

    def test_every_provider_has_a_default_model(self):
        assert all(descriptor.default_model for descriptor in PROVIDERS.values())

    def test_validate_api_key(self):
        assert validate_api_key("sk-abc", "openai")
        assert validate_api_key("gsk_abc", "groq")
        assert not validate_api_key("abc", "openrouter")
        assert not validate_api_key("", "openai")


class TestRequestBuilders:
    """Test provider specific request shapes."""

    @pytest.mark.parametrize("provider", ["openai", "groq", "openrouter", "deepseek"])
    def test_chat_completion_providers_use_bearer_and_messages(self, provider):
        request = get_provider(provider).build_request(PROMPT, "some-model", "secret")

        assert request.headers["Authorization"] == "Bearer secret"
        assert request.json_body == {
            "model": "some-model",
            "messages": [
                {"role": "system", "content": "You write commit messages."},
                {"role": "user", "content": "Diff: +x"},
            ],
        }

    def test_claude_request(self):
        request = get_provider("claude").build_request(PROMPT, "claude-x", "secret")

        assert request.url == "https://api.anthropic.com/v1/messages"
        assert request.headers["x-api-key"] == "secret"
        assert request.headers["anthropic-version"] == "2023-06-01"
        assert "Authorization" not in request.headers
        assert request.json_body["system"] == "You write commit messages."
        assert request.json_body["messages"] == [{"role": "user", "content": "Diff: +x"}]
        assert request.json_body["max_tokens"] > 0

    def test_ollama_request_concatenates_prompts(self):
        request = get_provider("ollama").build_request(PROMPT, "llama3.2", None)

        assert request.url == "http://localhost:11434/api/generate"
        assert request.json_body == {
            "model": "llama3.2",
            "prompt": "You write commit messages.\n\nDiff: +x",
            "stream": False,
        }
        assert "Authorization" not in request.headers

    def test_phind_request(self):
        request = get_provider("phind").build_request(PROMPT, "Phind-70B", None)

        assert request.json_body["requested_model"] == "Phind-70B"
        assert request.json_body["user_input"] == "You write commit messages.\n\nDiff: +x"
        assert request.json_body["message_history"] == [
            {"content": "You write commit messages.\n\nDiff: +x", "role": "user"}
        ]


class TestResponseParsers:
    """Test text extraction and malformed bodies."""

    def test_chat_completion(self):
        parse = get_provider("openai").parse_response

        assert parse(chat_body("  feat: add login\n")) == "feat: add login"

    def test_chat_completion_content_parts(self):
        body = json.dumps(
            {"choices": [{"message": {"content": [{"type": "text", "text": "fix: typo"}]}}]}
        )

        assert get_provider("openrouter").parse_response(body) == "fix: typo"

    @pytest.mark.parametrize(
        "body",
        [
            json.dumps({"choices": []}),
            json.dumps({"choices": [{"message": {}}]}),
            json.dumps({"choices": [{"message": {"content": None}}]}),
            json.dumps({"choices": [{"message": {"content": "   "}}]}),
            json.dumps(
                {"choices": [{"message": {"content": [{"type": "text", "text": None}]}}]}
            ),
            json.dumps({"id": "cmpl-1"}),
            json.dumps(["not", "an", "object"]),
            "<html>Bad gateway</html>",
        ],
    )
    def test_chat_completion_malformed(self, body):
        with pytest.raises(MalformedResponseError) as exc_info:
            get_provider("groq").parse_response(body)

        assert exc_info.value.provider == "groq"

    def test_claude(self):
        body = json.dumps(
            {"content": [{"type": "text", "text": "docs: update readme"}], "role": "assistant"}
        )

        assert get_provider("claude").parse_response(body) == "docs: update readme"

    @pytest.mark.parametrize(
        "body",
        [
            json.dumps({"content": []}),
            json.dumps({"content": [{"type": "tool_use", "id": "x"}]}),
            json.dumps({"type": "error"}),
        ],
    )
    def test_claude_malformed(self, body):
        with pytest.raises(MalformedResponseError):
            get_provider("claude").parse_response(body)

    def test_ollama(self):
        body = json.dumps({"model": "llama3.2", "response": "chore: bump deps", "done": True})

        assert get_provider("ollama").parse_response(body) == "chore: bump deps"

    def test_ollama_missing_response(self):
        with pytest.raises(MalformedResponseError, match="'response' field"):
            get_provider("ollama").parse_response(json.dumps({"done": True}))

    def test_phind_event_stream(self):
        body = "\n".join(
            [
                'data: {"choices": [{"delta": {"content": "feat: "}}]}',
                "",
                'data: {"choices": [{"delta": {"content": "add login"}}]}',
                'data: {"choices": [{"delta": {}}]}',
                "data: [DONE]",
            ]
        )

        assert get_provider("phind").parse_response(body) == "feat: add login"

    def test_phind_empty_stream(self):
        with pytest.raises(MalformedResponseError):
            get_provider("phind").parse_response("data: [DONE]\n")

    def test_phind_choices_not_a_list(self):
        body = 'data: {"choices": {"0": {"delta": {"content": "x"}}}}\n'

        with pytest.raises(MalformedResponseError):
            get_provider("phind").parse_response(body)

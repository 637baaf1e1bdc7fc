"""Registry of supported AI providers.

Every provider is described by a single :class:`ProviderDescriptor`: its
defaults plus two pure functions, one building the HTTP request for a prompt
pair and one extracting the generated text from the response body. Adding a
provider means adding one descriptor to :data:`PROVIDERS`.
"""

import json
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from lumen.core.prompt_engine import PromptPair
from lumen.errors import MalformedResponseError

ANTHROPIC_VERSION = "2023-06-01"
CLAUDE_MAX_TOKENS = 4096


@dataclass(frozen=True)
class HttpRequest:
    """A provider request, ready to be sent as a JSON POST."""

    url: str
    json_body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class HttpResponse:
    status_code: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


RequestBuilder = Callable[[PromptPair, str, Optional[str]], HttpRequest]
ResponseParser = Callable[[str], str]


@dataclass(frozen=True)
class ProviderDescriptor:
    """Static description of one AI backend."""

    id: str
    display_name: str
    requires_api_key: bool
    default_model: str
    build_request: RequestBuilder
    parse_response: ResponseParser
    env_var: str = ""
    signup_url: str = ""


def _messages(prompt: PromptPair) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": prompt.user},
    ]


def _single_prompt(prompt: PromptPair) -> str:
    return f"{prompt.system}\n\n{prompt.user}"


def _load_json(provider: str, body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError as exc:
        raise MalformedResponseError(provider, f"body is not valid JSON ({exc})") from exc


def _require_text(provider: str, text: Any, what: str) -> str:
    if not isinstance(text, str):
        raise MalformedResponseError(provider, f"missing {what}")
    text = text.strip()
    if not text:
        raise MalformedResponseError(provider, f"empty {what}")
    return text


def build_chat_completion_request(
    url: str, prompt: PromptPair, model: str, api_key: Optional[str]
) -> HttpRequest:
    """Request body for OpenAI-compatible chat completion endpoints."""
    return HttpRequest(
        url=url,
        json_body={"model": model, "messages": _messages(prompt)},
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
    )


def parse_chat_completion(provider: str, body: str) -> str:
    """Extract ``choices[0].message.content`` from a chat completion."""
    data = _load_json(provider, body)
    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        raise MalformedResponseError(provider, "no completion choice available")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise MalformedResponseError(provider, "missing message in first choice")

    content = message.get("content")
    if isinstance(content, list):
        parts = [
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ]
        content = " ".join(parts)
    return _require_text(provider, content, "message content")


def build_claude_request(
    prompt: PromptPair, model: str, api_key: Optional[str]
) -> HttpRequest:
    return HttpRequest(
        url="https://api.anthropic.com/v1/messages",
        json_body={
            "model": model,
            "max_tokens": CLAUDE_MAX_TOKENS,
            "system": prompt.system,
            "messages": [{"role": "user", "content": prompt.user}],
        },
        headers={
            "x-api-key": api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        },
    )


def parse_claude_response(body: str) -> str:
    data = _load_json("claude", body)
    blocks = data.get("content") if isinstance(data, dict) else None
    if not isinstance(blocks, list) or not blocks:
        raise MalformedResponseError("claude", "no content blocks in response")

    text_parts = [
        block["text"]
        for block in blocks
        if isinstance(block, dict) and isinstance(block.get("text"), str)
    ]
    if not text_parts:
        raise MalformedResponseError("claude", "no text content block in response")
    return _require_text("claude", " ".join(text_parts), "text content")


def build_ollama_request(
    prompt: PromptPair, model: str, api_key: Optional[str]
) -> HttpRequest:
    return HttpRequest(
        url="http://localhost:11434/api/generate",
        json_body={
            "model": model,
            "prompt": _single_prompt(prompt),
            "stream": False,
        },
        headers={"Content-Type": "application/json"},
    )


def parse_ollama_response(body: str) -> str:
    data = _load_json("ollama", body)
    text = data.get("response") if isinstance(data, dict) else None
    return _require_text("ollama", text, "'response' field")


def build_phind_request(
    prompt: PromptPair, model: str, api_key: Optional[str]
) -> HttpRequest:
    user_input = _single_prompt(prompt)
    return HttpRequest(
        url="https://https.extension.phind.com/agent/",
        json_body={
            "additional_extension_context": "",
            "allow_magic_buttons": True,
            "is_vscode_extension": True,
            "message_history": [{"content": user_input, "role": "user"}],
            "requested_model": model,
            "user_input": user_input,
        },
        headers={
            "Content-Type": "application/json",
            "User-Agent": "",
            "Accept": "*/*",
            "Accept-Encoding": "Identity",
        },
    )


def parse_phind_response(body: str) -> str:
    """Join the ``delta.content`` fragments of Phind's event stream."""
    fragments = []
    for line in body.splitlines():
        if not line.startswith("data: "):
            continue
        try:
            event = json.loads(line[len("data: "):])
        except ValueError:
            # keep-alive and [DONE] markers
            continue
        choices = event.get("choices") if isinstance(event, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            continue
        delta = choices[0].get("delta") or {}
        content = delta.get("content") if isinstance(delta, dict) else None
        if isinstance(content, str):
            fragments.append(content)

    return _require_text("phind", "".join(fragments), "streamed content")


PROVIDERS: Dict[str, ProviderDescriptor] = {
    descriptor.id: descriptor
    for descriptor in (
        ProviderDescriptor(
            id="openai",
            display_name="OpenAI",
            requires_api_key=True,
            default_model="gpt-4o-mini",
            build_request=partial(
                build_chat_completion_request,
                "https://api.openai.com/v1/chat/completions",
            ),
            parse_response=partial(parse_chat_completion, "openai"),
            env_var="OPENAI_API_KEY",
            signup_url="https://platform.openai.com/api-keys",
        ),
        ProviderDescriptor(
            id="groq",
            display_name="Groq",
            requires_api_key=True,
            default_model="qwen/qwen3-32b",
            build_request=partial(
                build_chat_completion_request,
                "https://api.groq.com/openai/v1/chat/completions",
            ),
            parse_response=partial(parse_chat_completion, "groq"),
            env_var="GROQ_API_KEY",
            signup_url="https://console.groq.com/keys",
        ),
        ProviderDescriptor(
            id="claude",
            display_name="Claude (Anthropic)",
            requires_api_key=True,
            default_model="claude-sonnet-4-5",
            build_request=build_claude_request,
            parse_response=parse_claude_response,
            env_var="ANTHROPIC_API_KEY",
            signup_url="https://console.anthropic.com/",
        ),
        ProviderDescriptor(
            id="openrouter",
            display_name="OpenRouter",
            requires_api_key=True,
            default_model="openai/gpt-4o-mini",
            build_request=partial(
                build_chat_completion_request,
                "https://openrouter.ai/api/v1/chat/completions",
            ),
            parse_response=partial(parse_chat_completion, "openrouter"),
            env_var="OPENROUTER_API_KEY",
            signup_url="https://openrouter.ai/settings/keys",
        ),
        ProviderDescriptor(
            id="deepseek",
            display_name="DeepSeek",
            requires_api_key=True,
            default_model="deepseek-chat",
            build_request=partial(
                build_chat_completion_request,
                "https://api.deepseek.com/chat/completions",
            ),
            parse_response=partial(parse_chat_completion, "deepseek"),
            env_var="DEEPSEEK_API_KEY",
            signup_url="https://platform.deepseek.com/api_keys",
        ),
        ProviderDescriptor(
            id="ollama",
            display_name="Ollama (local)",
            requires_api_key=False,
            default_model="llama3.2",
            build_request=build_ollama_request,
            parse_response=parse_ollama_response,
        ),
        ProviderDescriptor(
            id="phind",
            display_name="Phind",
            requires_api_key=False,
            default_model="Phind-70B",
            build_request=build_phind_request,
            parse_response=parse_phind_response,
        ),
    )
}

API_KEY_PREFIXES: Dict[str, List[str]] = {
    "openai": ["sk-"],
    "groq": ["gsk_", "sk-"],
    "claude": ["sk-"],
    "openrouter": ["sk-or-v1-"],
    "deepseek": ["sk-"],
}


def supported_providers() -> List[str]:
    """Return supported provider identifiers."""
    return list(PROVIDERS.keys())


def get_provider(provider: str) -> ProviderDescriptor:
    """Look up a descriptor. ``provider`` must already be validated."""
    return PROVIDERS[provider]


def validate_api_key(api_key: str, provider: str) -> bool:
    """
    Check whether an API key format looks right for a provider.

    Args:
        api_key: API key to validate
        provider: Provider identifier

    Returns:
        True if the key has one of the provider's known prefixes
    """
    if not api_key:
        return False

    prefixes = API_KEY_PREFIXES.get(provider, [])
    return any(api_key.startswith(prefix) for prefix in prefixes)

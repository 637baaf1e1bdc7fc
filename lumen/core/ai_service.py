"""AI service dispatching prompts to the configured provider."""

import json
import logging

import httpx

from lumen.core.prompt_engine import PromptPair
from lumen.core.providers import (
    HttpRequest,
    HttpResponse,
    ProviderDescriptor,
    get_provider,
)
from lumen.errors import MissingApiKeyError, TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class HttpxTransport:
    """Send provider requests with httpx. One attempt, no retries."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def send(self, request: HttpRequest) -> HttpResponse:
        """
        POST a request and return the raw response.

        Raises:
            httpx.HTTPError: On connection failures and timeouts
        """
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                request.url, json=request.json_body, headers=request.headers
            )
        return HttpResponse(status_code=response.status_code, text=response.text)


def _api_key_hint(descriptor: ProviderDescriptor) -> str:
    sources = ["--api-key", "LUMEN_API_KEY"]
    if descriptor.env_var:
        sources.append(descriptor.env_var)
    hint = (
        f"Set it with {', '.join(sources)} or the config file "
        "(run `lumen configure`)."
    )
    if descriptor.signup_url:
        hint = f"Get your API key at: {descriptor.signup_url}. {hint}"
    return hint


def _error_detail(body: str) -> str:
    """Pull the provider's own error message out of an error body."""
    try:
        data = json.loads(body)
    except ValueError:
        return body.strip() or "(empty response body)"

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    return body.strip()


def dispatch(config, prompt: PromptPair, transport=None) -> str:
    """
    Send a prompt pair to the configured provider and return its text.

    Args:
        config: EffectiveConfig selecting provider, model and API key
        prompt: System and user prompt to send
        transport: Object with ``send(HttpRequest) -> HttpResponse``.
            Defaults to :class:`HttpxTransport`.

    Returns:
        Generated text, trimmed

    Raises:
        MissingApiKeyError: If the provider needs a key and none is configured
        TransportError: On network failure, timeout or a non-2xx status
        MalformedResponseError: If the response body has an unexpected shape
    """
    descriptor = get_provider(config.provider)

    api_key = (config.api_key or "").strip() or None
    if descriptor.requires_api_key and not api_key:
        raise MissingApiKeyError(descriptor.id, _api_key_hint(descriptor))

    model = config.model or descriptor.default_model
    request = descriptor.build_request(prompt, model, api_key)

    if transport is None:
        transport = HttpxTransport()

    logger.debug("POST %s (provider=%s, model=%s)", request.url, descriptor.id, model)
    try:
        response = transport.send(request)
    except httpx.TimeoutException as exc:
        raise TransportError(descriptor.id, f"timed out ({exc})") from exc
    except httpx.HTTPError as exc:
        raise TransportError(descriptor.id, str(exc) or type(exc).__name__) from exc

    logger.debug("%s responded with status %s", descriptor.id, response.status_code)
    if not response.ok:
        raise TransportError(
            descriptor.id,
            _error_detail(response.text),
            status_code=response.status_code,
            body=response.text,
        )

    return descriptor.parse_response(response.text).strip()


class AIService:
    """Generate text with the provider selected by an effective configuration."""

    def __init__(self, config, transport=None):
        self.config = config
        self.descriptor = get_provider(config.provider)
        self.transport = transport

    @property
    def provider(self) -> str:
        return self.descriptor.id

    @property
    def display_name(self) -> str:
        return self.descriptor.display_name

    @property
    def model_name(self) -> str:
        return self.config.model or self.descriptor.default_model

    def generate(self, prompt: PromptPair) -> str:
        """Run one request/response cycle for ``prompt``."""
        return dispatch(self.config, prompt, self.transport)

"""Exception hierarchy for lumen."""

from typing import Optional


class LumenError(Exception):
    """Base exception for every failure reported to the user."""

    stage = "lumen"


class ConfigError(LumenError):
    """Configuration could not be resolved."""

    stage = "config resolution"


class ConfigFileNotFoundError(ConfigError):
    """An explicitly requested config file does not exist."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"config file '{path}' does not exist")


class ConfigParseError(ConfigError):
    """A config file exists but is not valid structured data."""

    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"could not parse config file '{path}': {reason}")


class InvalidProviderError(ConfigError):
    """The configured provider identifier is not a known provider."""

    def __init__(self, provider: str, supported):
        self.provider = provider
        super().__init__(
            f"unsupported provider '{provider}'. "
            f"Supported providers: {', '.join(supported)}"
        )


class ProviderError(LumenError):
    """A provider request could not produce text."""

    stage = "dispatch"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class MissingApiKeyError(ProviderError):
    def __init__(self, provider: str, hint: str = ""):
        message = "missing API key"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(provider, message)


class TransportError(ProviderError):
    """Network failure, timeout, or a non-2xx status from the provider."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        if status_code is not None:
            message = f"request failed with status code {status_code}: {message}"
        else:
            message = f"request failed: {message}"
        super().__init__(provider, message)


class MalformedResponseError(ProviderError):
    """The provider answered, but not in its documented shape."""

    def __init__(self, provider: str, reason: str):
        self.reason = reason
        super().__init__(provider, f"unexpected response: {reason}")


class GitError(LumenError):
    """Git context could not be gathered."""

    stage = "git"

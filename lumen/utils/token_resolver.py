"""Token counting and diff truncation to stay inside model context windows."""

import logging
from typing import Optional, Tuple

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 8000
FILE_DIFF_MARKER = "diff --git"


class TokenCounter:
    """Count tokens and fit diffs into a provider's context window."""

    PROVIDER_LIMITS = {
        "openai": {
            "gpt-4o-mini": 128000,
            "gpt-4o": 128000,
            "gpt-4.1": 1047576,
            "gpt-4.1-mini": 1047576,
            "gpt-4-turbo": 128000,
            "gpt-4": 8192,
            "gpt-3.5-turbo": 16385,
        },
        "groq": {
            "qwen/qwen3-32b": 32768,
            "llama-3.3-70b-versatile": 131072,
            "llama-3.1-8b-instant": 131072,
            "gemma2-9b-it": 8192,
        },
        "claude": {
            "claude-sonnet-4-5": 200000,
            "claude-sonnet-4": 200000,
            "claude-opus-4-1": 200000,
            "claude-3-5-sonnet-20241022": 200000,
            "claude-3-5-haiku-20241022": 200000,
        },
        "openrouter": {
            "openai/gpt-4o-mini": 128000,
            "openai/gpt-4o": 128000,
        },
        "deepseek": {
            "deepseek-chat": 65536,
            "deepseek-reasoner": 65536,
        },
        "phind": {
            "Phind-70B": 32768,
        },
    }

    # Rough size of each built-in prompt without its diff
    PROMPT_SIZES = {
        "draft": 450,
        "explain": 150,
        "operate": 120,
    }

    def __init__(self, provider: str = "openai"):
        self.provider = provider
        self._encoding = None

    def _get_encoding(self):
        """Get or create the tiktoken encoding (lazy loading)."""
        if self._encoding is None:
            try:
                self._encoding = tiktoken.get_encoding("cl100k_base")
            except Exception as exc:
                # tiktoken downloads its tables on first use; offline we estimate
                logger.debug("tiktoken unavailable, estimating tokens: %s", exc)
                self._encoding = False
        return self._encoding or None

    def count_tokens(self, text: str) -> int:
        """
        Count tokens in text.

        Args:
            text: Text to count tokens for

        Returns:
            Token count
        """
        encoding = self._get_encoding()
        if encoding:
            return len(encoding.encode(text, disallowed_special=()))
        return self._estimate_tokens(text)

    @staticmethod
    def _estimate_tokens(text: str) -> int:
        """Conservative fallback: 1 token per 3 characters of code."""
        return len(text) // 3

    def get_model_limit(self, model: str) -> int:
        """Total context window of a model, conservative when unknown."""
        return self.PROVIDER_LIMITS.get(self.provider, {}).get(model, DEFAULT_CONTEXT_LIMIT)

    def calculate_max_diff_tokens(
        self,
        model: str,
        command_kind: str = "draft",
        output_reserve: int = 1000,
        safety_margin: int = 500,
    ) -> int:
        """
        Calculate maximum tokens available for diff content.

        Args:
            model: Model name
            command_kind: Command whose prompt wraps the diff
            output_reserve: Tokens to reserve for the response
            safety_margin: Additional safety buffer

        Returns:
            Maximum tokens available for diff content
        """
        available = (
            self.get_model_limit(model)
            - self.PROMPT_SIZES.get(command_kind, 500)
            - output_reserve
            - safety_margin
        )
        return max(available, 1000)

    def truncate_to_limit(
        self,
        text: str,
        max_tokens: int,
        suffix: str = "\n\n... (diff truncated for token limit)",
    ) -> Tuple[str, int, int]:
        """
        Cut text down to ``max_tokens``, suffix included.

        Returns:
            Tuple of (truncated_text, original_tokens, final_tokens)
        """
        original_tokens = self.count_tokens(text)
        if original_tokens <= max_tokens:
            return text, original_tokens, original_tokens

        available_tokens = max(max_tokens - self.count_tokens(suffix), 0)
        encoding = self._get_encoding()
        if encoding:
            tokens = encoding.encode(text, disallowed_special=())
            truncated = encoding.decode(tokens[:available_tokens])
        else:
            chars_per_token = len(text) / original_tokens if original_tokens else 3
            truncated = text[: int(available_tokens * chars_per_token)]

        result = truncated + suffix
        return result, original_tokens, self.count_tokens(result)

    def truncate_intelligently(
        self, diff_text: str, max_tokens: Optional[int]
    ) -> Tuple[str, int, int]:
        """
        Truncate a diff by dropping whole trailing file diffs.

        A diff made of a single file, or whose first file alone is too large,
        falls back to plain truncation.

        Args:
            diff_text: Git diff text
            max_tokens: Maximum tokens allowed; None disables truncation

        Returns:
            Tuple of (truncated_text, original_tokens, final_tokens)
        """
        original_tokens = self.count_tokens(diff_text)
        if max_tokens is None or original_tokens <= max_tokens:
            return diff_text, original_tokens, original_tokens

        suffix = "\n\n... (remaining files truncated - too large for context window)"
        budget = max_tokens - self.count_tokens(suffix)

        chunks = diff_text.split(FILE_DIFF_MARKER)
        head, file_diffs = chunks[0], [FILE_DIFF_MARKER + c for c in chunks[1:]]

        kept = [head] if head.strip() else []
        used = self.count_tokens(head) if kept else 0
        kept_files = 0
        for file_diff in file_diffs:
            file_tokens = self.count_tokens(file_diff)
            if used + file_tokens > budget:
                break
            kept.append(file_diff)
            kept_files += 1
            used += file_tokens

        if not kept_files or len(file_diffs) <= 1:
            return self.truncate_to_limit(
                diff_text, max_tokens, "\n\n... (diff truncated - too large for context window)"
            )

        result = "".join(kept).rstrip("\n") + suffix
        return result, original_tokens, self.count_tokens(result)

"""Tests for token budgeting. Encoding is patched out, so counts are estimates."""

from lumen.utils.token_resolver import DEFAULT_CONTEXT_LIMIT, TokenCounter


def file_diff(name, lines):
    body = "".join(f"+line {i} of {name}\n" for i in range(lines))
    return (
        f"diff --git a/{name} b/{name}\n"
        f"--- a/{name}\n+++ b/{name}\n@@ -0,0 +1,{lines} @@\n{body}"
    )


class TestLimits:
    def test_known_model(self):
        assert TokenCounter("groq").get_model_limit("qwen/qwen3-32b") == 32768

    def test_unknown_model_is_conservative(self):
        assert TokenCounter("ollama").get_model_limit("llama3.2") == DEFAULT_CONTEXT_LIMIT

    def test_max_diff_tokens(self):
        counter = TokenCounter("openai")

        assert counter.calculate_max_diff_tokens("gpt-4") == 8192 - 450 - 1000 - 500

    def test_max_diff_tokens_has_a_floor(self):
        counter = TokenCounter("openai")

        assert counter.calculate_max_diff_tokens("gpt-4", output_reserve=8000) == 1000


class TestTruncation:
    def test_estimate(self):
        assert TokenCounter().count_tokens("x" * 30) == 10

    def test_under_budget_is_untouched(self):
        diff = file_diff("a.py", 3)

        text, original, final = TokenCounter().truncate_intelligently(diff, 10000)

        assert text == diff
        assert original == final

    def test_no_budget_disables_truncation(self):
        diff = file_diff("a.py", 500)

        assert TokenCounter().truncate_intelligently(diff, None)[0] == diff

    def test_drops_trailing_files(self):
        small, large = file_diff("small.py", 5), file_diff("large.py", 400)
        counter = TokenCounter()
        budget = counter.count_tokens(small) + 50

        text, original, final = counter.truncate_intelligently(small + large, budget)

        assert "diff --git a/small.py" in text
        assert "large.py" not in text
        assert text.endswith("(remaining files truncated - too large for context window)")
        assert final <= budget < original

    def test_single_file_falls_back_to_plain_truncation(self):
        diff = file_diff("huge.py", 400)
        counter = TokenCounter()

        text, original, final = counter.truncate_intelligently(diff, 200)

        assert text.startswith("diff --git a/huge.py")
        assert text.endswith("(diff truncated - too large for context window)")
        assert final <= 200 < original

    def test_oversized_first_file_falls_back_to_plain_truncation(self):
        diff = file_diff("huge.py", 400) + file_diff("small.py", 2)

        text, _, final = TokenCounter().truncate_intelligently(diff, 200)

        assert "small.py" not in text
        assert final <= 200

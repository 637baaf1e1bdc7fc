"""Prompt templates and placeholder rendering."""

import json
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

DRAFT = "draft"
EXPLAIN = "explain"
OPERATE = "operate"

COMMAND_KINDS = (DRAFT, EXPLAIN, OPERATE)

PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class PromptPair:
    """System instruction and user request sent to a provider."""

    system: str
    user: str


DEFAULT_PROMPTS: Dict[str, Dict[str, str]] = {
    DRAFT: {
        "system": (
            "You are a commit message generator that follows these rules:\n"
            "1. Write in present tense\n"
            "2. Be concise and direct\n"
            "3. Output only the commit message without any explanations\n"
            "4. Follow the format: <type>(<optional scope>): <commit message>"
        ),
        "template": (
            "Generate a concise git commit message written in present tense for the "
            "following code diff with the given specifications below:\n\n"
            "The output response must be in format:\n"
            "<type>(<optional scope>): <commit message>\n"
            "Choose a type from the type-to-description JSON below that best "
            "describes the git diff:\n{commit_types}\n"
            "Focus on being accurate and concise.\n"
            "{context}"
            "Commit message must be a maximum of 72 characters.\n"
            "Exclude anything unnecessary such as translation. Your entire response "
            "will be passed directly into git commit.\n\n"
            "Code diff:\n```diff\n{diff}\n```"
        ),
    },
    EXPLAIN: {
        "system": (
            "You are a helpful assistant that explains Git changes in a concise way. "
            "Focus only on the most significant changes and their direct impact. "
            "Keep explanations brief but informative and don't ask for further "
            "explanations. Use markdown for clarity."
        ),
        "template": (
            "Explain this {entity}:\n\n"
            "{details}"
            "Changes:\n```diff\n{diff}\n```\n\n"
            "{instructions}"
        ),
    },
    OPERATE: {
        "system": (
            "You are a Git expert. Answer the user's request with the git command "
            "or commands that accomplish it, inside a ```sh code block, followed by "
            "a short explanation of what each command does. Prefer safe commands. "
            "If a command rewrites history or discards work, say so explicitly and "
            "suggest how to back up first. Use markdown for clarity."
        ),
        "template": "{query}",
    },
}

EXPLAIN_DEFAULT_INSTRUCTIONS = {
    "commit": (
        "Provide a short explanation covering:\n"
        "1. Core changes made\n"
        "2. Direct impact"
    ),
    "changes": "Provide:\n1. Key changes\n2. Notable concerns (if any)",
}


def substitute(template: str, values: Mapping[str, object]) -> str:
    """
    Replace ``{name}`` placeholders in a single pass.

    Placeholders with no value are kept verbatim. Substituted values are
    inserted as-is and never scanned for placeholders themselves.
    """

    def _replace(match):
        name = match.group(1)
        if name not in values:
            return match.group(0)
        return str(values[name])

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def _pick(override: Optional[str], default: str) -> str:
    if override is not None and override.strip():
        return override
    return default


def build(
    command_kind: str,
    overrides=None,
    substitutions: Optional[Mapping[str, object]] = None,
) -> PromptPair:
    """
    Build the prompt pair for a command.

    Args:
        command_kind: One of ``draft``, ``explain``, ``operate``
        overrides: Object with optional ``system_prompt``/``user_prompt``
            attributes (the command's options from the effective config)
        substitutions: Placeholder values for the user prompt

    Returns:
        PromptPair with each override applied independently
    """
    defaults = DEFAULT_PROMPTS[command_kind]
    system_override = getattr(overrides, "system_prompt", None)
    user_override = getattr(overrides, "user_prompt", None)

    system = _pick(system_override, defaults["system"])
    template = _pick(user_override, defaults["template"])
    return PromptPair(system=system, user=substitute(template, substitutions or {}))


def render_commit_types(commit_types: Mapping[str, str]) -> str:
    """Serialize the commit-type table for the draft prompt."""
    return json.dumps(dict(commit_types), indent=2, ensure_ascii=False)


def draft_substitutions(
    diff: str, commit_types: Mapping[str, str], context: Optional[str] = None
) -> Dict[str, str]:
    context_line = ""
    if context and context.strip():
        context_line = (
            f"Use the following context to understand intent: {context.strip()}\n"
        )
    return {
        "diff": diff,
        "commit_types": render_commit_types(commit_types),
        "context": context_line,
    }


def explain_substitutions(
    diff: str,
    entity: str = "changes",
    details: str = "",
    query: Optional[str] = None,
) -> Dict[str, str]:
    """
    Placeholder values for the explain prompt.

    ``entity`` is ``commit`` for a single commit and ``changes`` for a working
    tree diff or a commit range. A ``query`` replaces the default list of
    points to cover with the user's question.
    """
    if query and query.strip():
        instructions = f"Answer the following question about these changes: {query.strip()}"
    else:
        instructions = EXPLAIN_DEFAULT_INSTRUCTIONS.get(
            entity, EXPLAIN_DEFAULT_INSTRUCTIONS["changes"]
        )
    return {
        "entity": entity,
        "details": f"{details.strip()}\n\n" if details and details.strip() else "",
        "diff": diff,
        "instructions": instructions,
    }


def operate_substitutions(query: str) -> Dict[str, str]:
    return {"query": query.strip()}

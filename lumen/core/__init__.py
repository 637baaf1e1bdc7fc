"""Git context, prompts and provider dispatch."""

"""lumen - AI generated commit messages, explanations and git help."""

__version__ = "0.4.0"

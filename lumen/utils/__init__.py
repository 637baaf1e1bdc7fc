"""Configuration and token budgeting helpers."""

"""Core domain types, errors and ports."""

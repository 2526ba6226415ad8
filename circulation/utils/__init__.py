"""Helpers shared across the package: validation, timestamps and CLI output."""

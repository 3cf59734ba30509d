"""Validation — output validator, sanitizer, vocabulary tables and quality scoring."""

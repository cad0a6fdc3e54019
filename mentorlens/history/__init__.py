"""Commit history retrieval and decision extraction."""

"""Prompt rendering and calls to the text-generation service."""

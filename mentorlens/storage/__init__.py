"""SQLite persistence for skill profiles and predictions."""

"""mentorlens: mistake prediction and code-evolution storytelling for developers."""

__version__ = "0.1.0"

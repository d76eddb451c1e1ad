"""LLMBox: answer emails with a language model, billed per token."""

__version__ = "0.1.0"

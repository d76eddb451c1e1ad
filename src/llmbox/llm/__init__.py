"""Completion API access for reply and newsletter generation."""

from llmbox.llm.client import create_anthropic_client
from llmbox.llm.generator import ResponseGenerator
from llmbox.llm.models import LLMResponse

__all__ = ["LLMResponse", "ResponseGenerator", "create_anthropic_client"]

"""Pydantic models for completion API results."""

from pydantic import BaseModel, ConfigDict, Field


class LLMResponse(BaseModel):
    """Result of one successful completion call, including token usage."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(description="The generated text")
    model: str = Field(description="Model identifier echoed by the API")
    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)
    completion_time_ms: int = Field(default=0, ge=0)
    used_web_search: bool = Field(
        default=False,
        description="Whether the search tool was actually invoked (observability only)",
    )

    @property
    def token_count(self) -> int:
        """Return total tokens billed for the call."""
        return self.prompt_tokens + self.completion_tokens

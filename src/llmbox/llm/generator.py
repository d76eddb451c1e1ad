"""Response generation through the Anthropic Messages API.

Builds the model input from an incoming email, invokes the completion API
inside ``retry_async`` and extracts text and token usage.  Provider failures
are classified into ``ExternalServiceError`` at the call site; a refusal
stop reason is its own failure kind rather than a generic error.
"""

from __future__ import annotations

import time
from typing import Any

import anthropic
import structlog

from llmbox.domain.errors import ExternalServiceError
from llmbox.domain.types import ErrorKind
from llmbox.email.models import IncomingEmail
from llmbox.llm.client import SERVICE_NAME, WEB_SEARCH_TOOL, classify_anthropic_error
from llmbox.llm.models import LLMResponse
from llmbox.llm.prompts import EMAIL_ASSISTANT_INSTRUCTIONS, EMAIL_REPLY_PROMPT
from llmbox.observability.metrics import MODEL_FAILURES
from llmbox.resilience.retry import RetryPolicy, retry_async

logger = structlog.get_logger()


def format_email_input(incoming: IncomingEmail) -> str:
    """Concatenate the fixed instruction, sender, subject and body."""
    return EMAIL_REPLY_PROMPT.format(
        from_email=incoming.from_email,
        subject=incoming.subject,
        body=incoming.body,
    )


def _used_web_search(response: Any) -> bool:
    if any(getattr(block, "type", None) == "server_tool_use" for block in response.content):
        return True
    server_tool_use = getattr(response.usage, "server_tool_use", None)
    return bool(server_tool_use and getattr(server_tool_use, "web_search_requests", 0))


class ResponseGenerator:
    """Generate replies with the completion API.

    Args:
        client: Configured ``AsyncAnthropic`` client (SDK retries disabled).
        model: Model identifier to request.
        max_tokens: Completion token ceiling.
        temperature: Sampling temperature.
        enable_web_search: Offer the server-side web search tool.
        policy: Retry policy for each call; its ``timeout`` bounds one attempt.
        sleep: Optional awaitable sleep used between retries.
    """

    def __init__(
        self,
        client: Any,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        enable_web_search: bool,
        policy: RetryPolicy,
        sleep: Any = None,
    ) -> None:
        self._client = client
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._enable_web_search = enable_web_search
        self._policy = policy
        self._sleep = sleep

    @property
    def model(self) -> str:
        """Return the configured model identifier."""
        return self._model

    async def _create(self, instructions: str, prompt: str) -> Any:
        request: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": instructions,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self._enable_web_search:
            request["tools"] = [WEB_SEARCH_TOOL]

        try:
            response = await self._client.messages.create(**request)
        except anthropic.AnthropicError as exc:
            raise classify_anthropic_error(exc) from exc

        if response.stop_reason == "refusal":
            raise ExternalServiceError(
                ErrorKind.REFUSAL, service=SERVICE_NAME, message="model declined to answer"
            )
        return response

    async def complete(
        self,
        instructions: str,
        prompt: str,
        log_context: dict[str, Any] | None = None,
    ) -> LLMResponse:
        """Run one completion under the retry policy.

        Args:
            instructions: System instruction for the model.
            prompt: User input text.
            log_context: Extra fields attached to every log line of this call.

        Returns:
            The generated text with model identifier and token usage.

        Raises:
            ExternalServiceError: The classified failure once retries are
                exhausted or the failure is not retryable.
        """
        context = log_context or {}
        start = time.monotonic()
        logger.info(
            "llm_call_started",
            model=self._model,
            web_search_enabled=self._enable_web_search,
            input_length=len(prompt),
            **context,
        )

        kwargs: dict[str, Any] = {"api_name": SERVICE_NAME}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        try:
            response = await retry_async(
                lambda: self._create(instructions, prompt), self._policy, **kwargs
            )
        except ExternalServiceError as exc:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            MODEL_FAILURES.labels(kind=exc.kind.value).inc()
            log = logger.critical if exc.is_critical else logger.error
            log(
                "llm_call_failed",
                kind=exc.kind,
                status_code=exc.status_code,
                error=str(exc),
                elapsed_ms=elapsed_ms,
                **context,
            )
            raise

        elapsed_ms = int((time.monotonic() - start) * 1000)
        content = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        ).strip()
        result = LLMResponse(
            content=content,
            model=response.model,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            completion_time_ms=elapsed_ms,
            used_web_search=_used_web_search(response),
        )
        logger.info(
            "llm_call_succeeded",
            model=result.model,
            token_count=result.token_count,
            used_web_search=result.used_web_search,
            elapsed_ms=elapsed_ms,
            **context,
        )
        return result

    async def generate(self, incoming: IncomingEmail) -> LLMResponse:
        """Generate a reply to *incoming*."""
        return await self.complete(
            EMAIL_ASSISTANT_INSTRUCTIONS,
            format_email_input(incoming),
            log_context={"from_email": incoming.from_email},
        )

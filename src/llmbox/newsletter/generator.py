"""Newsletter content generation through the shared completion path."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from llmbox.domain.models import NewsletterSubscriber
from llmbox.llm.generator import ResponseGenerator
from llmbox.llm.models import LLMResponse
from llmbox.llm.prompts import NEWSLETTER_FEEDBACK, NEWSLETTER_INSTRUCTIONS, NEWSLETTER_PROMPT


def newsletter_subject(today: date) -> str:
    """Return the subject line, e.g. ``Your Daily Newsletter - Oct 18``."""
    return f"Your Daily Newsletter - {today.strftime('%b')} {today.day}"


def build_newsletter_prompt(
    subscriber: NewsletterSubscriber,
    today: date,
    feedback: Sequence[str] = (),
) -> str:
    """Render the user prompt from the subscriber's interests and numbered feedback."""
    feedback_block = ""
    if feedback:
        items = "\n".join(f"{index}. {item}" for index, item in enumerate(feedback, start=1))
        feedback_block = NEWSLETTER_FEEDBACK.format(items=items)
    return NEWSLETTER_PROMPT.format(
        preferences=subscriber.preferences.strip(),
        feedback=feedback_block,
        today=f"{today.strftime('%A, %B')} {today.day}, {today.year}",
    )


async def generate_newsletter(
    generator: ResponseGenerator,
    subscriber: NewsletterSubscriber,
    today: date,
    feedback: Sequence[str] = (),
) -> LLMResponse:
    """Generate one subscriber's newsletter.

    Raises:
        ExternalServiceError: When the completion API fails after retries.
    """
    return await generator.complete(
        NEWSLETTER_INSTRUCTIONS,
        build_newsletter_prompt(subscriber, today, feedback),
        log_context={"subscriber_id": subscriber.id},
    )

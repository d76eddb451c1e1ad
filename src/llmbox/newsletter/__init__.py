"""Scheduled personalised newsletter built on the reply pipeline's primitives."""

from llmbox.newsletter.runner import NewsletterRunner, NewsletterStats
from llmbox.newsletter.signup import NewsletterSignup, SignupResult

__all__ = ["NewsletterRunner", "NewsletterSignup", "NewsletterStats", "SignupResult"]

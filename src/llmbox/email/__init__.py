"""Inbound email parsing, reply threading, and outbound delivery."""

from llmbox.email.models import IncomingEmail, OutgoingEmail
from llmbox.email.parser import parse_incoming_email
from llmbox.email.sender import SendGridSender
from llmbox.email.threading import format_reply

__all__ = [
    "IncomingEmail",
    "OutgoingEmail",
    "SendGridSender",
    "format_reply",
    "parse_incoming_email",
]

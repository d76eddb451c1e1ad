"""Prometheus metrics for the email pipeline.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus the business
  counters below.
- ``REPLIES_SENT``: Replies handed to the delivery API, by reply kind.
- ``MODEL_FAILURES``: Completion API failures, by error kind.
- ``SEND_FAILURES``: Replies that could not be delivered after retries.
- ``COST_USD``: Cumulative model spend recorded by the ledger.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

REPLIES_SENT: Counter = Counter(
    "llmbox_replies_sent_total",
    "Replies accepted by the email-delivery API",
    ["kind"],
)

MODEL_FAILURES: Counter = Counter(
    "llmbox_model_failures_total",
    "Completion API calls that failed after retries",
    ["kind"],
)

SEND_FAILURES: Counter = Counter(
    "llmbox_send_failures_total",
    "Replies that could not be delivered after retries",
)

COST_USD: Counter = Counter(
    "llmbox_cost_usd_total",
    "Model spend recorded by the usage ledger, in USD",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)

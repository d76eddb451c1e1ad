"""FastAPI endpoints for the inbound email webhook and the newsletter surfaces.

``POST /webhooks/email`` receives the multipart submission from the
inbound-parse transport.  Only a malformed submission is rejected (400);
every other outcome, including internal faults, is acknowledged with a 200
so the transport does not redeliver and reprocess the same email.  Other
methods on the route get Starlette's 405.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from llmbox.domain.errors import ValidationError

logger = structlog.get_logger()

router = APIRouter()


@router.post("/webhooks/email")
async def email_webhook(request: Request) -> JSONResponse:
    """Run one inbound email through the pipeline.

    Returns:
        200 ``{"status": "success", "messageId": ...}`` once handled,
        400 ``{"error": ..., "details": {...}}`` for missing fields, or
        200 ``{"status": "error", ...}`` for an unexpected fault.
    """
    pipeline = request.app.state.services["pipeline"]
    try:
        form = await request.form()
        fields: dict[str, Any] = dict(form)
        logger.info("webhook_received", fields=sorted(fields))
        result = await pipeline.handle(fields)
    except ValidationError as exc:
        logger.warning(
            "webhook_validation_failed",
            missing_fields=exc.missing_fields,
            available_fields=exc.available_fields,
        )
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "details": exc.context},
        )
    except Exception:
        logger.exception("webhook_unhandled_error")
        return JSONResponse(
            status_code=200,
            content={"status": "error", "message": "Internal error occurred"},
        )

    return JSONResponse(
        status_code=200,
        content={"status": "success", "messageId": result.message_id},
    )


@router.post("/cron/newsletter")
async def newsletter_cron(request: Request) -> JSONResponse:
    """Trigger one newsletter run and report its counts."""
    runner = request.app.state.services["newsletter_runner"]
    try:
        stats = await runner.run()
    except Exception:
        logger.exception("newsletter_run_failed")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Newsletter run failed"},
        )
    return JSONResponse(status_code=200, content={"status": "success", **stats.to_dict()})


@router.post("/newsletter/signup")
async def newsletter_signup(request: Request) -> JSONResponse:
    """Subscribe an address with its interests.

    Returns:
        200 ``{"success": true, "message": ..., "subscriberId": ...}``,
        400 ``{"error": ..., "details": {...}}`` for an invalid body, or
        500 for an unexpected fault.
    """
    signup = request.app.state.services["newsletter_signup"]
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=400,
            content={"error": "Request body must be a JSON object", "details": {}},
        )

    try:
        result = await signup.subscribe(payload)
    except ValidationError as exc:
        logger.warning("newsletter_signup_rejected", reason=str(exc))
        return JSONResponse(
            status_code=400,
            content={"error": str(exc), "details": exc.context},
        )
    except Exception:
        logger.exception("newsletter_signup_failed")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Signup failed"},
        )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "message": result.message,
            "subscriberId": result.subscriber.id,
        },
    )


@router.post("/webhooks/newsletter-reply")
async def newsletter_reply(request: Request) -> JSONResponse:
    """Record feedback from a reply to a newsletter.

    Always answers 200 so the inbound-parse transport does not redeliver;
    ``success`` reports whether the feedback was stored.
    """
    signup = request.app.state.services["newsletter_signup"]
    try:
        form = await request.form()
        await signup.record_feedback(dict(form))
    except ValidationError as exc:
        logger.warning("newsletter_reply_rejected", reason=str(exc))
        return JSONResponse(
            status_code=200,
            content={"success": False, "message": "Reply processing failed"},
        )
    except Exception:
        logger.exception("newsletter_reply_failed")
        return JSONResponse(
            status_code=200,
            content={"success": False, "message": "Reply processing failed"},
        )
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Reply processed successfully"},
    )

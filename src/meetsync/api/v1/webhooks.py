"""MeetingBaas webhook receiver.

Authentication failures are the only non-2xx answers besides a malformed
envelope: once a delivery is authenticated it is acknowledged with 200
whatever happens downstream, so the vendor does not redeliver payloads
that will fail the same way again.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from src.meetsync.api.deps import get_dispatcher
from src.meetsync.config import Settings, get_settings
from src.meetsync.errors import AuthenticationError, ConfigurationError
from src.meetsync.webhooks.auth import verify_webhook_request

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/meetingbaas")
async def receive_meetingbaas_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    dispatcher: Any = Depends(get_dispatcher),
) -> JSONResponse:
    body = await request.body()

    try:
        scheme = verify_webhook_request(
            request.headers,
            body,
            callback_secret=settings.MEETINGBAAS_CALLBACK_SECRET,
            svix_secret=settings.MEETINGBAAS_SVIX_SECRET,
        )
    except ConfigurationError as exc:
        logger.error("webhook.auth_not_configured", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook authentication is not configured"},
        )
    except AuthenticationError as exc:
        logger.warning("webhook.auth_failed", error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Unauthorized"},
        )

    try:
        envelope = json.loads(body)
    except ValueError:
        envelope = None
    if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
        logger.warning("webhook.invalid_envelope", scheme=scheme)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid webhook payload"},
        )

    outcome = await dispatcher.dispatch(envelope)
    logger.info("webhook.acknowledged", webhook_event=envelope["event"], outcome=outcome)
    return JSONResponse(content={"success": True})

"""Webhook request authentication.

MeetingBaas signs deliveries with one of two schemes, chosen by header:

- `x-mb-secret`: shared secret compared in constant time
- `svix-id` / `svix-timestamp` / `svix-signature`: Svix signed envelope

Authentication fails closed. A scheme whose secret is not configured is a
server error, never a pass-through.
"""

from __future__ import annotations

import hmac
from collections.abc import Mapping

import structlog
from svix.webhooks import Webhook, WebhookVerificationError

from src.meetsync.errors import AuthenticationError, ConfigurationError

logger = structlog.get_logger(__name__)

SHARED_SECRET_HEADER = "x-mb-secret"
SVIX_HEADERS = ("svix-id", "svix-timestamp", "svix-signature")


def verify_webhook_request(
    headers: Mapping[str, str],
    body: bytes,
    callback_secret: str,
    svix_secret: str,
) -> str:
    """Authenticate a webhook delivery.

    Args:
        headers: Request headers (case-insensitive mapping or lowercase keys).
        body: Raw request body, exactly as received.
        callback_secret: Shared secret for the `x-mb-secret` scheme.
        svix_secret: Svix signing secret (`whsec_...`).

    Returns:
        The scheme that authenticated the request ("shared_secret" or "svix").

    Raises:
        ConfigurationError: The presented scheme has no configured secret.
        AuthenticationError: Missing, incomplete, or wrong credentials.
    """
    presented = headers.get(SHARED_SECRET_HEADER)
    if presented is not None:
        if not callback_secret:
            raise ConfigurationError("Webhook callback secret is not configured")
        if not hmac.compare_digest(presented.encode(), callback_secret.encode()):
            raise AuthenticationError("Invalid webhook secret")
        return "shared_secret"

    svix_values = {name: headers.get(name) for name in SVIX_HEADERS}
    if any(svix_values.values()):
        if not all(svix_values.values()):
            raise AuthenticationError("Incomplete Svix signature headers")
        if not svix_secret:
            raise ConfigurationError("Svix signing secret is not configured")
        try:
            Webhook(svix_secret).verify(body, svix_values)
        except WebhookVerificationError as exc:
            raise AuthenticationError("Invalid Svix signature") from exc
        return "svix"

    raise AuthenticationError("Missing webhook authentication headers")

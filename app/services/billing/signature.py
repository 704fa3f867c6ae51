from __future__ import annotations

import logging

import stripe

from app.core.errors import ConfigurationError, SignatureError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


def verify_signature(payload: bytes, signature: str | None, secret: str | None, *, tolerance: int | None = 300) -> None:
    """Authenticate a raw webhook body before anything parses it.

    The provider signs ``"{timestamp}.{body}"`` with HMAC-SHA256; the stripe
    library recomputes it over the exact bytes received, compares in constant
    time and rejects timestamps outside ``tolerance`` seconds.
    """
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
    if not signature:
        raise SignatureError("Missing stripe-signature header", public_message="Missing stripe-signature header")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SignatureError("Webhook body is not valid UTF-8") from e
    try:
        stripe.WebhookSignature.verify_header(text, signature, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise SignatureError(str(e)) from e

from __future__ import annotations


class BillingError(Exception):
    """Base for every error the billing API turns into an HTTP response."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None, *, public_message: str | None = None) -> None:
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class AuthenticationError(BillingError):
    status_code = 401
    public_message = "Invalid authorization token"


class SignatureError(AuthenticationError):
    # Webhook senders are not users; a bad signature is a bad request.
    status_code = 400
    public_message = "Invalid signature"


class ValidationError(BillingError):
    status_code = 400
    public_message = "Invalid request"

    def __init__(self, message: str) -> None:
        super().__init__(message, public_message=message)


class NotFoundError(BillingError):
    status_code = 404
    public_message = "Subscription not found"


class ConfigurationError(BillingError):
    """Missing secret or mapping. The detail only goes to server logs."""

    status_code = 500
    public_message = "Payment service not configured"


class UpstreamError(BillingError):
    status_code = 502
    public_message = "Payment provider error"

    def __init__(self, message: str, *, provider_status: int | None = None) -> None:
        super().__init__(message)
        self.provider_status = provider_status
        if provider_status is not None and 400 <= provider_status < 500:
            self.status_code = 400
            self.public_message = message


class PersistenceError(BillingError):
    status_code = 500
    public_message = "Failed to persist subscription"

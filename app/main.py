from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.middleware.trustedhost import TrustedHostMiddleware

from app.core.errors import AuthenticationError, BillingError
from app.core.logging_config import configure_logging
from app.core.security import bearer_token, unsign_access_token
from app.core.settings import settings
from app.db import models
from app.db.session import get_db
from app.services.billing.events import parse_event
from app.services.billing.handlers import HandlerContext
from app.services.billing.router import event_router
from app.services.billing.signature import SIGNATURE_HEADER, verify_signature
from app.services.email.queue import Notifier, RQNotifier
from app.services.payments.service import BillingProvider, build_billing_provider, create_checkout
from app.services.subscriptions.store import SubscriptionStore
from app.services.subscriptions.tiers import effective_tier, get_tier_features

configure_logging()
logger = logging.getLogger(__name__)

CORS_ALLOWED_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", "stripe-signature"]

app = FastAPI(title=settings.app_name)
# Built once per process; routes receive them through the dependencies below.
app.state.billing_provider = build_billing_provider()
app.state.notifier = RQNotifier()

if settings.allowed_hosts and settings.allowed_hosts.strip() != "*":
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=[h.strip() for h in settings.allowed_hosts.split(",") if h.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_allowed_origins.split(",") if o.strip()],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=CORS_ALLOWED_HEADERS,
)


@app.middleware("http")
async def api_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    # JSON only; entitlement responses are per user and must not be cached
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Cache-Control"] = "no-store"
    if settings.enforce_https:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid JSON in request body"}, status_code=400)


def get_billing_provider(request: Request) -> BillingProvider:
    return request.app.state.billing_provider


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


async def get_current_user(authorization: str | None = Header(default=None)) -> dict:
    token = bearer_token(authorization)
    if not token:
        raise AuthenticationError("Missing bearer token", public_message="Missing authorization header")
    user = unsign_access_token(token)
    if not user:
        raise AuthenticationError("Bearer token rejected")
    return user


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def serialize_subscription(sub: models.Subscription) -> dict:
    features = get_tier_features(effective_tier(sub.tier, sub.status))
    return {
        "user_id": sub.user_id,
        "tier": sub.tier,
        "status": sub.status,
        "external_customer_id": sub.external_customer_id,
        "external_subscription_id": sub.external_subscription_id,
        "current_period_end": _isoformat(sub.current_period_end),
        "updated_at": _isoformat(sub.updated_at),
        "features": {
            "tier": features.tier.value,
            "name": features.name,
            "max_chats": features.max_chats,
            "cloud_sync": features.cloud_sync,
            "vector_search": features.vector_search,
            "team_members": features.team_members,
        },
    }


class CheckoutRequest(BaseModel):
    tier: str


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/checkout")
async def checkout(
    body: CheckoutRequest,
    user: dict = Depends(get_current_user),
    db=Depends(get_db),
    provider: BillingProvider = Depends(get_billing_provider),
) -> dict:
    result = await create_checkout(
        SubscriptionStore(db),
        provider,
        user_id=user["user_id"],
        email=user["email"],
        tier=body.tier,
    )
    return {"url": result.url, "sessionId": result.session_id}


@app.get("/subscription")
async def current_subscription(user: dict = Depends(get_current_user), db=Depends(get_db)) -> dict:
    sub = await SubscriptionStore(db).get(user["user_id"])
    return serialize_subscription(sub)


@app.post("/webhooks/billing")
async def billing_webhook(
    request: Request,
    db=Depends(get_db),
    provider: BillingProvider = Depends(get_billing_provider),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    payload = await request.body()
    verify_signature(
        payload,
        request.headers.get(SIGNATURE_HEADER),
        settings.stripe_webhook_secret,
        tolerance=settings.webhook_tolerance_seconds,
    )
    event = parse_event(payload)

    store = SubscriptionStore(db)
    ctx = HandlerContext(store=store, provider=provider, price_table=settings.price_tier_table())
    result = await event_router.dispatch(event, ctx)
    if result.handled:
        await store.commit()
    for notice in ctx.notices:
        await run_in_threadpool(notifier.enqueue, notice)
    return {"received": True}

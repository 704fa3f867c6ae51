from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from app.services.billing.events import EventEnvelope, load
from app.services.billing.handlers import HANDLERS, HandlerContext, Registration
from app.services.subscriptions.store import WriteOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    event_id: str
    event_type: str
    handled: bool
    outcome: WriteOutcome | None = None


class EventRouter:
    """Dispatch verified events by their declared type.

    Unknown types are acknowledged and ignored; the provider keeps adding event
    types and retrying them forever would help nobody.
    """

    def __init__(self, handlers: Mapping[str, Registration] | None = None) -> None:
        self.handlers = HANDLERS if handlers is None else handlers

    async def dispatch(self, event: EventEnvelope, ctx: HandlerContext) -> DispatchResult:
        registration = self.handlers.get(event.type)
        if registration is None:
            logger.info("Unhandled webhook event type: %s (%s)", event.type, event.id)
            return DispatchResult(event_id=event.id, event_type=event.type, handled=False)

        logger.info("Processing webhook event: %s (%s)", event.type, event.id)
        obj = load(registration.schema, event.data.object_)
        outcome = await registration.handler(event, obj, ctx)
        return DispatchResult(event_id=event.id, event_type=event.type, handled=True, outcome=outcome)


event_router = EventRouter()

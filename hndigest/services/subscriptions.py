"""Subscription lifecycle: request, verify, change strategy, remove.

NONE -> PENDING (request) -> VERIFIED (verify) -> removed (unsubscribe,
bounce or complaint). An email that is already subscribed skips PENDING
and has its strategy changed in place.
"""

from datetime import datetime
from typing import Literal
from urllib.parse import urlencode

from pydantic import BaseModel

from hndigest.core.config import Settings
from hndigest.core.logging import get_logger
from hndigest.core.security import tokens_match
from hndigest.models import PendingSubscription, Subscriber
from hndigest.models.strategy import DigestStrategy, PointThreshold, TopN
from hndigest.models.subscriber import utcnow
from hndigest.services.mailer import Mailer
from hndigest.storage.base import Storage

log = get_logger(__name__)


class SubscriptionRequest(BaseModel):
    """What a subscribe request did. Never exposed to the caller of the API."""

    action: Literal["pending_created", "strategy_updated"]
    email: str
    strategy: DigestStrategy
    pending: PendingSubscription | None = None
    previous_strategy: DigestStrategy | None = None


def verify_url(base_url: str, email: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/verify?{urlencode({'email': email, 'token': token})}"


async def update_strategy(
    storage: Storage,
    existing: Subscriber,
    new_strategy: TopN | PointThreshold,
) -> TopN | PointThreshold:
    """Change a subscriber's strategy in place. Returns the previous strategy."""
    previous = existing.strategy
    updated = existing.model_copy(update={"strategy": new_strategy})
    await storage.upsert_subscriber(updated)
    log.info("subscription_strategy_updated", email=existing.email, old=str(previous), new=str(new_strategy))
    return previous


async def request_subscription(
    storage: Storage,
    email: str,
    strategy: TopN | PointThreshold,
    ttl_hours: int = 24,
) -> SubscriptionRequest:
    """email must already be normalized."""
    existing = await storage.get_subscriber_by_email(email)
    if existing is not None:
        previous = await update_strategy(storage, existing, strategy)
        return SubscriptionRequest(
            action="strategy_updated",
            email=email,
            strategy=strategy,
            previous_strategy=previous,
        )

    # Overwrites any earlier pending request; the old link stops working
    pending = PendingSubscription.new(email, strategy, ttl_hours=ttl_hours)
    await storage.upsert_pending_subscription(pending)
    log.info("pending_subscription_created", email=email, strategy=str(strategy))
    return SubscriptionRequest(action="pending_created", email=email, strategy=strategy, pending=pending)


async def subscribe(
    storage: Storage,
    mailer: Mailer,
    settings: Settings,
    email: str,
    strategy: TopN | PointThreshold,
) -> SubscriptionRequest:
    outcome = await request_subscription(storage, email, strategy, ttl_hours=settings.pending_ttl_hours)
    if outcome.action == "strategy_updated":
        await mailer.send_preference_update(email, outcome.previous_strategy.describe(), strategy.describe())
    else:
        url = verify_url(settings.base_url, email, outcome.pending.token)
        await mailer.send_verification(email, url, strategy.describe())
    return outcome


async def verify_subscription(
    storage: Storage,
    email: str,
    token: str,
    now: datetime | None = None,
) -> Subscriber | None:
    """Turn a pending subscription into a Subscriber.

    Returns None for no pending record, a wrong token or an expired request.
    Verifying the same link again returns the subscriber it created without
    writing anything, or None if that subscriber has since been removed.
    """
    pending = await storage.get_pending_by_email(email)
    if pending is None:
        return None
    if not tokens_match(pending.token, token):
        return None

    if pending.verified_at is not None:
        existing = await storage.get_subscriber_by_email(email)
        if existing is not None:
            log.info("subscription_reverified", email=email)
        return existing

    now = now or utcnow()
    if pending.is_expired(now):
        log.info("pending_subscription_expired", email=email)
        return None

    subscriber = Subscriber(email=email, strategy=pending.strategy, subscribed_at=now)
    await storage.upsert_subscriber(subscriber)
    await storage.upsert_pending_subscription(pending.model_copy(update={"verified_at": now}))
    log.info("subscription_verified", email=email, strategy=str(subscriber.strategy))
    return subscriber


async def remove_by_token(storage: Storage, token: str) -> bool:
    """Delete the subscriber holding this unsubscribe token. False if none does."""
    subscriber = await storage.get_subscriber_by_token(token)
    if subscriber is None:
        return False
    await storage.delete_subscriber(subscriber.email)
    log.info("subscriber_removed", email=subscriber.email, reason="unsubscribe")
    return True

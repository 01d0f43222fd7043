from datetime import datetime, timedelta, timezone

from pydantic import BaseModel, Field

from hndigest.core.security import generate_token
from hndigest.models.strategy import DigestStrategy, PointThreshold, TopN


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscriber(BaseModel):
    """A verified subscriber. Stored under SUBSCRIBER / normalized email."""

    email: str
    strategy: DigestStrategy
    subscribed_at: datetime = Field(default_factory=utcnow)
    unsubscribe_token: str = Field(default_factory=generate_token, min_length=1)

    @classmethod
    def new(cls, email: str, strategy: TopN | PointThreshold) -> "Subscriber":
        return cls(email=email, strategy=strategy)


class PendingSubscription(BaseModel):
    """An unverified subscribe request. One per email; a new request overwrites it."""

    email: str
    token: str = Field(default_factory=generate_token, min_length=1)
    strategy: DigestStrategy
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    # Set on first successful verification so a repeated click is recognised
    verified_at: datetime | None = None

    @classmethod
    def new(
        cls,
        email: str,
        strategy: TopN | PointThreshold,
        ttl_hours: int = 24,
        now: datetime | None = None,
    ) -> "PendingSubscription":
        now = now or utcnow()
        return cls(
            email=email,
            strategy=strategy,
            created_at=now,
            expires_at=now + timedelta(hours=ttl_hours),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

"""Record layout on top of a KeyValueBackend.

    POSTS_SNAPSHOT          / YYYY-MM-DD    items (M: id -> item), expires_at
    DIGEST#<strategy>       / YYYY-MM-DD    items (L), expires_at
    SUBSCRIBER              / <email>       email, strategy, subscribed_at, unsubscribe_token
    PENDING_SUBSCRIPTION    / <email>       email, token, strategy, created_at, expires_at, verified_at
    FAILED_JOB              / <iso>#<id>    job_name, job_id, args, kwargs, reason, retries, created_at
"""

import datetime as dt
from typing import Any

from pydantic import ValidationError

from hndigest.core.exceptions import IntegrityError, InvalidStrategyError
from hndigest.core.logging import get_logger
from hndigest.models import Digest, FailedJob, Item, PendingSubscription, Snapshot, StrategyConfig, Subscriber
from hndigest.models.strategy import PointThreshold, TopN
from hndigest.storage import codec
from hndigest.storage.base import PK, SK, UNSUBSCRIBE_TOKEN_INDEX, KeyValueBackend, Storage, StoredItem

log = get_logger(__name__)

SNAPSHOT_PARTITION_KEY = "POSTS_SNAPSHOT"
DIGEST_PARTITION_KEY_PREFIX = "DIGEST"
SUBSCRIBER_PARTITION_KEY = "SUBSCRIBER"
PENDING_SUBSCRIPTION_PARTITION_KEY = "PENDING_SUBSCRIPTION"
FAILED_JOB_PARTITION_KEY = "FAILED_JOB"


def datestamp(date: dt.date) -> str:
    return date.strftime("%Y-%m-%d")


def digest_pk(strategy: TopN | PointThreshold) -> str:
    return f"{DIGEST_PARTITION_KEY_PREFIX}#{strategy}"


def _epoch(when: dt.datetime) -> int:
    return int(when.timestamp())


def _date_expiry(date: dt.date, days: int) -> int:
    start = dt.datetime(date.year, date.month, date.day, tzinfo=dt.timezone.utc)
    return _epoch(start + dt.timedelta(days=days))


class TableStorage(Storage):
    def __init__(
        self,
        backend: KeyValueBackend,
        strategies: StrategyConfig,
        page_size: int = 100,
        record_ttl_days: int = 30,
    ) -> None:
        self.backend = backend
        self.strategies = strategies
        self.page_size = page_size
        self.record_ttl_days = record_ttl_days

    # Snapshots and digests

    async def put_snapshot(self, items: dict[str, Item], date: dt.date) -> None:
        await self._put(
            SNAPSHOT_PARTITION_KEY,
            datestamp(date),
            {
                "items": {item_id: item.model_dump() for item_id, item in items.items()},
                "expires_at": _date_expiry(date, self.record_ttl_days),
            },
        )

    async def get_snapshot(self, date: dt.date) -> Snapshot | None:
        attrs = await self._get(SNAPSHOT_PARTITION_KEY, datestamp(date))
        if attrs is None:
            return None
        return self._validate(Snapshot, {"date": date, "items": attrs.get("items") or {}}, "snapshot")

    async def put_digest(self, strategy: TopN | PointThreshold, date: dt.date, items: list[Item]) -> None:
        await self._put(
            digest_pk(strategy),
            datestamp(date),
            {
                "strategy": str(strategy),
                "items": [item.model_dump() for item in items],
                "expires_at": _date_expiry(date, self.record_ttl_days),
            },
        )

    async def get_digest(self, strategy: TopN | PointThreshold, date: dt.date) -> Digest | None:
        attrs = await self._get(digest_pk(strategy), datestamp(date))
        if attrs is None:
            return None
        return self._validate(
            Digest,
            {"strategy": strategy, "date": date, "items": attrs.get("items") or []},
            "digest",
        )

    # Subscribers

    async def get_subscriber_by_email(self, email: str) -> Subscriber | None:
        attrs = await self._get(SUBSCRIBER_PARTITION_KEY, email.lower())
        return self._subscriber(attrs) if attrs is not None else None

    async def get_subscriber_by_token(self, token: str) -> Subscriber | None:
        items = await self.backend.query_index(UNSUBSCRIBE_TOKEN_INDEX, token)
        if not items:
            return None
        if len(items) > 1:
            log.error("duplicate_unsubscribe_token", matches=len(items))
            raise IntegrityError(
                f"Data integrity error: {len(items)} subscribers share one unsubscribe token; tokens must be unique",
                details={"matches": len(items)},
            )
        return self._subscriber(codec.decode_item(items[0]))

    async def list_all_subscribers(self) -> list[Subscriber]:
        subscribers: list[Subscriber] = []
        start_key: str | None = None
        while True:
            page = await self.backend.query(SUBSCRIBER_PARTITION_KEY, self.page_size, start_key)
            subscribers.extend(self._subscriber(codec.decode_item(item)) for item in page.items)
            if page.next_key is None:
                return subscribers
            start_key = page.next_key

    async def upsert_subscriber(self, subscriber: Subscriber) -> None:
        email = subscriber.email.lower()
        await self._put(
            SUBSCRIBER_PARTITION_KEY,
            email,
            {
                "email": email,
                "strategy": str(subscriber.strategy),
                "subscribed_at": subscriber.subscribed_at.isoformat(),
                "unsubscribe_token": subscriber.unsubscribe_token,
            },
        )

    async def delete_subscriber(self, email: str) -> None:
        await self.backend.delete_item(SUBSCRIBER_PARTITION_KEY, email.lower())

    # Pending subscriptions

    async def get_pending_by_email(self, email: str) -> PendingSubscription | None:
        attrs = await self._get(PENDING_SUBSCRIPTION_PARTITION_KEY, email.lower())
        if attrs is None:
            return None
        data = dict(attrs)
        data["strategy"] = self._strategy(attrs.get("strategy"))
        expires = attrs.get("expires_at")
        if not isinstance(expires, int):
            raise IntegrityError("Pending subscription has an invalid expires_at")
        data["expires_at"] = dt.datetime.fromtimestamp(expires, tz=dt.timezone.utc)
        return self._validate(PendingSubscription, data, "pending subscription")

    async def upsert_pending_subscription(self, pending: PendingSubscription) -> None:
        email = pending.email.lower()
        expires_at = pending.expires_at
        if pending.verified_at is not None:
            # A verified link keeps resolving for as long as other records live
            expires_at = max(expires_at, pending.verified_at + dt.timedelta(days=self.record_ttl_days))
        # expires_at as epoch seconds so the backend can reclaim the record
        await self._put(
            PENDING_SUBSCRIPTION_PARTITION_KEY,
            email,
            {
                "email": email,
                "token": pending.token,
                "strategy": str(pending.strategy),
                "created_at": pending.created_at.isoformat(),
                "expires_at": _epoch(expires_at),
                "verified_at": pending.verified_at.isoformat() if pending.verified_at else None,
            },
        )

    # Dead letters

    async def put_failed_job(self, job: FailedJob) -> None:
        await self._put(
            FAILED_JOB_PARTITION_KEY,
            f"{job.created_at.isoformat()}#{job.job_id}",
            job.model_dump(mode="json"),
        )

    # Helpers

    async def _get(self, pk: str, sk: str) -> dict[str, Any] | None:
        item = await self.backend.get_item(pk, sk)
        return codec.decode_item(item) if item is not None else None

    async def _put(self, pk: str, sk: str, attrs: dict[str, Any]) -> None:
        item: StoredItem = codec.encode_item(attrs)
        item[PK] = codec.encode(pk)
        item[SK] = codec.encode(sk)
        await self.backend.put_item(item)

    def _strategy(self, raw: Any) -> TopN | PointThreshold:
        if not isinstance(raw, str):
            raise IntegrityError("Stored record is missing its strategy")
        try:
            return self.strategies.parse(raw)
        except InvalidStrategyError as e:
            raise IntegrityError(f"Stored strategy is not valid: {raw}") from e

    def _subscriber(self, attrs: dict[str, Any]) -> Subscriber:
        data = dict(attrs)
        data["strategy"] = self._strategy(attrs.get("strategy"))
        return self._validate(Subscriber, data, "subscriber")

    @staticmethod
    def _validate(model, data: dict[str, Any], what: str):
        data.pop(PK, None)
        data.pop(SK, None)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise IntegrityError(f"Malformed {what} record", details={"errors": e.errors(include_url=False)}) from e

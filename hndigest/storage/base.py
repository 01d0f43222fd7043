import datetime as dt
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict

from hndigest.core.config import get_settings, get_strategy_config
from hndigest.core.pagination import Page
from hndigest.models import Digest, FailedJob, Item, PendingSubscription, Snapshot, Subscriber
from hndigest.models.strategy import PointThreshold, TopN
from hndigest.storage.codec import AttributeValue

PK = "PK"
SK = "SK"

StoredItem = dict[str, AttributeValue]


class SecondaryIndex(BaseModel):
    """Maps one string attribute back to the primary key of the record holding it."""

    model_config = ConfigDict(frozen=True)

    name: str
    attribute: str


UNSUBSCRIBE_TOKEN_INDEX = SecondaryIndex(name="unsubscribe_token_index", attribute="unsubscribe_token")


class KeyValueBackend(ABC):
    """Single-table document store addressed by (partition key, sort key).

    Items are maps of encoded attribute values and must carry PK and SK as
    string attributes. Missing items are reported as None, never raised.
    """

    indexes: tuple[SecondaryIndex, ...] = (UNSUBSCRIBE_TOKEN_INDEX,)

    @abstractmethod
    async def get_item(self, pk: str, sk: str) -> StoredItem | None:
        ...

    @abstractmethod
    async def put_item(self, item: StoredItem) -> None:
        """Insert or fully replace the item at its (PK, SK)."""
        ...

    @abstractmethod
    async def delete_item(self, pk: str, sk: str) -> None:
        """Delete if present. Deleting a missing item is not an error."""
        ...

    @abstractmethod
    async def query(self, pk: str, limit: int, start_key: str | None = None) -> Page[StoredItem]:
        """One page of a partition in sort-key order, starting after start_key."""
        ...

    @abstractmethod
    async def query_index(self, index: SecondaryIndex, value: str) -> list[StoredItem]:
        """All items whose index attribute equals value."""
        ...

    async def close(self) -> None:
        pass


class Storage(ABC):
    """Record-level operations the digest and subscription services depend on."""

    @abstractmethod
    async def put_snapshot(self, items: dict[str, Item], date: dt.date) -> None:
        ...

    @abstractmethod
    async def get_snapshot(self, date: dt.date) -> Snapshot | None:
        ...

    @abstractmethod
    async def get_digest(self, strategy: TopN | PointThreshold, date: dt.date) -> Digest | None:
        ...

    @abstractmethod
    async def put_digest(self, strategy: TopN | PointThreshold, date: dt.date, items: list[Item]) -> None:
        ...

    @abstractmethod
    async def get_subscriber_by_email(self, email: str) -> Subscriber | None:
        ...

    @abstractmethod
    async def get_subscriber_by_token(self, token: str) -> Subscriber | None:
        """Raises IntegrityError if more than one subscriber holds the token."""
        ...

    @abstractmethod
    async def list_all_subscribers(self) -> list[Subscriber]:
        ...

    @abstractmethod
    async def upsert_subscriber(self, subscriber: Subscriber) -> None:
        ...

    @abstractmethod
    async def delete_subscriber(self, email: str) -> None:
        ...

    @abstractmethod
    async def get_pending_by_email(self, email: str) -> PendingSubscription | None:
        ...

    @abstractmethod
    async def upsert_pending_subscription(self, pending: PendingSubscription) -> None:
        ...

    @abstractmethod
    async def put_failed_job(self, job: FailedJob) -> None:
        ...


def get_backend() -> KeyValueBackend:
    settings = get_settings()
    if settings.storage_backend == "mongo":
        from hndigest.storage.mongo import MongoBackend
        return MongoBackend()
    from hndigest.storage.memory import MemoryBackend
    return MemoryBackend()


@lru_cache
def get_storage() -> Storage:
    """Process-wide storage. The memory backend only lives as long as the process."""
    from hndigest.storage.table import TableStorage
    settings = get_settings()
    return TableStorage(
        get_backend(),
        get_strategy_config(),
        page_size=settings.storage_page_size,
        record_ttl_days=settings.record_ttl_days,
    )


def attribute_string(item: StoredItem, name: str) -> Any:
    """Raw string value of a top-level S attribute, or None."""
    av = item.get(name)
    if isinstance(av, dict) and "S" in av:
        return av["S"]
    return None

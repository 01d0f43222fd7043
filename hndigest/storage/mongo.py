from datetime import datetime, timezone
from typing import Any

from beanie import Document
from pydantic import Field
from pymongo import ASCENDING, IndexModel
from pymongo.errors import PyMongoError

from hndigest.core.exceptions import IntegrityError, StorageError
from hndigest.core.logging import get_logger
from hndigest.core.pagination import Page, clamp_limit
from hndigest.storage.base import (
    PK,
    SK,
    UNSUBSCRIBE_TOKEN_INDEX,
    KeyValueBackend,
    SecondaryIndex,
    StoredItem,
    attribute_string,
)

log = get_logger(__name__)


def _index_path(index: SecondaryIndex) -> str:
    return f"item.{index.attribute}.S"


class Record(Document):
    """One stored item. item holds the encoded attributes, PK/SK included."""

    pk: str
    sk: str
    item: dict[str, Any] = Field(default_factory=dict)
    # Lifted out of item for the TTL index; MongoDB reclaims expired records
    expires_at: datetime | None = None

    class Settings:
        name = "records"
        indexes = [
            IndexModel([("pk", ASCENDING), ("sk", ASCENDING)], unique=True, name="pk_sk"),
            IndexModel([(_index_path(UNSUBSCRIBE_TOKEN_INDEX), ASCENDING)], name=UNSUBSCRIBE_TOKEN_INDEX.name),
            IndexModel([("expires_at", ASCENDING)], expireAfterSeconds=0, name="expires_at_ttl"),
        ]


def _expires_at(item: StoredItem) -> datetime | None:
    av = item.get("expires_at")
    if isinstance(av, dict) and "N" in av:
        try:
            return datetime.fromtimestamp(int(av["N"]), tz=timezone.utc)
        except (TypeError, ValueError):
            raise IntegrityError("expires_at must be an integer timestamp")
    return None


class MongoBackend(KeyValueBackend):
    """Backend on a single MongoDB collection. init_db() must have run first."""

    async def get_item(self, pk: str, sk: str) -> StoredItem | None:
        try:
            rec = await Record.find_one(Record.pk == pk, Record.sk == sk)
        except PyMongoError as e:
            log.error("storage_get_failed", pk=pk, error=str(e))
            raise StorageError(f"Failed to get {pk}/{sk}") from e
        return rec.item if rec else None

    async def put_item(self, item: StoredItem) -> None:
        pk = attribute_string(item, PK)
        sk = attribute_string(item, SK)
        if not pk or not sk:
            raise IntegrityError("Item is missing PK or SK")
        doc = {"pk": pk, "sk": sk, "item": item, "expires_at": _expires_at(item)}
        try:
            # Single-document replace: one write per record, last writer wins
            await Record.get_motor_collection().replace_one({"pk": pk, "sk": sk}, doc, upsert=True)
        except PyMongoError as e:
            log.error("storage_put_failed", pk=pk, error=str(e))
            raise StorageError(f"Failed to put {pk}/{sk}") from e

    async def delete_item(self, pk: str, sk: str) -> None:
        try:
            await Record.get_motor_collection().delete_one({"pk": pk, "sk": sk})
        except PyMongoError as e:
            log.error("storage_delete_failed", pk=pk, error=str(e))
            raise StorageError(f"Failed to delete {pk}/{sk}") from e

    async def query(self, pk: str, limit: int, start_key: str | None = None) -> Page[StoredItem]:
        limit = clamp_limit(limit)
        filters: dict[str, Any] = {"pk": pk}
        if start_key is not None:
            filters["sk"] = {"$gt": start_key}
        try:
            # One extra row tells us whether another page exists
            recs = await Record.find(filters).sort("+sk").limit(limit + 1).to_list()
        except PyMongoError as e:
            log.error("storage_query_failed", pk=pk, error=str(e))
            raise StorageError(f"Failed to query {pk}") from e
        page = recs[:limit]
        next_key = page[-1].sk if len(recs) > limit else None
        return Page[StoredItem](items=[r.item for r in page], limit=limit, next_key=next_key)

    async def query_index(self, index: SecondaryIndex, value: str) -> list[StoredItem]:
        try:
            recs = await Record.find({_index_path(index): value}).to_list()
        except PyMongoError as e:
            log.error("storage_index_query_failed", index=index.name, error=str(e))
            raise StorageError(f"Failed to query index {index.name}") from e
        return [r.item for r in recs]

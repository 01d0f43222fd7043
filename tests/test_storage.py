import datetime as dt

import pytest

from hndigest.core.exceptions import IntegrityError
from hndigest.models import FailedJob, PendingSubscription, PointThreshold, Subscriber, TopN
from hndigest.storage import codec
from hndigest.storage.base import PK, SK, UNSUBSCRIBE_TOKEN_INDEX
from hndigest.storage.memory import MemoryBackend
from hndigest.storage.table import PENDING_SUBSCRIPTION_PARTITION_KEY, SUBSCRIBER_PARTITION_KEY, digest_pk

pytestmark = pytest.mark.asyncio

DAY = dt.date(2026, 10, 19)


@pytest.fixture(params=["memory", "mongo"])
def backend(request):
    """Every test in this module runs against both backends."""
    if request.param == "mongo":
        return request.getfixturevalue("mongo_backend")
    return MemoryBackend()


async def test_backend_pagination_is_ordered_and_exact(backend):
    for sk in ["c", "a", "b"]:
        await backend.put_item({PK: {"S": "P"}, SK: {"S": sk}})
    await backend.put_item({PK: {"S": "OTHER"}, SK: {"S": "z"}})

    first = await backend.query("P", limit=2)
    assert [i[SK]["S"] for i in first.items] == ["a", "b"]
    assert first.next_key == "b"
    second = await backend.query("P", limit=2, start_key=first.next_key)
    assert [i[SK]["S"] for i in second.items] == ["c"]
    assert second.next_key is None


async def test_backend_exact_page_has_no_next_key(backend):
    for sk in ["a", "b"]:
        await backend.put_item({PK: {"S": "P"}, SK: {"S": sk}})
    page = await backend.query("P", limit=2)
    assert len(page.items) == 2
    assert page.next_key is None


async def test_backend_rejects_items_without_keys(backend):
    with pytest.raises(IntegrityError):
        await backend.put_item({PK: {"S": "P"}})


async def test_backend_returns_copies(backend):
    item = {PK: {"S": "P"}, SK: {"S": "a"}, "v": {"N": "1"}}
    await backend.put_item(item)
    item["v"] = {"N": "2"}
    stored = await backend.get_item("P", "a")
    stored["v"] = {"N": "3"}
    assert (await backend.get_item("P", "a"))["v"] == {"N": "1"}


async def test_delete_missing_item_is_not_an_error(backend):
    await backend.delete_item("P", "missing")


async def test_digest_round_trip(storage, make_item):
    items = [make_item("1", 300), make_item("2", 200)]
    await storage.put_digest(TopN(n=10), DAY, items)

    digest = await storage.get_digest(TopN(n=10), DAY)
    assert digest.items == items
    assert digest.item_ids == {"1", "2"}
    assert await storage.get_digest(TopN(n=20), DAY) is None
    assert await storage.get_digest(TopN(n=10), DAY - dt.timedelta(days=1)) is None


async def test_digest_key_layout(storage, backend, make_item):
    await storage.put_digest(PointThreshold(threshold=500), DAY, [make_item("1", 600)])
    assert digest_pk(PointThreshold(threshold=500)) == "DIGEST#POINT_THRESHOLD#500"
    raw = await backend.get_item("DIGEST#POINT_THRESHOLD#500", "2026-10-19")
    assert raw is not None
    assert "L" in raw["items"]


async def test_empty_digest_is_stored(storage):
    await storage.put_digest(TopN(n=10), DAY, [])
    digest = await storage.get_digest(TopN(n=10), DAY)
    assert digest is not None
    assert digest.items == []


async def test_snapshot_round_trip(storage, backend, make_item):
    items = {"1": make_item("1", 10), "2": make_item("2", 20)}
    await storage.put_snapshot(items, DAY)
    snapshot = await storage.get_snapshot(DAY)
    assert snapshot.items == items
    raw = await backend.get_item("POSTS_SNAPSHOT", "2026-10-19")
    assert "M" in raw["items"]
    assert await storage.get_snapshot(DAY + dt.timedelta(days=1)) is None


async def test_subscriber_lookup_by_email_and_token(storage):
    sub = Subscriber.new("a@example.com", TopN(n=10))
    await storage.upsert_subscriber(sub)

    assert (await storage.get_subscriber_by_email("A@Example.com")).unsubscribe_token == sub.unsubscribe_token
    by_token = await storage.get_subscriber_by_token(sub.unsubscribe_token)
    assert by_token.email == "a@example.com"
    assert by_token.strategy == TopN(n=10)
    assert await storage.get_subscriber_by_token("unknown") is None


async def test_list_all_subscribers_spans_pages(storage):
    emails = [f"user{i}@example.com" for i in range(5)]
    for email in emails:
        await storage.upsert_subscriber(Subscriber.new(email, TopN(n=20)))
    listed = await storage.list_all_subscribers()
    assert sorted(s.email for s in listed) == emails


async def test_delete_subscriber(storage):
    sub = Subscriber.new("a@example.com", TopN(n=10))
    await storage.upsert_subscriber(sub)
    await storage.delete_subscriber("a@example.com")
    assert await storage.get_subscriber_by_email("a@example.com") is None
    assert await storage.get_subscriber_by_token(sub.unsubscribe_token) is None


async def test_duplicate_unsubscribe_token_is_an_integrity_error(storage):
    a = Subscriber(email="a@example.com", strategy=TopN(n=10), unsubscribe_token="same")
    b = Subscriber(email="b@example.com", strategy=TopN(n=10), unsubscribe_token="same")
    await storage.upsert_subscriber(a)
    await storage.upsert_subscriber(b)
    with pytest.raises(IntegrityError):
        await storage.get_subscriber_by_token("same")


async def test_subscriber_with_unknown_strategy_is_an_integrity_error(storage, backend):
    item = codec.encode_item(
        {
            "email": "a@example.com",
            "strategy": "TOP_N#7",
            "subscribed_at": "2026-10-19T00:00:00+00:00",
            "unsubscribe_token": "t",
        }
    )
    item[PK] = codec.encode(SUBSCRIBER_PARTITION_KEY)
    item[SK] = codec.encode("a@example.com")
    await backend.put_item(item)
    with pytest.raises(IntegrityError):
        await storage.get_subscriber_by_email("a@example.com")


async def test_subscriber_missing_fields_is_an_integrity_error(storage, backend):
    await backend.put_item(
        {PK: {"S": SUBSCRIBER_PARTITION_KEY}, SK: {"S": "a@example.com"}, "strategy": {"S": "TOP_N#10"}}
    )
    with pytest.raises(IntegrityError):
        await storage.get_subscriber_by_email("a@example.com")


async def test_pending_round_trip(storage):
    now = dt.datetime(2026, 10, 19, 8, 0, tzinfo=dt.timezone.utc)
    pending = PendingSubscription.new("a@example.com", PointThreshold(threshold=250), ttl_hours=24, now=now)
    await storage.upsert_pending_subscription(pending)

    loaded = await storage.get_pending_by_email("a@example.com")
    assert loaded.token == pending.token
    assert loaded.strategy == PointThreshold(threshold=250)
    assert loaded.expires_at == now + dt.timedelta(hours=24)
    assert loaded.verified_at is None
    assert await storage.get_pending_by_email("b@example.com") is None


async def test_failed_job_is_stored(storage, backend):
    await storage.put_failed_job(FailedJob(job_name="send_daily_digests", job_id="j1", reason="boom"))
    page = await backend.query("FAILED_JOB", limit=10)
    assert len(page.items) == 1
    assert codec.decode_item(page.items[0])["reason"] == "boom"


async def test_put_replaces_the_whole_item(backend):
    await backend.put_item({PK: {"S": "P"}, SK: {"S": "a"}, "old": {"S": "x"}})
    await backend.put_item({PK: {"S": "P"}, SK: {"S": "a"}, "new": {"S": "y"}})
    stored = await backend.get_item("P", "a")
    assert "old" not in stored
    assert stored["new"] == {"S": "y"}
    assert len((await backend.query("P", limit=10)).items) == 1


async def test_index_lookup_matches_string_attribute(backend):
    await backend.put_item({PK: {"S": "P"}, SK: {"S": "a"}, "unsubscribe_token": {"S": "tok-1"}})
    await backend.put_item({PK: {"S": "P"}, SK: {"S": "b"}, "unsubscribe_token": {"S": "tok-2"}})
    found = await backend.query_index(UNSUBSCRIBE_TOKEN_INDEX, "tok-1")
    assert [i[SK]["S"] for i in found] == ["a"]
    assert await backend.query_index(UNSUBSCRIBE_TOKEN_INDEX, "missing") == []


async def test_mongo_lifts_expiry_for_the_ttl_index(mongo_backend, strategies):
    from hndigest.storage.mongo import Record
    from hndigest.storage.table import TableStorage

    storage = TableStorage(mongo_backend, strategies)
    now = dt.datetime(2026, 10, 19, 8, 0, tzinfo=dt.timezone.utc)
    await storage.upsert_pending_subscription(PendingSubscription.new("a@example.com", TopN(n=10), now=now))
    await storage.upsert_subscriber(Subscriber.new("a@example.com", TopN(n=10)))

    pending = await Record.find_one(Record.pk == PENDING_SUBSCRIPTION_PARTITION_KEY, Record.sk == "a@example.com")
    assert pending.expires_at.replace(tzinfo=dt.timezone.utc) == now + dt.timedelta(hours=24)
    subscriber = await Record.find_one(Record.pk == SUBSCRIBER_PARTITION_KEY, Record.sk == "a@example.com")
    assert subscriber.expires_at is None


async def test_verified_pending_outlives_its_link_expiry(storage):
    from hndigest.services.subscriptions import verify_subscription

    created = dt.datetime(2026, 10, 19, 8, 0, tzinfo=dt.timezone.utc)
    verified = created + dt.timedelta(hours=1)
    pending = PendingSubscription.new("a@example.com", TopN(n=10), ttl_hours=24, now=created)
    await storage.upsert_pending_subscription(pending)

    first = await verify_subscription(storage, "a@example.com", pending.token, now=verified)
    loaded = await storage.get_pending_by_email("a@example.com")
    assert loaded.verified_at == verified
    assert loaded.expires_at == verified + dt.timedelta(days=storage.record_ttl_days)

    again = await verify_subscription(storage, "a@example.com", pending.token, now=created + dt.timedelta(days=3))
    assert again.unsubscribe_token == first.unsubscribe_token

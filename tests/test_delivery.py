import datetime as dt
from urllib.parse import parse_qs, urlparse

import pytest

from hndigest.core.config import get_settings
from hndigest.core.exceptions import StorageError
from hndigest.models import Subscriber, TopN
from hndigest.services.delivery import (
    digest_run_time,
    process_strategy,
    run_daily_digests,
    send_to_subscribers,
    unsubscribe_url,
)

RUN_AT = dt.datetime(2026, 10, 19, 5, 0, tzinfo=dt.timezone.utc)


@pytest.mark.asyncio
async def test_one_failed_send_does_not_stop_the_rest(mailer, make_item):
    subscribers = [Subscriber.new(f"u{i}@example.com", TopN(n=10)) for i in range(5)]
    mailer.fail_for = {"u2@example.com"}

    sent, failures = await send_to_subscribers(
        mailer, "Subject", [make_item("a", 10)], subscribers, "http://api.test", concurrency=2
    )

    assert sent == 4
    assert list(failures) == ["u2@example.com"]
    assert sorted(d["email"] for d in mailer.digests) == [
        "u0@example.com",
        "u1@example.com",
        "u3@example.com",
        "u4@example.com",
    ]
    assert mailer.max_in_flight <= 2


@pytest.mark.asyncio
async def test_each_recipient_gets_their_own_unsubscribe_link(mailer, make_item):
    sub = Subscriber.new("u@example.com", TopN(n=10))
    await send_to_subscribers(mailer, "S", [make_item("a", 10)], [sub], "http://api.test/", concurrency=1)
    sent = mailer.digests[0]
    assert sent["unsubscribe_url"] == f"http://api.test/api/unsubscribe?token={sub.unsubscribe_token}"
    assert sub.unsubscribe_token in sent["html"]
    assert sub.unsubscribe_token in sent["text"]


@pytest.mark.asyncio
async def test_empty_digest_sends_nothing(storage, mailer):
    await storage.upsert_subscriber(Subscriber.new("u@example.com", TopN(n=10)))
    report = await process_strategy(storage, mailer, get_settings(), TopN(n=10), RUN_AT.date(), [])
    assert report.skipped == "empty digest"
    assert mailer.digests == []


@pytest.mark.asyncio
async def test_daily_run_sends_each_strategy_to_its_subscribers(storage, mailer, content_source, strategies, make_item):
    content_source.items = [make_item(str(i), 50 * i) for i in range(1, 13)]
    await storage.upsert_subscriber(Subscriber.new("top@example.com", TopN(n=10)))
    await storage.upsert_subscriber(Subscriber.new("points@example.com", strategies.parse("POINT_THRESHOLD#500")))

    reports = await run_daily_digests(storage, content_source, mailer, get_settings(), strategies, RUN_AT)

    assert [r.strategy for r in reports] == [str(s) for s in strategies.all_strategies()]
    assert content_source.calls == [
        {"min_count": 100, "min_score": 100, "since": int((RUN_AT - dt.timedelta(days=2)).timestamp())}
    ]
    assert await storage.get_snapshot(RUN_AT.date()) is not None

    by_email = {d["email"]: d for d in mailer.digests}
    assert set(by_email) == {"top@example.com", "points@example.com"}
    assert by_email["top@example.com"]["subject"] == "Hacker News Digest for Oct 19, 2026"
    # 500..600 points: items 10, 11 and 12
    assert by_email["points@example.com"]["text"].count(" points)") == 3

    top10 = await storage.get_digest(TopN(n=10), RUN_AT.date())
    assert [i.id for i in top10.items] == [str(i) for i in range(12, 2, -1)]


@pytest.mark.asyncio
async def test_failing_strategy_does_not_affect_others(storage, mailer, content_source, strategies, make_item):
    content_source.items = [make_item("a", 600)]
    await storage.upsert_subscriber(Subscriber.new("u@example.com", TopN(n=20)))

    original = storage.put_digest

    async def flaky_put_digest(strategy, date, items):
        if strategy == TopN(n=10):
            raise StorageError("write failed")
        await original(strategy, date, items)

    storage.put_digest = flaky_put_digest
    reports = await run_daily_digests(storage, content_source, mailer, get_settings(), strategies, RUN_AT)

    failed = [r for r in reports if r.error]
    assert [r.strategy for r in failed] == ["TOP_N#10"]
    assert [d["email"] for d in mailer.digests] == ["u@example.com"]


def test_digest_run_time_is_today_at_the_snapshot_hour():
    now = dt.datetime(2026, 10, 19, 17, 42, 13, tzinfo=dt.timezone.utc)
    assert digest_run_time(now, 5) == RUN_AT


def test_unsubscribe_url_escapes_token():
    url = unsubscribe_url("http://api.test", "a b&c")
    assert parse_qs(urlparse(url).query) == {"token": ["a b&c"]}

"""Daily run: snapshot candidates, build each strategy's digest, mail subscribers."""

import asyncio
import datetime as dt
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from hndigest.core.config import Settings
from hndigest.core.logging import get_logger
from hndigest.models import Item, StrategyConfig, Subscriber
from hndigest.models.strategy import PointThreshold, TopN
from hndigest.services.digest_builder import build_digest
from hndigest.services.fetcher import ContentSource
from hndigest.services.mailer import Mailer
from hndigest.services.snapshots import snapshot_items
from hndigest.services.templates import digest_subject, render_digest_html, render_digest_text
from hndigest.storage.base import Storage

log = get_logger(__name__)


class DeliveryReport(BaseModel):
    strategy: str
    date: dt.date
    selected: int = 0
    recipients: int = 0
    sent: int = 0
    failures: dict[str, str] = Field(default_factory=dict)
    skipped: str | None = None
    error: str | None = None


def digest_run_time(now: dt.datetime, hour: int) -> dt.datetime:
    """The run's reference time: today at `hour`:00 UTC."""
    now = now.astimezone(dt.timezone.utc)
    return now.replace(hour=hour, minute=0, second=0, microsecond=0)


def unsubscribe_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/api/unsubscribe?{urlencode({'token': token})}"


async def send_to_subscribers(
    mailer: Mailer,
    subject: str,
    items: list[Item],
    subscribers: list[Subscriber],
    base_url: str,
    concurrency: int,
) -> tuple[int, dict[str, str]]:
    """Send to everyone, at most `concurrency` at a time.

    A failed send is recorded and does not stop the others. Returns
    (sent count, {email: reason} for failures).
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _send_one(subscriber: Subscriber) -> None:
        url = unsubscribe_url(base_url, subscriber.unsubscribe_token)
        html = render_digest_html(items, url)
        text = render_digest_text(items, url)
        async with semaphore:
            await mailer.send_digest(subject, html, text, subscriber.email, url)

    results = await asyncio.gather(*(_send_one(s) for s in subscribers), return_exceptions=True)
    failures: dict[str, str] = {}
    for subscriber, result in zip(subscribers, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            log.warning("digest_send_failed", email=subscriber.email, error=str(result))
            failures[subscriber.email] = str(result) or type(result).__name__
    return len(subscribers) - len(failures), failures


async def process_strategy(
    storage: Storage,
    mailer: Mailer,
    settings: Settings,
    strategy: TopN | PointThreshold,
    date: dt.date,
    candidates: list[Item],
    subscribers: list[Subscriber] | None = None,
) -> DeliveryReport:
    report = DeliveryReport(strategy=str(strategy), date=date)
    items = await build_digest(storage, strategy, date, candidates)
    report.selected = len(items)
    if not items:
        log.info("digest_empty_skipping", strategy=str(strategy))
        report.skipped = "empty digest"
        return report

    if subscribers is None:
        subscribers = await storage.list_all_subscribers()
    recipients = [s for s in subscribers if s.strategy == strategy]
    report.recipients = len(recipients)
    if not recipients:
        log.info("no_subscribers_skipping", strategy=str(strategy))
        report.skipped = "no subscribers"
        return report

    report.sent, report.failures = await send_to_subscribers(
        mailer,
        digest_subject(date),
        items,
        recipients,
        settings.base_url,
        settings.send_concurrency,
    )
    log.info(
        "digest_sent",
        strategy=str(strategy),
        recipients=report.recipients,
        sent=report.sent,
        failed=len(report.failures),
    )
    return report


async def run_daily_digests(
    storage: Storage,
    source: ContentSource,
    mailer: Mailer,
    settings: Settings,
    strategies: StrategyConfig,
    run_at: dt.datetime,
) -> list[DeliveryReport]:
    """Every strategy runs concurrently; one failing does not affect the rest."""
    items = await snapshot_items(storage, source, strategies, run_at, settings.lookback_days)
    candidates = list(items.values())
    subscribers = await storage.list_all_subscribers()
    date = run_at.date()

    all_strategies = strategies.all_strategies()
    results = await asyncio.gather(
        *(
            process_strategy(storage, mailer, settings, strategy, date, candidates, subscribers)
            for strategy in all_strategies
        ),
        return_exceptions=True,
    )
    reports: list[DeliveryReport] = []
    for strategy, result in zip(all_strategies, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, Exception):
            log.error("strategy_failed", strategy=str(strategy), exc_info=result)
            reports.append(DeliveryReport(strategy=str(strategy), date=date, error=str(result) or type(result).__name__))
        else:
            reports.append(result)
    return reports

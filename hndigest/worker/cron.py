"""Cron: the daily snapshot + digest run."""

from datetime import datetime, timezone

from hndigest.core.config import get_settings, get_strategy_config
from hndigest.core.logging import get_logger
from hndigest.db.init import init_db
from hndigest.deps import get_content_source, get_mailer
from hndigest.services.delivery import DeliveryReport, digest_run_time, run_daily_digests
from hndigest.services.fetcher import ContentSource
from hndigest.services.mailer import Mailer
from hndigest.storage.base import Storage, get_storage

log = get_logger(__name__)


async def run_send_daily_digests(
    storage: Storage | None = None,
    source: ContentSource | None = None,
    mailer: Mailer | None = None,
    now: datetime | None = None,
) -> list[DeliveryReport]:
    """Snapshot today's candidates and send every strategy's digest.

    Snapshot failures propagate. Per-strategy and per-recipient failures are
    in the returned reports.
    """
    settings = get_settings()
    if storage is None:
        await init_db()
        storage = get_storage()
    run_at = digest_run_time(now or datetime.now(timezone.utc), settings.snapshot_hour)
    reports = await run_daily_digests(
        storage,
        source or get_content_source(),
        mailer or get_mailer(),
        settings,
        get_strategy_config(),
        run_at,
    )
    log.info(
        "daily_digests_done",
        date=run_at.date().isoformat(),
        sent=sum(r.sent for r in reports),
        send_failures=sum(len(r.failures) for r in reports),
        failed_strategies=[r.strategy for r in reports if r.error],
    )
    return reports

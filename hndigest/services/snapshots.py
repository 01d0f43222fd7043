import datetime as dt

from hndigest.core.logging import get_logger
from hndigest.models import Item, StrategyConfig
from hndigest.services.fetcher import ContentSource
from hndigest.storage.base import Storage

log = get_logger(__name__)


async def snapshot_items(
    storage: Storage,
    source: ContentSource,
    strategies: StrategyConfig,
    run_at: dt.datetime,
    lookback_days: int = 2,
) -> dict[str, Item]:
    """Fetch the day's candidates and persist them as the snapshot for run_at's date."""
    since = int((run_at - dt.timedelta(days=lookback_days)).timestamp())
    # Twice the largest N in case all of the top N went out yesterday
    items = await source.fetch_candidate_items(
        min_count=2 * strategies.max_top_n,
        min_score=strategies.min_point_threshold,
        since=since,
    )
    await storage.put_snapshot(items, run_at.date())
    log.info("snapshot_saved", date=run_at.date().isoformat(), items=len(items))
    return items

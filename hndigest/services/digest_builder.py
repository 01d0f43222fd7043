"""Daily digest selection: never repeat yesterday's items, then apply the strategy."""

import datetime as dt

from hndigest.core.logging import get_logger
from hndigest.models import Item
from hndigest.models.strategy import PointThreshold, TopN
from hndigest.storage.base import Storage

log = get_logger(__name__)


def filter_sent_items(candidates: list[Item], sent_ids: set[str]) -> list[Item]:
    """Candidates not in sent_ids, input order kept."""
    if not sent_ids:
        return list(candidates)
    return [item for item in candidates if item.id not in sent_ids]


def select_items(strategy: TopN | PointThreshold, ranked: list[Item]) -> list[Item]:
    """Apply a strategy to items already sorted by score, highest first."""
    if isinstance(strategy, TopN):
        return ranked[: strategy.n]
    if isinstance(strategy, PointThreshold):
        return [item for item in ranked if item.score >= strategy.threshold]
    raise TypeError(f"Unknown strategy: {strategy!r}")


async def build_digest(
    storage: Storage,
    strategy: TopN | PointThreshold,
    date: dt.date,
    candidates: list[Item],
) -> list[Item]:
    """Compute and persist the (strategy, date) digest.

    Items that appeared in the same strategy's digest for the previous day are
    excluded. The result is written even when empty; an empty digest means
    there is nothing to send. Storage errors propagate.
    """
    yesterday = await storage.get_digest(strategy, date - dt.timedelta(days=1))
    sent_ids = yesterday.item_ids if yesterday else set()

    unsent = filter_sent_items(candidates, sent_ids)
    # sorted() is stable: equal scores keep input order
    ranked = sorted(unsent, key=lambda item: item.score, reverse=True)
    selected = select_items(strategy, ranked)

    await storage.put_digest(strategy, date, selected)
    log.info(
        "digest_built",
        strategy=str(strategy),
        date=date.isoformat(),
        candidates=len(candidates),
        excluded=len(candidates) - len(unsent),
        selected=len(selected),
    )
    return selected

from hndigest.models.digest import Digest, Snapshot
from hndigest.models.failed_job import FailedJob
from hndigest.models.item import Item
from hndigest.models.strategy import DigestStrategy, PointThreshold, StrategyConfig, TopN
from hndigest.models.subscriber import PendingSubscription, Subscriber

__all__ = [
    "Digest",
    "Snapshot",
    "FailedJob",
    "Item",
    "DigestStrategy",
    "PointThreshold",
    "StrategyConfig",
    "TopN",
    "PendingSubscription",
    "Subscriber",
]

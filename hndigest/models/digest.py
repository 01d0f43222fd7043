import datetime as dt

from pydantic import BaseModel, Field

from hndigest.models.item import Item
from hndigest.models.strategy import DigestStrategy


class Digest(BaseModel):
    """Items a strategy selected for one date, in send order."""

    strategy: DigestStrategy
    date: dt.date
    items: list[Item] = Field(default_factory=list)

    @property
    def item_ids(self) -> set[str]:
        return {i.id for i in self.items}


class Snapshot(BaseModel):
    """All candidate items fetched for a date, keyed by item id."""

    date: dt.date
    items: dict[str, Item] = Field(default_factory=dict)

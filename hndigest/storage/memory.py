import copy

from hndigest.core.exceptions import IntegrityError
from hndigest.core.pagination import Page, clamp_limit
from hndigest.storage.base import PK, SK, KeyValueBackend, SecondaryIndex, StoredItem, attribute_string


class MemoryBackend(KeyValueBackend):
    """In-process backend for tests and local runs. Index lookups scan every item."""

    def __init__(self) -> None:
        self._items: dict[tuple[str, str], StoredItem] = {}

    async def get_item(self, pk: str, sk: str) -> StoredItem | None:
        item = self._items.get((pk, sk))
        return copy.deepcopy(item) if item is not None else None

    async def put_item(self, item: StoredItem) -> None:
        pk = attribute_string(item, PK)
        sk = attribute_string(item, SK)
        if not pk or not sk:
            raise IntegrityError("Item is missing PK or SK")
        self._items[(pk, sk)] = copy.deepcopy(item)

    async def delete_item(self, pk: str, sk: str) -> None:
        self._items.pop((pk, sk), None)

    async def query(self, pk: str, limit: int, start_key: str | None = None) -> Page[StoredItem]:
        limit = clamp_limit(limit)
        keys = sorted(sk for (p, sk) in self._items if p == pk and (start_key is None or sk > start_key))
        page_keys = keys[:limit]
        next_key = page_keys[-1] if len(keys) > limit else None
        return Page[StoredItem](
            items=[copy.deepcopy(self._items[(pk, sk)]) for sk in page_keys],
            limit=limit,
            next_key=next_key,
        )

    async def query_index(self, index: SecondaryIndex, value: str) -> list[StoredItem]:
        return [
            copy.deepcopy(item)
            for item in self._items.values()
            if attribute_string(item, index.attribute) == value
        ]

from collections import OrderedDict
from typing import Iterable, List


class BoundedIdentitySet:
    """
    Set of item ids with a fixed capacity.

    Eviction is by insertion order only: `has` never refreshes an entry, so this
    behaves as a FIFO cache, not an LRU. The OrderedDict keeps both lookup and
    eviction O(1).
    """

    def __init__(self, capacity: int, initial: Iterable[str] = ()):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[str, None]" = OrderedDict()
        for item_id in initial:
            self.add(item_id)

    def has(self, item_id: str) -> bool:
        return item_id in self._entries

    def add(self, item_id: str) -> bool:
        """Insert an id; returns False if it was already present."""
        if item_id in self._entries:
            return False

        if len(self._entries) >= self.capacity:
            self._entries.popitem(last=False)

        self._entries[item_id] = None
        return True

    def snapshot(self) -> List[str]:
        """Ids oldest first."""
        return list(self._entries)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

from collections import deque
from typing import Deque, List, Optional

from core.entities import OverrideItem


class OverrideQueue:
    """
    In-memory "play next" queue. FIFO, except urgent items jump to the front.
    """

    def __init__(self):
        self._items: Deque[OverrideItem] = deque()

    def add(self, item: OverrideItem) -> None:
        if item.urgent:
            self._items.appendleft(item)
        else:
            self._items.append(item)

    def remove(self, override_id: str) -> bool:
        for item in self._items:
            if item.id == override_id:
                self._items.remove(item)
                return True
        return False

    def pop(self) -> Optional[OverrideItem]:
        return self._items.popleft() if self._items else None

    def push_front(self, item: OverrideItem) -> None:
        """Return a popped item to the head of the queue."""
        self._items.appendleft(item)

    def snapshot(self) -> List[OverrideItem]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

"""
Playback buffer with a round-robin archive fallback.
"""
import logging
import threading
from collections import deque
from typing import Deque, FrozenSet, Iterable, List, Optional

from core.entities import ContentType, Track

logger = logging.getLogger(__name__)


class PlaybackBuffer:
    """
    FIFO of fresh tracks. Played tracks of an archivable kind are appended to
    an archive that is replayed cyclically whenever the FIFO is empty.

    News blocks are not archivable by default: they are time-sensitive.
    All operations hold one lock so a player thread can dequeue while the
    production loop enqueues.
    """

    def __init__(self, archivable_kinds: Iterable[ContentType] = (ContentType.SONG,)):
        self.archivable_kinds: FrozenSet[ContentType] = frozenset(archivable_kinds)
        self._buffer: Deque[Track] = deque()
        self._archive: List[Track] = []
        self._archive_position = 0
        self._lock = threading.Lock()

    def enqueue(self, track: Track) -> int:
        """Append to the tail; returns the new buffer length."""
        with self._lock:
            self._buffer.append(track)
            return len(self._buffer)

    def insert(self, position: int, track: Track) -> int:
        """Insert at position (clamped to the buffer bounds); returns the index used."""
        with self._lock:
            index = max(0, min(position, len(self._buffer)))
            self._buffer.insert(index, track)
            return index

    def dequeue(self) -> Optional[Track]:
        with self._lock:
            if self._buffer:
                track = self._buffer.popleft()
                if track.kind in self.archivable_kinds:
                    self._archive.append(track)
                return track

            if not self._archive:
                return None

            track = self._archive[self._archive_position % len(self._archive)]
            self._archive_position += 1
            return track

    def peek(self) -> List[Track]:
        with self._lock:
            return list(self._buffer)

    def archive(self) -> List[Track]:
        with self._lock:
            return list(self._archive)

    @property
    def archive_size(self) -> int:
        with self._lock:
            return len(self._archive)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

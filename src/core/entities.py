from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Any, Tuple


class ContentType(str, Enum):
    """
    Closed set of content kinds shared by storage, rotation and the buffer.
    """
    SONG = "song"
    PODCAST = "podcast"
    NEWS_BLOCK = "news_block"
    AD = "ad"
    JINGLE = "jingle"


class SelectionStrategy(str, Enum):
    RANDOM = "random"
    SEQUENTIAL = "sequential"
    LEAST_RECENTLY_PLAYED = "least_recently_played"


class PlaybackSource(str, Enum):
    OVERRIDE = "override"
    SCHEDULED = "scheduled"
    ROTATION = "rotation"


class CyclePhase(str, Enum):
    IDLE = "idle"
    SCRAPING = "scraping"
    SYNTHESIZING = "synthesizing"
    SCRIPTING = "scripting"
    RENDERING = "rendering"


@dataclass(frozen=True)
class SourceItem:
    """
    Canonical representation of an ingested news item.
    """
    id: str
    origin: str
    title: str
    body: str
    link: str
    published_at: datetime
    fetched_at: datetime


@dataclass(frozen=True)
class StoryAngle:
    """
    One distinct story distilled from a pool of source items.
    """
    headline: str
    summary: str
    angle: str
    importance: int
    source_item_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ScriptPayload:
    """
    Titled lyrics/script ready to be rendered into audio.
    """
    title: str
    body: str
    style: str
    style_tags: str
    story_headline: str
    story_angle: str
    generated_at: datetime


@dataclass(frozen=True)
class RemoteAudioRef:
    url: str
    remote_id: str


@dataclass(frozen=True)
class Track:
    """
    Playback buffer entry backed by a local audio file.
    """
    id: str
    kind: ContentType
    title: str
    file_path: str
    created_at: datetime
    duration_seconds: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContentRef:
    """
    Ready content record as returned by storage.
    """
    id: str
    type: ContentType
    title: str
    file_path: str
    created_at: datetime
    duration_seconds: Optional[int] = None


@dataclass(frozen=True)
class RotationStep:
    position: int
    content_type: ContentType
    selection_strategy: SelectionStrategy = SelectionStrategy.LEAST_RECENTLY_PLAYED
    content_id: Optional[str] = None
    pattern_id: str = "default"


@dataclass(frozen=True)
class OverrideItem:
    id: str
    content_id: str
    title: str
    content_type: ContentType
    urgent: bool = False


@dataclass(frozen=True)
class ScheduledSlot:
    """
    Time-anchored slot. A pinned content_id that is no longer ready falls back to
    content_type; a slot with neither resolves to nothing.
    """
    id: str
    start_time: datetime
    content_id: Optional[str] = None
    content_type: Optional[ContentType] = None
    end_time: Optional[datetime] = None
    recurring: bool = False
    priority: int = 5
    label: Optional[str] = None


@dataclass(frozen=True)
class PlaybackLogEntry:
    content_id: str
    content_type: ContentType
    title: str
    started_at: datetime
    source: PlaybackSource


@dataclass(frozen=True)
class ScheduledItem:
    """
    Resolved answer to "what plays next".
    """
    content_id: str
    title: str
    content_type: ContentType
    file_path: str
    duration_seconds: int
    source: PlaybackSource


@dataclass
class CycleResult:
    """
    Outcome of one production cycle. Always produced, even when phases fail.
    """
    items_scraped: int = 0
    stories_synthesized: int = 0
    scripts_generated: int = 0
    tracks_rendered: int = 0
    errors: List[str] = field(default_factory=list)

    def as_tuple(self) -> Tuple[int, int, int, int, List[str]]:
        return (
            self.items_scraped,
            self.stories_synthesized,
            self.scripts_generated,
            self.tracks_rendered,
            list(self.errors),
        )

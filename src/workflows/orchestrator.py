"""
Production cycle orchestrator.

Each cycle runs scrape -> synthesize -> script -> render and pushes finished
songs into the playback buffer. A separate timer periodically reads the
headlines as a speech block inserted near the head of the buffer.
"""
import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from core.entities import (
    ContentType,
    CycleResult,
    CyclePhase,
    ScriptPayload,
    StoryAngle,
    Track,
)
from core.styles import StyleRotator
from events.base import EventPublisher, NullPublisher, publish_safely
from ingestion.feed import IngestionFeed
from playback.buffer import PlaybackBuffer
from processing.synthesizer import NarrativeSynthesizer
from rendering.base import SongRenderer, SpeechSynthesizer
from rendering.downloader import fetch_and_validate
from services.clock import next_run_time, utcnow
from services.config import ProductionConfig
from services.database import Database
from workflows.news_block import build_bulletin

logger = logging.getLogger(__name__)

Downloader = Callable[..., Awaitable[int]]


@dataclass
class _PendingScript:
    payload: ScriptPayload
    attempts: int = 0


class ProductionOrchestrator:
    def __init__(
        self,
        *,
        feed: IngestionFeed,
        synthesizer: NarrativeSynthesizer,
        renderer: SongRenderer,
        speech: SpeechSynthesizer,
        buffer: PlaybackBuffer,
        settings: Optional[ProductionConfig] = None,
        media_dir: str = "data/media",
        library: Optional[Database] = None,
        publisher: Optional[EventPublisher] = None,
        rotator: Optional[StyleRotator] = None,
        voice: Optional[str] = None,
        downloader: Downloader = fetch_and_validate,
    ):
        self.feed = feed
        self.synthesizer = synthesizer
        self.renderer = renderer
        self.speech = speech
        self.buffer = buffer
        self.settings = settings or ProductionConfig()
        self.media_dir = Path(media_dir)
        self.library = library
        self.publisher = publisher or NullPublisher()
        self.rotator = rotator or StyleRotator()
        self.voice = voice
        self.downloader = downloader

        self.concurrency = max(1, self.settings.render_concurrency)
        self._render_slots = asyncio.Semaphore(self.concurrency)
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._stop_requested = False
        self._tasks: List[asyncio.Task] = []
        self._retry_queue: Deque[_PendingScript] = deque()

        self.running = False
        self.phase = CyclePhase.IDLE
        self.cycle_number = 0
        self.last_cycle_at: Optional[datetime] = None
        self.next_cycle_at: Optional[datetime] = None

        self._pending_renders = 0
        self.peak_pending_renders = 0

        self.total_songs = 0
        self.total_speech_blocks = 0
        self.total_cycles = 0
        self.total_render_failures = 0

    # ----------------------------
    # Lifecycle
    # ----------------------------

    async def start(self) -> None:
        if self.running:
            logger.warning("Orchestrator already running")
            return

        self.running = True
        self._stop_requested = False
        # Each run owns its stop event; loops from an earlier run exit on theirs
        self._stop_event = asyncio.Event()
        leftover = [t for t in self._tasks if not t.done()]
        if leftover:
            logger.info(f"{len(leftover)} loop tasks from the previous run are still finishing")
        self._tasks = leftover + [
            asyncio.create_task(self._cycle_loop(self._stop_event), name="production-cycle-loop"),
            asyncio.create_task(self._speech_loop(self._stop_event), name="speech-block-loop"),
        ]
        logger.info("Orchestrator started, first production cycle running now")
        await self._publish_status()

    async def stop(self) -> None:
        """
        Stop scheduling cycles and speech blocks.
        An in-flight cycle finishes its dispatched renders; no new batches start.
        """
        if not self.running:
            return

        self.running = False
        self._stop_requested = True
        self._stop_event.set()
        self.next_cycle_at = None
        logger.info("Orchestrator stopped")
        await self._publish_status()

    async def shutdown(self) -> None:
        await self.stop()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
        await self.renderer.aclose()
        logger.info("Orchestrator shut down")

    @staticmethod
    async def _wait_or_stop(stop_event: asyncio.Event, seconds: float) -> bool:
        """Sleep for `seconds`; True when woken early by stop()."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _cycle_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_single_cycle()
            except Exception as e:
                logger.exception(f"Production cycle {self.cycle_number} crashed: {e}")

            if stop_event.is_set():
                break

            interval = self.settings.cycle_interval_seconds
            self.next_cycle_at = next_run_time(interval)
            logger.info(
                f"Next production cycle in {interval / 60:.0f} minutes",
                extra={"next_cycle_at": self.next_cycle_at.isoformat()},
            )
            if await self._wait_or_stop(stop_event, interval):
                break

    async def _speech_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            if await self._wait_or_stop(stop_event, self.settings.speech_interval_seconds):
                break
            await self.generate_speech_block()

    # ----------------------------
    # Production cycle
    # ----------------------------

    async def run_single_cycle(self) -> CycleResult:
        """Run one cycle now. Cycles never overlap."""
        async with self._cycle_lock:
            try:
                return await self._run_cycle()
            finally:
                await self._set_phase(CyclePhase.IDLE)

    async def _run_cycle(self) -> CycleResult:
        self.cycle_number += 1
        self.last_cycle_at = utcnow()
        result = CycleResult()
        log_extra = {"cycle": self.cycle_number}

        # Phase 1: scrape
        await self._set_phase(CyclePhase.SCRAPING)
        items = await self.feed.fetch_once()
        result.items_scraped = len(items)
        logger.info(f"Scraped {len(items)} new items", extra=log_extra)

        if not items:
            return await self._finish(result)

        # Phase 2: synthesize
        await self._set_phase(CyclePhase.SYNTHESIZING)
        try:
            stories = await self.synthesizer.synthesize(items, self.settings.stories_per_cycle)
        except Exception as e:
            self._fail(result, f"News synthesis failed: {e}")
            return await self._finish(result)

        result.stories_synthesized = len(stories)
        if not stories:
            self._fail(result, "News synthesis returned no stories")
            return await self._finish(result)

        logger.info(
            f"Synthesized {len(stories)} stories",
            extra={**log_extra, "headlines": [s.headline for s in stories]},
        )

        # Phase 3: scripts
        await self._set_phase(CyclePhase.SCRIPTING)
        scripts = await self._generate_scripts(stories, result)
        result.scripts_generated = len(scripts)
        logger.info(f"Generated {len(scripts)} scripts", extra=log_extra)

        # Phase 4: render, retried scripts first
        pending = self._drain_retry_queue() + [_PendingScript(payload=s) for s in scripts]
        if pending:
            await self._set_phase(CyclePhase.RENDERING)
            result.tracks_rendered = await self._render_all(pending, result)

        return await self._finish(result)

    def _fail(self, result: CycleResult, message: str) -> None:
        logger.error(message, extra={"cycle": self.cycle_number, "phase": self.phase.value})
        result.errors.append(message)

    async def _finish(self, result: CycleResult) -> CycleResult:
        self.total_cycles += 1
        logger.info(
            "Production cycle complete",
            extra={
                "cycle": self.cycle_number,
                "scraped": result.items_scraped,
                "stories": result.stories_synthesized,
                "scripts": result.scripts_generated,
                "rendered": result.tracks_rendered,
                "errors": len(result.errors),
                "buffer_size": len(self.buffer),
            },
        )
        await publish_safely(self.publisher, "cycle:completed", {
            "cycle": self.cycle_number,
            "items_scraped": result.items_scraped,
            "stories_synthesized": result.stories_synthesized,
            "scripts_generated": result.scripts_generated,
            "tracks_rendered": result.tracks_rendered,
            "errors": list(result.errors),
        })
        return result

    async def _generate_scripts(
        self,
        stories: List[StoryAngle],
        result: CycleResult,
    ) -> List[ScriptPayload]:
        limiter = asyncio.Semaphore(max(1, self.settings.script_concurrency))
        # Styles are picked up front so rotation order follows story order
        styles = [self.rotator.next() for _ in stories]

        async def one(story: StoryAngle, style) -> ScriptPayload:
            async with limiter:
                return await self.synthesizer.generate_script(story, style)

        outcomes = await asyncio.gather(
            *(one(story, style) for story, style in zip(stories, styles)),
            return_exceptions=True,
        )

        scripts: List[ScriptPayload] = []
        for story, outcome in zip(stories, outcomes):
            if isinstance(outcome, BaseException):
                self._fail(result, f"Script generation failed for '{story.headline}': {outcome}")
                continue
            scripts.append(outcome)
        return scripts

    # ----------------------------
    # Rendering
    # ----------------------------

    def _drain_retry_queue(self) -> List[_PendingScript]:
        drained = list(self._retry_queue)
        self._retry_queue.clear()
        if drained:
            logger.info(f"Retrying {len(drained)} scripts from earlier cycles")
        return drained

    def _requeue(self, item: _PendingScript, count_attempt: bool = True) -> None:
        if count_attempt:
            item.attempts += 1
            if item.attempts > self.settings.max_render_retries:
                logger.warning(f"Dropping script '{item.payload.title}' after {item.attempts} failed renders")
                return

        if len(self._retry_queue) >= self.settings.retry_queue_size:
            dropped = self._retry_queue.popleft()
            logger.warning(f"Retry queue full, dropping '{dropped.payload.title}'")
        self._retry_queue.append(item)

    async def _render_all(self, pending: List[_PendingScript], result: CycleResult) -> int:
        produced = 0
        total_batches = (len(pending) + self.concurrency - 1) // self.concurrency

        for start in range(0, len(pending), self.concurrency):
            if self._stop_requested:
                remaining = pending[start:]
                for item in remaining:
                    self._requeue(item, count_attempt=False)
                logger.info(f"Stop requested, {len(remaining)} scripts held for the next cycle")
                break

            batch = pending[start:start + self.concurrency]
            logger.info(
                f"Rendering batch {start // self.concurrency + 1}/{total_batches}",
                extra={"titles": [p.payload.title for p in batch]},
            )

            outcomes = await asyncio.gather(
                *(self._render_one(item.payload) for item in batch),
                return_exceptions=True,
            )

            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    self.total_render_failures += 1
                    self._fail(result, f"Song render failed for '{item.payload.title}': {outcome}")
                    self._requeue(item)
                else:
                    produced += 1

        return produced

    async def _render_one(self, payload: ScriptPayload) -> Track:
        async with self._render_slots:
            self._pending_renders += 1
            self.peak_pending_renders = max(self.peak_pending_renders, self._pending_renders)
            try:
                ref = await self.renderer.render(payload)

                track_id = uuid.uuid4().hex
                output_path = self.media_dir / "songs" / f"{track_id}.mp3"
                await self.downloader(ref.url, str(output_path), min_bytes=self.settings.min_song_bytes)

                track = Track(
                    id=track_id,
                    kind=ContentType.SONG,
                    title=payload.title,
                    file_path=str(output_path),
                    created_at=utcnow(),
                    metadata={
                        "style": payload.style,
                        "style_tags": payload.style_tags,
                        "remote_id": ref.remote_id,
                        "story_headline": payload.story_headline,
                        "story_angle": payload.story_angle,
                    },
                )
            finally:
                self._pending_renders -= 1

        size = self.buffer.enqueue(track)
        self.total_songs += 1
        logger.info(
            f"Song added to buffer: {track.title}",
            extra={"style": payload.style, "buffer_size": size},
        )
        await self._register(track)
        await self._publish_buffer()
        return track

    # ----------------------------
    # Speech blocks
    # ----------------------------

    async def generate_speech_block(self) -> Optional[Track]:
        """Read the latest headlines and insert the bulletin near the buffer head."""
        try:
            items = await self.feed.fetch_once()
            if not items:
                logger.debug("No new items for a speech block, skipping")
                return None

            now = utcnow()
            text = build_bulletin(
                items,
                station_name=self.settings.station_name,
                headline_count=self.settings.speech_headline_count,
                now=now,
            )

            track_id = uuid.uuid4().hex
            output_path = self.media_dir / "news" / f"{track_id}.mp3"
            file_path = await self.speech.synthesize_speech(text, str(output_path), self.voice)

            track = Track(
                id=track_id,
                kind=ContentType.NEWS_BLOCK,
                title=f"News Block {now.isoformat()}",
                file_path=file_path,
                created_at=now,
                metadata={
                    "item_count": len(items),
                    "headlines": [i.title for i in items[:self.settings.speech_headline_count]],
                },
            )
        except Exception as e:
            logger.error(f"Speech block generation failed: {e}")
            return None

        position = min(self.settings.speech_insert_position, len(self.buffer))
        self.buffer.insert(position, track)
        self.total_speech_blocks += 1
        logger.info(
            "Speech block added to buffer",
            extra={"position": position, "buffer_size": len(self.buffer)},
        )
        await self._register(track)
        await self._publish_buffer()
        return track

    # ----------------------------
    # Control surface
    # ----------------------------

    @property
    def pending_renders(self) -> int:
        return self._pending_renders

    @property
    def retry_queue_size(self) -> int:
        return len(self._retry_queue)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "cycle_phase": self.phase.value,
            "cycle_number": self.cycle_number,
            "buffer_size": len(self.buffer),
            "archive_size": self.buffer.archive_size,
            "pending_renders": self._pending_renders,
            "retry_queue_size": len(self._retry_queue),
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "next_cycle_at": self.next_cycle_at.isoformat() if self.next_cycle_at else None,
            "totals": {
                "songs": self.total_songs,
                "speech_blocks": self.total_speech_blocks,
                "cycles": self.total_cycles,
                "render_failures": self.total_render_failures,
            },
        }

    def peek_buffer(self) -> List[Track]:
        return self.buffer.peek()

    async def dequeue(self) -> Optional[Track]:
        track = self.buffer.dequeue()
        if track is not None:
            await self._publish_buffer()
        return track

    # ----------------------------
    # Helpers
    # ----------------------------

    async def _set_phase(self, phase: CyclePhase) -> None:
        if phase == self.phase:
            return
        self.phase = phase
        logger.info(f"Cycle phase: {phase.value}", extra={"cycle": self.cycle_number, "phase": phase.value})
        await self._publish_status()

    async def _register(self, track: Track) -> None:
        """Make a produced track selectable by the content scheduler."""
        if self.library is None:
            return
        try:
            await self.library.add_content(
                content_id=track.id,
                content_type=track.kind,
                title=track.title,
                file_path=track.file_path,
                duration_seconds=track.duration_seconds,
                metadata=track.metadata,
                created_at=track.created_at,
            )
        except Exception as e:
            logger.error(f"Failed to register {track.kind.value} '{track.title}' in library: {e}")

    async def _publish_status(self) -> None:
        await publish_safely(self.publisher, "status:changed", self.status())

    async def _publish_buffer(self) -> None:
        await publish_safely(self.publisher, "buffer:updated", {
            "buffer_size": len(self.buffer),
            "archive_size": self.buffer.archive_size,
            "tracks": [_track_summary(t) for t in self.buffer.peek()],
        })


def _track_summary(track: Track) -> Dict[str, Any]:
    return {
        "id": track.id,
        "kind": track.kind.value,
        "title": track.title,
        "created_at": track.created_at.isoformat(),
    }


def track_to_dict(track: Track) -> Dict[str, Any]:
    data = _track_summary(track)
    data.update({
        "file_path": track.file_path,
        "duration_seconds": track.duration_seconds,
        "metadata": track.metadata,
    })
    return data

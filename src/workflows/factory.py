"""
Station Factory - Wires the whole station from configuration.
The returned Station is owned by whoever hosts it (API server, CLI).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from core.styles import StyleRotator
from events.base import EventPublisher
from events.file_publisher import FilePublisher
from ingestion.feed import IngestionFeed
from ingestion.source_factory import create_adapters_from_config
from playback.buffer import PlaybackBuffer
from processing.synthesizer import NarrativeSynthesizer
from rendering.base import SongRenderer, SpeechSynthesizer
from rendering.song_client import HttpSongRenderer
from rendering.speech import EdgeSpeechSynthesizer
from scheduling.rotation import seed_default_rotation
from scheduling.scheduler import ContentScheduler
from services.config import Config
from services.database import Database
from services.llm import OllamaClient
from services.retry import RetryPolicy
from workflows.orchestrator import ProductionOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Station:
    config: Config
    store: Database
    feed: IngestionFeed
    buffer: PlaybackBuffer
    orchestrator: ProductionOrchestrator
    scheduler: ContentScheduler
    publisher: EventPublisher
    llm: Optional[OllamaClient] = None

    async def initialize(self) -> None:
        """Create tables, seed the rotation and restore persisted state."""
        if self.llm is not None and not await self.llm.health_check():
            logger.warning(
                "Ollama is not reachable, production cycles will fail until it is",
                extra={"base_url": self.llm.base_url, "model": self.llm.model},
            )
        await self.store.init_tables()
        await seed_default_rotation(self.store, self.scheduler.pattern_id)
        await self.feed.load()
        await self.scheduler.initialize()
        logger.info("Station initialized")

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()


def create_station_from_config(
    config: Config,
    *,
    llm: Optional[OllamaClient] = None,
    renderer: Optional[SongRenderer] = None,
    speech: Optional[SpeechSynthesizer] = None,
    publisher: Optional[EventPublisher] = None,
) -> Station:
    store = Database(config.DATABASE_PATH)
    publisher = publisher or FilePublisher(config.EVENTS_PATH)

    ingestion = config.ingestion
    adapters = create_adapters_from_config(ingestion)
    if not adapters:
        logger.warning("No enabled ingestion sources configured")

    feed = IngestionFeed(
        adapters,
        keywords=ingestion.keywords,
        capacity=ingestion.seen_capacity,
        retry_policy=RetryPolicy(
            max_attempts=ingestion.max_attempts,
            base_delay=ingestion.base_delay,
        ),
        store=store,
    )

    llm = llm or OllamaClient(
        base_url=config.OLLAMA_BASE_URL,
        model=config.OLLAMA_MODEL,
    )

    rendering = config.rendering
    renderer = renderer or HttpSongRenderer(
        rendering.base_url,
        rendering.api_key,
        poll_interval=rendering.poll_interval,
        render_timeout=rendering.render_timeout,
    )
    speech = speech or EdgeSpeechSynthesizer(
        rendering.voice,
        min_bytes=config.production.min_speech_bytes,
    )

    buffer = PlaybackBuffer()
    orchestrator = ProductionOrchestrator(
        feed=feed,
        synthesizer=NarrativeSynthesizer(llm),
        renderer=renderer,
        speech=speech,
        buffer=buffer,
        settings=config.production,
        media_dir=config.MEDIA_DIR,
        library=store,
        publisher=publisher,
        rotator=StyleRotator(),
        voice=rendering.voice,
    )
    scheduler = ContentScheduler(store, publisher=publisher)

    logger.info(
        f"Station wired: {len(adapters)} sources, render concurrency {config.production.render_concurrency}"
    )
    return Station(
        config=config,
        store=store,
        feed=feed,
        buffer=buffer,
        orchestrator=orchestrator,
        scheduler=scheduler,
        publisher=publisher,
        llm=llm,
    )

"""
Loads and handles config from config.yml
Rendering credentials (SONG_API_KEY) are loaded from .env for security
"""
import logging
import os
from typing import List, Dict, Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """Configuration for a single ingestion source."""
    type: str  # rss, reddit
    enabled: bool = True
    name: Optional[str] = None
    feeds: Optional[List[str]] = None  # For rss
    subreddit: Optional[str] = None  # For reddit


class IngestionConfig(BaseModel):
    """Configuration for the deduplicating ingestion feed."""
    sources: List[SourceConfig] = []
    keywords: List[str] = []
    seen_capacity: int = 5000
    max_attempts: int = 3
    base_delay: float = 2.0
    timeout: float = 15.0


class ProductionConfig(BaseModel):
    """Production cycle settings."""
    stories_per_cycle: int = 10
    cycle_interval_seconds: float = 4 * 60 * 60
    render_concurrency: int = 2
    script_concurrency: int = 3
    speech_interval_seconds: float = 15 * 60
    speech_insert_position: int = 3
    speech_headline_count: int = 5
    station_name: str = "Headline Radio"
    min_song_bytes: int = 50 * 1024
    min_speech_bytes: int = 1024
    max_render_retries: int = 1
    retry_queue_size: int = 20


class RenderingConfig(BaseModel):
    """Song and speech rendering backends."""
    base_url: str = "http://localhost:3000"
    api_key: Optional[str] = None
    poll_interval: float = 5.0
    render_timeout: float = 300.0
    voice: str = "en-US-GuyNeural"


class Config(BaseModel):
    # Core
    DATABASE_PATH: str
    MEDIA_DIR: str
    EVENTS_PATH: str

    # Ollama
    OLLAMA_BASE_URL: str
    OLLAMA_MODEL: str

    # Control API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001

    LOG_LEVEL: str = "INFO"

    ingestion: IngestionConfig = IngestionConfig()
    production: ProductionConfig = ProductionConfig()
    rendering: RenderingConfig = RenderingConfig()


def _bool(value: str | bool) -> bool:
    """Convert string or bool to boolean."""
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("1", "true", "yes", "on")


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    override = os.getenv("STATION_CONFIG")
    if override:
        return override

    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def _parse_ingestion_config(data: Dict[str, Any]) -> IngestionConfig:
    """Parse ingestion configuration from YAML data."""
    sources = []
    for src in data.get("sources", []):
        try:
            sources.append(SourceConfig(
                type=src.get("type", ""),
                enabled=_bool(src.get("enabled", True)),
                name=src.get("name"),
                feeds=src.get("feeds"),
                subreddit=src.get("subreddit"),
            ))
        except Exception as e:
            logger.error(f"Skipping invalid source entry {src!r}: {e}")

    defaults = IngestionConfig()
    return IngestionConfig(
        sources=sources,
        keywords=data.get("keywords", []),
        seen_capacity=int(data.get("seen_capacity", defaults.seen_capacity)),
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        base_delay=float(data.get("base_delay", defaults.base_delay)),
        timeout=float(data.get("timeout", defaults.timeout)),
    )


def parse_config(data: Dict[str, Any]) -> Config:
    """Build a Config from already-loaded YAML data."""
    rendering = dict(data.get("rendering", {}))
    rendering["api_key"] = os.getenv("SONG_API_KEY", rendering.get("api_key"))

    return Config(
        DATABASE_PATH=data.get("DATABASE_PATH", "data/station.db"),
        MEDIA_DIR=data.get("MEDIA_DIR", "media"),
        EVENTS_PATH=data.get("EVENTS_PATH", "data/events.jsonl"),

        OLLAMA_BASE_URL=data.get("OLLAMA_BASE_URL", "http://localhost:11434"),
        OLLAMA_MODEL=data.get("OLLAMA_MODEL", "llama3.1:8b"),

        API_HOST=data.get("API_HOST", "0.0.0.0"),
        API_PORT=int(data.get("API_PORT", 3001)),
        LOG_LEVEL=str(data.get("LOG_LEVEL", "INFO")).upper(),

        ingestion=_parse_ingestion_config(data.get("ingestion", {})),
        production=ProductionConfig(**data.get("production", {})),
        rendering=RenderingConfig(**rendering),
    )


def load_config() -> Config:
    """Load configuration from config.yml and rendering credentials from .env."""
    load_dotenv()

    config_path = _get_config_path()

    with open(config_path, 'r') as file:
        config = yaml.safe_load(file) or {}

    return parse_config(config)


def get_enabled_sources(ingestion_config: IngestionConfig) -> List[SourceConfig]:
    """Get only enabled sources from an ingestion config."""
    return [src for src in ingestion_config.sources if src.enabled]

"""
Error taxonomy for the production and scheduling core.
"""


class ProductionError(Exception):
    """Base class for all errors raised by station components."""


class SourceFetchError(ProductionError):
    """A single ingestion source failed (network or parse error)."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class SynthesisError(ProductionError):
    """Story synthesis failed or returned output of the wrong shape."""


class ScriptGenerationError(ProductionError):
    """Script/lyrics generation failed for one story."""


class RenderError(ProductionError):
    """Rendering, download or speech synthesis failed for one track."""


class UndersizedOutputError(RenderError):
    """Rendered audio file was smaller than the accepted minimum."""

    def __init__(self, path: str, size: int, minimum: int):
        super().__init__(
            f"Audio file too small: {size} bytes (minimum {minimum}) at {path}"
        )
        self.path = path
        self.size = size
        self.minimum = minimum


class PersistenceError(ProductionError):
    """Storage write or read the scheduler depends on failed."""

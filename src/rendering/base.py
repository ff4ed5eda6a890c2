"""
Base classes for rendering collaborators
"""
from abc import ABC, abstractmethod
from typing import Optional

from core.entities import RemoteAudioRef, ScriptPayload


class SongRenderer(ABC):
    """
    Turns a script payload into a remotely hosted audio file.
    """

    name: str

    @abstractmethod
    async def render(self, payload: ScriptPayload) -> RemoteAudioRef:
        """
        Render one song. Raises RenderError on timeout or rejection.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Tear down any held session."""
        return None


class SpeechSynthesizer(ABC):
    """
    Turns text into a local audio file.
    """

    @abstractmethod
    async def synthesize_speech(
        self,
        text: str,
        output_path: str,
        voice: Optional[str] = None,
    ) -> str:
        """
        Write speech audio to output_path and return it.
        Raises RenderError if synthesis fails or the output is undersized.
        """
        raise NotImplementedError

"""
HTTP client for a song-generation backend.

The backend accepts a generation request, returns a clip id, and is polled
until the clip reports an audio URL.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx

from core.entities import RemoteAudioRef, ScriptPayload
from core.errors import RenderError
from rendering.base import SongRenderer
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

DONE_STATES = {"complete", "completed", "succeeded"}
FAILED_STATES = {"error", "failed", "rejected"}


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500 or error.response.status_code == 429
    return isinstance(error, httpx.TransportError)


class HttpSongRenderer(SongRenderer):
    name = "http-song"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        *,
        poll_interval: float = 5.0,
        render_timeout: float = 300.0,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.render_timeout = render_timeout
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=15.0)
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _session(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=30.0,
                transport=self.transport,
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        async def call() -> Dict[str, Any]:
            resp = await self._session().request(method, url, **kwargs)
            resp.raise_for_status()
            return resp.json()

        try:
            return await self.retry_policy.run(
                call,
                label=f"song-backend {method} {url}",
                retry_on=(httpx.HTTPError,),
                should_retry=_is_transient,
            )
        except httpx.HTTPStatusError as e:
            raise RenderError(
                f"Song backend rejected {method} {url}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RenderError(f"Song backend unreachable: {e}") from e

    async def render(self, payload: ScriptPayload) -> RemoteAudioRef:
        submitted = await self._request(
            "POST",
            "/api/generate",
            json={
                "title": payload.title,
                "lyrics": payload.body,
                "tags": payload.style_tags,
            },
        )
        clip_id = submitted.get("id")
        if not clip_id:
            raise RenderError(f"Song backend returned no clip id for '{payload.title}'")

        logger.info(f"Song submitted: {payload.title} (clip {clip_id})")

        deadline = time.monotonic() + self.render_timeout
        while True:
            clip = await self._request("GET", f"/api/clips/{clip_id}")
            status = str(clip.get("status", "")).lower()

            if status in DONE_STATES and clip.get("audio_url"):
                return RemoteAudioRef(url=clip["audio_url"], remote_id=str(clip_id))
            if status in FAILED_STATES:
                raise RenderError(
                    f"Song backend failed clip {clip_id}: {clip.get('error') or status}"
                )
            if time.monotonic() >= deadline:
                raise RenderError(
                    f"Render of '{payload.title}' timed out after {self.render_timeout}s"
                )

            await asyncio.sleep(self.poll_interval)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

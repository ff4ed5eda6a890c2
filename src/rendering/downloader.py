"""
Fetch-and-validate step for rendered audio.
"""
import logging
from pathlib import Path
from typing import Optional

import httpx

from core.errors import RenderError, UndersizedOutputError
from services.retry import RetryPolicy

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "headline-radio/1.0",
    "Accept": "audio/mpeg, audio/*, */*",
}


def validate_min_size(path: Path, min_bytes: int) -> int:
    """Return the file size, deleting the file and raising if it is under min_bytes."""
    if not path.exists():
        raise RenderError(f"Audio file not found at {path}")

    size = path.stat().st_size
    if size < min_bytes:
        path.unlink(missing_ok=True)
        raise UndersizedOutputError(str(path), size, min_bytes)
    return size


async def _fetch_to_file(client: httpx.AsyncClient, url: str, path: Path) -> None:
    async with client.stream("GET", url) as response:
        response.raise_for_status()

        content_type = response.headers.get("content-type", "")
        if content_type and not any(t in content_type for t in ("audio", "octet-stream", "video")):
            logger.warning(f"Unexpected content-type for audio download: {content_type} ({url})")

        with path.open("wb") as fh:
            async for chunk in response.aiter_bytes():
                fh.write(chunk)


async def fetch_and_validate(
    url: str,
    output_path: str,
    *,
    min_bytes: int,
    retry_policy: Optional[RetryPolicy] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Download audio to output_path. Undersized files are deleted and reported
    as a failed render. Returns the file size in bytes.
    """
    path = Path(output_path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0)

    logger.info(f"Downloading audio {url} -> {path}")

    try:
        async with httpx.AsyncClient(
            timeout=60.0,
            headers=HEADERS,
            follow_redirects=True,
            transport=transport,
        ) as client:
            await policy.run(
                lambda: _fetch_to_file(client, url, path),
                label="audio-download",
                retry_on=(httpx.HTTPError,),
            )
    except httpx.HTTPError as e:
        path.unlink(missing_ok=True)
        raise RenderError(f"Download failed for {url}: {e}") from e

    size = validate_min_size(path, min_bytes)
    logger.info(f"Audio downloaded: {path} ({size} bytes)")
    return size

"""Download upstream images to local storage with bounded retries."""

from __future__ import annotations

import logging
import posixpath
import time
from collections.abc import Callable
from email.message import Message
from pathlib import Path

import httpx

from image_shepherd.sync.errors import FetchError
from image_shepherd.sync.retry import RetryError, RetryPolicy

logger = logging.getLogger(__name__)

FALLBACK_FILENAME = "downloaded-image"
CHUNK_SIZE = 1024 * 1024


def _disposition_filename(header: str) -> str:
    """Extract the filename parameter from a Content-Disposition header."""
    if not header:
        return ""
    message = Message()
    message["Content-Disposition"] = header
    return message.get_filename() or ""


def sanitize_filename(name: str) -> str:
    """Strip directory components so a server cannot choose where we write."""
    base = posixpath.basename(name.replace("\\", "/")).strip()
    if base in ("", ".", ".."):
        return FALLBACK_FILENAME
    return base


def resolve_filename(response: httpx.Response) -> str:
    """Pick the local filename for a download response.

    Order: Content-Disposition filename, basename of the final URL path,
    then a fixed fallback.
    """
    name = _disposition_filename(response.headers.get("Content-Disposition", ""))
    if not name:
        name = posixpath.basename(response.url.path)
    return sanitize_filename(name)


class SourceFetcher:
    """Downloads a URL into a working directory.

    Each attempt must finish within ``timeout`` seconds, measured from its
    start; the same value bounds every network wait. Transport errors,
    non-2xx statuses and overrun attempts are retried according to the
    policy.
    """

    def __init__(
        self,
        client: httpx.Client,
        *,
        timeout: float = 300.0,
        policy: RetryPolicy | None = None,
        work_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._policy = policy or RetryPolicy(
            retryable=lambda exc: isinstance(exc, httpx.HTTPError)
        )
        self._work_dir = work_dir or Path(".")
        self._clock = clock

    def fetch(self, url: str) -> Path:
        """Download ``url`` and return the path of the local file.

        Raises:
            FetchError: When every attempt failed.
        """
        try:
            return self._policy.run(
                lambda attempt: self._attempt(url, attempt),
                label=f"Download of {url}",
            )
        except RetryError as e:
            msg = f"Download of {url} failed after {e.attempts} attempt(s): {e.last_error}"
            raise FetchError(msg, attempts=e.attempts) from e.last_error

    def _attempt(self, url: str, attempt: int) -> Path:
        deadline = self._clock() + self._timeout
        logger.info(
            "Downloading %s (attempt %d/%d, timeout %ss)",
            url,
            attempt,
            self._policy.max_attempts,
            self._timeout,
        )
        with self._client.stream(
            "GET", url, timeout=self._timeout, follow_redirects=True
        ) as response:
            response.raise_for_status()
            path = self._work_dir / resolve_filename(response)
            try:
                with path.open("wb") as out:
                    for chunk in response.iter_bytes(CHUNK_SIZE):
                        if self._clock() > deadline:
                            msg = f"Download of {url} exceeded {self._timeout}s"
                            raise httpx.ReadTimeout(msg, request=response.request)
                        out.write(chunk)
            except BaseException:
                path.unlink(missing_ok=True)
                raise

        logger.info("Downloaded %s to %s", url, path)
        return path

"""Lightweight change detection for upstream image URLs."""

from __future__ import annotations

import logging

import httpx

from image_shepherd.entities.images import SourceMetadata
from image_shepherd.sync.errors import ProbeError

logger = logging.getLogger(__name__)


def probe_source(client: httpx.Client, url: str, *, timeout: float = 60.0) -> SourceMetadata:
    """Issue a HEAD request and collect ETag, Last-Modified and Content-Length.

    Missing headers leave the corresponding field empty. Redirects are
    followed; any final status outside 200-399 is an error.

    Raises:
        ProbeError: On a malformed URL, transport failure or an unsuccessful
            status.
    """
    try:
        response = client.head(url, timeout=timeout, follow_redirects=True)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        msg = f"HEAD {url} failed: {e}"
        raise ProbeError(msg) from e

    if not 200 <= response.status_code <= 399:
        msg = f"HEAD {url} failed: {response.status_code} {response.reason_phrase}"
        raise ProbeError(msg)

    content_length = 0
    raw_length = response.headers.get("Content-Length", "")
    if raw_length:
        try:
            content_length = max(0, int(raw_length))
        except ValueError:
            logger.debug("Ignoring malformed Content-Length %r for %s", raw_length, url)

    meta = SourceMetadata(
        etag=response.headers.get("ETag", ""),
        last_modified=response.headers.get("Last-Modified", ""),
        content_length=content_length,
    )
    logger.debug(
        "Probed %s: etag=%r last_modified=%r length=%d",
        url,
        meta.etag,
        meta.last_modified,
        meta.content_length,
    )
    return meta

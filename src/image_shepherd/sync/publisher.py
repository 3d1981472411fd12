"""Create registry entries and upload image data into them."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

from image_shepherd.entities.images import (
    SOURCE_CONTENT_LENGTH,
    SOURCE_ETAG,
    SOURCE_LAST_MODIFIED,
    SOURCE_URL,
    CreateEntryRequest,
    ImageSpec,
    RegistryEntry,
    SourceMetadata,
)
from image_shepherd.sync.errors import PublishError, UploadError
from image_shepherd.sync.retry import RetryError, RetryPolicy, is_transient_error

if TYPE_CHECKING:
    from image_shepherd.registry.client import RegistryClient

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


def build_entry_properties(spec: ImageSpec, metadata: SourceMetadata | None) -> dict[str, str]:
    """Spec properties plus the source indicators that were actually reported."""
    metadata = metadata or SourceMetadata()
    properties = dict(spec.properties)
    properties[SOURCE_URL] = spec.url
    if metadata.etag:
        properties[SOURCE_ETAG] = metadata.etag
    if metadata.last_modified:
        properties[SOURCE_LAST_MODIFIED] = metadata.last_modified
    if metadata.content_length > 0:
        properties[SOURCE_CONTENT_LENGTH] = str(metadata.content_length)
    return properties


class Publisher:
    """Publishes a raw image file as a new registry entry.

    Uploads are retried on transient errors only. All attempts share one
    overall deadline of ``upload_timeout`` seconds; each attempt receives
    the remaining time as its own request timeout.
    """

    def __init__(
        self,
        registry: RegistryClient,
        *,
        policy: RetryPolicy | None = None,
        upload_timeout: float = 6000.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._policy = policy or RetryPolicy(retryable=is_transient_error)
        self._upload_timeout = upload_timeout
        self._clock = clock

    def publish(
        self,
        path: Path,
        spec: ImageSpec,
        metadata: SourceMetadata | None = None,
    ) -> RegistryEntry:
        """Create the entry, then upload ``path`` into it.

        Raises:
            PublishError: If the entry could not be created (nothing uploaded).
            UploadError: If the data upload ultimately failed. The created
                entry is left in the registry without data.
        """
        request = CreateEntryRequest(
            name=spec.name,
            tags=spec.tags,
            visibility=spec.visibility,
            protected=spec.protected,
            properties=build_entry_properties(spec, metadata),
        )
        logger.info(
            "Creating image %s (visibility=%s, protected=%s, tags=%s)",
            spec.name,
            request.visibility,
            request.protected,
            request.tags,
        )
        try:
            entry = self._registry.create_entry(request)
        except Exception as e:
            msg = f"Failed to create image {spec.name}: {e}"
            raise PublishError(msg, image=spec.name) from e
        logger.info("Image %s created with id %s", spec.name, entry.id)

        self._upload(entry, path, spec)
        return entry

    def _upload(self, entry: RegistryEntry, path: Path, spec: ImageSpec) -> None:
        deadline = self._clock() + self._upload_timeout

        try:
            with path.open("rb") as data:
                self._policy.run(
                    lambda attempt: self._attempt(entry, data, path, attempt, deadline),
                    label=f"Upload of {path} to {entry.id}",
                )
        except RetryError as e:
            msg = (
                f"Upload of {path} to image {entry.id} failed after "
                f"{e.attempts} attempt(s): {e.last_error}"
            )
            raise UploadError(
                msg, entry_id=entry.id, image=spec.name, attempts=e.attempts
            ) from e.last_error
        except OSError as e:
            msg = f"Could not read {path} for upload to image {entry.id}: {e}"
            raise UploadError(msg, entry_id=entry.id, image=spec.name) from e

    def _attempt(
        self,
        entry: RegistryEntry,
        data: BinaryIO,
        path: Path,
        attempt: int,
        deadline: float,
    ) -> None:
        remaining = deadline - self._clock()
        if remaining <= 0:
            msg = f"upload deadline exceeded ({self._upload_timeout}s)"
            raise TimeoutError(msg)

        data.seek(0)
        logger.info(
            "Uploading %s to image %s (attempt %d/%d, %.0fs left)",
            path,
            entry.id,
            attempt,
            self._policy.max_attempts,
            remaining,
        )
        self._registry.upload_data(entry.id, self._chunks(data, deadline), timeout=remaining)
        logger.info("Upload of %s to image %s complete", path, entry.id)

    def _chunks(self, data: BinaryIO, deadline: float) -> Iterator[bytes]:
        """Read ``data`` in chunks, failing once the upload deadline has passed."""
        while chunk := data.read(CHUNK_SIZE):
            if self._clock() > deadline:
                msg = f"upload deadline exceeded ({self._upload_timeout}s) while sending"
                raise TimeoutError(msg)
            yield chunk

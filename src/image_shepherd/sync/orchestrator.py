"""Per-image synchronization: probe, match, decide, publish, retire.

Images are processed one at a time in declaration order. A failure while
handling one image is logged and recorded, and the run moves on to the
next; only failing to list the existing registry entries stops a run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from image_shepherd.config import RunOptions
from image_shepherd.sync.errors import ProbeError, RegistryListError, RolloverError, SyncError
from image_shepherd.sync.fetcher import SourceFetcher
from image_shepherd.sync.matcher import find_current
from image_shepherd.sync.normalizer import Normalizer
from image_shepherd.sync.prober import probe_source
from image_shepherd.sync.publisher import Publisher
from image_shepherd.sync.retry import RetryPolicy, is_transient_error
from image_shepherd.sync.rollover import retire_entry
from image_shepherd.sync.staleness import decide_staleness

if TYPE_CHECKING:
    from image_shepherd.entities.images import ImageSpec, RegistryEntry, SourceMetadata
    from image_shepherd.registry.client import RegistryClient
    from image_shepherd.sync.image_tools import ImageTools

logger = logging.getLogger(__name__)


class SpecOutcome(StrEnum):
    """What happened to one image spec during a run."""

    SKIPPED = "skipped"
    PUBLISHED = "published"
    PUBLISHED_RETIRE_FAILED = "published_retire_failed"
    FAILED = "failed"
    WOULD_PUBLISH = "would_publish"


@dataclass
class SpecResult:
    """Outcome of processing a single image spec."""

    name: str
    outcome: SpecOutcome
    reason: str = ""
    entry_id: str | None = None
    previous_id: str | None = None
    phase: str | None = None
    error: str | None = None


@dataclass
class SyncReport:
    """Result of a full run."""

    existing_count: int = 0
    results: list[SpecResult] = field(default_factory=list)
    duration_seconds: float = 0.0

    def count(self, outcome: SpecOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def failed(self) -> list[SpecResult]:
        return [r for r in self.results if r.outcome == SpecOutcome.FAILED]

    def summary(self) -> str:
        counts = ", ".join(f"{self.count(o)} {o}" for o in SpecOutcome if self.count(o))
        return (
            f"{len(self.results)} images processed ({counts or 'nothing to do'}) "
            f"in {self.duration_seconds:.1f}s"
        )


class ImageSynchronizer:
    """Keeps the registry in step with the declared image specs."""

    def __init__(
        self,
        registry: RegistryClient,
        tools: ImageTools,
        options: RunOptions | None = None,
        *,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            registry: Registry the images are published to.
            tools: Backend for decompression, inspection and conversion.
            options: Run-scoped settings (constraints, timeouts, work dir).
            http_client: Client for probing and downloading sources. A
                private client is created per run when omitted.
            sleep: Used for retry backoff.
            now: Clock for the default ``uploaded`` property.
        """
        self._registry = registry
        self._tools = tools
        self._options = options or RunOptions()
        self._http_client = http_client
        self._sleep = sleep
        self._now = now

    def run(self, specs: Iterable[ImageSpec]) -> SyncReport:
        """Synchronize every spec in order.

        Raises:
            RegistryListError: If existing entries cannot be listed.
        """
        start = time.monotonic()
        existing = self._list_existing()
        report = SyncReport(existing_count=len(existing))

        constraints = self._options.constraints
        if constraints.active:
            logger.info(
                "Applying matching constraints: owner=%r require_protected=%s require_public=%s",
                constraints.owner,
                constraints.require_protected,
                constraints.require_public,
            )
        else:
            logger.info("No matching constraints configured (owner/protected/public)")

        client = self._http_client or httpx.Client()
        try:
            fetcher = SourceFetcher(
                client,
                timeout=self._options.download_timeout_secs,
                policy=RetryPolicy(
                    retryable=lambda exc: isinstance(exc, httpx.HTTPError),
                    sleep=self._sleep,
                ),
                work_dir=self._options.work_dir,
            )
            publisher = Publisher(
                self._registry,
                policy=RetryPolicy(retryable=is_transient_error, sleep=self._sleep),
                upload_timeout=self._options.upload_timeout_secs,
            )
            for spec in specs:
                try:
                    result = self._sync_one(spec, existing, client, fetcher, publisher)
                except Exception as e:
                    logger.exception("Unexpected failure while handling %s", spec.name)
                    result = SpecResult(
                        spec.name, SpecOutcome.FAILED, phase="unexpected", error=str(e)
                    )
                report.results.append(result)
        finally:
            if self._http_client is None:
                client.close()

        report.duration_seconds = time.monotonic() - start
        logger.info("Run complete: %s", report.summary())
        for failed in report.failed:
            logger.warning("Image %s failed during %s: %s", failed.name, failed.phase, failed.error)
        return report

    def _list_existing(self) -> list[RegistryEntry]:
        logger.info("Fetching existing images")
        try:
            existing = self._registry.list_entries()
        except Exception as e:
            msg = f"Failed to list existing images: {e}"
            raise RegistryListError(msg) from e
        logger.info("Fetched %d existing images", len(existing))
        return existing

    def _probe(self, spec: ImageSpec, client: httpx.Client) -> SourceMetadata | None:
        try:
            return probe_source(client, spec.url, timeout=self._options.probe_timeout_secs)
        except ProbeError as e:
            logger.warning(
                "Could not fetch source metadata for %s; proceeding: %s", spec.name, e
            )
            return None

    def _sync_one(
        self,
        spec: ImageSpec,
        existing: list[RegistryEntry],
        client: httpx.Client,
        fetcher: SourceFetcher,
        publisher: Publisher,
    ) -> SpecResult:
        spec = spec.with_defaults(self._now())
        logger.info("Managing image %s (%d existing images)", spec.name, len(existing))

        metadata = self._probe(spec, client)
        current = find_current(existing, spec, self._options.constraints)
        if current is not None:
            logger.info("Found current image %s (%s)", current.id, current.name)
        else:
            logger.info("No current image found for %s", spec.name)

        decision = decide_staleness(current, metadata)
        previous_id = current.id if current is not None else None
        if not decision.changed:
            logger.info("Image %s unchanged (%s); skipping upload", spec.name, decision.reason)
            return SpecResult(
                spec.name, SpecOutcome.SKIPPED, reason=decision.reason, previous_id=previous_id
            )

        if self._options.dry_run:
            logger.info("Dry run: would publish %s (%s)", spec.name, decision.reason)
            return SpecResult(
                spec.name,
                SpecOutcome.WOULD_PUBLISH,
                reason=decision.reason,
                previous_id=previous_id,
            )

        try:
            entry = self._publish(spec, metadata, fetcher, publisher)
        except SyncError as e:
            logger.error(
                "Image %s failed during %s (attempts: %s): %s",
                spec.name,
                e.phase,
                e.attempts if e.attempts is not None else "-",
                e,
            )
            return SpecResult(
                spec.name,
                SpecOutcome.FAILED,
                reason=decision.reason,
                previous_id=previous_id,
                phase=e.phase,
                error=str(e),
            )
        except Exception as e:
            logger.exception("Unexpected failure while publishing %s", spec.name)
            return SpecResult(
                spec.name,
                SpecOutcome.FAILED,
                reason=decision.reason,
                previous_id=previous_id,
                phase="unexpected",
                error=str(e),
            )

        if current is None:
            logger.info("No previous image to rename/hide for %s", spec.name)
            return SpecResult(
                spec.name, SpecOutcome.PUBLISHED, reason=decision.reason, entry_id=entry.id
            )

        try:
            retire_entry(self._registry, current.id)
        except RolloverError as e:
            logger.error("Failed to rename/hide previous image %s: %s", current.id, e)
            return SpecResult(
                spec.name,
                SpecOutcome.PUBLISHED_RETIRE_FAILED,
                reason=decision.reason,
                entry_id=entry.id,
                previous_id=current.id,
                phase=e.phase,
                error=str(e),
            )

        return SpecResult(
            spec.name,
            SpecOutcome.PUBLISHED,
            reason=decision.reason,
            entry_id=entry.id,
            previous_id=current.id,
        )

    def _publish(
        self,
        spec: ImageSpec,
        metadata: SourceMetadata | None,
        fetcher: SourceFetcher,
        publisher: Publisher,
    ) -> RegistryEntry:
        """Fetch, normalize and publish; each step starts after the previous one."""
        logger.info(
            "Starting download of %s for %s (source_format=%r, compression=%r)",
            spec.url,
            spec.name,
            spec.source_format,
            spec.compression,
        )
        downloaded = fetcher.fetch(spec.url)
        normalized = Normalizer(self._tools).normalize(
            downloaded,
            compression=spec.compression,
            source_format=spec.source_format,
        )
        entry = publisher.publish(normalized.path, spec, metadata)
        logger.info("Published %s as image %s", spec.name, entry.id)
        return entry

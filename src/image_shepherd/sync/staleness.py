"""Decide whether an image needs to be published again."""

from __future__ import annotations

from dataclasses import dataclass

from image_shepherd.entities.images import (
    SOURCE_ETAG,
    SOURCE_LAST_MODIFIED,
    RegistryEntry,
    SourceMetadata,
)

REASON_ETAG = "etag"
REASON_LAST_MODIFIED = "last_modified"
REASON_NO_CURRENT = "no_current_entry"
REASON_CHANGED = "source_changed"


@dataclass(frozen=True)
class StalenessDecision:
    """Whether to publish, and which indicator decided it."""

    changed: bool
    reason: str


def decide_staleness(
    current: RegistryEntry | None,
    metadata: SourceMetadata | None,
) -> StalenessDecision:
    """Compare the current entry's recorded indicators with fresh ones.

    Unknown indicators on either side count as changed.
    """
    if current is None:
        return StalenessDecision(changed=True, reason=REASON_NO_CURRENT)

    metadata = metadata or SourceMetadata()
    if metadata.etag and metadata.etag == current.get_property(SOURCE_ETAG):
        return StalenessDecision(changed=False, reason=REASON_ETAG)
    if metadata.last_modified and metadata.last_modified == current.get_property(
        SOURCE_LAST_MODIFIED
    ):
        return StalenessDecision(changed=False, reason=REASON_LAST_MODIFIED)
    return StalenessDecision(changed=True, reason=REASON_CHANGED)

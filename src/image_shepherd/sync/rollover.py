"""Soft retirement of superseded registry entries."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from image_shepherd.entities.images import RegistryEntry, format_uploaded_date
from image_shepherd.sync.errors import RolloverError

if TYPE_CHECKING:
    from image_shepherd.registry.client import RegistryClient

logger = logging.getLogger(__name__)


def retired_name(entry: RegistryEntry) -> str:
    """``<name>-<date>``, the date taken from ``uploaded`` or the creation time."""
    date = entry.get_property("uploaded")
    if not date:
        logger.warning("Image %s has no uploaded property; using its creation time", entry.id)
        if entry.created_at is None:
            msg = f"Image {entry.id} has neither an uploaded property nor a creation time"
            raise RolloverError(msg)
        date = format_uploaded_date(entry.created_at)
    return f"{entry.name}-{date}"


def retire_entry(registry: RegistryClient, entry_id: str) -> RegistryEntry:
    """Rename and hide an entry in one update. Entries are never deleted.

    Raises:
        RolloverError: If the entry could not be read or updated.
    """
    try:
        entry = registry.get_entry(entry_id)
    except Exception as e:
        msg = f"Failed to get image {entry_id} for rename/hide: {e}"
        raise RolloverError(msg) from e

    new_name = retired_name(entry)
    logger.info("Retiring image %s: %r -> %r (hidden)", entry_id, entry.name, new_name)

    try:
        updated = registry.update_entry(entry_id, name=new_name, hidden=True)
    except Exception as e:
        msg = f"Failed to rename/hide image {entry_id}: {e}"
        raise RolloverError(msg) from e

    logger.info("Retired image %s as %s", entry_id, new_name)
    return updated

"""Locate the current registry entry for an image spec."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import StrEnum

from image_shepherd.entities.images import (
    MATCH_PROPERTIES,
    ImageSpec,
    MatchConstraints,
    RegistryEntry,
)

logger = logging.getLogger(__name__)


class MatchStrategy(StrEnum):
    """How entries are compared with a spec."""

    PROPERTIES = "properties"
    NAME = "name"


def matching_strategy(spec: ImageSpec) -> MatchStrategy:
    """Use property matching when os_distro, os_version and os_type are all set."""
    if all(spec.properties.get(key) for key in MATCH_PROPERTIES):
        return MatchStrategy.PROPERTIES
    return MatchStrategy.NAME


def _matches(entry: RegistryEntry, spec: ImageSpec, strategy: MatchStrategy) -> bool:
    if entry.hidden:
        return False
    if strategy is MatchStrategy.PROPERTIES:
        return all(entry.get_property(key) == spec.properties[key] for key in MATCH_PROPERTIES)
    return entry.name == spec.name


def _rejection(entry: RegistryEntry, constraints: MatchConstraints) -> str | None:
    """Return why an entry fails the constraints, or None if it passes."""
    if constraints.owner and entry.owner != constraints.owner:
        return f"owner {entry.owner!r} != {constraints.owner!r}"
    if constraints.require_protected and not entry.protected:
        return "not protected"
    if constraints.require_public and not entry.is_public:
        return f"visibility {entry.visibility!r}"
    return None


def find_current(
    entries: Iterable[RegistryEntry],
    spec: ImageSpec,
    constraints: MatchConstraints | None = None,
) -> RegistryEntry | None:
    """Return the first non-hidden entry that matches ``spec``.

    First match in listing order wins; later candidates are ignored even if
    they also satisfy every constraint.
    """
    constraints = constraints or MatchConstraints()
    strategy = matching_strategy(spec)
    if strategy is MatchStrategy.PROPERTIES:
        logger.info(
            "Matching %s by properties: %s",
            spec.name,
            ", ".join(f"{key}={spec.properties[key]}" for key in MATCH_PROPERTIES),
        )
    else:
        logger.info("Matching %s by name", spec.name)

    for entry in entries:
        if not _matches(entry, spec, strategy):
            continue
        reason = _rejection(entry, constraints)
        if reason:
            logger.debug("Skipping candidate %s (%s): %s", entry.id, entry.name, reason)
            continue
        return entry

    return None

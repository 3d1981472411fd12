"""Entities package."""

from image_shepherd.entities.images import (
    MATCH_PROPERTIES,
    MONTH_ABBREVIATIONS,
    SOURCE_CONTENT_LENGTH,
    SOURCE_ETAG,
    SOURCE_LAST_MODIFIED,
    SOURCE_URL,
    Compression,
    CreateEntryRequest,
    ImageSpec,
    MatchConstraints,
    RegistryEntry,
    SourceMetadata,
    Visibility,
    format_uploaded_date,
)

__all__ = [
    "Compression",
    "CreateEntryRequest",
    "ImageSpec",
    "MATCH_PROPERTIES",
    "MONTH_ABBREVIATIONS",
    "MatchConstraints",
    "RegistryEntry",
    "SOURCE_CONTENT_LENGTH",
    "SOURCE_ETAG",
    "SOURCE_LAST_MODIFIED",
    "SOURCE_URL",
    "SourceMetadata",
    "Visibility",
    "format_uploaded_date",
]

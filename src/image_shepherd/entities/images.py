"""Domain models for declared images and registry entries."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

# English abbreviations regardless of the process locale
MONTH_ABBREVIATIONS = "Jan Feb Mar Apr May Jun Jul Aug Sep Oct Nov Dec".split()

# Properties the engine records on every published entry
SOURCE_URL = "source_url"
SOURCE_ETAG = "source_etag"
SOURCE_LAST_MODIFIED = "source_last_modified"
SOURCE_CONTENT_LENGTH = "source_content_length"

MATCH_PROPERTIES = ("os_distro", "os_version", "os_type")


def format_uploaded_date(when: datetime) -> str:
    """``05-Mar-2026`` style date used by the `uploaded` property and retired names."""
    return f"{when.day:02d}-{MONTH_ABBREVIATIONS[when.month - 1]}-{when.year:04d}"


class Compression(StrEnum):
    """Compression schemes the normalizer can undo."""

    XZ = "xz"
    GZ = "gz"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class Visibility(StrEnum):
    """Registry entry visibility."""

    PUBLIC = "public"
    PRIVATE = "private"


class ImageSpec(BaseModel):
    """An image declared in the images configuration.

    Immutable for the duration of a run. Property values are always strings;
    YAML scalars such as ``os_version: 22.04`` are coerced.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    public: bool = False
    protected: bool = False
    tags: list[str] = Field(default_factory=list)
    properties: dict[str, str] = Field(default_factory=dict)
    source_format: str = ""
    compression: str = ""

    @field_validator("properties", mode="before")
    @classmethod
    def stringify_properties(cls, v: Any) -> Any:
        """Coerce YAML scalars (numbers, booleans) to strings."""
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(key): "" if val is None else str(val) for key, val in v.items()}
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("source_format", "compression", mode="before")
    @classmethod
    def empty_when_missing(cls, v: Any) -> Any:
        return "" if v is None else v

    def with_defaults(self, now: datetime | None = None) -> ImageSpec:
        """Return a copy with default properties injected.

        Present keys are never overwritten.
        """
        now = now or datetime.now()
        defaults = {
            "architecture": "x86_64",
            "hypervisor_type": "qemu",
            "vm_mode": "hvm",
            "uploaded": format_uploaded_date(now),
            "image_family": self.name,
        }
        properties = dict(self.properties)
        for key, value in defaults.items():
            properties.setdefault(key, value)
        return self.model_copy(update={"properties": properties})

    @property
    def visibility(self) -> Visibility:
        return Visibility.PUBLIC if self.public else Visibility.PRIVATE


class SourceMetadata(BaseModel):
    """Change indicators reported by the upstream server.

    Empty strings and a zero length mean the server did not report them.
    """

    model_config = ConfigDict(frozen=True)

    etag: str = ""
    last_modified: str = ""
    content_length: int = Field(default=0, ge=0)


class RegistryEntry(BaseModel):
    """An image record in the registry."""

    id: str
    name: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)
    owner: str = ""
    visibility: str = Visibility.PRIVATE.value
    protected: bool = False
    hidden: bool = False
    created_at: datetime | None = None
    container_format: str | None = None
    disk_format: str | None = None
    tags: list[str] = Field(default_factory=list)

    # Keys of a Glance image document that are not custom properties
    CORE_KEYS: ClassVar[frozenset[str]] = frozenset({
        "id", "name", "owner", "visibility", "protected", "os_hidden",
        "created_at", "updated_at", "container_format", "disk_format", "tags",
        "status", "checksum", "os_hash_algo", "os_hash_value", "size",
        "virtual_size", "min_disk", "min_ram", "self", "file", "schema",
        "locations", "direct_url", "stores",
    })

    def get_property(self, key: str) -> str:
        """Return a string property, or "" when absent or not a string."""
        value = self.properties.get(key)
        return value if isinstance(value, str) else ""

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    @classmethod
    def from_glance(cls, payload: dict[str, Any]) -> RegistryEntry:
        """Build an entry from a Glance v2 image document."""
        return cls(
            id=payload["id"],
            name=payload.get("name") or "",
            owner=payload.get("owner") or "",
            visibility=payload.get("visibility") or Visibility.PRIVATE.value,
            protected=bool(payload.get("protected", False)),
            hidden=bool(payload.get("os_hidden", False)),
            created_at=payload.get("created_at"),
            container_format=payload.get("container_format"),
            disk_format=payload.get("disk_format"),
            tags=payload.get("tags") or [],
            properties={k: v for k, v in payload.items() if k not in cls.CORE_KEYS},
        )


class MatchConstraints(BaseModel):
    """Ownership, protection and visibility requirements for the current entry."""

    model_config = ConfigDict(frozen=True)

    owner: str = ""
    require_protected: bool = False
    require_public: bool = False

    @property
    def active(self) -> bool:
        return bool(self.owner) or self.require_protected or self.require_public


class CreateEntryRequest(BaseModel):
    """Options for creating a new registry entry.

    The registry only ever stores the normalized raw form.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    tags: list[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PRIVATE
    protected: bool = False
    container_format: str = "bare"
    disk_format: str = "raw"
    properties: dict[str, str] = Field(default_factory=dict)

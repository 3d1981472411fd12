"""Failure taxonomy for the synchronization engine.

Every error carries the phase it was raised in so the orchestrator can
report it without knowing the concrete type. Only RegistryListError is
fatal for a whole run; everything else is contained to one image spec.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for engine failures."""

    phase = "sync"

    def __init__(
        self,
        message: str,
        *,
        image: str | None = None,
        attempts: int | None = None,
    ) -> None:
        super().__init__(message)
        self.image = image
        self.attempts = attempts


class RegistryListError(SyncError):
    """Existing registry entries could not be listed."""

    phase = "list"


class ProbeError(SyncError):
    """Source metadata could not be retrieved. Non-fatal."""

    phase = "probe"


class FetchError(SyncError):
    """The source could not be downloaded after all attempts."""

    phase = "fetch"


class NormalizeError(SyncError):
    """The fetched artifact could not be turned into a raw image."""

    phase = "normalize"


class FormatDetectionError(NormalizeError):
    """The image format could not be determined."""


class ConversionError(NormalizeError):
    """Decompression or format conversion failed."""


class PublishError(SyncError):
    """The registry entry could not be created."""

    phase = "publish"


class UploadError(SyncError):
    """Image data could not be uploaded to a created entry."""

    phase = "upload"

    def __init__(
        self,
        message: str,
        *,
        entry_id: str,
        image: str | None = None,
        attempts: int | None = None,
    ) -> None:
        super().__init__(message, image=image, attempts=attempts)
        self.entry_id = entry_id


class RolloverError(SyncError):
    """The previous entry could not be renamed and hidden. Non-fatal."""

    phase = "rollover"

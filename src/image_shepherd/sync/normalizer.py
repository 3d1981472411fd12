"""Turn a fetched artifact into a raw disk image."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from image_shepherd.entities.images import Compression
from image_shepherd.sync.image_tools import ImageTools

logger = logging.getLogger(__name__)

RAW_FORMAT = "raw"

_DECLARED: dict[str, Compression] = {
    "xz": Compression.XZ,
    "gz": Compression.GZ,
    "gzip": Compression.GZ,
}

_BY_EXTENSION: dict[str, Compression] = {kind.extension: kind for kind in Compression}


def resolve_compression(declared: str, filename: Path | str) -> Compression | None:
    """Decide which decompressor to run, if any.

    A declared ``xz``/``gz``/``gzip`` wins. ``none``, empty and unknown
    values fall back to the file extension; unknown values are logged.
    """
    value = declared.strip().lower()
    if value in _DECLARED:
        return _DECLARED[value]
    if value not in ("", "none"):
        logger.warning("Unknown compression value %r; inferring from extension", value)
    return _BY_EXTENSION.get(Path(filename).suffix.lower())


@dataclass(frozen=True)
class NormalizedImage:
    """Result of normalization."""

    path: Path
    source_format: str
    decompressed: bool = False
    converted: bool = False


class Normalizer:
    """Decompresses and converts fetched images using an ImageTools backend."""

    def __init__(self, tools: ImageTools) -> None:
        self._tools = tools

    def normalize(
        self,
        path: Path,
        *,
        compression: str = "",
        source_format: str = "",
    ) -> NormalizedImage:
        """Return a raw image for ``path``.

        Raises:
            FormatDetectionError: If no format is declared and none is detected.
            ConversionError: If decompression or conversion fails.
        """
        source = path
        decompressed = False
        kind = resolve_compression(compression, path)
        if kind is not None:
            source = self._tools.decompress(kind, path)
            decompressed = True

        fmt = source_format.strip().lower()
        if fmt:
            logger.info("Using declared source format %s for %s", fmt, source)
        else:
            fmt = self._tools.inspect_format(source)
            logger.info("Detected source format %s for %s", fmt, source)

        if fmt == RAW_FORMAT:
            logger.info("%s is already raw; skipping conversion", source)
            return NormalizedImage(path=source, source_format=fmt, decompressed=decompressed)

        raw = self._tools.convert(source, fmt, RAW_FORMAT)
        return NormalizedImage(
            path=raw,
            source_format=fmt,
            decompressed=decompressed,
            converted=True,
        )

"""Decompression, inspection and conversion of disk images.

The engine only talks to the ImageTools protocol. QemuImageTools shells out
to ``xz``, ``gzip`` and ``qemu-img``.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from image_shepherd.entities.images import Compression
from image_shepherd.sync.errors import ConversionError, FormatDetectionError

logger = logging.getLogger(__name__)

_DECOMPRESSORS: dict[Compression, str] = {
    Compression.XZ: "xz",
    Compression.GZ: "gzip",
}

FORMAT_PREFIX = "file format:"


@runtime_checkable
class ImageTools(Protocol):
    """Capability interface for image file manipulation."""

    def decompress(self, kind: Compression, source: Path) -> Path: ...

    def inspect_format(self, path: Path) -> str: ...

    def convert(self, path: Path, from_format: str, to_format: str = "raw") -> Path: ...


def decompressed_path(source: Path) -> Path:
    """Sibling path without the last extension (``a.img.xz`` -> ``a.img``)."""
    return source.with_suffix("") if source.suffix else source.with_name(f"{source.name}.out")


def parse_file_format(report: str) -> str:
    """Return the format from the first ``file format:`` line, or ""."""
    for line in report.splitlines():
        line = line.strip()
        if line.startswith(FORMAT_PREFIX):
            fields = line[len(FORMAT_PREFIX):].split()
            return fields[0].lower() if fields else ""
    return ""


class QemuImageTools:
    """ImageTools backed by external command-line utilities."""

    def __init__(self, timeout: float | None = 3600.0, qemu_img: str = "qemu-img") -> None:
        self._timeout = timeout
        self._qemu_img = qemu_img

    def decompress(self, kind: Compression, source: Path) -> Path:
        """Run ``<tool> -dc source`` writing to the sibling without the extension."""
        tool = _DECOMPRESSORS[kind]
        output = decompressed_path(source)
        logger.info("Decompressing %s image %s to %s", kind, source, output)
        try:
            with output.open("wb") as out:
                result = subprocess.run(
                    [tool, "-dc", str(source)],
                    stdout=out,
                    stderr=subprocess.PIPE,
                    timeout=self._timeout,
                    check=False,
                )
        except (OSError, subprocess.TimeoutExpired) as e:
            msg = f"{tool} failed on {source}: {e}"
            raise ConversionError(msg) from e

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace").strip()
            msg = f"{tool} exited with status {result.returncode} on {source}: {stderr}"
            raise ConversionError(msg)

        logger.info("Decompression complete: %s -> %s", source, output)
        return output

    def inspect_format(self, path: Path) -> str:
        """Ask ``qemu-img info`` for the file format.

        Raises:
            FormatDetectionError: If the tool fails or reports no format.
        """
        try:
            result = subprocess.run(
                [self._qemu_img, "info", str(path)],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            msg = f"{self._qemu_img} info failed on {path}: {e}"
            raise FormatDetectionError(msg) from e

        if result.returncode != 0:
            msg = (
                f"{self._qemu_img} info exited with status {result.returncode} "
                f"on {path}: {result.stderr.strip()}"
            )
            raise FormatDetectionError(msg)

        fmt = parse_file_format(result.stdout)
        if not fmt:
            msg = f"Unable to detect image format for {path}"
            raise FormatDetectionError(msg)
        return fmt

    def convert(self, path: Path, from_format: str, to_format: str = "raw") -> Path:
        """Convert ``path`` into ``<path>.<to_format>``."""
        output = path.with_name(f"{path.name}.{to_format}")
        logger.info("Converting %s from %s to %s (%s)", path, from_format, to_format, output)
        try:
            result = subprocess.run(
                [
                    self._qemu_img,
                    "convert",
                    "-f",
                    from_format,
                    "-O",
                    to_format,
                    str(path),
                    str(output),
                ],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            msg = f"{self._qemu_img} convert failed on {path}: {e}"
            raise ConversionError(msg) from e

        if result.returncode != 0:
            msg = (
                f"{self._qemu_img} convert exited with status {result.returncode} "
                f"on {path}: {result.stderr.strip()}"
            )
            raise ConversionError(msg)

        logger.info("Conversion complete: %s", output)
        return output

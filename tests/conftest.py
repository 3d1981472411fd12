"""Shared test fixtures for image-shepherd."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest

from image_shepherd.entities.images import (
    Compression,
    CreateEntryRequest,
    ImageSpec,
    RegistryEntry,
)
from image_shepherd.sync.image_tools import decompressed_path

CREATED_AT = datetime(2026, 3, 5, 12, 0, tzinfo=UTC)


class FakeRegistry:
    """In-memory RegistryClient recording every call."""

    def __init__(self, entries: list[RegistryEntry] | None = None) -> None:
        self.listing: list[RegistryEntry] = list(entries or [])
        self.entries: dict[str, RegistryEntry] = {e.id: e for e in self.listing}
        self.created: list[CreateEntryRequest] = []
        self.uploads: list[tuple[str, bytes, float | None]] = []
        self.upload_attempts = 0
        self.updates: list[tuple[str, str | None, bool | None]] = []
        self.upload_errors: list[Exception] = []
        self.list_error: Exception | None = None
        self.create_error: Exception | None = None
        self.update_error: Exception | None = None

    def add(self, *entries: RegistryEntry) -> None:
        for entry in entries:
            self.listing.append(entry)
            self.entries[entry.id] = entry

    def list_entries(self) -> list[RegistryEntry]:
        if self.list_error:
            raise self.list_error
        return list(self.listing)

    def create_entry(self, request: CreateEntryRequest) -> RegistryEntry:
        if self.create_error:
            raise self.create_error
        self.created.append(request)
        entry = RegistryEntry(
            id=f"new-{len(self.created)}",
            name=request.name,
            properties=dict(request.properties),
            visibility=str(request.visibility),
            protected=request.protected,
            container_format=request.container_format,
            disk_format=request.disk_format,
            tags=list(request.tags),
            created_at=CREATED_AT,
        )
        self.entries[entry.id] = entry
        return entry

    def upload_data(
        self, entry_id: str, data: Iterable[bytes], *, timeout: float | None = None
    ) -> None:
        self.upload_attempts += 1
        if self.upload_errors:
            raise self.upload_errors.pop(0)
        self.uploads.append((entry_id, b"".join(data), timeout))

    def update_entry(
        self, entry_id: str, *, name: str | None = None, hidden: bool | None = None
    ) -> RegistryEntry:
        if self.update_error:
            raise self.update_error
        self.updates.append((entry_id, name, hidden))
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = name
        if hidden is not None:
            changes["hidden"] = hidden
        updated = self.entries[entry_id].model_copy(update=changes)
        self.entries[entry_id] = updated
        return updated

    def get_entry(self, entry_id: str) -> RegistryEntry:
        return self.entries[entry_id]


class FakeImageTools:
    """ImageTools that rewrites file contents instead of running binaries.

    Decompression strips a ``<kind>:`` prefix; conversion prepends ``raw:``.
    """

    def __init__(self, detected_format: str = "raw") -> None:
        self.detected_format = detected_format
        self.calls: list[tuple[str, ...]] = []
        self.decompress_error: Exception | None = None

    def decompress(self, kind: Compression, source: Path) -> Path:
        self.calls.append(("decompress", str(kind), source.name))
        if self.decompress_error:
            raise self.decompress_error
        output = decompressed_path(source)
        output.write_bytes(source.read_bytes().removeprefix(f"{kind}:".encode()))
        return output

    def inspect_format(self, path: Path) -> str:
        self.calls.append(("inspect", path.name))
        return self.detected_format

    def convert(self, path: Path, from_format: str, to_format: str = "raw") -> Path:
        self.calls.append(("convert", path.name, from_format, to_format))
        output = path.with_name(f"{path.name}.{to_format}")
        output.write_bytes(b"raw:" + path.read_bytes())
        return output


class SourceServer:
    """Upstream image server for httpx.MockTransport."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, dict[str, str]]] = {}
        self.requests: list[httpx.Request] = []
        self.failures: dict[str, list[int]] = {}

    def add(self, path: str, body: bytes, **headers: str) -> None:
        self.files[path] = (body, {k.replace("_", "-"): v for k, v in headers.items()})

    def fail(self, path: str, *statuses: int) -> None:
        """Answer GET requests for ``path`` with these statuses first."""
        self.failures[path] = list(statuses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path not in self.files:
            return httpx.Response(404)
        body, headers = self.files[request.url.path]
        if request.method == "HEAD":
            return httpx.Response(200, headers={**headers, "Content-Length": str(len(body))})
        pending = self.failures.get(request.url.path)
        if pending:
            return httpx.Response(pending.pop(0))
        return httpx.Response(200, content=body, headers=headers)

    def methods(self) -> list[str]:
        return [r.method for r in self.requests]

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class StepClock:
    """Monotonic clock advancing a fixed step per reading."""

    def __init__(self, step: float = 0.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def fake_registry() -> FakeRegistry:
    """Empty in-memory registry."""
    return FakeRegistry()


@pytest.fixture
def fake_tools() -> FakeImageTools:
    """Image tools that report every file as raw."""
    return FakeImageTools()


@pytest.fixture
def source_server() -> SourceServer:
    """Mock upstream server with no files."""
    return SourceServer()


@pytest.fixture
def make_entry() -> Callable[..., RegistryEntry]:
    """Factory for registry entries with sensible defaults."""

    def _make(id: str = "old-1", name: str = "ubuntu-22", **kwargs: Any) -> RegistryEntry:
        kwargs.setdefault("visibility", "public")
        kwargs.setdefault("created_at", CREATED_AT)
        return RegistryEntry(id=id, name=name, **kwargs)

    return _make


@pytest.fixture
def ubuntu_spec() -> ImageSpec:
    """Spec matched by os_distro/os_version/os_type."""
    return ImageSpec(
        name="ubuntu-22",
        url="http://x/u.img",
        properties={"os_distro": "ubuntu", "os_version": "22.04", "os_type": "linux"},
    )


@pytest.fixture
def ubuntu_properties() -> dict[str, str]:
    return {"os_distro": "ubuntu", "os_version": "22.04", "os_type": "linux"}


@pytest.fixture
def no_sleep() -> list[float]:
    """Collects requested backoff delays instead of sleeping."""
    return []

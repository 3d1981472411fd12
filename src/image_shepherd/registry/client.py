"""Registry client protocol and OpenStack Image (Glance) v2 implementation."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

import httpx

from image_shepherd.entities.images import CreateEntryRequest, RegistryEntry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from types import TracebackType

logger = logging.getLogger(__name__)

JSON_PATCH = "application/openstack-images-v2.1-json-patch"


@runtime_checkable
class RegistryClient(Protocol):
    """Operations the engine needs from an image registry."""

    def list_entries(self) -> list[RegistryEntry]: ...

    def create_entry(self, request: CreateEntryRequest) -> RegistryEntry: ...

    def upload_data(
        self, entry_id: str, data: BinaryIO | Iterable[bytes], *, timeout: float | None = None
    ) -> None: ...

    def update_entry(
        self, entry_id: str, *, name: str | None = None, hidden: bool | None = None
    ) -> RegistryEntry: ...

    def get_entry(self, entry_id: str) -> RegistryEntry: ...


class GlanceClient:
    """Glance v2 REST client.

    HTTP failures surface unchanged as httpx exceptions. ``timeout`` is the
    default for every call; ``upload_data`` accepts its own.
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        *,
        timeout: float = 60.0,
        page_size: int = 100,
        client: httpx.Client | None = None,
    ) -> None:
        base = endpoint.rstrip("/")
        if base.endswith("/v2"):
            base = base[: -len("/v2")]
        self._base = base
        self._page_size = page_size
        self._headers = {"X-Auth-Token": token, "Accept": "application/json"}
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def endpoint(self) -> str:
        return self._base

    def _url(self, path: str) -> str:
        return f"{self._base}{path}"

    def list_entries(self) -> list[RegistryEntry]:
        """List every image visible to the caller, following pagination."""
        entries: list[RegistryEntry] = []
        url = self._url("/v2/images")
        params: dict[str, Any] | None = {"limit": self._page_size}
        while url:
            response = self._client.get(url, params=params, headers=self._headers)
            response.raise_for_status()
            data = response.json()
            entries.extend(RegistryEntry.from_glance(item) for item in data.get("images", []))
            next_link = data.get("next")
            url = self._url(next_link) if next_link else ""
            params = None
        logger.debug("Listed %d images from %s", len(entries), self._base)
        return entries

    def create_entry(self, request: CreateEntryRequest) -> RegistryEntry:
        body: dict[str, Any] = dict(request.properties)
        body.update(
            name=request.name,
            tags=list(request.tags),
            visibility=str(request.visibility),
            protected=request.protected,
            container_format=request.container_format,
            disk_format=request.disk_format,
        )
        response = self._client.post(self._url("/v2/images"), json=body, headers=self._headers)
        response.raise_for_status()
        return RegistryEntry.from_glance(response.json())

    def upload_data(
        self,
        entry_id: str,
        data: BinaryIO | Iterable[bytes],
        *,
        timeout: float | None = None,
    ) -> None:
        headers = {**self._headers, "Content-Type": "application/octet-stream"}
        response = self._client.put(
            self._url(f"/v2/images/{entry_id}/file"),
            content=data,
            headers=headers,
            timeout=httpx.USE_CLIENT_DEFAULT if timeout is None else timeout,
        )
        response.raise_for_status()

    def update_entry(
        self, entry_id: str, *, name: str | None = None, hidden: bool | None = None
    ) -> RegistryEntry:
        """Apply name and hidden changes in a single JSON-patch request."""
        ops: list[dict[str, Any]] = []
        if name is not None:
            ops.append({"op": "replace", "path": "/name", "value": name})
        if hidden is not None:
            ops.append({"op": "replace", "path": "/os_hidden", "value": hidden})
        if not ops:
            return self.get_entry(entry_id)

        headers = {**self._headers, "Content-Type": JSON_PATCH}
        response = self._client.patch(
            self._url(f"/v2/images/{entry_id}"),
            content=json.dumps(ops),
            headers=headers,
        )
        response.raise_for_status()
        return RegistryEntry.from_glance(response.json())

    def get_entry(self, entry_id: str) -> RegistryEntry:
        response = self._client.get(self._url(f"/v2/images/{entry_id}"), headers=self._headers)
        response.raise_for_status()
        return RegistryEntry.from_glance(response.json())

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GlanceClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

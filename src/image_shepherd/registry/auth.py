"""Authenticate against Keystone using a clouds.yaml entry."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
import yaml
from pydantic import BaseModel, Field, ValidationError

from image_shepherd.registry.client import GlanceClient

logger = logging.getLogger(__name__)

APPLICATION_CREDENTIAL = "v3applicationcredential"


class RegistryAuthError(Exception):
    """The registry client could not be constructed."""


class CloudConfig(BaseModel):
    """One entry under ``clouds:`` in clouds.yaml."""

    name: str
    auth: dict[str, Any] = Field(default_factory=dict)
    auth_type: str = "password"
    region_name: str = ""
    interface: str = "public"
    image_endpoint_override: str = ""
    verify: bool = True
    cacert: str | None = None

    @property
    def tls_verify(self) -> bool | str:
        if self.cacert:
            return self.cacert
        return self.verify


def clouds_yaml_candidates(env: Mapping[str, str] | None = None) -> list[Path]:
    """Locations searched for clouds.yaml, in priority order."""
    env = os.environ if env is None else env
    candidates: list[Path] = []
    if env.get("OS_CLIENT_CONFIG_FILE"):
        candidates.append(Path(env["OS_CLIENT_CONFIG_FILE"]))
    candidates.extend([
        Path.cwd() / "clouds.yaml",
        Path.home() / ".config" / "openstack" / "clouds.yaml",
        Path("/etc/openstack/clouds.yaml"),
    ])
    return candidates


def load_cloud(name: str, path: Path | None = None) -> CloudConfig:
    """Load the named cloud from ``path`` or the first clouds.yaml found."""
    if path is None:
        path = next((p for p in clouds_yaml_candidates() if p.is_file()), None)
        if path is None:
            msg = "No clouds.yaml found (set OS_CLIENT_CONFIG_FILE or create ./clouds.yaml)"
            raise RegistryAuthError(msg)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        msg = f"Failed to read {path}: {e}"
        raise RegistryAuthError(msg) from e

    clouds = data.get("clouds") if isinstance(data, dict) else None
    if not isinstance(clouds, dict) or name not in clouds:
        msg = f"Cloud {name!r} not found in {path}"
        raise RegistryAuthError(msg)

    try:
        return CloudConfig(name=name, **(clouds[name] or {}))
    except (TypeError, ValidationError) as e:
        msg = f"Invalid configuration for cloud {name!r} in {path}: {e}"
        raise RegistryAuthError(msg) from e


def _identity_url(auth_url: str) -> str:
    base = auth_url.rstrip("/")
    if not base.endswith("/v3"):
        base = f"{base}/v3"
    return f"{base}/auth/tokens"


def _domain(auth: dict[str, Any], prefix: str) -> dict[str, str]:
    if auth.get(f"{prefix}_domain_id"):
        return {"id": auth[f"{prefix}_domain_id"]}
    return {"name": auth.get(f"{prefix}_domain_name") or auth.get("domain_name") or "Default"}


def build_auth_request(cloud: CloudConfig) -> dict[str, Any]:
    """Keystone v3 token request body for the cloud's auth type."""
    auth = cloud.auth
    if cloud.auth_type == APPLICATION_CREDENTIAL:
        credential: dict[str, Any] = {"secret": auth.get("application_credential_secret", "")}
        if auth.get("application_credential_id"):
            credential["id"] = auth["application_credential_id"]
        else:
            credential["name"] = auth.get("application_credential_name", "")
            credential["user"] = {"name": auth.get("username", ""), "domain": _domain(auth, "user")}
        return {
            "auth": {
                "identity": {
                    "methods": ["application_credential"],
                    "application_credential": credential,
                }
            }
        }

    if cloud.auth_type != "password":
        msg = f"Unsupported auth_type {cloud.auth_type!r} for cloud {cloud.name!r}"
        raise RegistryAuthError(msg)

    user: dict[str, Any] = {"password": auth.get("password", "")}
    if auth.get("user_id"):
        user["id"] = auth["user_id"]
    else:
        user["name"] = auth.get("username", "")
        user["domain"] = _domain(auth, "user")

    body: dict[str, Any] = {
        "auth": {"identity": {"methods": ["password"], "password": {"user": user}}}
    }
    if auth.get("project_id"):
        body["auth"]["scope"] = {"project": {"id": auth["project_id"]}}
    elif auth.get("project_name"):
        body["auth"]["scope"] = {
            "project": {"name": auth["project_name"], "domain": _domain(auth, "project")}
        }
    return body


def select_endpoint(
    catalog: list[dict[str, Any]],
    *,
    service_type: str = "image",
    interface: str = "public",
    region: str = "",
) -> str:
    """Pick the endpoint URL for a service from a Keystone catalog."""
    for service in catalog:
        if service.get("type") != service_type:
            continue
        for endpoint in service.get("endpoints", []):
            if endpoint.get("interface") != interface:
                continue
            if region and region not in (endpoint.get("region"), endpoint.get("region_id")):
                continue
            return str(endpoint["url"])

    msg = f"No {interface} {service_type} endpoint in catalog" + (
        f" for region {region}" if region else ""
    )
    raise RegistryAuthError(msg)


def connect(
    cloud_name: str,
    *,
    timeout: float = 60.0,
    path: Path | None = None,
    client: httpx.Client | None = None,
) -> GlanceClient:
    """Authenticate with the named cloud and return an image registry client."""
    cloud = load_cloud(cloud_name, path)
    logger.info("Initializing OpenStack image client for cloud %s", cloud_name)

    auth_url = cloud.auth.get("auth_url")
    if not auth_url:
        msg = f"Cloud {cloud_name!r} has no auth_url"
        raise RegistryAuthError(msg)

    http = client or httpx.Client(timeout=timeout, verify=cloud.tls_verify)
    try:
        token, endpoint = _authenticate(http, cloud, auth_url)
    except RegistryAuthError:
        if client is None:
            http.close()
        raise
    logger.info("OpenStack image client initialized (endpoint %s, timeout %ss)", endpoint, timeout)
    return GlanceClient(endpoint, token, timeout=timeout, client=http)


def _authenticate(http: httpx.Client, cloud: CloudConfig, auth_url: str) -> tuple[str, str]:
    """Request a token and return it with the image endpoint to use."""
    try:
        response = http.post(_identity_url(auth_url), json=build_auth_request(cloud))
        response.raise_for_status()
    except httpx.HTTPError as e:
        msg = f"Keystone authentication for cloud {cloud.name!r} failed: {e}"
        raise RegistryAuthError(msg) from e

    token = response.headers.get("X-Subject-Token", "")
    if not token:
        msg = f"Keystone returned no token for cloud {cloud.name!r}"
        raise RegistryAuthError(msg)
    if cloud.image_endpoint_override:
        return token, cloud.image_endpoint_override

    try:
        body = response.json()
    except ValueError as e:
        msg = f"Keystone returned an unreadable token body for cloud {cloud.name!r}: {e}"
        raise RegistryAuthError(msg) from e
    token_info = body.get("token") if isinstance(body, dict) else None
    if not isinstance(token_info, dict):
        msg = f"Keystone returned no token details for cloud {cloud.name!r}"
        raise RegistryAuthError(msg)
    endpoint = select_endpoint(
        token_info.get("catalog", []),
        interface=cloud.interface,
        region=cloud.region_name,
    )
    return token, endpoint

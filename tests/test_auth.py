"""Tests for clouds.yaml lookup and Keystone authentication."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from image_shepherd.registry.auth import (
    CloudConfig,
    RegistryAuthError,
    build_auth_request,
    clouds_yaml_candidates,
    connect,
    load_cloud,
    select_endpoint,
)

CLOUDS_YAML = """\
clouds:
  openstack:
    auth:
      auth_url: https://keystone.example:5000
      username: shepherd
      password: s3cret
      project_name: images
      user_domain_name: Default
      project_domain_name: Default
    region_name: RegionOne
  appcred:
    auth_type: v3applicationcredential
    auth:
      auth_url: https://keystone.example:5000/v3/
      application_credential_id: ac-1
      application_credential_secret: shh
    image_endpoint_override: https://glance.internal:9292
"""

CATALOG = [
    {
        "type": "compute",
        "endpoints": [{"interface": "public", "region": "RegionOne", "url": "https://nova"}],
    },
    {
        "type": "image",
        "endpoints": [
            {"interface": "internal", "region": "RegionOne", "url": "https://glance-int"},
            {"interface": "public", "region": "RegionTwo", "url": "https://glance-two"},
            {"interface": "public", "region": "RegionOne", "url": "https://glance-one"},
        ],
    },
]


@pytest.fixture
def clouds_file(tmp_path: Path) -> Path:
    path = tmp_path / "clouds.yaml"
    path.write_text(CLOUDS_YAML)
    return path


class KeystoneStub:
    def __init__(
        self, token: str = "tok-123", status: int = 201, body: bytes | None = None
    ) -> None:
        self.token = token
        self.status = status
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        headers = {"X-Subject-Token": self.token} if self.token else {}
        if self.body is not None:
            return httpx.Response(self.status, headers=headers, content=self.body)
        return httpx.Response(self.status, headers=headers, json={"token": {"catalog": CATALOG}})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


class TestCloudsYaml:
    def test_candidates_order(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        candidates = clouds_yaml_candidates({"OS_CLIENT_CONFIG_FILE": "/custom/clouds.yaml"})
        assert candidates[0] == Path("/custom/clouds.yaml")
        assert candidates[1] == Path.cwd() / "clouds.yaml"
        assert candidates[-1] == Path("/etc/openstack/clouds.yaml")

    def test_candidates_without_env(self) -> None:
        assert len(clouds_yaml_candidates({})) == 3

    def test_load_named_cloud(self, clouds_file: Path) -> None:
        cloud = load_cloud("openstack", clouds_file)
        assert cloud.auth["username"] == "shepherd"
        assert cloud.region_name == "RegionOne"
        assert cloud.auth_type == "password"
        assert cloud.tls_verify is True

    def test_found_via_environment(
        self, clouds_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("OS_CLIENT_CONFIG_FILE", str(clouds_file))
        assert load_cloud("appcred").image_endpoint_override == "https://glance.internal:9292"

    def test_unknown_cloud(self, clouds_file: Path) -> None:
        with pytest.raises(RegistryAuthError, match="'nope' not found"):
            load_cloud("nope", clouds_file)

    def test_unreadable_file(self, tmp_path: Path) -> None:
        with pytest.raises(RegistryAuthError, match="Failed to read"):
            load_cloud("openstack", tmp_path / "missing.yaml")

    def test_cacert_used_for_verification(self) -> None:
        cloud = CloudConfig(name="c", cacert="/etc/ssl/ca.pem")
        assert cloud.tls_verify == "/etc/ssl/ca.pem"


class TestBuildAuthRequest:
    def test_password_with_project_scope(self, clouds_file: Path) -> None:
        body = build_auth_request(load_cloud("openstack", clouds_file))
        identity = body["auth"]["identity"]
        assert identity["methods"] == ["password"]
        assert identity["password"]["user"] == {
            "password": "s3cret",
            "name": "shepherd",
            "domain": {"name": "Default"},
        }
        assert body["auth"]["scope"] == {
            "project": {"name": "images", "domain": {"name": "Default"}}
        }

    def test_password_with_ids(self) -> None:
        cloud = CloudConfig(
            name="c", auth={"user_id": "u-1", "password": "p", "project_id": "p-1"}
        )
        body = build_auth_request(cloud)
        assert body["auth"]["identity"]["password"]["user"] == {"password": "p", "id": "u-1"}
        assert body["auth"]["scope"] == {"project": {"id": "p-1"}}

    def test_application_credential(self, clouds_file: Path) -> None:
        body = build_auth_request(load_cloud("appcred", clouds_file))
        identity = body["auth"]["identity"]
        assert identity["methods"] == ["application_credential"]
        assert identity["application_credential"] == {"secret": "shh", "id": "ac-1"}
        assert "scope" not in body["auth"]

    def test_unsupported_auth_type(self) -> None:
        with pytest.raises(RegistryAuthError, match="Unsupported auth_type"):
            build_auth_request(CloudConfig(name="c", auth_type="token"))


class TestSelectEndpoint:
    def test_interface_and_region(self) -> None:
        assert select_endpoint(CATALOG, region="RegionOne") == "https://glance-one"
        assert select_endpoint(CATALOG, interface="internal") == "https://glance-int"

    def test_first_public_without_region(self) -> None:
        assert select_endpoint(CATALOG) == "https://glance-two"

    def test_missing_service(self) -> None:
        with pytest.raises(RegistryAuthError, match="No public image endpoint"):
            select_endpoint(CATALOG, region="RegionThree")


class TestConnect:
    def test_password_login(self, clouds_file: Path) -> None:
        keystone = KeystoneStub()
        glance = connect("openstack", path=clouds_file, client=keystone.client())

        request = keystone.requests[0]
        assert str(request.url) == "https://keystone.example:5000/v3/auth/tokens"
        assert json.loads(request.content)["auth"]["identity"]["methods"] == ["password"]
        assert glance.endpoint == "https://glance-one"

    def test_endpoint_override(self, clouds_file: Path) -> None:
        keystone = KeystoneStub()
        glance = connect("appcred", path=clouds_file, client=keystone.client())
        assert str(keystone.requests[0].url) == "https://keystone.example:5000/v3/auth/tokens"
        assert glance.endpoint == "https://glance.internal:9292"

    def test_rejected_credentials(self, clouds_file: Path) -> None:
        keystone = KeystoneStub(status=401)
        with pytest.raises(RegistryAuthError, match="authentication .* failed"):
            connect("openstack", path=clouds_file, client=keystone.client())

    def test_missing_token(self, clouds_file: Path) -> None:
        keystone = KeystoneStub(token="")
        with pytest.raises(RegistryAuthError, match="no token"):
            connect("openstack", path=clouds_file, client=keystone.client())

    @pytest.mark.parametrize("body", [b"<html>gateway</html>", b"[]", b'{"token": null}'])
    def test_unreadable_token_body(self, clouds_file: Path, body: bytes) -> None:
        keystone = KeystoneStub(body=body)
        with pytest.raises(RegistryAuthError, match="Keystone returned"):
            connect("openstack", path=clouds_file, client=keystone.client())

    def test_override_skips_catalog(self, clouds_file: Path) -> None:
        keystone = KeystoneStub(body=b"not json")
        glance = connect("appcred", path=clouds_file, client=keystone.client())
        assert glance.endpoint == "https://glance.internal:9292"

    def test_own_client_closed_on_failure(
        self, clouds_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        keystone = KeystoneStub(status=401)
        created: list[httpx.Client] = []
        real_client = httpx.Client

        def make_client(**kwargs: object) -> httpx.Client:
            client = real_client(transport=httpx.MockTransport(keystone))
            created.append(client)
            return client

        monkeypatch.setattr(httpx, "Client", make_client)
        with pytest.raises(RegistryAuthError):
            connect("openstack", path=clouds_file)
        assert created[0].is_closed

    def test_given_client_left_open(self, clouds_file: Path) -> None:
        client = KeystoneStub(status=401).client()
        with pytest.raises(RegistryAuthError):
            connect("openstack", path=clouds_file, client=client)
        assert not client.is_closed

"""HTTP tests for the OAuth endpoints served by create_app."""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import replace

import pytest
from starlette.testclient import TestClient

from tokengate.observability import get_metrics
from tokengate.services import OAuthServices, build_services
from tokengate.storage import TokenStore
from tokengate.transport.server import create_app

from tests.factories import (
    CLIENT_ID,
    CLIENT_SECRET,
    TEST_RATE_LIMIT,
    FakeClock,
    basic_auth,
    make_client,
    make_settings,
)

AUTH = basic_auth()


def _app_client(services: OAuthServices, **kwargs: bool) -> TestClient:
    app = create_app(
        services=services, rate_limit=TEST_RATE_LIMIT, introspect_rate_limit=TEST_RATE_LIMIT
    )
    return TestClient(app, **kwargs)


def _demo_issue(client: TestClient, username: str = "alice", scope: str = "read write") -> dict:
    response = client.post(
        "/oauth/demo/issue", data={"username": username, "scope": scope}, auth=AUTH
    )
    assert response.status_code == 200, response.text
    return response.json()


def _introspect(client: TestClient, token: str) -> dict:
    response = client.post("/oauth/introspect", data={"token": token}, auth=AUTH)
    assert response.status_code == 200, response.text
    return response.json()


class TestTokenEndpoint:
    def test_client_credentials_defaults_to_read_without_refresh(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token", data={"grant_type": "client_credentials"}, auth=AUTH
        )

        assert response.status_code == 200
        body = response.json()
        assert "refresh_token" not in body
        assert body["scope"] == "read"
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 3600
        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["Pragma"] == "no-cache"

    def test_client_credentials_in_form_body(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token",
            data={
                "grant_type": "client_credentials",
                "client_id": CLIENT_ID,
                "client_secret": CLIENT_SECRET,
                "scope": "write",
            },
        )

        assert response.status_code == 200
        assert response.json()["scope"] == "write"

    def test_json_body(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token", json={"grant_type": "client_credentials"}, auth=AUTH
        )
        assert response.status_code == 200

    def test_json_body_must_be_an_object(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token",
            content=b"[1, 2]",
            headers={"Content-Type": "application/json"},
            auth=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_json_values_must_be_strings(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token",
            json={"grant_type": "client_credentials", "scope": ["read"]},
            auth=AUTH,
        )

        assert response.status_code == 400
        assert response.json() == {
            "error": "invalid_request",
            "error_description": "Parameter scope must be a string",
        }

    def test_scope_outside_client_scopes(self, client: TestClient) -> None:
        response = client.post(
            "/oauth/token", data={"grant_type": "client_credentials", "scope": "admin"}, auth=AUTH
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_scope"

    def test_missing_grant_type(self, client: TestClient) -> None:
        response = client.post("/oauth/token", data={}, auth=AUTH)

        assert response.status_code == 400
        assert response.json() == {
            "error": "invalid_request",
            "error_description": "Missing grant_type parameter",
        }

    def test_unsupported_grant_type(self, client: TestClient) -> None:
        response = client.post("/oauth/token", data={"grant_type": "password"}, auth=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_grant_type"

    @pytest.mark.parametrize(
        "auth,description",
        [
            (None, "Client authentication required"),
            (("someone", "x"), "Invalid client"),
            ((CLIENT_ID, "wrong"), "Invalid client credentials"),
        ],
    )
    def test_client_authentication_failures(
        self, client: TestClient, auth: tuple[str, str] | None, description: str
    ) -> None:
        response = client.post(
            "/oauth/token", data={"grant_type": "client_credentials"}, auth=auth
        )

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_client", "error_description": description}
        assert response.headers["WWW-Authenticate"] == "Basic"

    def test_grant_not_allowed_for_client(self, store: TokenStore, clock: FakeClock) -> None:
        settings = make_settings(clients=(make_client(grant_types=["client_credentials"]),))
        services = build_services(settings, store=store, clock=clock)

        with _app_client(services) as client:
            response = client.post(
                "/oauth/token",
                data={"grant_type": "refresh_token", "refresh_token": "x"},
                auth=("reporting-client", "reporting-secret"),
            )

        assert response.status_code == 400
        assert response.json()["error"] == "unauthorized_client"

    def test_refresh_grant_rotates(self, client: TestClient) -> None:
        issued = _demo_issue(client)

        first = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": issued["refresh_token"]},
            auth=AUTH,
        )
        reused = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": issued["refresh_token"]},
            auth=AUTH,
        )

        assert first.status_code == 200
        assert first.json()["refresh_token"] != issued["refresh_token"]
        assert reused.status_code == 400
        assert reused.json()["error"] == "invalid_grant"

    def test_refresh_grant_requires_token(self, client: TestClient) -> None:
        response = client.post("/oauth/token", data={"grant_type": "refresh_token"}, auth=AUTH)

        assert response.status_code == 400
        assert response.json()["error_description"] == "Missing refresh_token parameter"

    def test_expired_refresh_token(self, client: TestClient, clock: FakeClock) -> None:
        issued = _demo_issue(client)
        clock.advance(604800 + 1)

        response = client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": issued["refresh_token"]},
            auth=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_sixth_token_invalidates_earlier_ones(self, client: TestClient) -> None:
        tokens = [
            client.post(
                "/oauth/token", data={"grant_type": "client_credentials"}, auth=AUTH
            ).json()["access_token"]
            for _ in range(6)
        ]

        for token in tokens[:5]:
            assert _introspect(client, token) == {"active": False}
        assert _introspect(client, tokens[5])["active"] is True

    def test_sixth_token_drops_cached_verdicts(self, client: TestClient) -> None:
        def issue() -> str:
            return client.post(
                "/oauth/token", data={"grant_type": "client_credentials"}, auth=AUTH
            ).json()["access_token"]

        tokens = [issue() for _ in range(5)]
        for token in tokens:
            assert _introspect(client, token)["active"] is True

        newest = issue()

        for token in tokens:
            assert _introspect(client, token) == {"active": False}
        assert _introspect(client, newest)["active"] is True


class TestIntrospectAndRevoke:
    def test_issue_introspect_revoke_scenario(self, client: TestClient) -> None:
        issued = _demo_issue(client, "alice", "read write")

        active = _introspect(client, issued["access_token"])
        assert active["active"] is True
        assert active["username"] == "alice"
        assert active["scope"] == "read write"
        assert active["client_name"] == "Weather API Client"

        revoked = client.post(
            "/oauth/revoke", data={"token": issued["access_token"]}, auth=AUTH
        )
        assert revoked.status_code == 200
        assert revoked.content == b""

        assert _introspect(client, issued["access_token"]) == {"active": False}

    def test_introspection_is_cached(self, client: TestClient) -> None:
        issued = _demo_issue(client)

        first = client.post("/oauth/introspect", data={"token": issued["access_token"]}, auth=AUTH)
        second = client.post("/oauth/introspect", data={"token": issued["access_token"]}, auth=AUTH)

        assert first.content == second.content
        assert get_metrics().get_counter("tokengate_introspection_cache_hits_total") == 1.0

    def test_refresh_token_introspection(self, client: TestClient) -> None:
        issued = _demo_issue(client)

        body = _introspect(client, issued["refresh_token"])

        assert body["active"] is True
        assert body["token_use"] == "refresh"

    def test_introspect_requires_token(self, client: TestClient) -> None:
        response = client.post("/oauth/introspect", data={}, auth=AUTH)

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_introspect_requires_client(self, client: TestClient) -> None:
        response = client.post("/oauth/introspect", data={"token": "x"})

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_revoke_is_idempotent(self, client: TestClient) -> None:
        issued = _demo_issue(client)

        for _ in range(2):
            response = client.post(
                "/oauth/revoke",
                data={"token": issued["refresh_token"], "token_type_hint": "refresh_token"},
                auth=AUTH,
            )
            assert response.status_code == 200

    def test_revoke_unknown_token(self, client: TestClient) -> None:
        response = client.post("/oauth/revoke", data={"token": "never-issued"}, auth=AUTH)
        assert response.status_code == 200

    def test_revoke_requires_client(self, client: TestClient) -> None:
        response = client.post("/oauth/revoke", data={"token": "x"}, auth=(CLIENT_ID, "wrong"))
        assert response.status_code == 401


class TestDemoIssue:
    def test_body(self, client: TestClient) -> None:
        body = _demo_issue(client, "bob", "read")

        assert body["message"] == "Demo tokens issued successfully"
        assert body["user"]["username"] == "bob"
        assert body["user"]["id"]
        assert body["scope"] == "read"
        assert body["refresh_token"]

    def test_default_scope(self, client: TestClient) -> None:
        response = client.post("/oauth/demo/issue", data={"username": "carol"}, auth=AUTH)
        assert response.json()["scope"] == "read write"

    def test_username_required(self, client: TestClient) -> None:
        response = client.post("/oauth/demo/issue", data={}, auth=AUTH)

        assert response.status_code == 400
        assert response.json()["error_description"] == "Missing username parameter"

    def test_disabled(self, store: TokenStore, clock: FakeClock) -> None:
        services = build_services(make_settings(enable_demo_issue=False), store=store, clock=clock)

        with _app_client(services) as client:
            response = client.post("/oauth/demo/issue", data={"username": "x"}, auth=AUTH)

        assert response.status_code == 404


class TestTokenInfo:
    def test_valid_token(self, client: TestClient) -> None:
        issued = _demo_issue(client)

        response = client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {issued['access_token']}"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Token is valid"
        assert body["user"]["username"] == "alice"
        assert body["user"]["scopes"] == ["read", "write"]
        assert "timestamp" in body

    def test_token_without_required_scope(self, client: TestClient) -> None:
        issued = client.post(
            "/oauth/token", data={"grant_type": "client_credentials", "scope": "write"}, auth=AUTH
        ).json()

        response = client.get(
            "/oauth/tokeninfo", headers={"Authorization": f"Bearer {issued['access_token']}"}
        )

        assert response.status_code == 403
        assert response.json()["error"] == "insufficient_scope"

    def test_missing_token(self, client: TestClient) -> None:
        response = client.get("/oauth/tokeninfo")

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"


class TestOperationalEndpoints:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/oauth/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "oauth"
        assert body["storage"] == "memory"
        assert body["degraded"] is False

    def test_metrics(self, client: TestClient) -> None:
        client.post("/oauth/token", data={"grant_type": "client_credentials"}, auth=AUTH)

        response = client.get("/oauth/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'tokengate_tokens_issued_total{grant_type="client_credentials"} 1.0' in response.text
        assert "tokengate_request_duration_seconds_count" in response.text

    def test_requests_are_labelled_by_route_template(self, client: TestClient) -> None:
        client.post("/oauth/token", data={"grant_type": "client_credentials"}, auth=AUTH)

        assert get_metrics().get_counter(
            "tokengate_requests_total", {"path": "/oauth/token", "method": "POST", "status": "200"}
        ) == 1.0

    def test_unknown_paths_share_one_series(self, client: TestClient) -> None:
        for _ in range(25):
            assert client.get(f"/oauth/{uuid.uuid4()}").status_code == 404

        metrics = get_metrics()
        labels = {"path": "unmatched", "method": "GET", "status": "404"}
        assert metrics.get_counter("tokengate_requests_total", labels) == 25.0
        series = [
            line
            for line in metrics.export_prometheus().splitlines()
            if line.startswith("tokengate_requests_total{")
        ]
        assert len(series) == 1


class FailingService:
    async def inspect(self, *args: object, **kwargs: object) -> None:
        raise RuntimeError("boom")


@pytest.fixture
def broken_client(services: OAuthServices) -> Iterator[TestClient]:
    broken = replace(services, introspection=FailingService())  # type: ignore[arg-type]
    with _app_client(broken, raise_server_exceptions=False) as client:
        yield client


def test_unexpected_error_is_a_generic_500(broken_client: TestClient) -> None:
    response = broken_client.post("/oauth/introspect", data={"token": "x"}, auth=AUTH)

    assert response.status_code == 500
    assert response.json() == {"error": "server_error", "error_description": "Internal server error"}
    assert get_metrics().get_counter(
        "tokengate_requests_error_total", {"path": "/oauth/introspect", "error": "server_error"}
    ) == 1.0

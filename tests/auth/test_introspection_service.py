"""Tests for IntrospectionService."""

from __future__ import annotations

from tokengate.auth.hashing import hash_token
from tokengate.models.entities import TokenPayload
from tokengate.observability import get_metrics
from tokengate.services import OAuthServices, build_services
from tokengate.storage import TokenStore

from tests.factories import CLIENT_ID, CLIENT_SECRET, START_TIME, FakeClock, make_settings

ALICE = TokenPayload(user_id="u-alice", username="alice", client_id=CLIENT_ID, scope="read write")


async def test_active_access_token(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.introspection.introspect(
        response.access_token, CLIENT_ID, CLIENT_SECRET
    )

    body = result.to_body()
    iat = int(START_TIME)
    assert body["active"] is True
    assert body["scope"] == "read write"
    assert body["client_id"] == CLIENT_ID
    assert body["username"] == "alice"
    assert body["token_type"] == "access_token"
    assert body["sub"] == body["user_id"] == "u-alice"
    assert body["iat"] == body["auth_time"] == iat
    assert body["exp"] == iat + 3600
    assert body["aud"] == body["issued_for"] == CLIENT_ID
    assert body["iss"] == "weather-api-oauth"
    assert body["token_use"] == "access"
    assert body["permissions"] == ["read", "write"]
    assert body["client_name"] == "Weather API Client"


async def test_active_refresh_token(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.introspection.introspect(
        response.refresh_token, CLIENT_ID, CLIENT_SECRET
    )

    assert result.active
    assert result.token_use == "refresh"
    assert result.token_type == "refresh_token"
    assert result.jti == hash_token(response.refresh_token)
    assert result.exp == int(START_TIME) + 604800
    assert result.aud == "weather-api"
    assert result.user_id == "u-alice"


async def test_unauthenticated_caller_gets_inactive(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.introspection.introspect(response.access_token, CLIENT_ID, "wrong")

    assert result.to_body() == {"active": False}
    assert get_metrics().get_counter("tokengate_introspections_total") == 0.0


async def test_unknown_and_garbage_tokens_are_inactive(services: OAuthServices) -> None:
    for token in ("never-issued", "aaa.bbb.ccc"):
        result = await services.introspection.introspect(token, CLIENT_ID, CLIENT_SECRET)
        assert result.to_body() == {"active": False}


async def test_verdict_is_served_from_cache(services: OAuthServices, store: TokenStore) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    await services.introspection.inspect(response.access_token)

    # bypasses RevocationService, so the cached verdict survives
    await store.revoke(services.verifier.decode_claims(response.access_token)["jti"])
    cached = await services.introspection.inspect(response.access_token)

    assert cached.active is True
    assert get_metrics().get_counter("tokengate_introspection_cache_hits_total") == 1.0


async def test_cached_verdict_lapses_after_ttl(
    services: OAuthServices, store: TokenStore, clock: FakeClock
) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    await services.introspection.inspect(response.access_token)
    await store.revoke(services.verifier.decode_claims(response.access_token)["jti"])

    clock.advance(301)

    assert (await services.introspection.inspect(response.access_token)).active is False


async def test_evict_forces_reevaluation(services: OAuthServices, store: TokenStore) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    await services.introspection.inspect(response.access_token)
    await store.revoke(services.verifier.decode_claims(response.access_token)["jti"])

    await services.introspection.evict(response.access_token)

    assert (await services.introspection.inspect(response.access_token)).active is False


async def test_cache_disabled(store: TokenStore, clock: FakeClock) -> None:
    services = build_services(
        make_settings(introspection_cache_enabled=False), store=store, clock=clock
    )
    response = await services.issuer.issue_tokens(ALICE)
    await services.introspection.inspect(response.access_token)
    await store.revoke(services.verifier.decode_claims(response.access_token)["jti"])

    assert (await services.introspection.inspect(response.access_token)).active is False
    assert await store.get_cached_introspection(hash_token(response.access_token)) is None


async def test_client_name_falls_back_to_client_id(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.introspection.inspect(response.access_token)

    assert result.client_name == CLIENT_ID

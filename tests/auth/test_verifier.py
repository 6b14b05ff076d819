"""Tests for TokenVerifier."""

from __future__ import annotations

from tokengate.auth.hashing import hash_token
from tokengate.auth.signing import TokenSigner
from tokengate.auth.verifier import (
    REASON_EXPIRED,
    REASON_INVALID_ISSUER,
    REASON_INVALID_SIGNATURE,
    REASON_MALFORMED,
    REASON_NOT_FOUND,
    REASON_NOT_YET_VALID,
)
from tokengate.models.entities import TokenPayload
from tokengate.services import OAuthServices, build_services
from tokengate.storage import TokenStore

from tests.factories import CLIENT_ID, TEST_SECRET, FakeClock, make_settings

ALICE = TokenPayload(user_id="u-alice", username="alice", client_id=CLIENT_ID, scope="read")


async def test_valid_access_token(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.verifier.verify_access(response.access_token)

    assert result.valid
    assert result.claims.sub == "u-alice"
    assert result.record["type"] == "access_token"


async def test_not_a_jws(services: OAuthServices) -> None:
    result = await services.verifier.verify_access("opaque-value")

    assert result.reason == REASON_MALFORMED
    assert result.description == "Malformed access token"


async def test_tampered_signature(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    header, payload, signature = response.access_token.split(".")
    tampered = f"{header}.{payload}.{signature[::-1]}"

    result = await services.verifier.verify_access(tampered)

    assert result.reason == REASON_INVALID_SIGNATURE


async def test_signed_with_another_secret(services: OAuthServices) -> None:
    foreign = TokenSigner("another-secret-entirely-0123456789abcdef").encode(
        {"jti": "x", "iss": "weather-api-oauth", "aud": "a", "iat": 1, "exp": 2, "nbf": 1}
    )

    result = await services.verifier.verify_access(foreign)

    assert result.reason == REASON_INVALID_SIGNATURE


async def test_incomplete_claims(services: OAuthServices) -> None:
    token = TokenSigner(TEST_SECRET).encode({"sub": "u1"})

    result = await services.verifier.verify_access(token)

    assert result.reason == REASON_MALFORMED


async def test_expired_token_is_removed_from_store(
    services: OAuthServices, store: TokenStore, clock: FakeClock
) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    jti = services.verifier.decode_claims(response.access_token)["jti"]
    clock.advance(3600)

    result = await services.verifier.verify_access(response.access_token)

    assert result.reason == REASON_EXPIRED
    assert result.description == "Token expired"
    assert await store.get(jti) is None


async def test_not_yet_valid(store: TokenStore, clock: FakeClock) -> None:
    services = build_services(make_settings(not_before_offset=60), store=store, clock=clock)
    response = await services.issuer.issue_tokens(ALICE)

    assert (await services.verifier.verify_access(response.access_token)).reason == (
        REASON_NOT_YET_VALID
    )
    clock.advance(60)
    assert (await services.verifier.verify_access(response.access_token)).valid


async def test_issuer_mismatch(services: OAuthServices, store: TokenStore, clock: FakeClock) -> None:
    other = build_services(make_settings(issuer="someone-else"), store=store, clock=clock)
    response = await other.issuer.issue_tokens(ALICE)

    result = await services.verifier.verify_access(response.access_token)

    assert result.reason == REASON_INVALID_ISSUER


async def test_revoked_token_is_not_found(services: OAuthServices, store: TokenStore) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    await store.revoke(services.verifier.decode_claims(response.access_token)["jti"])

    result = await services.verifier.verify_access(response.access_token)

    assert result.reason == REASON_NOT_FOUND
    assert result.description == "Token not found or revoked"


async def test_decode_claims_ignores_time_window(
    services: OAuthServices, clock: FakeClock
) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    clock.advance(10_000)

    assert services.verifier.decode_claims(response.access_token)["sub"] == "u-alice"
    assert services.verifier.decode_claims("not.a.jwt") is None


async def test_valid_refresh_token(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    result = await services.verifier.verify_refresh(response.refresh_token)

    assert result.valid
    assert result.refresh.user_id == "u-alice"
    assert result.refresh.scope == "read"


async def test_unknown_refresh_token(services: OAuthServices) -> None:
    result = await services.verifier.verify_refresh("0" * 64)

    assert result.reason == REASON_NOT_FOUND
    assert result.description == "Invalid refresh token"


async def test_access_token_is_not_a_refresh_token(services: OAuthServices) -> None:
    response = await services.issuer.issue_tokens(ALICE)

    assert (await services.verifier.verify_refresh(response.access_token)).valid is False


async def test_expired_refresh_token_is_removed(
    services: OAuthServices, store: TokenStore, clock: FakeClock
) -> None:
    response = await services.issuer.issue_tokens(ALICE)
    clock.advance(604800)

    result = await services.verifier.verify_refresh(response.refresh_token)

    assert result.reason == REASON_EXPIRED
    assert await store.get(hash_token(response.refresh_token)) is None

"""Tests for bearer token issuing and verification."""

from __future__ import annotations

import base64
import json

import pytest
from pydantic import SecretStr
from seat_api.errors import Unauthorized
from seat_api.security import (
    TOKEN_PREFIX,
    CallerIdentity,
    HmacTokenAuthProvider,
    build_auth_provider,
)

ALICE = CallerIdentity(
    user_id="u-alice",
    email="Alice@Example.com",
    account_id="acct-1",
    role="admin",
    name="Alice",
)


@pytest.fixture()
def provider() -> HmacTokenAuthProvider:
    return HmacTokenAuthProvider(SecretStr("unit-test-secret"))


def _forge(provider: HmacTokenAuthProvider, payload: dict) -> str:
    payload_json = json.dumps(payload)
    encoded = base64.urlsafe_b64encode(payload_json.encode()).decode()
    return f"{TOKEN_PREFIX}.{encoded}.{provider._sign(payload_json)}"


class TestHmacTokenAuthProvider:
    """Round trip and rejection paths."""

    def test_issue_and_identify(self, provider) -> None:
        identity = provider.identify(provider.issue(ALICE))

        assert identity.user_id == "u-alice"
        assert identity.email == "alice@example.com"
        assert identity.account_id == "acct-1"
        assert identity.role == "admin"
        assert identity.name == "Alice"

    def test_token_from_other_secret_rejected(self, provider) -> None:
        other = HmacTokenAuthProvider(SecretStr("another-secret"))

        with pytest.raises(Unauthorized, match="signature"):
            provider.identify(other.issue(ALICE))

    def test_tampered_payload_rejected(self, provider) -> None:
        prefix, _payload, signature = provider.issue(ALICE).split(".")
        forged_payload = base64.urlsafe_b64encode(json.dumps({"sub": "u-mallory"}).encode()).decode()

        with pytest.raises(Unauthorized):
            provider.identify(f"{prefix}.{forged_payload}.{signature}")

    def test_expired_token_rejected(self, provider) -> None:
        token = provider.issue(ALICE, ttl_seconds=-3600)

        with pytest.raises(Unauthorized, match="expired"):
            provider.identify(token)

    @pytest.mark.parametrize("token", ["", "abc", "ssdev.only-two", "other.a.b", "ssdev.!!!.sig"])
    def test_malformed_tokens(self, provider, token: str) -> None:
        with pytest.raises(Unauthorized):
            provider.identify(token)

    def test_missing_claims(self, provider) -> None:
        token = _forge(provider, {"sub": "u-1", "exp": 9_999_999_999})

        with pytest.raises(Unauthorized, match="email, account_id"):
            provider.identify(token)

    def test_role_defaults_to_viewer(self, provider) -> None:
        token = _forge(
            provider,
            {"sub": "u-1", "email": "a@example.com", "account_id": "acct-1", "exp": 9_999_999_999},
        )

        assert provider.identify(token).role == "viewer"

    def test_empty_secret_refused(self) -> None:
        with pytest.raises(ValueError):
            HmacTokenAuthProvider(SecretStr(""))


class TestBuildAuthProvider:
    """Secret resolution from the environment."""

    def test_uses_environment_secret(self, monkeypatch) -> None:
        monkeypatch.setenv("AUTH_SECRET", "from-env")
        token = HmacTokenAuthProvider(SecretStr("from-env")).issue(ALICE)

        assert build_auth_provider("production").identify(token).user_id == "u-alice"

    def test_dev_generates_secret(self, monkeypatch) -> None:
        monkeypatch.delenv("AUTH_SECRET", raising=False)

        provider = build_auth_provider("dev")

        assert provider.identify(provider.issue(ALICE)).user_id == "u-alice"

    @pytest.mark.parametrize("env", ["staging", "production"])
    def test_non_dev_requires_secret(self, monkeypatch, env: str) -> None:
        monkeypatch.delenv("AUTH_SECRET", raising=False)

        with pytest.raises(RuntimeError, match="AUTH_SECRET"):
            build_auth_provider(env)

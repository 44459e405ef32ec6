"""Bearer-token identity verification.

Tokens are HMAC-SHA256 signed JSON payloads of the form
``ssdev.<urlsafe-b64 payload>.<hex signature>``.  The payload carries the
caller's identity id (``sub``), email, the account the token is scoped to
(``account_id``), the caller's role claim, and ``iat`` / ``exp`` epochs.

The signing secret comes from the ``AUTH_SECRET`` environment variable.  In
development a random per-process secret is generated when it is unset;
staging and production refuse to start without one.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import os
import secrets
import time
from dataclasses import dataclass
from typing import Any

from pydantic import SecretStr

from seat_api.errors import Unauthorized

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "ssdev"
DEFAULT_TOKEN_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CallerIdentity:
    """The authenticated principal behind a request."""

    user_id: str
    email: str
    account_id: str
    role: str
    name: str | None = None


class HmacTokenAuthProvider:
    """Issue and verify HMAC-signed bearer tokens.

    Parameters
    ----------
    secret:
        Shared signing secret.
    clock_skew_seconds:
        Tolerance applied to ``exp`` when checking expiry.
    """

    def __init__(self, secret: SecretStr, *, clock_skew_seconds: float = 30.0) -> None:
        if not secret.get_secret_value():
            raise ValueError("Token signing secret must not be empty")
        self._secret = secret
        self._clock_skew = clock_skew_seconds

    def _sign(self, payload_json: str) -> str:
        return hmac.new(
            self._secret.get_secret_value().encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def issue(
        self,
        identity: CallerIdentity,
        *,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    ) -> str:
        """Return a signed token for *identity*."""
        now = time.time()
        payload: dict[str, Any] = {
            "sub": identity.user_id,
            "email": identity.email,
            "account_id": identity.account_id,
            "role": identity.role,
            "name": identity.name,
            "iat": now,
            "exp": now + ttl_seconds,
        }
        payload_json = json.dumps(payload)
        encoded = base64.urlsafe_b64encode(payload_json.encode("utf-8")).decode("ascii")
        return f"{TOKEN_PREFIX}.{encoded}.{self._sign(payload_json)}"

    def identify(self, credential: str) -> CallerIdentity:
        """Verify *credential* and return the caller it identifies.

        Raises
        ------
        Unauthorized
            If the token is malformed, the signature does not match, a
            required claim is missing, or the token has expired.
        """
        parts = credential.split(".")
        if len(parts) != 3 or parts[0] != TOKEN_PREFIX:
            raise Unauthorized("Malformed bearer token")

        try:
            payload_json = base64.urlsafe_b64decode(parts[1].encode("ascii")).decode("utf-8")
            payload = json.loads(payload_json)
        except (binascii.Error, UnicodeError, ValueError) as exc:
            raise Unauthorized("Malformed bearer token") from exc

        if not hmac.compare_digest(self._sign(payload_json), parts[2]):
            raise Unauthorized("Invalid token signature")

        if not isinstance(payload, dict):
            raise Unauthorized("Malformed bearer token")

        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or exp + self._clock_skew < time.time():
            raise Unauthorized("Token has expired")

        missing = [claim for claim in ("sub", "email", "account_id") if not payload.get(claim)]
        if missing:
            raise Unauthorized(f"Token is missing required claims: {', '.join(missing)}")

        return CallerIdentity(
            user_id=str(payload["sub"]),
            email=str(payload["email"]).strip().lower(),
            account_id=str(payload["account_id"]),
            role=str(payload.get("role") or "viewer"),
            name=payload.get("name"),
        )


def build_auth_provider(platform_env: str = "dev") -> HmacTokenAuthProvider:
    """Construct the provider from the ``AUTH_SECRET`` environment variable."""
    secret_value = os.environ.get("AUTH_SECRET", "")
    if not secret_value:
        if platform_env != "dev":
            raise RuntimeError(
                f"AUTH_SECRET environment variable must be set in {platform_env} mode. "
                "Refusing to start with an insecure default secret."
            )
        secret_value = f"dev-{secrets.token_hex(32)}"
        logger.warning("AUTH_SECRET not set; generated random per-process dev secret.")
    return HmacTokenAuthProvider(SecretStr(secret_value))

"""Outbound invite notifications over an HTTP delivery webhook."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Thin async client for the email delivery webhook.

    Delivery is never allowed to fail a membership action: every public
    method returns ``False`` on failure and logs instead of raising.  When no
    ``base_url`` is configured the service runs in log-only mode, which is
    the normal setup for local development.

    Parameters
    ----------
    base_url:
        Delivery endpoint.  Empty string disables outbound calls.
    invite_base_url:
        Link target embedded in invite messages; the token is appended as
        the ``token`` query parameter.
    timeout:
        Per-request timeout in seconds.
    shared_secret:
        Sent as a bearer token when set.
    transport:
        Optional ``httpx`` transport, used by tests to stub the endpoint.
    """

    def __init__(
        self,
        base_url: str,
        *,
        invite_base_url: str,
        timeout: float = 10.0,
        shared_secret: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._invite_base_url = invite_base_url
        self._client: httpx.AsyncClient | None = None
        if self._base_url:
            headers: dict[str, str] = {"Content-Type": "application/json"}
            if shared_secret:
                headers["Authorization"] = f"Bearer {shared_secret}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(timeout),
                headers=headers,
                transport=transport,
            )

    @property
    def enabled(self) -> bool:
        """Whether messages are actually delivered."""
        return self._client is not None

    def invite_link(self, token: str) -> str:
        """Return the acceptance URL for *token*."""
        return f"{self._invite_base_url}?{urlencode({'token': token})}"

    async def send_invite(
        self,
        email: str,
        role: str,
        inviter_name: str,
        account_name: str,
        token: str,
        *,
        reassigned_from: str | None = None,
    ) -> bool:
        """Deliver an invitation to *email*.

        Parameters
        ----------
        email:
            Invitee address.
        role:
            Role the invitee will hold.
        inviter_name:
            Display name of the member who sent the invite.
        account_name:
            Name of the account being joined.
        token:
            Invite token to embed in the acceptance link.
        reassigned_from:
            Previous holder's email when the seat is being handed over.

        Returns
        -------
        bool
            ``True`` when the delivery endpoint accepted the message.
        """
        payload: dict[str, Any] = {
            "template": "team_invite",
            "to": email,
            "role": role,
            "inviter_name": inviter_name,
            "account_name": account_name,
            "accept_url": self.invite_link(token),
        }
        if reassigned_from:
            payload["reassigned_from"] = reassigned_from

        if self._client is None:
            logger.info("Notification delivery disabled; invite for %s not sent", email)
            return False

        try:
            response = await self._client.post(self._base_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Notification endpoint returned %d for invite to %s: %s",
                exc.response.status_code,
                email,
                exc.response.text[:500],
            )
            return False
        except httpx.RequestError as exc:
            logger.warning("Notification request for %s failed: %s", email, str(exc))
            return False
        return True

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        if self._client is not None:
            await self._client.aclose()

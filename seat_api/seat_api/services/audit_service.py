"""Audit trail for membership transitions and seat billing.

Entries go to the account's hash-chained audit log (see
:class:`~seat_core.state.repository.AuditRepository`) in the caller's
transaction, so an entry commits or rolls back together with the change it
describes.  Each entry is also mirrored to the ``seat_api.audit`` logger.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from seat_core.state.repository import AuditRepository
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger("seat_api.audit")


class AuditAction:
    """Audit action names.

    The two billing actions are lower-case because billing reports filter
    on them verbatim.
    """

    MEMBER_INVITED = "MEMBER_INVITED"
    MEMBER_INVITE_ROLLED_BACK = "MEMBER_INVITE_ROLLED_BACK"
    MEMBER_ACCEPTED = "MEMBER_ACCEPTED"
    MEMBER_DEACTIVATED = "MEMBER_DEACTIVATED"
    MEMBER_REACTIVATED = "MEMBER_REACTIVATED"
    MEMBER_REASSIGNED = "MEMBER_REASSIGNED"
    MEMBER_ROLE_CHANGED = "MEMBER_ROLE_CHANGED"
    INVITE_RESENT = "INVITE_RESENT"
    OWNERSHIP_TRANSFERRED = "OWNERSHIP_TRANSFERRED"
    SEAT_BILLING_SYNC = "seat_billing_sync"
    EXPIRED_SEAT_BILLING_PROCESSED = "expired_seat_billing_processed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AuditService:
    """Write audit entries for one account on behalf of one actor.

    Parameters
    ----------
    session:
        Session of the enclosing unit of work.
    account_id:
        Account whose chain receives the entries.
    actor:
        User id behind the change, or ``"system"`` for the sweeper and
        other background work.
    """

    def __init__(self, session: AsyncSession, *, account_id: str, actor: str = "system") -> None:
        self._repo = AuditRepository(session, account_id=account_id)
        self._account_id = account_id
        self._actor = actor

    async def log(
        self,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        **details: Any,
    ) -> str:
        """Append an entry and return its id.

        Keyword arguments become the entry's ``metadata_json``; datetimes are
        stored as ISO-8601 strings.
        """
        metadata = {key: _jsonable(value) for key, value in details.items()} or None
        entry_id = await self._repo.log(
            actor=self._actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=metadata,
        )
        logger.info(
            "%s %s/%s by %s",
            action,
            entity_type,
            entity_id,
            self._actor,
            extra={"account_id": self._account_id, "user_id": self._actor},
        )
        return entry_id

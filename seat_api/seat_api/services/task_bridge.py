"""Hand a departing member's open work items to someone else."""

from __future__ import annotations

import logging

from seat_core.state.repository import TaskRepository
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class TaskReassignmentBridge:
    """Move or clear open tasks as part of a membership transition.

    Runs inside the caller's transaction, so the task update commits or
    rolls back together with the membership row change.

    Parameters
    ----------
    session:
        The session of the enclosing membership action.
    account_id:
        Account whose tasks are touched.
    """

    def __init__(self, session: AsyncSession, *, account_id: str) -> None:
        self._account_id = account_id
        self._tasks = TaskRepository(session, account_id)

    async def hand_over(self, from_user_id: str, to_user_id: str | None) -> int:
        """Move every open or in-progress task of *from_user_id*.

        Parameters
        ----------
        from_user_id:
            The departing member.
        to_user_id:
            The replacement assignee, or ``None`` to leave the tasks
            unassigned.

        Returns
        -------
        int
            Number of tasks moved.
        """
        moved = await self._tasks.reassign_open_tasks(from_user_id, to_user_id)
        logger.info(
            "Handed over %d open task(s) account=%s from=%s to=%s",
            moved,
            self._account_id,
            from_user_id,
            to_user_id or "unassigned",
        )
        return moved

    async def count_assigned(self, user_id: str) -> int:
        """Count the open or in-progress tasks assigned to *user_id*."""
        return await self._tasks.count_open_assigned(user_id)

"""Tests for the background release of seats whose paid term has ended."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from seat_api.services.audit_service import AuditAction
from seat_api.services.expired_seat_sweeper import ExpiredSeatSweeper
from seat_core.state.repository import AuditRepository, MembershipRepository

MONTHLY = "price_seat_monthly"
NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC)


async def _seed_grace_rows(seed) -> None:
    await seed.account()
    await seed.member("active@example.com", user_id="u-active")
    await seed.member(
        "expired@example.com",
        user_id="u-expired",
        status="disabled",
        seat_billing_ends_at=NOW - timedelta(hours=1),
    )
    await seed.member(
        "grace@example.com",
        user_id="u-grace",
        status="disabled",
        seat_billing_ends_at=NOW + timedelta(days=3),
    )
    await seed.commit()


class TestSweep:
    """One pass over accounts with expired grace periods."""

    @pytest.mark.asyncio
    async def test_releases_expired_rows_without_proration(
        self, seed, session_factory, test_settings, fake_ledger
    ) -> None:
        await _seed_grace_rows(seed)
        fake_ledger.add_subscription("sub_1", items={MONTHLY: 3})

        sweeper = ExpiredSeatSweeper(session_factory, test_settings, fake_ledger)
        processed = await sweeper.sweep(NOW)

        assert processed == {"acct-1": 1}
        assert fake_ledger.mutations == [("set_line_item", "sub_1", MONTHLY, 2, False)]
        async with session_factory() as session:
            members = MembershipRepository(session, "acct-1")
            expired = await members.get_by_user_id("u-expired")
            grace = await members.get_by_user_id("u-grace")
            assert expired.seat_billing_ends_at is None
            assert expired.status == "disabled"
            assert grace.seat_billing_ends_at is not None

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_rows_flagged(self, seed, session_factory, test_settings, fake_ledger) -> None:
        await _seed_grace_rows(seed)
        fake_ledger.add_subscription("sub_1", items={MONTHLY: 3})
        fake_ledger.fail_on["set_line_item"] = "unavailable"

        sweeper = ExpiredSeatSweeper(session_factory, test_settings, fake_ledger)
        processed = await sweeper.sweep(NOW)

        assert processed == {"acct-1": 0}
        async with session_factory() as session:
            expired = await MembershipRepository(session, "acct-1").get_by_user_id("u-expired")
            assert expired.seat_billing_ends_at is not None
            entries = await AuditRepository(session, account_id="acct-1").query(
                action=AuditAction.EXPIRED_SEAT_BILLING_PROCESSED
            )
            assert entries[0].metadata_json["billing_synced"] is False

        # The next pass retries and succeeds.
        fake_ledger.fail_on.clear()
        assert await sweeper.sweep(NOW) == {"acct-1": 1}

    @pytest.mark.asyncio
    async def test_nothing_expired(self, seed, session_factory, test_settings, fake_ledger) -> None:
        await seed.account()
        await seed.member("active@example.com", user_id="u-active")
        await seed.commit()

        processed = await ExpiredSeatSweeper(session_factory, test_settings, fake_ledger).sweep(NOW)

        assert processed == {}
        assert fake_ledger.calls == []

    @pytest.mark.asyncio
    async def test_billing_disabled_still_clears_rows(self, seed, session_factory, test_settings) -> None:
        await _seed_grace_rows(seed)

        processed = await ExpiredSeatSweeper(session_factory, test_settings, None).sweep(NOW)

        assert processed == {"acct-1": 1}


class TestLifecycle:
    """Start and stop of the background loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory, test_settings, fake_ledger) -> None:
        sweeper = ExpiredSeatSweeper(session_factory, test_settings, fake_ledger, interval_seconds=60)

        await sweeper.start()
        assert sweeper.running is True
        await asyncio.sleep(0)
        await sweeper.stop()

        assert sweeper.running is False

    @pytest.mark.asyncio
    async def test_double_start_is_ignored(self, session_factory, test_settings, fake_ledger) -> None:
        sweeper = ExpiredSeatSweeper(session_factory, test_settings, fake_ledger, interval_seconds=60)

        await sweeper.start()
        first_task = sweeper._task
        await sweeper.start()

        assert sweeper._task is first_task
        await sweeper.stop()

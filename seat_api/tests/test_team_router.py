"""HTTP-level tests for the team endpoints.

Covers:
- Authentication: 401 without or with a bad token, health is public
- RBAC: viewers can read but not manage, only owners transfer ownership
- Error payloads carry ``error``, ``code`` and ``message``
- Invite: 201 on success, 402 on a declined charge, 403 on the plan gate
- Accept through the public session
- Deactivate with and without a body
- Role changes gated on the plan
- Manual billing resync
"""

from __future__ import annotations

import pytest
from seat_core.state.repository import MembershipRepository

MONTHLY = "price_seat_monthly"


async def _seed_team(seed, fake_ledger, *, plan_tier: str = "growth") -> None:
    await seed.account(plan_tier=plan_tier)
    await seed.member("alice@example.com", user_id="u-alice", role="admin")
    await seed.member("bob@example.com", user_id="u-bob", role="viewer")
    await seed.commit()
    fake_ledger.add_subscription("sub_1", items={MONTHLY: 2})


class TestAuthentication:
    """Bearer token enforcement."""

    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client) -> None:
        resp = await client.get("/api/v1/team/members")

        assert resp.status_code == 401
        assert resp.json() == {
            "error": True,
            "code": "UNAUTHORIZED",
            "message": "Missing Authorization header",
        }

    @pytest.mark.asyncio
    async def test_garbage_token_is_401(self, client) -> None:
        resp = await client.get("/api/v1/team/members", headers={"Authorization": "Bearer nope"})

        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_health_is_public(self, client) -> None:
        resp = await client.get("/api/v1/health")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["db"] == "ok"

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client) -> None:
        resp = await client.get("/api/v1/health", headers={"X-Correlation-ID": "corr-123"})

        assert resp.headers["X-Correlation-ID"] == "corr-123"


class TestListMembers:
    """GET /team/members."""

    @pytest.mark.asyncio
    async def test_lists_team_with_seat_count(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.get("/api/v1/team/members", headers=auth_headers())

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 3
        assert body["seat_count"] == 2
        assert body["team_limit"] == 5
        assert body["plan_tier"] == "growth"
        owner_row = next(m for m in body["members"] if m["is_owner"])
        assert owner_row["billable"] is False

    @pytest.mark.asyncio
    async def test_viewer_can_read(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.get(
            "/api/v1/team/members",
            headers=auth_headers("u-bob", email="bob@example.com", role="viewer"),
        )

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_role_claim_is_403(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.get("/api/v1/team/members", headers=auth_headers(role="superuser"))

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_assigned_task_count(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)
        await seed.task("Write report", assigned_to="u-alice")
        await seed.task("Closed", assigned_to="u-alice", status="done")
        await seed.commit()

        resp = await client.get("/api/v1/team/members/u-alice/assigned-tasks", headers=auth_headers())

        assert resp.status_code == 200
        assert resp.json() == {"user_id": "u-alice", "open_tasks": 1}


class TestInvite:
    """POST /team/invite."""

    @pytest.mark.asyncio
    async def test_invite_created(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "  Carol@Example.com ", "role": "member"},
            headers=auth_headers(),
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["member"]["email"] == "carol@example.com"
        assert body["member"]["status"] == "pending"
        assert body["seat_count"] == 3
        assert body["email_sent"] is False
        assert fake_ledger.quantity("sub_1") == 3

    @pytest.mark.asyncio
    async def test_declined_charge_is_402_and_not_persisted(
        self, client, seed, fake_ledger, auth_headers, session_factory
    ) -> None:
        await _seed_team(seed, fake_ledger)
        fake_ledger.fail_on["set_line_item"] = "declined"

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "carol@example.com"},
            headers=auth_headers(),
        )

        assert resp.status_code == 402
        assert resp.json()["code"] == "PAYMENT_REQUIRED"
        async with session_factory() as session:
            assert await MembershipRepository(session, "acct-1").get_live_by_email("carol@example.com") is None

    @pytest.mark.asyncio
    async def test_unreachable_ledger_is_502(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)
        fake_ledger.fail_on["get_subscription"] = "unavailable"

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "carol@example.com"},
            headers=auth_headers(),
        )

        assert resp.status_code == 502
        assert resp.json()["code"] == "EXTERNAL_SERVICE_ERROR"

    @pytest.mark.asyncio
    async def test_starter_plan_is_gated(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger, plan_tier="starter")

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "carol@example.com"},
            headers=auth_headers(),
        )

        assert resp.status_code == 403
        body = resp.json()
        assert body["error"] is True
        assert body["code"] == "FEATURE_NOT_AVAILABLE"
        assert "upgrade" in body["message"].lower()

    @pytest.mark.asyncio
    async def test_viewer_cannot_invite(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "carol@example.com"},
            headers=auth_headers("u-bob", email="bob@example.com", role="viewer"),
        )

        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_owner_role_not_assignable(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "carol@example.com", "role": "owner"},
            headers=auth_headers(),
        )

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_duplicate_email_is_409(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/invite",
            json={"email": "alice@example.com"},
            headers=auth_headers(),
        )

        assert resp.status_code == 409
        assert resp.json()["code"] == "CONFLICT"


class TestAcceptInvite:
    """POST /team/invites/accept."""

    @pytest.mark.asyncio
    async def test_accept_activates_membership(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)
        await seed.member("carol@example.com", status="pending", invite_token="tok-carol-0123456789")
        await seed.commit()

        resp = await client.post(
            "/api/v1/team/invites/accept",
            json={"token": "tok-carol-0123456789"},
            headers=auth_headers("u-carol", email="carol@example.com", account_id="acct-other", role="member"),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["account_id"] == "acct-1"
        assert body["member"]["status"] == "active"
        assert body["member"]["user_id"] == "u-carol"

    @pytest.mark.asyncio
    async def test_unknown_token_is_404(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/invites/accept",
            json={"token": "tok-unknown-0123456789"},
            headers=auth_headers("u-carol", email="carol@example.com", role="member"),
        )

        assert resp.status_code == 404
        assert resp.json()["code"] == "NOT_FOUND"


class TestDeactivate:
    """POST /team/members/{user_id}/deactivate."""

    @pytest.mark.asyncio
    async def test_deactivate_without_body(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post("/api/v1/team/members/u-bob/deactivate", headers=auth_headers())

        assert resp.status_code == 200
        body = resp.json()
        assert body["member"]["status"] == "disabled"
        assert body["tasks_reassigned"] == 0
        # The fake subscription has no period end, so the seat is released at once.
        assert body["seat_billing_ends_at"] is None
        assert body["seat_count"] == 1

    @pytest.mark.asyncio
    async def test_owner_cannot_be_deactivated(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/members/owner-1/deactivate",
            headers=auth_headers("u-alice", email="alice@example.com", role="admin"),
        )

        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_unknown_member_is_404(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post("/api/v1/team/members/u-nobody/deactivate", headers=auth_headers())

        assert resp.status_code == 404


class TestUpdateRole:
    """PATCH /team/members/{user_id}/role."""

    @pytest.mark.asyncio
    async def test_growth_plan_cannot_manage_roles(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.patch(
            "/api/v1/team/members/u-bob/role",
            json={"role": "admin"},
            headers=auth_headers(),
        )

        assert resp.status_code == 403
        assert resp.json()["code"] == "FEATURE_NOT_AVAILABLE"

    @pytest.mark.asyncio
    async def test_professional_plan_changes_role(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger, plan_tier="professional")

        resp = await client.patch(
            "/api/v1/team/members/u-bob/role",
            json={"role": "member"},
            headers=auth_headers(),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["previous_role"] == "viewer"
        assert body["member"]["role"] == "member"


class TestTransferOwnership:
    """POST /team/transfer-ownership."""

    @pytest.mark.asyncio
    async def test_admin_cannot_transfer(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/transfer-ownership",
            json={"new_owner_user_id": "u-alice"},
            headers=auth_headers("u-alice", email="alice@example.com", role="admin"),
        )

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_owner_transfers_to_admin(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.post(
            "/api/v1/team/transfer-ownership",
            json={"new_owner_user_id": "u-alice"},
            headers=auth_headers(),
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["owner"]["user_id"] == "u-alice"
        assert body["owner"]["is_owner"] is True
        assert body["previous_owner"]["is_owner"] is False


class TestBilling:
    """Billing preview and manual resync."""

    @pytest.mark.asyncio
    async def test_resync_repairs_drift(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)
        fake_ledger.subscriptions["sub_1"]["items"].clear()

        resp = await client.post("/api/v1/team/billing/resync", headers=auth_headers())

        assert resp.status_code == 200
        body = resp.json()
        assert body["operation"] == "created"
        assert body["new_quantity"] == 2
        assert fake_ledger.quantity("sub_1") == 2

    @pytest.mark.asyncio
    async def test_resync_failure_is_502(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)
        fake_ledger.fail_on["get_subscription"] = "unavailable"

        resp = await client.post("/api/v1/team/billing/resync", headers=auth_headers())

        assert resp.status_code == 502

    @pytest.mark.asyncio
    async def test_preview(self, client, seed, fake_ledger, auth_headers) -> None:
        await _seed_team(seed, fake_ledger)

        resp = await client.get("/api/v1/team/billing/preview", headers=auth_headers())

        assert resp.status_code == 200
        body = resp.json()
        assert body["billable_seats"] == 2
        assert body["price_per_seat"] == 75.0
        assert body["estimated_cost"] == 150.0
        assert body["cost_label"] == "per month"

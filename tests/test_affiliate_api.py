# tests/test_affiliate_api.py
from __future__ import annotations

from datetime import timedelta

import pytest

from affiliate_ledger.core.roles import CallerRole
from affiliate_ledger.core.security import create_access_token
from affiliate_ledger.core.statuses import CommissionEventStatus, PayoutMethodType

from factories import (
    create_affiliate,
    create_clinic,
    create_commission_event,
    create_payout_method,
    utcnow,
)


def affiliate_headers(affiliate_id: int) -> dict[str, str]:
    token = create_access_token(affiliate_id, CallerRole.AFFILIATE)
    return {"Authorization": f"Bearer {token}"}


def admin_headers(clinic_id: int | None = None, *, super_admin: bool = False) -> dict[str, str]:
    role = CallerRole.SUPER_ADMIN if super_admin else CallerRole.CLINIC_ADMIN
    token = create_access_token(1, role, clinic_id=clinic_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_earnings_requires_token(client):
    r = await client.get("/api/v1/affiliate/me/earnings")
    assert r.status_code in (401, 403)


@pytest.mark.asyncio
async def test_garbage_token_is_rejected(client):
    r = await client.get("/api/v1/affiliate/me/earnings", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_earnings_summary(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_commission_event(db, affiliate, 1000, status=CommissionEventStatus.PENDING.value)
    await create_commission_event(db, affiliate, 6000, status=CommissionEventStatus.APPROVED.value)
    await create_commission_event(db, affiliate, 500, status=CommissionEventStatus.REVERSED.value)
    await db.commit()

    r = await client.get("/api/v1/affiliate/me/earnings", headers=affiliate_headers(affiliate.id))

    assert r.status_code == 200
    body = r.json()
    assert body["pending_cents"] == 1000
    assert body["available_cents"] == 6000
    assert body["reversed_cents"] == 500
    assert body["lifetime_gross_cents"] == 7500
    assert body["lifetime_earned_cents"] == 7000
    assert body["minimum_payout_cents"] == 5000


@pytest.mark.asyncio
async def test_unknown_affiliate_gets_404(client):
    r = await client.get("/api/v1/affiliate/me/earnings", headers=affiliate_headers(999999))
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "AFFILIATE_NOT_FOUND"


@pytest.mark.asyncio
async def test_admin_token_cannot_read_affiliate_ledger(client, db):
    clinic = await create_clinic(db)
    await db.commit()

    r = await client.get("/api/v1/affiliate/me/earnings", headers=admin_headers(clinic.id))

    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_commission_history_filter(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_commission_event(db, affiliate, 1000, status=CommissionEventStatus.PENDING.value)
    await create_commission_event(db, affiliate, 2000, status=CommissionEventStatus.APPROVED.value)
    await db.commit()

    r = await client.get(
        "/api/v1/affiliate/me/commissions",
        params={"status": "APPROVED"},
        headers=affiliate_headers(affiliate.id),
    )

    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 1
    assert body["items"][0]["amount_cents"] == 2000

    bad = await client.get(
        "/api/v1/affiliate/me/commissions",
        params={"status": "BOGUS"},
        headers=affiliate_headers(affiliate.id),
    )
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_withdrawal_below_minimum(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await db.commit()

    r = await client.post(
        "/api/v1/affiliate/me/withdrawals",
        json={"amount_cents": 1000},
        headers=affiliate_headers(affiliate.id),
    )

    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["error"] == "AMOUNT_BELOW_MINIMUM"
    assert detail["minimum_cents"] == 5000


@pytest.mark.asyncio
async def test_withdrawal_exceeding_balance(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_payout_method(db, affiliate)
    await create_commission_event(db, affiliate, 5500)
    await db.commit()

    r = await client.post(
        "/api/v1/affiliate/me/withdrawals",
        json={"amount_cents": 9000},
        headers=affiliate_headers(affiliate.id),
    )

    assert r.status_code == 422
    detail = r.json()["detail"]
    assert detail["error"] == "AMOUNT_EXCEEDS_BALANCE"
    assert "$55.00" in detail["message"]


@pytest.mark.asyncio
async def test_withdrawal_then_admin_completes(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_payout_method(db, affiliate, method_type=PayoutMethodType.BANK_WIRE.value)
    await create_commission_event(db, affiliate, 6000, occurred_at=utcnow() - timedelta(days=30))
    await db.commit()

    r = await client.post(
        "/api/v1/affiliate/me/withdrawals",
        json={"amount_cents": 6000},
        headers=affiliate_headers(affiliate.id),
    )
    assert r.status_code == 201
    created = r.json()
    assert created["fee_cents"] == 2500
    assert created["net_amount_cents"] == 3500
    assert created["requested_amount_cents"] == 6000
    assert created["status"] == "PENDING"

    again = await client.post(
        "/api/v1/affiliate/me/withdrawals",
        json={"amount_cents": 6000},
        headers=affiliate_headers(affiliate.id),
    )
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "PAYOUT_ALREADY_PENDING"

    # another clinic's admin cannot see it
    other = await create_clinic(db)
    await db.commit()
    foreign = await client.post(
        f"/api/v1/admin/affiliates/payouts/{created['payout_id']}/complete",
        headers=admin_headers(other.id),
    )
    assert foreign.status_code == 404
    assert foreign.json()["detail"]["error"] == "PAYOUT_NOT_FOUND"

    done = await client.post(
        f"/api/v1/admin/affiliates/payouts/{created['payout_id']}/complete",
        headers=admin_headers(clinic.id),
    )
    assert done.status_code == 200
    assert done.json()["status"] == "COMPLETED"

    payouts = await client.get("/api/v1/affiliate/me/payouts", headers=affiliate_headers(affiliate.id))
    assert payouts.status_code == 200
    page = payouts.json()
    assert page["total"] == 1
    assert page["items"][0]["commission_count"] == 1

    earnings = await client.get("/api/v1/affiliate/me/earnings", headers=affiliate_headers(affiliate.id))
    assert earnings.json()["paid_cents"] == 6000


@pytest.mark.asyncio
async def test_admin_fail_releases_balance(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_payout_method(db, affiliate)
    await create_commission_event(db, affiliate, 6000)
    await db.commit()

    created = (
        await client.post(
            "/api/v1/affiliate/me/withdrawals",
            json={"amount_cents": 6000},
            headers=affiliate_headers(affiliate.id),
        )
    ).json()

    r = await client.post(
        f"/api/v1/admin/affiliates/payouts/{created['payout_id']}/fail",
        json={"reason": "Bank rejected transfer"},
        headers=admin_headers(super_admin=True),
    )
    assert r.status_code == 200
    assert r.json()["status"] == "FAILED"

    earnings = await client.get("/api/v1/affiliate/me/earnings", headers=affiliate_headers(affiliate.id))
    assert earnings.json()["available_cents"] == 6000

    again = await client.post(
        f"/api/v1/admin/affiliates/payouts/{created['payout_id']}/processing",
        headers=admin_headers(super_admin=True),
    )
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "INVALID_PAYOUT_STATE"


@pytest.mark.asyncio
async def test_approve_matured_is_admin_only(client, db):
    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_commission_event(db, affiliate, 1000, status=CommissionEventStatus.PENDING.value)
    await db.commit()

    denied = await client.post(
        "/api/v1/admin/affiliates/commissions/approve-matured",
        headers=affiliate_headers(affiliate.id),
    )
    assert denied.status_code == 403

    cross = await client.post(
        "/api/v1/admin/affiliates/commissions/approve-matured",
        params={"clinic_id": clinic.id + 1},
        headers=admin_headers(clinic.id),
    )
    assert cross.status_code == 403
    assert cross.json()["detail"]["error"] == "CLINIC_FORBIDDEN"

    ok = await client.post(
        "/api/v1/admin/affiliates/commissions/approve-matured",
        headers=admin_headers(clinic.id),
    )
    assert ok.status_code == 200
    assert ok.json() == {"approved": 1}


@pytest.mark.asyncio
async def test_admin_resolve_is_a_dry_run(client, db):
    from affiliate_ledger.crud.touches import create_touch

    clinic = await create_clinic(db)
    affiliate = await create_affiliate(db, clinic.id)
    await create_touch(
        db,
        clinic_id=clinic.id,
        affiliate_id=affiliate.id,
        ref_code="DRYRUN",
        cookie_id="cookie-1",
        created_at=utcnow() - timedelta(days=2),
    )
    await db.commit()

    r = await client.post(
        "/api/v1/admin/affiliates/attribution/resolve",
        json={"clinic_id": clinic.id, "cookie_id": "cookie-1", "is_new_patient": True},
        headers=admin_headers(clinic.id),
    )
    assert r.status_code == 200
    body = r.json()
    assert body["affiliate_id"] == affiliate.id
    assert body["ref_code"] == "DRYRUN"
    assert body["confidence"] == "medium"

    nobody = await client.post(
        "/api/v1/admin/affiliates/attribution/resolve",
        json={"clinic_id": clinic.id, "cookie_id": "cookie-unknown"},
        headers=admin_headers(clinic.id),
    )
    assert nobody.status_code == 200
    assert nobody.json() is None

    foreign = await client.post(
        "/api/v1/admin/affiliates/attribution/resolve",
        json={"clinic_id": clinic.id + 1, "cookie_id": "cookie-1"},
        headers=admin_headers(clinic.id),
    )
    assert foreign.status_code == 403

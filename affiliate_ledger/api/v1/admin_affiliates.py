# affiliate_ledger/api/v1/admin_affiliates.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.api.deps.auth import admin_clinic_scope, require_admin
from affiliate_ledger.api.v1.affiliate import payout_http_error
from affiliate_ledger.core.attribution import resolve_attribution
from affiliate_ledger.core.commission_ledger import approve_matured_commissions
from affiliate_ledger.core.errors import PayoutError
from affiliate_ledger.core.payouts import complete_payout, fail_payout, mark_payout_processing
from affiliate_ledger.core.security import Principal
from affiliate_ledger.db.session import get_db
from affiliate_ledger.schemas.attribution import AttributionRequest, AttributionResult
from affiliate_ledger.schemas.commission import ApproveMaturedOut
from affiliate_ledger.schemas.payouts import PayoutFailIn, PayoutOut

router = APIRouter(prefix="/admin/affiliates", tags=["admin-affiliates"])


@router.post("/commissions/approve-matured", response_model=ApproveMaturedOut)
async def approve_matured(
    clinic_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """
    Run the hold sweep now (normally scheduled). Clinic admins only sweep their clinic.
    """
    scope = admin_clinic_scope(principal, clinic_id)
    approved = await approve_matured_commissions(db, clinic_id=scope)
    return ApproveMaturedOut(approved=approved)


@router.post("/payouts/{payout_id}/processing", response_model=PayoutOut)
async def start_payout(
    payout_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    try:
        payout = await mark_payout_processing(db, payout_id=payout_id, clinic_id=admin_clinic_scope(principal))
    except PayoutError as exc:
        raise payout_http_error(exc)
    return PayoutOut.model_validate(payout)


@router.post("/payouts/{payout_id}/complete", response_model=PayoutOut)
async def finish_payout(
    payout_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    try:
        payout = await complete_payout(db, payout_id=payout_id, clinic_id=admin_clinic_scope(principal))
    except PayoutError as exc:
        raise payout_http_error(exc)
    return PayoutOut.model_validate(payout)


@router.post("/payouts/{payout_id}/fail", response_model=PayoutOut)
async def reject_payout(
    payout_id: int,
    payload: PayoutFailIn,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    try:
        payout = await fail_payout(
            db,
            payout_id=payout_id,
            clinic_id=admin_clinic_scope(principal),
            reason=payload.reason,
        )
    except PayoutError as exc:
        raise payout_http_error(exc)
    return PayoutOut.model_validate(payout)


@router.post("/attribution/resolve", response_model=Optional[AttributionResult])
async def resolve_visitor_attribution(
    payload: AttributionRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """
    Dry run of the resolver for a visitor: returns the credited affiliate
    (or null) without writing anything.
    """
    admin_clinic_scope(principal, payload.clinic_id)
    return await resolve_attribution(db, payload)

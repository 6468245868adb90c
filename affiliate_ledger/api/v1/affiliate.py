# affiliate_ledger/api/v1/affiliate.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.api.deps.auth import require_affiliate
from affiliate_ledger.core.earnings import get_commission_history, get_earnings_summary, get_payout_history
from affiliate_ledger.core.errors import PayoutError, PayoutFailureReason
from affiliate_ledger.core.payouts import request_withdrawal
from affiliate_ledger.core.statuses import CommissionEventStatus
from affiliate_ledger.db.session import get_db, get_sessionmaker
from affiliate_ledger.models.affiliate import Affiliate
from affiliate_ledger.schemas.commission import CommissionPageOut
from affiliate_ledger.schemas.earnings import EarningsSummary
from affiliate_ledger.schemas.payouts import PayoutPageOut, WithdrawalRequest, WithdrawalResult

router = APIRouter(prefix="/affiliate", tags=["affiliate"])

PAYOUT_ERROR_STATUS = {
    PayoutFailureReason.PAYOUT_ALREADY_PENDING: status.HTTP_409_CONFLICT,
    PayoutFailureReason.NO_VERIFIED_METHOD: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PayoutFailureReason.AMOUNT_BELOW_MINIMUM: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PayoutFailureReason.AMOUNT_EXCEEDS_BALANCE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PayoutFailureReason.AFFILIATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PayoutFailureReason.PAYOUT_RETRYABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
    PayoutFailureReason.PAYOUT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PayoutFailureReason.INVALID_PAYOUT_STATE: status.HTTP_409_CONFLICT,
}


def payout_http_error(exc: PayoutError) -> HTTPException:
    return HTTPException(
        status_code=PAYOUT_ERROR_STATUS.get(exc.reason, status.HTTP_400_BAD_REQUEST),
        detail=exc.to_detail(),
    )


@router.get("/me/earnings", response_model=EarningsSummary)
async def get_my_earnings(
    db: AsyncSession = Depends(get_db),
    affiliate: Affiliate = Depends(require_affiliate),
):
    """
    Balances: pending, available, processing, paid, reversed and lifetime totals.
    """
    return await get_earnings_summary(db, affiliate_id=affiliate.id)


@router.get("/me/commissions", response_model=CommissionPageOut)
async def list_my_commissions(
    db: AsyncSession = Depends(get_db),
    affiliate: Affiliate = Depends(require_affiliate),
    status_filter: Optional[CommissionEventStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    return await get_commission_history(
        db,
        affiliate_id=affiliate.id,
        limit=limit,
        offset=offset,
        status=status_filter.value if status_filter else None,
    )


@router.get("/me/payouts", response_model=PayoutPageOut)
async def list_my_payouts(
    db: AsyncSession = Depends(get_db),
    affiliate: Affiliate = Depends(require_affiliate),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    return await get_payout_history(db, affiliate_id=affiliate.id, limit=limit, offset=offset)


@router.post("/me/withdrawals", response_model=WithdrawalResult, status_code=status.HTTP_201_CREATED)
async def create_withdrawal(
    payload: WithdrawalRequest,
    affiliate: Affiliate = Depends(require_affiliate),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_sessionmaker),
):
    """
    Body: {"amount_cents": 5000}
    Errors come back as {"error": <REASON>, "message": ...}.
    """
    try:
        return await request_withdrawal(
            session_factory,
            affiliate_id=affiliate.id,
            amount_cents=payload.amount_cents,
        )
    except PayoutError as exc:
        raise payout_http_error(exc)

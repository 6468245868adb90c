# affiliate_ledger/core/payouts.py
"""
Payout protocol.

request_withdrawal turns an affiliate's APPROVED, unclaimed commission events
into one PENDING payout. The balance check and the claim happen in a single
SERIALIZABLE transaction holding `SELECT ... FOR UPDATE` on the affiliate row,
so two concurrent requests for the same affiliate cannot both pass the
balance check. Requests for different affiliates never wait on each other.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affiliate_ledger.core.clock import ensure_utc, utcnow
from affiliate_ledger.core.config import Settings, settings as default_settings
from affiliate_ledger.core.errors import PayoutError, PayoutFailureReason, format_cents
from affiliate_ledger.core.statuses import (
    IN_FLIGHT_PAYOUT_STATUSES,
    PayoutMethodType,
    PayoutStatus,
)
from affiliate_ledger.crud import payouts as payouts_crud
from affiliate_ledger.crud.affiliates import lock_affiliate
from affiliate_ledger.crud.commission_events import claim_events, list_available_events, reverse_event_if_unpaid
from affiliate_ledger.models.affiliate_commission_event import AffiliateCommissionEvent
from affiliate_ledger.models.affiliate_payout import AffiliatePayout
from affiliate_ledger.schemas.payouts import WithdrawalResult

logger = logging.getLogger(__name__)

# PostgreSQL serialization_failure / deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def payout_fee_cents(method_type: str, amount_cents: int, settings: Settings = default_settings) -> int:
    if method_type == PayoutMethodType.BANK_WIRE.value:
        return min(settings.BANK_WIRE_FEE_CENTS, amount_cents)
    return 0


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_serialization_failure(exc: BaseException) -> bool:
    return isinstance(exc, DBAPIError) and _sqlstate(exc) in _RETRYABLE_SQLSTATES


async def _withdraw_once(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    affiliate_id: int,
    amount_cents: int,
    settings: Settings,
) -> WithdrawalResult:
    async with session_factory() as db:
        # must be the first statement of the transaction
        await db.connection(execution_options={"isolation_level": "SERIALIZABLE"})

        affiliate = await lock_affiliate(db, affiliate_id)
        if affiliate is None:
            raise PayoutError(PayoutFailureReason.AFFILIATE_NOT_FOUND, "Affiliate not found", affiliate_id=affiliate_id)

        in_flight = await payouts_crud.get_in_flight_payout(db, affiliate_id)
        if in_flight is not None:
            raise PayoutError(
                PayoutFailureReason.PAYOUT_ALREADY_PENDING,
                "A payout is already being processed for this account",
                payout_id=in_flight.id,
                payout_status=in_flight.status,
            )

        method = await payouts_crud.get_default_verified_method(db, affiliate_id)
        if method is None:
            raise PayoutError(
                PayoutFailureReason.NO_VERIFIED_METHOD,
                "Add and verify a default payout method before withdrawing",
            )

        events = await list_available_events(db, affiliate_id)
        available_cents = sum(e.amount_cents for e in events)
        if amount_cents > available_cents:
            raise PayoutError(
                PayoutFailureReason.AMOUNT_EXCEEDS_BALANCE,
                f"Requested amount exceeds available balance of {format_cents(available_cents)}",
                requested_cents=amount_cents,
                available_cents=available_cents,
            )

        # greedy, oldest first, whole events only
        claimed = []
        covered = 0
        for e in events:
            if covered >= amount_cents:
                break
            claimed.append(e)
            covered += e.amount_cents

        # whole events: the payout carries exactly what it claimed
        now = utcnow()
        fee_cents = payout_fee_cents(method.method_type, covered, settings)
        payout = AffiliatePayout(
            affiliate_id=affiliate_id,
            clinic_id=affiliate.clinic_id,
            requested_amount_cents=amount_cents,
            amount_cents=covered,
            fee_cents=fee_cents,
            net_amount_cents=covered - fee_cents,
            status=PayoutStatus.PENDING.value,
            method_type=method.method_type,
            period_start=min((ensure_utc(e.occurred_at) for e in claimed), default=None),
            period_end=now,
        )
        db.add(payout)
        await db.flush()

        event_ids = [e.id for e in claimed]
        updated = await claim_events(db, event_ids=event_ids, payout_id=payout.id)
        if updated != len(event_ids):
            # another writer claimed an event under us; roll back and let the caller retry
            raise PayoutError(
                PayoutFailureReason.PAYOUT_RETRYABLE,
                "Balance changed while processing the withdrawal, please retry",
            )

        await db.commit()

        logger.info(
            "[Payout] Withdrawal requested",
            extra={
                "affiliate_id": affiliate_id,
                "payout_id": payout.id,
                "requested_cents": amount_cents,
                "amount_cents": covered,
                "fee_cents": fee_cents,
                "event_count": len(event_ids),
                "method_type": method.method_type,
            },
        )
        return WithdrawalResult(
            payout_id=payout.id,
            requested_amount_cents=amount_cents,
            amount_cents=covered,
            fee_cents=fee_cents,
            net_amount_cents=covered - fee_cents,
            method_type=method.method_type,
            status=payout.status,
            event_ids=event_ids,
        )


async def request_withdrawal(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    affiliate_id: int,
    amount_cents: int,
    settings: Settings = default_settings,
) -> WithdrawalResult:
    """
    Create a PENDING payout covering at least `amount_cents`, or raise PayoutError.
    Events are claimed whole, oldest first; the payout amount is the claimed total.

    The minimum is checked before any transaction is opened. Serialization
    failures re-run the whole transaction; running out of attempts or time
    raises PAYOUT_RETRYABLE with nothing committed.
    """
    if amount_cents < settings.MINIMUM_PAYOUT_CENTS:
        raise PayoutError(
            PayoutFailureReason.AMOUNT_BELOW_MINIMUM,
            f"Minimum withdrawal amount is {format_cents(settings.MINIMUM_PAYOUT_CENTS)}",
            requested_cents=amount_cents,
            minimum_cents=settings.MINIMUM_PAYOUT_CENTS,
        )

    attempts = settings.PAYOUT_SERIALIZATION_RETRIES
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(
                _withdraw_once(
                    session_factory,
                    affiliate_id=affiliate_id,
                    amount_cents=amount_cents,
                    settings=settings,
                ),
                timeout=settings.PAYOUT_TRANSACTION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(
                "[Payout] Withdrawal transaction timed out",
                extra={"affiliate_id": affiliate_id, "amount_cents": amount_cents, "attempt": attempt},
            )
            raise PayoutError(
                PayoutFailureReason.PAYOUT_RETRYABLE,
                "The withdrawal could not be completed in time, please retry",
            )
        except IntegrityError as exc:
            # partial unique index on in-flight payouts
            if "uq_affiliate_payouts_in_flight" in str(exc.orig) or "affiliate_payouts.affiliate_id" in str(exc.orig):
                raise PayoutError(
                    PayoutFailureReason.PAYOUT_ALREADY_PENDING,
                    "A payout is already being processed for this account",
                )
            raise
        except DBAPIError as exc:
            if not is_serialization_failure(exc):
                raise
            logger.warning(
                "[Payout] Serialization conflict, retrying withdrawal",
                extra={"affiliate_id": affiliate_id, "attempt": attempt, "sqlstate": _sqlstate(exc)},
            )

    raise PayoutError(
        PayoutFailureReason.PAYOUT_RETRYABLE,
        "The withdrawal conflicted with another request, please retry",
    )


# -----------------------------
# Admin transitions
# -----------------------------
async def _load_payout(db: AsyncSession, payout_id: int, clinic_id: int | None) -> AffiliatePayout:
    payout = await payouts_crud.get_payout_for_update(db, payout_id=payout_id, clinic_id=clinic_id)
    if payout is None:
        raise PayoutError(PayoutFailureReason.PAYOUT_NOT_FOUND, "Payout not found", payout_id=payout_id)
    return payout


def _require_status(payout: AffiliatePayout, allowed: tuple[str, ...]) -> None:
    if payout.status not in allowed:
        raise PayoutError(
            PayoutFailureReason.INVALID_PAYOUT_STATE,
            f"Payout is {payout.status}",
            payout_id=payout.id,
            payout_status=payout.status,
        )


async def mark_payout_processing(db: AsyncSession, *, payout_id: int, clinic_id: int | None) -> AffiliatePayout:
    payout = await _load_payout(db, payout_id, clinic_id)
    _require_status(payout, (PayoutStatus.PENDING.value,))
    payout.status = PayoutStatus.PROCESSING.value
    payout.processed_at = utcnow()
    await db.commit()
    logger.info("[Payout] Payout processing", extra={"payout_id": payout.id, "affiliate_id": payout.affiliate_id})
    return payout


async def complete_payout(db: AsyncSession, *, payout_id: int, clinic_id: int | None) -> AffiliatePayout:
    """
    PENDING / PROCESSING -> COMPLETED; every claimed APPROVED event becomes PAID.
    """
    payout = await _load_payout(db, payout_id, clinic_id)
    _require_status(payout, IN_FLIGHT_PAYOUT_STATUSES)

    paid = await payouts_crud.mark_payout_events_paid(db, payout.id)
    payout.status = PayoutStatus.COMPLETED.value
    payout.completed_at = utcnow()
    await db.commit()

    logger.info(
        "[Payout] Payout completed",
        extra={"payout_id": payout.id, "affiliate_id": payout.affiliate_id, "paid_events": paid},
    )
    return payout


async def fail_payout(
    db: AsyncSession,
    *,
    payout_id: int,
    clinic_id: int | None,
    reason: str,
) -> AffiliatePayout:
    """
    PENDING / PROCESSING -> FAILED; claimed events are released and stay
    APPROVED, so they count toward the available balance again.
    """
    payout = await _load_payout(db, payout_id, clinic_id)
    _require_status(payout, IN_FLIGHT_PAYOUT_STATUSES)

    released = await payouts_crud.release_events_for_payout(db, payout.id)
    payout.status = PayoutStatus.FAILED.value
    payout.failed_at = utcnow()
    payout.failure_reason = reason[:500]
    await db.commit()

    logger.warning(
        "[Payout] Payout failed",
        extra={"payout_id": payout.id, "affiliate_id": payout.affiliate_id, "released_events": released, "reason": reason},
    )
    return payout


async def reverse_claimed_event(
    db: AsyncSession,
    *,
    event: AffiliateCommissionEvent,
    reason: str,
    at: datetime,
    settings: Settings = default_settings,
) -> bool:
    """
    Reverse an APPROVED event that an in-flight payout has already claimed.

    The event leaves the payout and the payout shrinks by its amount (fee
    recomputed for the method). A payout left with nothing to pay is FAILED.
    Returns False when the payout is no longer PENDING / PROCESSING, in which
    case the event is left alone. Does not commit.
    """
    if event.payout_id is None:
        return False

    payout = await payouts_crud.get_payout_for_update(db, payout_id=event.payout_id, clinic_id=None)
    if payout is None or payout.status not in IN_FLIGHT_PAYOUT_STATUSES:
        return False

    if not await reverse_event_if_unpaid(db, event_id=event.id, reason=reason, at=at, claimed_by=payout.id):
        return False

    payout.amount_cents = max(0, payout.amount_cents - event.amount_cents)
    payout.fee_cents = payout_fee_cents(payout.method_type, payout.amount_cents, settings)
    payout.net_amount_cents = payout.amount_cents - payout.fee_cents
    if payout.amount_cents == 0:
        payout.status = PayoutStatus.FAILED.value
        payout.failed_at = at
        payout.failure_reason = "All claimed commissions were reversed"
    await db.flush()

    logger.warning(
        "[Payout] Claimed commission reversed, payout reduced",
        extra={
            "payout_id": payout.id,
            "affiliate_id": payout.affiliate_id,
            "commission_event_id": event.id,
            "removed_cents": event.amount_cents,
            "amount_cents": payout.amount_cents,
            "payout_status": payout.status,
        },
    )
    return True

from __future__ import annotations

from typing import Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_ledger.core.roles import CallerRole
from affiliate_ledger.core.security import Principal, bearer_scheme, decode_access_token
from affiliate_ledger.crud.affiliates import get_affiliate
from affiliate_ledger.db.session import get_db
from affiliate_ledger.models.affiliate import Affiliate


async def get_principal(credentials=Depends(bearer_scheme)) -> Principal:
    """
    Dependency for protected endpoints. Role is resolved once, here.
    """
    return decode_access_token(credentials.credentials)


def require_roles(*roles: CallerRole) -> Callable:
    allowed = {CallerRole(r) for r in roles}

    async def _checker(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "FORBIDDEN",
                    "message": "You do not have permission to perform this action.",
                    "required": sorted(r.value for r in allowed),
                    "role": principal.role.value,
                },
            )
        return principal

    return _checker


require_admin = require_roles(CallerRole.CLINIC_ADMIN, CallerRole.SUPER_ADMIN)


def admin_clinic_scope(principal: Principal, requested_clinic_id: int | None = None) -> int | None:
    """
    Clinic filter for admin operations: clinic admins are pinned to their own
    clinic, super admins see everything (or the clinic they asked for).
    """
    if principal.role == CallerRole.SUPER_ADMIN:
        return requested_clinic_id
    if requested_clinic_id is not None and requested_clinic_id != principal.clinic_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "CLINIC_FORBIDDEN", "message": "You can only manage your own clinic."},
        )
    return principal.clinic_id


async def require_affiliate(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_roles(CallerRole.AFFILIATE)),
) -> Affiliate:
    affiliate = await get_affiliate(db, principal.subject_id)
    if affiliate is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "AFFILIATE_NOT_FOUND", "message": "Affiliate not found"},
        )
    return affiliate

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from jose import JWTError, jwt

from affiliate_ledger.core.config import settings
from affiliate_ledger.core.roles import CallerRole

bearer_scheme = HTTPBearer(auto_error=True)


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller. For AFFILIATE `subject_id` is the affiliate id;
    clinic admins also carry the clinic they administer.
    """

    subject_id: int
    role: CallerRole
    clinic_id: Optional[int] = None


def _normalize_token(token: str) -> str:
    """
    Make token decoding resilient to common Swagger / copy-paste issues:
    - Leading/trailing whitespace/newlines
    - Surrounding quotes
    - Accidentally including the 'Bearer ' prefix in the token field
    """
    if token is None:
        return ""

    t = token.strip()

    if (t.startswith('"') and t.endswith('"')) or (t.startswith("'") and t.endswith("'")):
        t = t[1:-1].strip()

    if t.lower().startswith("bearer "):
        t = t[7:].strip()

    return t


def create_access_token(
    subject: int | str,
    role: CallerRole,
    clinic_id: Optional[int] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire_dt = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode: dict[str, Any] = {
        "sub": str(subject),
        "role": CallerRole(role).value,
        "exp": int(expire_dt.timestamp()),
        "iat": int(now.timestamp()),
    }
    if clinic_id is not None:
        to_encode["clinic_id"] = int(clinic_id)

    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def decode_access_token(token: str) -> Principal:
    token = _normalize_token(token)
    if not token:
        raise _unauthorized()

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require_sub": True, "require_exp": True},
        )
    except JWTError:
        # expired signature, bad format, bad signature, wrong algorithm
        raise _unauthorized()

    role = CallerRole.parse(payload.get("role"))
    if role is None:
        raise _unauthorized()

    try:
        subject_id = int(payload.get("sub"))
        clinic_raw = payload.get("clinic_id")
        clinic_id = int(clinic_raw) if clinic_raw is not None else None
    except (TypeError, ValueError):
        raise _unauthorized()

    if role == CallerRole.CLINIC_ADMIN and clinic_id is None:
        raise _unauthorized()

    return Principal(subject_id=subject_id, role=role, clinic_id=clinic_id)

# affiliate_ledger/core/roles.py

import enum


class CallerRole(str, enum.Enum):
    AFFILIATE = "AFFILIATE"         # referral partner, sees only its own ledger
    CLINIC_ADMIN = "CLINIC_ADMIN"   # manages one clinic's affiliate program
    SUPER_ADMIN = "SUPER_ADMIN"     # platform operator, any clinic

    @classmethod
    def parse(cls, value: str | None) -> "CallerRole | None":
        v = (value or "").strip().upper()
        try:
            return cls(v)
        except ValueError:
            return None

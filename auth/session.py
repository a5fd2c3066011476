from dataclasses import dataclass
from typing import Optional

from Models.auth_models import UserRole


@dataclass(frozen=True)
class Session:
    """Authenticated identity resolved once per request from the bearer token.

    Handlers receive it explicitly; department scoping reads `department` from
    here and nowhere else.
    """
    user_id: int
    role: UserRole
    department: Optional[str]
    force_password_change: bool
    token_version: int

    @classmethod
    def from_claims(cls, claims: dict) -> "Session":
        return cls(
            user_id=int(claims["sub"]),
            role=UserRole(claims["role"]),
            department=claims.get("dept"),
            force_password_change=bool(claims.get("fpc", False)),
            token_version=int(claims.get("ver", 0)),
        )

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN, UserRole.SUB_ADMIN)

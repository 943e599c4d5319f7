from __future__ import annotations

from dataclasses import dataclass

from subly.core.auth import STAFF_ROLES


@dataclass(slots=True)
class AuthContext:
    """Caller identity used for owner scoping in repositories and services."""

    user_id: str
    role: str
    correlation_id: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

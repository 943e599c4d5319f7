from __future__ import annotations


class AuthorizationError(Exception):
    """Raised when a caller touches a row outside of its ownership scope."""

    def __init__(self, resource: str, user_id: str) -> None:
        self.resource = resource
        self.user_id = user_id
        super().__init__(f"User '{user_id}' may not access resource '{resource}'")

from subly.platform.security.context import AuthContext
from subly.platform.security.errors import AuthorizationError
from subly.platform.security.repository import BaseRepository

__all__ = [
    "AuthContext",
    "AuthorizationError",
    "BaseRepository",
]

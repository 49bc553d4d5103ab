"""Identity module — JWT verification for marketplace users."""

from src.modules.identity.auth import (
    AuthenticatedUser,
    create_access_token,
    get_current_user,
    require_admin,
)

__all__ = [
    "AuthenticatedUser",
    "create_access_token",
    "get_current_user",
    "require_admin",
]

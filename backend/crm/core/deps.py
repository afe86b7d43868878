"""
FastAPI dependencies for authentication and authorization.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, ensuring every endpoint resolves
the caller and their organization the same way.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from crm.core.auth import verify_token
from crm.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
)
from crm.db.session import get_db
from crm.models.user import User
from crm.dao.user import UserDAO


# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Get current authenticated user from JWT token.

    WHY: This dependency:
    1. Extracts token from Authorization header
    2. Verifies token signature and expiration
    3. Fetches user from database
    4. Ensures user still exists and is active

    Raises:
        AuthenticationError: If token is missing, invalid, expired, or user not found
    """
    if credentials is None:
        raise AuthenticationError(message="Missing bearer token")

    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError(
            message="Invalid token: missing user_id",
        )

    # WHY: User data in token might be stale; always fetch current data
    user_dao = UserDAO(db)
    user = await user_dao.get_by_id(user_id)

    if not user:
        raise AuthenticationError(
            message="User not found",
            user_id=user_id,
        )

    if not user.is_active:
        raise AuthenticationError(
            message="User account is inactive",
            user_id=user_id,
        )

    return user


def require_role(required_role: str):
    """
    Factory function to create a role requirement dependency.

    Usage:
        @router.delete("/{invoice_id}")
        async def delete_invoice(admin: User = Depends(require_role("ADMIN"))):
            ...

    Args:
        required_role: Role name (e.g., "ADMIN", "MEMBER")

    Returns:
        Dependency function that checks for the required role
    """

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role.value != required_role:
            raise AuthorizationError(
                message=f"{required_role} access required",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required_role=required_role,
            )
        return current_user

    return role_checker


def get_current_org_id(
    current_user: User = Depends(get_current_user),
) -> int:
    """
    Get current user's organization ID.

    WHY: Every query in this API is org-scoped; handlers that do not need
    the user object itself depend on this instead.
    """
    return current_user.org_id

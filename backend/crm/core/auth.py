"""
JWT bearer token utilities.

WHY: Sign-in happens in the identity service that fronts the CRM. This API
receives the resulting bearer token on every request and only needs to
verify it and read the ``user_id`` claim. Token creation is kept for
operators and tests that need to mint a token for a known user.
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from jose import jwt, JWTError

from crm.core.config import settings
from crm.core.exceptions import (
    TokenExpiredError,
    TokenInvalidError,
)


def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Token includes:
    - User data (user_id, org_id, role)
    - exp: Expiration time (default: settings.JWT_EXPIRATION_MINUTES)
    - iat: Issued at time
    - nbf: Not before time

    Args:
        data: Claims to encode in token
        expires_delta: Optional custom expiration time

    Returns:
        JWT token string

    Example:
        >>> token = create_access_token({"user_id": 1, "role": "ADMIN"})
        >>> verify_token(token)["user_id"]
        1
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.utcnow(),
            "nbf": datetime.utcnow(),
        }
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Args:
        token: JWT token string

    Returns:
        Decoded token payload

    Raises:
        TokenExpiredError: If token has expired
        TokenInvalidError: If token is malformed or signature invalid
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

    except jwt.ExpiredSignatureError:
        # WHY: Separate exception lets the frontend refresh instead of re-login
        raise TokenExpiredError(message="Token has expired")

    except JWTError as e:
        raise TokenInvalidError(
            message="Invalid token",
            error=str(e),
        )

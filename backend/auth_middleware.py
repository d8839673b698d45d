"""
Authentication Middleware
Validates Supabase JWT tokens and extracts user context
"""
import jwt
from typing import Optional, Dict, Any
from fastapi import Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from config import get_settings
from errors import UnauthenticatedError
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class AuthContext:
    """User authentication context"""

    def __init__(self, user_id: str, email: Optional[str] = None):
        self.user_id = user_id
        self.email = email

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "user_id": self.user_id,
            "email": self.email,
        }


def decode_token(token: str, jwt_secret: str) -> AuthContext:
    """Decode a Supabase access token into an AuthContext"""
    if not jwt_secret:
        logger.error("SUPABASE_JWT_SECRET not configured")
        raise UnauthenticatedError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            jwt_secret,
            algorithms=["HS256"],
            audience="authenticated"
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise UnauthenticatedError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Invalid token: missing user id")

    return AuthContext(user_id=user_id, email=payload.get("email"))


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> AuthContext:
    """
    Verify JWT token from Supabase and return user context.

    Usage in routes:
        @router.get("/protected")
        async def protected_route(auth: AuthContext = Depends(verify_token)):
            # auth.user_id, auth.email
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Missing bearer token")

    auth_context = decode_token(credentials.credentials, get_settings().supabase_jwt_secret)
    logger.debug(f"✓ Authenticated user: {auth_context.email} ({auth_context.user_id})")
    return auth_context

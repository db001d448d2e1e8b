"""
Security utilities for Supabase authentication and authorization.
"""
from typing import Optional
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt import decode as jwt_decode, InvalidTokenError
from apps.core.exceptions import AuthorizationError
from apps.core.settings import settings

logger = structlog.get_logger(__name__)

# JWT token scheme
bearer_scheme = HTTPBearer()

ADMIN_ROLE = "admin"
SERVICE_ROLE = "service_role"


class SupabaseUser:
    """User object extracted from Supabase JWT token."""

    def __init__(self, user_id: str, email: Optional[str], payload: dict):
        self.id = user_id
        self.email = email
        self.payload = payload

    @property
    def role(self) -> Optional[str]:
        return self.payload.get("role")

    @property
    def is_admin(self) -> bool:
        app_metadata = self.payload.get("app_metadata") or {}
        return app_metadata.get("role") == ADMIN_ROLE or self.role == SERVICE_ROLE

    def __str__(self):
        return f"SupabaseUser(id={self.id}, email={self.email})"

    def __repr__(self):
        return self.__str__()


class SecurityUtils:
    """Security utility functions for Supabase."""

    @staticmethod
    def verify_supabase_token(token: str) -> Optional[dict]:
        """Verify and decode Supabase JWT token."""
        try:
            return jwt_decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience="authenticated"
            )
        except InvalidTokenError as e:
            logger.info("JWT validation failed", error=str(e))
            return None

    @staticmethod
    def extract_user_from_token(payload: dict) -> Optional[SupabaseUser]:
        """Extract user information from JWT payload."""
        user_id = payload.get("sub")
        if not user_id:
            return None
        return SupabaseUser(user_id=user_id, email=payload.get("email"), payload=payload)


class AuthenticationDependency:
    """Authentication dependency for FastAPI routes using Supabase."""

    @staticmethod
    def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
    ) -> SupabaseUser:
        """Get current authenticated user from Supabase JWT token."""
        credentials_exception = HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

        payload = SecurityUtils.verify_supabase_token(credentials.credentials)
        if payload is None:
            raise credentials_exception

        user = SecurityUtils.extract_user_from_token(payload)
        if user is None:
            raise credentials_exception

        return user

    @staticmethod
    def get_current_active_user(
        current_user: SupabaseUser = Depends(get_current_user)
    ) -> SupabaseUser:
        """Get current active user."""
        return current_user

    @staticmethod
    def require_admin(
        current_user: SupabaseUser = Depends(get_current_user)
    ) -> SupabaseUser:
        """Allow only admins and the service role through."""
        if not current_user.is_admin:
            logger.warning("Admin access denied", user_id=current_user.id)
            raise AuthorizationError("Admin privileges required")
        return current_user


# Convenience functions for dependency injection
get_current_user = AuthenticationDependency.get_current_user
get_current_active_user = AuthenticationDependency.get_current_active_user
require_admin = AuthenticationDependency.require_admin

"""
Bearer-token dependencies for protected routes.

``get_current_admin`` verifies the token before the route body runs; a
failure raises ``TokenVerificationError`` which the app renders as 401.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from adminauth.security.tokens import VerifiedToken
from adminauth.services.context import AuthContext

_bearer = HTTPBearer(auto_error=False)


def get_auth_context(request: Request) -> AuthContext:
    return request.app.state.auth


def get_current_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    ctx: AuthContext = Depends(get_auth_context),
) -> VerifiedToken:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx.token_service.verify(credentials.credentials.strip())


def require_role(role: str):
    """Dependency factory: the verified token must carry ``role``."""

    def _dependency(admin: VerifiedToken = Depends(get_current_admin)) -> VerifiedToken:
        if role not in admin.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return admin

    return _dependency

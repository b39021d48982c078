"""API dependencies for bearer-session authentication."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.services.auth import RequestContext, validate_session

bearer_scheme = HTTPBearer(auto_error=False)


def get_optional_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> RequestContext | None:
    """Resolve the request's session, or None for anonymous requests."""
    if credentials is None:
        return None
    return validate_session(db, credentials.credentials)


def require_context(
    ctx: RequestContext | None = Depends(get_optional_context),
) -> RequestContext:
    """Require an authenticated session."""
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return ctx

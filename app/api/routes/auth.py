"""Authentication routes for registration, login and logout."""

import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.dependencies import require_context
from app.core.config import settings
from app.core.database import get_db
from app.schemas.user import LoginRequest, Token, UserCreate, UserResponse
from app.services.auth import (
    RequestContext,
    authenticate_user,
    create_session,
    create_session_token,
    create_user,
    github_authorization_url,
    invalidate_session,
)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new user."""
    return create_user(db, user)


@router.post("/login", response_model=Token)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    """Login, open a session and receive a bearer token bound to it."""
    user = authenticate_user(db, login_data.username, login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    session = create_session(db, user)
    access_token, expires_at = create_session_token(user, session)
    return {"access_token": access_token, "token_type": "bearer", "expires_at": expires_at}


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    ctx: RequestContext = Depends(require_context),
    db: Session = Depends(get_db),
) -> None:
    """Invalidate the current session."""
    invalidate_session(db, ctx.session.id)


@router.get("/github")
def github_login() -> RedirectResponse:
    """Redirect to GitHub's authorize page with a fresh state cookie."""
    state = secrets.token_urlsafe(16)
    response = RedirectResponse(github_authorization_url(state), status_code=302)
    response.set_cookie(
        "github_oauth_state",
        state,
        max_age=600,
        httponly=True,
        samesite="lax",
        secure=not settings.DEBUG,
    )
    return response

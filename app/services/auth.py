"""Authentication service: password keys, login sessions and bearer tokens.

A bearer token is a signed JWT whose ``sid`` claim names a row in the
``sessions`` table. ``validate_session`` resolves a token into the explicit
``RequestContext`` that every billing operation receives.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.auth import AuthSession, Key
from app.models.user import User
from app.schemas.user import TokenData, UserCreate

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"


@dataclass(frozen=True)
class RequestContext:
    """Authenticated identity of the current request."""

    user: User
    session: AuthSession


def email_key_id(email: str) -> str:
    return f"email:{email.lower()}"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> TokenData:
    """Decode and validate a JWT token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise credentials_exception from None
    username = payload.get("sub")
    if username is None:
        raise credentials_exception
    return TokenData(username=username, session_id=payload.get("sid"))


def get_user_by_username(db: Session, username: str) -> User | None:
    """Get a user by username."""
    return db.query(User).filter(User.username == username).first()


def get_user_by_email(db: Session, email: str) -> User | None:
    """Get a user by email."""
    return db.query(User).filter(User.email == email).first()


def create_user(db: Session, user_data: UserCreate) -> User:
    """Create a user together with its email/password key."""
    if get_user_by_username(db, user_data.username):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username already registered",
        )
    if get_user_by_email(db, user_data.email):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email already registered",
        )

    user = User(username=user_data.username, email=user_data.email)
    user.keys.append(
        Key(
            id=email_key_id(user_data.email),
            hashed_password=get_password_hash(user_data.password),
        )
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered user %s", user.id)
    return user


def authenticate_user(db: Session, username: str, password: str) -> User | None:
    """Authenticate a user by username and password."""
    user = get_user_by_username(db, username)
    if not user or not user.is_active:
        return None
    key = db.get(Key, email_key_id(user.email))
    if not key or not key.hashed_password:
        return None
    if not verify_password(password, key.hashed_password):
        return None
    return user


def create_session(db: Session, user: User) -> AuthSession:
    """Open a new login session for ``user``."""
    session = AuthSession(
        id=secrets.token_urlsafe(32),
        user_id=user.id,
        expires_at=datetime.now(UTC) + timedelta(days=settings.SESSION_EXPIRE_DAYS),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def create_session_token(user: User, session: AuthSession) -> tuple[str, datetime]:
    """Issue a bearer token bound to ``session``."""
    expires_delta = min(
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        timedelta(days=settings.SESSION_EXPIRE_DAYS),
    )
    token = create_access_token(
        data={"sub": user.username, "sid": session.id}, expires_delta=expires_delta
    )
    return token, datetime.now(UTC) + expires_delta


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def validate_session(db: Session, token: str) -> RequestContext | None:
    """Resolve a bearer token into a request context.

    Returns None for malformed tokens, unknown or expired sessions and
    inactive users. Expired sessions are removed.
    """
    try:
        token_data = decode_token(token)
    except HTTPException:
        return None
    if not token_data.session_id:
        return None

    session = db.get(AuthSession, token_data.session_id)
    if session is None:
        return None
    if _as_utc(session.expires_at) <= datetime.now(UTC):
        invalidate_session(db, session.id)
        return None

    user = session.user
    if not user.is_active or user.username != token_data.username:
        return None
    return RequestContext(user=user, session=session)


def invalidate_session(db: Session, session_id: str) -> None:
    """Delete a login session; unknown ids are ignored."""
    session = db.get(AuthSession, session_id)
    if session is not None:
        db.delete(session)
        db.commit()


def github_authorization_url(state: str) -> str:
    """Build the GitHub OAuth authorize URL for the configured client."""
    query = urlencode(
        {
            "client_id": settings.GITHUB_CLIENT_ID,
            "redirect_uri": settings.GITHUB_REDIRECT_URI,
            "scope": "read:user user:email",
            "state": state,
        }
    )
    return f"{GITHUB_AUTHORIZE_URL}?{query}"

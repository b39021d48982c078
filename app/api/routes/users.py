"""User API routes."""

from fastapi import APIRouter, Depends

from app.api.dependencies import require_context
from app.schemas.user import UserResponse
from app.services.auth import RequestContext

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserResponse)
def get_me(ctx: RequestContext = Depends(require_context)) -> UserResponse:
    """Get the authenticated user."""
    return UserResponse.model_validate(ctx.user)

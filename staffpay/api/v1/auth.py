from fastapi import APIRouter, HTTPException, status
from sqlalchemy import select

from staffpay.api.deps import DB, CurrentUser
from staffpay.core.security import verify_password, create_access_token
from staffpay.models.user import User
from staffpay.schemas.auth import LoginRequest, Token, UserOut

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
async def login(payload: LoginRequest, db: DB):
    result = await db.execute(select(User).where(User.email == payload.email))
    user = result.scalar_one_or_none()

    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Account is deactivated")

    return Token(access_token=create_access_token(user.id, user.role))


@router.get("/me", response_model=UserOut)
async def me(current_user: CurrentUser):
    return current_user

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status

from flora_portal.config import settings
from flora_portal.models.user import Token, UserLogin, WordPressUser
from flora_portal.services.auth import (
    authenticate_wordpress_user,
    create_access_token,
    get_current_active_user,
)
from flora_portal.utils.logger import logger

router = APIRouter(prefix="/api/auth", tags=["authentication"])


@router.post("/login", response_model=Token)
async def login(user_credentials: UserLogin, request: Request):
    rid = getattr(request.state, "rid", "unknown")
    logger.info(f"Login attempt username={user_credentials.username} rid={rid}")

    user = await authenticate_wordpress_user(user_credentials.username, user_credentials.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = create_access_token(
        user, expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    logger.info(f"Login succeeded user_id={user.id} rid={rid}")
    return Token(access_token=access_token, token_type="bearer", user=user)


@router.get("/me", response_model=WordPressUser)
async def get_current_user_info(current_user: WordPressUser = Depends(get_current_active_user)):
    return current_user

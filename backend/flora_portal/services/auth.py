import base64
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError

from flora_portal.config import settings
from flora_portal.models.user import WordPressUser
from flora_portal.services.flora_api_client import FloraApiClient, flora_client, safe_json
from flora_portal.utils.logger import logger

security = HTTPBearer()

# Any one of these WordPress capabilities grants portal access.
ADMIN_CAPABILITIES = (
    "manage_options",
    "edit_plugins",
    "edit_themes",
    "manage_woocommerce",
    "view_woocommerce_reports",
)


def has_admin_capability(user: WordPressUser) -> bool:
    return any(user.capabilities.get(cap) for cap in ADMIN_CAPABILITIES)


async def authenticate_wordpress_user(
    username: str,
    password: str,
    client: FloraApiClient = flora_client,
) -> Optional[WordPressUser]:
    """Check credentials against ``wp/v2/users/me`` and require an admin capability.

    ``password`` is normally a WordPress application password.
    """
    if not username or not password:
        return None

    resp = await client.request(
        "GET",
        "wp/v2/users/me",
        params={"context": "edit"},
        auth="none",
        headers={"Authorization": _basic_header(username, password)},
    )
    if not resp.is_success:
        logger.warning(f"Authentication failed: WordPress returned {resp.status_code} for {username}")
        return None

    payload = safe_json(resp) or {}
    try:
        user = WordPressUser(
            id=payload.get("id"),
            username=payload.get("username") or payload.get("slug") or username,
            email=payload.get("email"),
            display_name=payload.get("name") or username,
            roles=payload.get("roles") or [],
            capabilities=payload.get("capabilities") or {},
        )
    except ValidationError as e:
        logger.error(f"Unexpected users/me payload for {username}: {e}")
        return None

    if not has_admin_capability(user):
        logger.warning(f"Authentication failed: {username} lacks admin capabilities")
        return None

    logger.info(f"User authenticated successfully: {username}")
    return user


def _basic_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def create_access_token(user: WordPressUser, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(user.id),
        "username": user.username,
        "email": user.email,
        "name": user.display_name,
        "roles": user.roles,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.ALGORITHM)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> WordPressUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.error(f"JWT validation error: {str(e)}")
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None:
        raise credentials_exception

    return WordPressUser(
        id=int(user_id),
        username=payload.get("username") or "",
        email=payload.get("email"),
        display_name=payload.get("name") or "",
        roles=payload.get("roles") or [],
    )


async def get_current_active_user(current_user: WordPressUser = Depends(get_current_user)) -> WordPressUser:
    return current_user

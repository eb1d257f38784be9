"""API Dependencies - Authentication"""
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from typing import Optional

from domain.auth import AdminUser, AdminUserInDB
from infrastructure.config import settings
from infrastructure.security import (
    decode_access_token, get_password_hash, verify_cron_secret, verify_webhook_signature,
)
from api.schemas import TokenData

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Back-office accounts; the admin password comes from settings
_admin_users_db = {
    settings.admin_username: {
        "username": settings.admin_username,
        "full_name": "Operations Admin",
        "email": "ops@example.com",
        "plain_password": settings.admin_password,  # Will be hashed on first access
        "disabled": False,
    }
}

admin_users_db = _admin_users_db

# Cache for hashed passwords
_password_hash_cache = {}

def _get_hashed_password(username: str) -> str:
    """Lazily hash passwords on first access"""
    if username not in _password_hash_cache:
        user = _admin_users_db.get(username)
        if user and "plain_password" in user:
            _password_hash_cache[username] = get_password_hash(user["plain_password"])
    return _password_hash_cache.get(username, "")

def get_user(db, username: str) -> Optional[AdminUserInDB]:
    if username in db:
        user_dict = db[username].copy()
        if "plain_password" in user_dict:
            user_dict["hashed_password"] = _get_hashed_password(username)
            del user_dict["plain_password"]
        return AdminUserInDB(**user_dict)
    return None

async def get_current_user(token: str = Depends(oauth2_scheme)) -> AdminUserInDB:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_access_token(token)
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
        token_data = TokenData(username=username)
    except JWTError:
        raise credentials_exception

    user = get_user(_admin_users_db, username=token_data.username)
    if user is None:
        raise credentials_exception
    return user

async def get_current_active_user(current_user: AdminUser = Depends(get_current_user)) -> AdminUser:
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user

async def require_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Cron triggers authenticate with `Authorization: Bearer <cron_secret>`"""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token or not verify_cron_secret(token):
        raise HTTPException(status_code=401, detail="Unauthorized")

async def require_webhook_signature(
    request: Request,
    payment_signature: Optional[str] = Header(None)
) -> None:
    """Payment events carry `Payment-Signature: <hex HMAC-SHA256 of the raw body>`"""
    body = await request.body()
    if not payment_signature or not verify_webhook_signature(body, payment_signature):
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt
from passlib.context import CryptContext

from infrastructure.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b"
)


def _prepare_password(password: str) -> str:
    """bcrypt only reads 72 bytes; longer secrets are pre-hashed with SHA256."""
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        return hashlib.sha256(password_bytes).hexdigest()
    return password


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(_prepare_password(plain_password), hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(_prepare_password(password))


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token for an admin"""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])


def verify_cron_secret(token: str) -> bool:
    """Constant-time check of the bearer token sent by the cron trigger"""
    return hmac.compare_digest(token.encode('utf-8'), settings.cron_secret.encode('utf-8'))


def sign_webhook_payload(payload: bytes) -> str:
    """Hex HMAC-SHA256 of a raw webhook body keyed with the webhook secret"""
    return hmac.new(settings.webhook_secret.encode('utf-8'), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str) -> bool:
    return hmac.compare_digest(sign_webhook_payload(payload).encode('utf-8'), signature.encode('utf-8'))

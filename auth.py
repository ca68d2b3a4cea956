import hashlib
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import Settings, get_settings
from schemas import Caller, User
from storage import DuplicateEmail, Store

logger = logging.getLogger(__name__)

JWT_ALGO = "HS256"
security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def _claims(user: dict) -> dict:
    return {"id": user["id"], "email": user["email"], "role": user["role"]}


def create_access_token(user: dict, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_MINUTES)
    return jwt.encode({**_claims(user), "exp": exp}, settings.JWT_SECRET, algorithm=JWT_ALGO)


def create_refresh_token(user: dict, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_DAYS)
    return jwt.encode({**_claims(user), "exp": exp}, settings.JWT_REFRESH_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str, secret: str) -> dict:
    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


class RefreshTokenRegistry:
    """Refresh tokens currently honoured, keyed to their expiry.

    Shared by every request thread, so all access goes through the lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, datetime] = {}

    def _purge(self, now: datetime) -> None:
        for token in [t for t, exp in self._tokens.items() if exp <= now]:
            del self._tokens[token]

    def add(self, token: str, expires_at: datetime) -> None:
        with self._lock:
            self._purge(datetime.now(timezone.utc))
            self._tokens[token] = expires_at

    def is_active(self, token: Optional[str]) -> bool:
        if not token:
            return False
        with self._lock:
            self._purge(datetime.now(timezone.utc))
            return token in self._tokens

    def revoke(self, token: Optional[str]) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def __len__(self):
        with self._lock:
            return len(self._tokens)


refresh_tokens = RefreshTokenRegistry()


def get_refresh_tokens() -> RefreshTokenRegistry:
    return refresh_tokens


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Caller:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Access denied: No token")
    payload = decode_token(credentials.credentials, settings.JWT_SECRET)
    if not payload.get("id") or not payload.get("role"):
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return Caller(id=payload["id"], email=payload.get("email"), role=payload["role"])


def ensure_admin(store: Store, settings: Settings) -> Optional[dict]:
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return None
    existing = store.find_user_by_email(settings.ADMIN_EMAIL)
    if existing:
        return existing
    admin = User(
        name="Admin",
        email=settings.ADMIN_EMAIL,
        password_hash=hash_password(settings.ADMIN_PASSWORD),
        role="admin",
    )
    try:
        user = store.create_user(admin.model_dump())
    except DuplicateEmail:
        return store.find_user_by_email(settings.ADMIN_EMAIL)
    logger.info(f"Created admin user {settings.ADMIN_EMAIL}")
    return user

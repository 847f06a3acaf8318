from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.settings import Settings, get_settings
from app.models.user import User


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: str
    role: str


def _normalize_email(value: str) -> str:
    return str(value or "").strip().lower()


def _is_admin_email(email: str, settings: Settings) -> bool:
    normalized = _normalize_email(email)
    if not normalized:
        return False
    return normalized in (settings.admin_emails or set())


def _require_supabase_config(settings: Settings) -> str:
    if not settings.supabase_url:
        raise HTTPException(status_code=500, detail="SUPABASE_URL is not configured")
    return settings.supabase_url


def decode_bearer_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a Supabase access token and return its claims.

    Projects on the legacy shared secret sign with HS256; everything else
    is checked against the project's JWKS.
    """
    import jwt

    audience = settings.supabase_jwt_audience or "authenticated"
    try:
        if settings.supabase_jwt_secret:
            payload = jwt.decode(
                token,
                settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=audience,
                options={"require": ["exp", "sub"]},
            )
            return dict(payload)

        supabase_url = _require_supabase_config(settings).rstrip("/")
        jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
        issuer = settings.supabase_jwt_issuer or f"{supabase_url}/auth/v1"
        jwks_client = jwt.PyJWKClient(jwks_url)
        signing_key = jwks_client.get_signing_key_from_jwt(token).key
        payload = jwt.decode(
            token,
            signing_key,
            algorithms=["ES256", "RS256"],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "sub"]},
        )
        return dict(payload)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid bearer token")


def get_bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    return token


def user_id_from_request(request: Request, settings: Settings) -> str | None:
    """Return the token's ``sub`` when the request carries a valid user token."""
    token = get_bearer_token(request)
    claims = decode_bearer_token(token, settings)
    return str(claims.get("sub") or "").strip() or None


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CurrentUser:
    token = get_bearer_token(request)
    claims = decode_bearer_token(token, settings)
    user_id = str(claims.get("sub") or "").strip()
    email = _normalize_email(claims.get("email") or "")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        user_meta = claims.get("user_metadata") or {}
        if not isinstance(user_meta, dict):
            user_meta = {}
        name = str(user_meta.get("full_name") or user_meta.get("name") or "").strip() or None
        user = User(
            id=user_id,
            email=email or None,
            name=name,
            role="user",
            credits=0,
            subscription_tier="free",
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            user = db.query(User).filter(User.id == user_id).first()
            if user is None:
                raise HTTPException(status_code=409, detail="Account email is already registered")
        else:
            db.refresh(user)
            logger.info("security.user.created user_id=%s", user_id)

    role = (user.role or "user").lower()
    if _is_admin_email(user.email or email, settings):
        role = "admin"
    return CurrentUser(id=user.id, email=user.email or email, role=role)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if (user.role or "").lower() != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user

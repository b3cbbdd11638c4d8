import hashlib
import logging
import time
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt

from paygate.config import Settings, get_settings

logger = logging.getLogger(__name__)

ANONYMOUS_PREFIX = "anonymous_"


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def decode_token(token: str, settings: Settings) -> dict:
    if not settings.jwt_secret:
        raise JWTError("JWT_SECRET is not configured")
    claims = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    if not claims.get("sub"):
        raise JWTError("token has no subject")
    return claims


def require_admin(
    authorization: str = Header(...),
    settings: Settings = Depends(get_settings),
) -> str:
    token = _bearer(authorization)
    try:
        if token is None:
            raise JWTError("malformed authorization header")
        claims = decode_token(token, settings)
    except JWTError:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    if claims.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return claims["sub"]


def authenticated_uid(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Subject of a valid bearer token, or None. Invalid tokens are not an error."""
    token = _bearer(authorization)
    if token is None:
        return None
    try:
        return decode_token(token, settings)["sub"]
    except JWTError as exc:
        logger.info("Invalid token, proceeding as anonymous: %s", exc)
        return None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


def anonymous_uid(ip: str) -> str:
    digest = hashlib.md5(f"{ip}_{int(time.time() * 1000)}".encode()).hexdigest()
    return ANONYMOUS_PREFIX + digest[:16]


def payer_uid(request: Request, uid: Optional[str] = Depends(authenticated_uid)) -> str:
    """Authenticated user id, or a fresh anonymous one for guest checkouts."""
    return uid or anonymous_uid(client_ip(request))

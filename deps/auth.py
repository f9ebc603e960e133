# deps/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from config import JWT_ALGORITHM, JWT_SECRET_KEY
from exceptions import UnauthorizedError
from services.audit import Caller

# Tokens are issued by the auth service; this app only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(data: dict, minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    """Mint a token with the same claims the auth service issues (scripts, tests)."""
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Could not validate credentials")
    if not payload.get("sub"):
        raise UnauthorizedError("Could not validate credentials")
    return payload


def client_ip(request: Request) -> Optional[str]:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


def get_current_caller(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Caller:
    if not token:
        raise UnauthorizedError("Authentication required")
    payload = decode_token(token)
    return Caller(
        id=str(payload["sub"]),
        username=payload.get("username") or str(payload["sub"]),
        role=payload.get("role") or "user",
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt

from schemas import Role

logger = logging.getLogger("fittrack.security")

ALGORITHM = "HS256"
TOKEN_TTL = timedelta(hours=9)


class Unauthenticated(HTTPException):
    def __init__(self):
        super().__init__(status_code=401, detail="forbidden! No token provided.")


class InvalidToken(HTTPException):
    def __init__(self):
        super().__init__(status_code=403, detail="Token is not valid.")


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=403, detail=detail)


def token_secret() -> str:
    secret = os.getenv("TOKEN_SECRET")
    if not secret:
        raise HTTPException(status_code=500, detail="Token secret not configured")
    return secret


def issue_token(payload: Dict[str, Any], now: Optional[datetime] = None) -> str:
    claims = dict(payload)
    claims["exp"] = (now or datetime.now(timezone.utc)) + TOKEN_TTL
    logger.info("Issuing token for %s", claims.get("email"))
    return jwt.encode(claims, token_secret(), algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, token_secret(), algorithms=[ALGORITHM])
    except JWTError:
        raise InvalidToken()


async def verify_token(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    if not authorization or not authorization.strip():
        raise Unauthenticated()
    parts = authorization.split(" ")
    if len(parts) < 2 or not parts[1]:
        raise InvalidToken()
    return decode_token(parts[1])


def claim_role(claims: Dict[str, Any]) -> Optional[Role]:
    try:
        return Role(claims.get("role"))
    except ValueError:
        return None


def require_role(role: Role, detail: str) -> Callable:
    async def gate(claims: Dict[str, Any] = Depends(verify_token)) -> Dict[str, Any]:
        if claim_role(claims) is not role:
            raise Forbidden(detail)
        return claims

    return gate


verify_admin = require_role(Role.admin, "Admins only")
verify_trainer = require_role(Role.trainer, "Trainers only")

"""Request tracking middleware and bearer token authentication."""

import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Header, HTTPException, Request, status
from jose import JWTError, jwt
from loguru import logger

from .config import settings

TOKEN_ISSUER = "eventcraft-api"
BEARER_PREFIX = "Bearer "


async def add_request_id(request: Request, call_next):
    """Tag the request with an id and time it.

    The id comes from ``X-Request-ID`` when the client sends one. Log records
    emitted while the request runs carry it as ``request_id``.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()

    with logger.contextualize(request_id=request_id):
        client = request.client.host if request.client else None
        logger.bind(client=client).debug(f"{request.method} {request.url.path}")

        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

        log = logger.warning if response.status_code >= 500 else logger.debug
        log(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed_ms:.1f}ms")
        return response


def create_token(user_id: str, email: str | None = None) -> str:
    """Issue a signed access token whose subject is the user id."""
    issued_at = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": user_id,
        "iss": TOKEN_ISSUER,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.jwt_expiration_minutes),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry and return the claims.

    Tokens without an issuer are accepted so older tokens keep working;
    a foreign issuer is rejected.

    Raises:
        JWTError: Signature, expiry or issuer is invalid.
    """
    claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if claims.get("iss", TOKEN_ISSUER) != TOKEN_ISSUER:
        raise JWTError("Unexpected token issuer")
    return claims


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(authorization: str = Header()) -> str:
    """Resolve the user id from the ``Authorization: Bearer`` header.

    Raises:
        HTTPException: 401 when the token is missing its prefix, invalid,
            expired or has no subject.
    """
    if not authorization.startswith(BEARER_PREFIX):
        raise _unauthorized()

    try:
        claims = decode_token(authorization[len(BEARER_PREFIX) :].strip())
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        raise _unauthorized() from e

    user_id = claims.get("sub")
    if not user_id:
        raise _unauthorized()
    return user_id

"""
verify.py
---------
Purpose:
    Bearer JWT verification for the digest API.

Notes:
    - Tokens are issued by the (external) auth layer; only the `sub` claim
      is used here, as the user id.
    - HS256 with AUTH_JWT_SECRET when configured, otherwise ES256 keys
      fetched from AUTH_JWKS_URL.
"""

from functools import lru_cache

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from app.config import settings

_security = HTTPBearer()


@lru_cache(maxsize=1)
def _jwk_client() -> PyJWKClient:
    if not settings.AUTH_JWKS_URL:
        raise RuntimeError("Neither AUTH_JWT_SECRET nor AUTH_JWKS_URL is configured")
    return PyJWKClient(settings.AUTH_JWKS_URL)


def verify_jwt(token: str) -> dict:
    try:
        if settings.AUTH_JWT_SECRET:
            key, algorithms = settings.AUTH_JWT_SECRET, ["HS256"]
        else:
            key, algorithms = _jwk_client().get_signing_key_from_jwt(token).key, ["ES256"]

        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.AUTH_AUDIENCE,
            options={"verify_exp": True},
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    return verify_jwt(credentials.credentials)


def current_user_id(claims: dict = Depends(auth_dependency)) -> str:
    """Resolve the authenticated user id from the verified claims."""
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token: missing user ID"
        )
    return user_id

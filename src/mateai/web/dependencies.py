"""Shared request helpers for the Web API."""

from __future__ import annotations

from fastapi import Header, HTTPException, status

from mateai.core.errors import (
    InvalidTransition,
    MateAIError,
    TransportError,
    UserInputError,
)


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Cabecera Authorization inválida",
        )
    return token.strip()


def to_http_exception(error: MateAIError) -> HTTPException:
    """Map a practice error to an HTTP error with the Spanish message as detail.

    - UserInputError -> 400
    - InvalidTransition -> 409
    - backend 401/404 -> passed through
    - any other transport, parse or generation failure -> 502
    """
    if isinstance(error, UserInputError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, InvalidTransition):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, TransportError) and error.status_code in (401, 404):
        code = error.status_code
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return HTTPException(status_code=code, detail=str(error))

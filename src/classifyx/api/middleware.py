"""Middleware: API key authentication for the UI shell."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from classifyx.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)
_header_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


def _key_matches(candidate: str | None, expected: str) -> bool:
    return candidate is not None and secrets.compare_digest(candidate.encode(), expected.encode())


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    header_key: Annotated[str | None, Depends(_header_scheme)],
) -> None:
    """Check the caller's key against CLASSIFYX_API_KEY.

    With no key configured every request passes. Otherwise the key must be
    sent as 'Authorization: Bearer <key>' or 'X-API-Key: <key>'.
    """
    settings: Settings = request.app.state.settings
    expected = settings.api_key
    if expected is None:
        return

    bearer_key = credentials.credentials if credentials is not None else None
    if _key_matches(bearer_key, expected) or _key_matches(header_key, expected):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing API key",
        headers={"WWW-Authenticate": "Bearer"},
    )

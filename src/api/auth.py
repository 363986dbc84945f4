"""Bearer token guards for admin and scheduler endpoints.

Admin (ADMIN_API_KEY):
  key set + valid token   -> allow
  key set + wrong/missing -> 401
  key empty + DEBUG=true  -> allow (local dev)
  key empty + DEBUG=false -> 403

Cron (CRON_SECRET_KEY):
  secret set + valid token -> allow
  anything else            -> 401 {"error": "Unauthorized"}
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.dependencies import get_settings
from api.config import Settings

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class CronUnauthorized(Exception):
    """Rendered as 401 {"error": "Unauthorized"} by the app exception handler."""


def _matches(credentials: HTTPAuthorizationCredentials | None, key: str) -> bool:
    return credentials is not None and secrets.compare_digest(credentials.credentials, key)


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    key = settings.admin_api_key

    if not key:
        if settings.debug:
            return
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin API key not configured. Set ADMIN_API_KEY.",
        )

    if not _matches(credentials, key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_cron_secret(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    key = settings.cron_secret_key
    if not key or not _matches(credentials, key):
        logger.warning(f"Rejected cron call to {request.url.path}")
        raise CronUnauthorized()

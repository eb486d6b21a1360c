"""
Shared-secret authentication for the ingest endpoint.

The poller authenticates with the SYNC_API_KEY configured on the server.

Token extraction order:
1. X-API-Key header
2. Authorization: Bearer <token> header

When no key is configured the endpoint is open. That is an explicit,
documented insecure default for local setups; a warning is logged on every
unauthenticated ingest so it does not go unnoticed in production.

Usage:
    from api.auth import require_sync_key

    @router.post("/api/tfs-hours-sync", dependencies=[Depends(require_sync_key)])
    def ingest(...):
        ...
"""

import logging
import secrets

from fastapi import Depends, HTTPException, Request

from api.deps import get_settings
from tfs_hours.config import Settings

logger = logging.getLogger(__name__)


def _get_token_from_request(request: Request) -> str | None:
    """Extract the shared secret from headers, or None."""
    api_key = request.headers.get("X-API-Key")
    if api_key:
        return api_key

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]

    return None


def require_sync_key(request: Request, settings: Settings = Depends(get_settings)) -> str:
    """
    Dependency that requires the configured shared secret.

    Returns the validated key, or "auth_disabled" when no key is configured.
    Raises HTTPException 401 on a missing or wrong key.
    """
    expected = settings.sync_api_key
    if not expected:
        logger.warning(
            "SYNC_API_KEY not set - ingest authentication disabled for %s",
            request.url.path,
        )
        return "auth_disabled"

    provided = _get_token_from_request(request)
    if not provided:
        logger.warning(f"Auth failed: no key provided for {request.url.path}")
        raise HTTPException(status_code=401, detail="unauthorized")

    # Constant-time comparison
    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Auth failed: invalid key for {request.url.path}")
        raise HTTPException(status_code=401, detail="unauthorized")

    return provided

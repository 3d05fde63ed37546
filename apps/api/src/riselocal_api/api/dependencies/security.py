import secrets

from fastapi import Header, HTTPException, Request, status
from loguru import logger

from riselocal_api.core.settings import settings


async def require_admin_api_key(
    request: Request,
    x_api_key: str = Header("", alias="X-API-Key"),
) -> None:
    """Guard admin corrections and counters; closed until a key is configured."""

    expected = settings.admin_api_key
    if not expected:
        logger.bind(path=request.url.path).warning("Rejected admin request", reason="admin_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API key not configured",
        )

    if not secrets.compare_digest(x_api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.bind(path=request.url.path).warning("Rejected admin request", reason="invalid_api_key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

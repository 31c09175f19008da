"""FastAPI authentication dependencies for the pulse API."""
import logging
import os
from typing import Annotated

from fastapi import Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader


logger = logging.getLogger(__name__)

# Define API key header security scheme
api_key_header = APIKeyHeader(name="X-PULSE-API-KEY", auto_error=False)


async def require_api_key(
    api_key: Annotated[str | None, Security(api_key_header)] = None
) -> str:
    """Validate API key from request header.

    Args:
        api_key: API key from X-PULSE-API-KEY header (optional)

    Returns:
        Validated API key

    Raises:
        HTTPException: 401 if API key is missing or invalid
    """
    expected_key = os.getenv("PULSE_API_KEY")

    if not expected_key:
        raise RuntimeError("PULSE_API_KEY environment variable not configured")

    # Return 401 for both missing AND invalid keys
    if not api_key or api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "API-Key"},
        )

    return api_key


async def verify_webhook_secret(
    authorization: Annotated[str | None, Header()] = None
) -> None:
    """Check the RevenueCat webhook Authorization header.

    Accepts the shared secret either bare or as ``Bearer <secret>``.
    When REVENUECAT_WEBHOOK_SECRET is unset, every request is accepted.

    Raises:
        HTTPException: 401 if the header does not carry the secret
    """
    secret = os.getenv("REVENUECAT_WEBHOOK_SECRET")
    if not secret:
        return

    if authorization not in (secret, f"Bearer {secret}"):
        logger.error("Invalid webhook authorization header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

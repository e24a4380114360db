"""Bearer token authentication for ingress endpoints."""

import secrets
from typing import Optional

from fastapi import Depends, Header

from markdown_embed.config import Settings
from markdown_embed.dependencies import get_app_settings
from markdown_embed.utils.errors import AuthenticationError
from markdown_embed.utils.logging import get_logger

logger = get_logger("auth")

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    if authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):]
    return authorization


def is_authorized(authorization: Optional[str], expected_token: Optional[str]) -> bool:
    """Exact match of the bearer token against the configured secret."""
    token = extract_bearer_token(authorization)
    if not token or not expected_token:
        return False
    return secrets.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8"))


async def require_api_token(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Require ``Authorization: Bearer <AUTH_API_TOKEN>``.

    A missing AUTH_API_TOKEN rejects every request.
    """
    if not settings.auth.api_token:
        logger.error("AUTH_API_TOKEN is not set; rejecting request")
        raise AuthenticationError()

    if not is_authorized(authorization, settings.auth.api_token):
        logger.warning("Unauthorized request")
        raise AuthenticationError()


BearerAuthDep = Depends(require_api_token)

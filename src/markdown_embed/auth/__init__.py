"""Ingress authentication."""

from markdown_embed.auth.bearer import BearerAuthDep, is_authorized, require_api_token

__all__ = ["BearerAuthDep", "is_authorized", "require_api_token"]

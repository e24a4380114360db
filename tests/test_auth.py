"""Unit tests for bearer token authentication."""

import pytest
from unittest.mock import MagicMock

from markdown_embed.auth.bearer import extract_bearer_token, is_authorized, require_api_token
from markdown_embed.config import Settings
from markdown_embed.utils.errors import AuthenticationError


@pytest.fixture
def mock_settings():
    """Create a mock settings object."""
    settings = MagicMock(spec=Settings)
    settings.auth = MagicMock()
    settings.auth.api_token = "valid-token-123"
    return settings


class TestExtractBearerToken:
    def test_bearer_prefix(self):
        assert extract_bearer_token("Bearer abc") == "abc"

    def test_missing_header(self):
        assert extract_bearer_token(None) is None
        assert extract_bearer_token("") is None


class TestIsAuthorized:
    def test_exact_match(self):
        assert is_authorized("Bearer secret", "secret") is True

    def test_mismatch(self):
        assert is_authorized("Bearer secret2", "secret") is False
        assert is_authorized("Bearer Secret", "secret") is False

    def test_no_expected_token(self):
        assert is_authorized("Bearer secret", None) is False


class TestRequireApiToken:
    """Test suite for the require_api_token dependency."""

    @pytest.mark.asyncio
    async def test_valid_token(self, mock_settings):
        await require_api_token(authorization="Bearer valid-token-123", settings=mock_settings)

    @pytest.mark.asyncio
    async def test_invalid_token_raises(self, mock_settings):
        with pytest.raises(AuthenticationError) as exc_info:
            await require_api_token(authorization="Bearer wrong", settings=mock_settings)

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_header_raises(self, mock_settings):
        with pytest.raises(AuthenticationError):
            await require_api_token(authorization=None, settings=mock_settings)

    @pytest.mark.asyncio
    async def test_unconfigured_token_rejects_everything(self, mock_settings):
        mock_settings.auth.api_token = None

        with pytest.raises(AuthenticationError):
            await require_api_token(authorization="Bearer anything", settings=mock_settings)

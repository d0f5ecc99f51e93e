"""Unit tests for the admin API key guard."""

import asyncio
from unittest.mock import patch

import pytest

from anonchat.core.auth import parse_api_keys, validate_api_key, verify_api_key
from anonchat.core.errors import AuthenticationAppError


class TestParseAPIKeys:

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("my-secret-key", {"my-secret-key"}),
            ("key1 , key2  ,  key3", {"key1", "key2", "key3"}),
            ("key1,key2,key1", {"key1", "key2"}),
            ("   ,  ,  ", set()),
            ("", set()),
            (None, set()),
        ],
    )
    def test_parse(self, raw, expected) -> None:
        assert parse_api_keys(raw) == expected


class TestValidateAPIKey:

    @patch("anonchat.core.auth.settings")
    def test_bypassed_when_auth_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        validate_api_key("any-random-key")
        validate_api_key("")

    @patch("anonchat.core.auth.settings")
    def test_raises_when_no_keys_configured(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = None

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("some-key")

        assert exc_info.value.code == "api_keys_not_configured"
        assert "APP_API_KEYS" in exc_info.value.details["hint"]

    @patch("anonchat.core.auth.settings")
    def test_accepts_any_configured_key(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key-1,ops-key-2"

        validate_api_key("ops-key-1")
        validate_api_key("ops-key-2")

    @patch("anonchat.core.auth.settings")
    def test_rejects_unknown_key_without_echoing_it(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key-1"

        with pytest.raises(AuthenticationAppError) as exc_info:
            validate_api_key("guess")

        assert exc_info.value.code == "invalid_api_key"
        assert exc_info.value.details == {"context": {"provided_key_length": 5}}
        assert "guess" not in exc_info.value.message


class TestVerifyAPIKey:

    @patch("anonchat.core.auth.settings")
    def test_missing_header_is_rejected(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key-1"

        with pytest.raises(AuthenticationAppError) as exc_info:
            asyncio.run(verify_api_key(None))

        assert exc_info.value.code == "missing_api_key"
        assert "X-API-Key" in exc_info.value.message

    @patch("anonchat.core.auth.settings")
    def test_invalid_key_is_rejected(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key-1"

        with pytest.raises(AuthenticationAppError) as exc_info:
            asyncio.run(verify_api_key("wrong"))

        assert exc_info.value.code == "invalid_api_key"

    @patch("anonchat.core.auth.settings")
    def test_valid_key_passes(self, mock_settings) -> None:
        mock_settings.app.api_key_required = True
        mock_settings.app.api_keys = "ops-key-1"

        assert asyncio.run(verify_api_key("ops-key-1")) is None

    @patch("anonchat.core.auth.settings")
    def test_skipped_when_disabled(self, mock_settings) -> None:
        mock_settings.app.api_key_required = False

        assert asyncio.run(verify_api_key(None)) is None


def test_session_endpoints_need_no_key(client) -> None:
    resp = client.get("/v1/session", headers={"X-Forwarded-For": "192.0.2.44"})

    assert resp.status_code == 200


def test_admin_accepts_second_configured_key(client) -> None:
    resp = client.delete(
        "/v1/admin/rate-limits/some-scope", headers={"X-API-Key": "test-api-key-456"}
    )

    assert resp.status_code == 200
    assert resp.json()["removed"] == 0

"""Tests for auth utility functions."""

from datetime import UTC

from gatehouse.auth.utils import (
    SystemClock,
    extract_bearer_token,
    generate_state_token,
    mask_sensitive_data,
)


class TestBearerExtraction:
    def test_valid_header(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"
        assert extract_bearer_token("bearer   abc ") == "abc"

    def test_invalid_headers(self):
        assert extract_bearer_token(None) is None
        assert extract_bearer_token("") is None
        assert extract_bearer_token("Basic dXNlcjpwYXNz") is None
        assert extract_bearer_token("Bearer") is None


class TestMasking:
    def test_mask_sensitive_data(self):
        masked = mask_sensitive_data(
            {
                "email": "user@example.com",
                "password": "hunter22",
                "refresh_token": "ey.abc",
                "nested": {"client_secret": "xyz"},
            }
        )

        assert masked["email"] == "user@example.com"
        assert masked["password"] == "hu***22"
        assert masked["refresh_token"] == "ey***bc"
        assert masked["nested"]["client_secret"] == "***"


class TestMisc:
    def test_state_tokens_are_random(self):
        tokens = {generate_state_token() for _ in range(50)}
        assert len(tokens) == 50

    def test_system_clock_is_utc(self):
        assert SystemClock().now().tzinfo is UTC

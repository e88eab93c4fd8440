"""Tests for password hashing, TOTP, cookie delivery and the expiry sweeper."""

import asyncio
from datetime import timedelta

import pytest

from gatehouse.auth.config.schema import CookieConfig, TokenConfig
from gatehouse.auth.delivery import CookieDelivery
from gatehouse.auth.password_hasher import BcryptPasswordHasher
from gatehouse.auth.sweeper import ExpirySweeper
from gatehouse.auth.types import OAuthStateEntry, TokenKind, TokenRecord, TokenPair


class TestBcryptPasswordHasher:
    """Test bcrypt password hashing."""

    def test_rounds_range(self):
        with pytest.raises(ValueError):
            BcryptPasswordHasher(rounds=3)
        with pytest.raises(ValueError):
            BcryptPasswordHasher(rounds=32)

    @pytest.mark.asyncio
    async def test_hash_and_verify(self, hasher):
        hashed = await hasher.hash("correct horse")

        assert hashed.startswith("$2")
        assert hashed != await hasher.hash("correct horse")
        assert await hasher.verify("correct horse", hashed)
        assert not await hasher.verify("wrong horse", hashed)

    @pytest.mark.asyncio
    async def test_verify_without_hash(self, hasher):
        """OAuth-only users have no password hash."""
        assert not await hasher.verify("anything", None)
        assert not await hasher.verify("anything", "not-a-bcrypt-hash")

    @pytest.mark.asyncio
    async def test_empty_password(self, hasher):
        with pytest.raises(ValueError):
            await hasher.hash("")


class TestMfaVerifier:
    def test_current_code_verifies(self, mfa):
        secret = mfa.generate_secret()

        assert mfa.verify(secret, mfa.current_code(secret))

    def test_adjacent_window(self, mfa, clock):
        secret = mfa.generate_secret()
        code = mfa.current_code(secret)

        clock.advance(30)
        assert mfa.verify(secret, code)

        clock.advance(60)
        assert not mfa.verify(secret, code)

    def test_rejects_malformed_codes(self, mfa):
        secret = mfa.generate_secret()

        assert not mfa.verify(secret, "abcdef")
        assert not mfa.verify(secret, "")
        assert not mfa.verify(None, "123456")

    def test_provisioning_uri(self, mfa):
        uri = mfa.provisioning_uri(mfa.generate_secret(), "user@example.com")

        assert uri.startswith("otpauth://totp/")
        assert "issuer=Gatehouse" in uri


class TestCookieDelivery:
    """Test token cookie construction."""

    def pair(self, clock):
        return TokenPair(
            access_token="access",
            refresh_token="refresh",
            expires_in=900,
            refresh_expires_in=86400,
            refresh_jti="jti",
            refresh_expires_at=clock.now() + timedelta(days=1),
        )

    def test_token_cookies(self, clock):
        access, refresh = CookieDelivery().token_cookies(self.pair(clock))

        assert (access.name, access.value, access.max_age) == ("access_token", "access", 900)
        assert (refresh.name, refresh.max_age) == ("refresh_token", 86400)
        assert access.httponly and access.secure
        assert access.samesite == "Strict"

    def test_header_rendering(self, clock):
        delivery = CookieDelivery(CookieConfig(domain="example.com", path="/api"))
        header = delivery.token_cookies(self.pair(clock))[0].to_header()

        assert header.startswith("access_token=access")
        assert "Max-Age=900" in header
        assert "Domain=example.com" in header
        assert "Path=/api" in header
        assert "Secure" in header
        assert "HttpOnly" in header
        assert "SameSite=Strict" in header

    def test_insecure_cookies_for_local_development(self, clock):
        delivery = CookieDelivery(CookieConfig(secure=False))
        header = delivery.access_cookie("access", 900).to_header()

        assert "Secure" not in header

    def test_clearing_cookies(self):
        delivery = CookieDelivery()

        cleared = delivery.clear_token_cookies()
        assert [(c.name, c.value, c.max_age) for c in cleared] == [
            ("access_token", "", 0),
            ("refresh_token", "", 0),
        ]
        assert delivery.clear_oauth_state_cookie().max_age == 0
        assert delivery.oauth_state_cookie("state").max_age == 900


class TestExpirySweeper:
    """Test periodic cleanup."""

    @pytest.fixture
    def sweeper(self, store, states, revocations, clock):
        return ExpirySweeper(store, states, revocations, interval=0.01, state_ttl=900, clock=clock)

    @pytest.mark.asyncio
    async def test_sweep_removes_stale_state(self, sweeper, store, states, revocations, clock):
        now = clock.now()
        await store.save_token(
            TokenRecord(
                jti="old",
                user_id="u1",
                kind=TokenKind.REFRESH,
                created_at=now - timedelta(days=2),
                expires_at=now - timedelta(days=1),
            )
        )
        await store.save_token(
            TokenRecord(
                jti="live",
                user_id="u1",
                kind=TokenKind.REFRESH,
                expires_at=now + timedelta(days=1),
            )
        )
        states.put(OAuthStateEntry("stale", "google", now - timedelta(seconds=1000)))
        states.put(OAuthStateEntry("fresh", "google", now))
        revocations.add("gone", 10)
        clock.advance(11)

        removed = await sweeper.sweep()

        assert removed == {"tokens": 1, "oauth_states": 1, "revocations": 1}
        assert await store.get_token("live") is not None
        assert states.consume("fresh") is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweeper):
        await sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.03)

        await sweeper.stop()
        assert not sweeper.running

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, sweeper, store):
        calls = []

        async def failing(now):
            calls.append(now)
            raise RuntimeError("store unavailable")

        store.delete_expired_tokens = failing
        await sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert len(calls) >= 2


class TestTokenConfigDefaults:
    def test_secret_required(self):
        with pytest.raises(ValueError):
            TokenConfig()

"""
End-to-end tests for the authentication engine facade.

These drive login, MFA, refresh, logout, validation, authorization and
OAuth through ``AuthEngine`` and assert on the returned ``AuthResult``.
"""

import pytest

from gatehouse.auth.exceptions import (
    AccountLockedError,
    InvalidCredentialsError,
    InvalidMfaCodeError,
    TokenRevokedError,
)
from gatehouse.auth.types import AuthStatus, UserStatus


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_assigns_default_roles(self, engine, member_role, store, hasher):
        result = await engine.register("New@Example.com", "long-password", "New", "User")

        assert result.status is AuthStatus.SUCCESS
        assert result.profile.roles == ["member"]
        user = await store.get_user(result.user_id)
        assert user.email == "new@example.com"
        assert await hasher.verify("long-password", user.password_hash)

    @pytest.mark.asyncio
    async def test_register_validation(self, engine):
        result = await engine.register("not-an-email", "short", "", "User")

        assert result.status is AuthStatus.VALIDATION_FAILED
        assert set(result.error.errors) == {"email", "password", "first_name"}
        assert result.http_status == 400

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, engine, make_user):
        await make_user(email="taken@example.com")

        result = await engine.register("taken@example.com", "long-password", "A", "B")
        assert result.status is AuthStatus.CONFLICT


class TestLogin:
    """Test password login."""

    @pytest.mark.asyncio
    async def test_successful_login(self, engine, make_user, member_role, store):
        user = await make_user(role_ids=[member_role.id])

        result = await engine.login("USER@example.com", "correct-password", ip_address="10.0.0.1")

        assert result.ok
        assert result.status is AuthStatus.SUCCESS
        assert result.user_id == user.id
        assert result.profile.permissions == ["articles:read"]
        assert {cookie.name for cookie in result.cookies} == {"access_token", "refresh_token"}
        assert all(cookie.httponly and cookie.secure for cookie in result.cookies)
        assert (await store.get_user(user.id)).last_login is not None

        record = await store.get_token(result.tokens.refresh_jti)
        assert record.ip_address == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_unknown_email_and_wrong_password_look_alike(self, engine, make_user):
        await make_user()

        unknown = await engine.login("nobody@example.com", "whatever")
        wrong = await engine.login("user@example.com", "wrong-password")

        assert unknown.status is wrong.status is AuthStatus.INVALID_CREDENTIALS
        assert unknown.error.message == wrong.error.message
        assert unknown.http_status == wrong.http_status == 401

    @pytest.mark.asyncio
    async def test_missing_fields(self, engine):
        result = await engine.login("", "")
        assert result.status is AuthStatus.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_five_failures_lock_the_account(self, engine, make_user, clock):
        """Four failures report attempts left, the fifth locks, and the lock lapses."""
        await make_user()

        for remaining in (4, 3, 2, 1):
            result = await engine.login("user@example.com", "wrong-password")
            assert result.status is AuthStatus.INVALID_CREDENTIALS
            assert result.error.details["attempts_remaining"] == remaining

        fifth = await engine.login("user@example.com", "wrong-password")
        assert fifth.status is AuthStatus.ACCOUNT_LOCKED
        assert isinstance(fifth.error, AccountLockedError)
        assert fifth.http_status == 423

        correct = await engine.login("user@example.com", "correct-password")
        assert correct.status is AuthStatus.ACCOUNT_LOCKED

        clock.advance(1800)
        after = await engine.login("user@example.com", "correct-password")
        assert after.status is AuthStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, engine, make_user, store):
        user = await make_user()
        await engine.login("user@example.com", "wrong-password")
        await engine.login("user@example.com", "wrong-password")

        await engine.login("user@example.com", "correct-password")

        assert (await store.get_user(user.id)).failed_attempts == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [UserStatus.SUSPENDED, UserStatus.INACTIVE])
    async def test_disabled_accounts(self, engine, make_user, status):
        await make_user(status=status)

        result = await engine.login("user@example.com", "correct-password")
        assert result.status is AuthStatus.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_pending_account_may_sign_in(self, engine, make_user):
        await make_user(status=UserStatus.PENDING)

        result = await engine.login("user@example.com", "correct-password")
        assert result.status is AuthStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_session_cap_evicts_oldest_on_login(self, engine, make_user, tokens, clock):
        await make_user()
        logins = []
        for _ in range(4):
            logins.append(await engine.login("user@example.com", "correct-password"))
            clock.advance(1)

        with pytest.raises(TokenRevokedError):
            await tokens.verify_refresh(logins[0].tokens.refresh_token)
        for result in logins[1:]:
            await tokens.verify_refresh(result.tokens.refresh_token)


class TestMfa:
    """Test TOTP enrolment and the two-step login."""

    async def enrol(self, engine, mfa, user_id):
        setup = await engine.setup_mfa(user_id)
        secret = setup.data["secret"]
        enabled = await engine.enable_mfa(user_id, mfa.current_code(secret))
        assert enabled.ok
        return secret

    @pytest.mark.asyncio
    async def test_enrolment(self, engine, make_user, mfa, store):
        user = await make_user()

        setup = await engine.setup_mfa(user.id)
        assert setup.data["provisioning_uri"].startswith("otpauth://totp/")
        assert not (await store.get_user(user.id)).mfa_enabled

        wrong = await engine.enable_mfa(user.id, "000000")
        assert isinstance(wrong.error, InvalidMfaCodeError)

        await engine.enable_mfa(user.id, mfa.current_code(setup.data["secret"]))
        assert (await store.get_user(user.id)).mfa_enabled

    @pytest.mark.asyncio
    async def test_login_requires_second_step(self, engine, make_user, mfa):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)

        first = await engine.login("user@example.com", "correct-password")
        assert first.status is AuthStatus.MFA_REQUIRED
        assert first.mfa_required
        assert first.tokens is None
        assert first.mfa_token
        assert first.to_dict()["mfa_token"] == first.mfa_token

        second = await engine.verify_mfa(first.mfa_token, mfa.current_code(secret))
        assert second.status is AuthStatus.SUCCESS
        assert second.user_id == user.id
        assert second.tokens is not None

    @pytest.mark.asyncio
    async def test_challenge_is_single_use(self, engine, make_user, mfa):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)
        first = await engine.login("user@example.com", "correct-password")
        await engine.verify_mfa(first.mfa_token, mfa.current_code(secret))

        replay = await engine.verify_mfa(first.mfa_token, mfa.current_code(secret))

        assert replay.status is AuthStatus.INVALID_TOKEN
        assert replay.tokens is None

    @pytest.mark.asyncio
    async def test_user_id_is_not_a_challenge(self, engine, make_user, mfa):
        """Knowing a user id and a current code is not enough to sign in."""
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)

        result = await engine.verify_mfa(user.id, mfa.current_code(secret))

        assert result.status is AuthStatus.INVALID_TOKEN
        assert result.tokens is None

    @pytest.mark.asyncio
    async def test_missing_challenge(self, engine, make_user, mfa):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)

        result = await engine.verify_mfa(None, mfa.current_code(secret))

        assert result.status is AuthStatus.VALIDATION_FAILED
        assert "mfa_token" in result.error.errors

    @pytest.mark.asyncio
    async def test_expired_challenge(self, engine, make_user, mfa, clock):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)
        first = await engine.login("user@example.com", "correct-password")

        clock.advance(301)
        result = await engine.verify_mfa(first.mfa_token, mfa.current_code(secret))

        assert result.status is AuthStatus.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_login_with_code_in_one_step(self, engine, make_user, mfa):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)

        result = await engine.login("user@example.com", "correct-password", mfa.current_code(secret))
        assert result.status is AuthStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_wrong_codes_count_towards_lockout(self, engine, make_user, mfa):
        user = await make_user()
        await self.enrol(engine, mfa, user.id)
        first = await engine.login("user@example.com", "correct-password")

        for _ in range(4):
            result = await engine.verify_mfa(first.mfa_token, "000000")
            assert isinstance(result.error, InvalidCredentialsError)

        locked = await engine.verify_mfa(first.mfa_token, "000000")
        assert locked.status is AuthStatus.ACCOUNT_LOCKED

    @pytest.mark.asyncio
    async def test_password_step_does_not_reset_failures(self, engine, make_user, mfa, store):
        """Interleaving correct passwords with wrong codes still reaches the lockout."""
        user = await make_user()
        await self.enrol(engine, mfa, user.id)

        for attempt in range(4):
            first = await engine.login("user@example.com", "correct-password")
            assert first.status is AuthStatus.MFA_REQUIRED
            wrong = await engine.login("user@example.com", "correct-password", "000000")
            assert wrong.status is AuthStatus.INVALID_CREDENTIALS
            assert (await store.get_user(user.id)).failed_attempts == attempt + 1

        await engine.login("user@example.com", "correct-password")
        locked = await engine.login("user@example.com", "correct-password", "000000")

        assert locked.status is AuthStatus.ACCOUNT_LOCKED

    @pytest.mark.asyncio
    async def test_second_step_resets_failures(self, engine, make_user, mfa, store):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)
        await engine.login("user@example.com", "wrong-password")
        first = await engine.login("user@example.com", "correct-password")
        assert (await store.get_user(user.id)).failed_attempts == 1

        await engine.verify_mfa(first.mfa_token, mfa.current_code(secret))

        assert (await store.get_user(user.id)).failed_attempts == 0

    @pytest.mark.asyncio
    async def test_verify_without_mfa_enabled(self, engine, make_user):
        user = await make_user()
        challenge = engine.tokens.issue_mfa_challenge(user.id)

        result = await engine.verify_mfa(challenge, "123456")
        assert result.status is AuthStatus.INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_disable(self, engine, make_user, mfa, store):
        user = await make_user()
        secret = await self.enrol(engine, mfa, user.id)

        result = await engine.disable_mfa(user.id, mfa.current_code(secret))

        assert result.ok
        stored = await store.get_user(user.id)
        assert not stored.mfa_enabled
        assert stored.mfa_secret is None


class TestTokens:
    """Test refresh, logout and validation."""

    @pytest.mark.asyncio
    async def test_refresh_rotates(self, engine, make_user):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")

        refreshed = await engine.refresh(login.tokens.refresh_token)
        assert refreshed.status is AuthStatus.SUCCESS
        assert refreshed.tokens.refresh_token != login.tokens.refresh_token

        replay = await engine.refresh(login.tokens.refresh_token)
        assert replay.status is AuthStatus.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_requires_token(self, engine):
        result = await engine.refresh(None)
        assert result.status is AuthStatus.MISSING_TOKEN

    @pytest.mark.asyncio
    async def test_refresh_expired(self, engine, make_user, clock):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")

        clock.advance(86400)
        result = await engine.refresh(login.tokens.refresh_token)
        assert result.status is AuthStatus.TOKEN_EXPIRED

    @pytest.mark.asyncio
    async def test_refresh_for_suspended_user(self, engine, make_user, store):
        user = await make_user()
        login = await engine.login("user@example.com", "correct-password")
        await store.update_user(user.id, status=UserStatus.SUSPENDED)

        result = await engine.refresh(login.tokens.refresh_token)
        assert result.status is AuthStatus.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_logout_revokes_both_tokens(self, engine, make_user):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")

        result = await engine.logout(login.tokens.access_token, login.tokens.refresh_token)

        assert result.ok
        assert result.data["revoked"] == 2
        assert all(cookie.max_age == 0 for cookie in result.cookies)
        assert (await engine.validate(login.tokens.access_token)).status is AuthStatus.INVALID_TOKEN
        assert (await engine.refresh(login.tokens.refresh_token)).status is AuthStatus.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_logout_all(self, engine, make_user):
        await make_user()
        first = await engine.login("user@example.com", "correct-password")
        second = await engine.login("user@example.com", "correct-password")

        result = await engine.logout_all(second.tokens.access_token)

        assert result.data["revoked"] == 2
        for login in (first, second):
            assert (await engine.refresh(login.tokens.refresh_token)).status is AuthStatus.INVALID_TOKEN

    @pytest.mark.asyncio
    async def test_validate_from_header(self, engine, make_user):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")

        result = await engine.validate(authorization_header=f"Bearer {login.tokens.access_token}")

        assert result.status is AuthStatus.SUCCESS
        assert result.profile.email == "user@example.com"
        assert result.access_token is None

    @pytest.mark.asyncio
    async def test_validate_extends_near_expiry(self, engine, make_user, clock):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")
        clock.advance(800)

        result = await engine.validate(login.tokens.access_token)

        assert result.access_token is not None
        assert [cookie.name for cookie in result.cookies] == ["access_token"]

    @pytest.mark.asyncio
    async def test_validate_missing_and_expired(self, engine, make_user, clock):
        assert (await engine.validate(authorization_header="Basic abc")).status is AuthStatus.MISSING_TOKEN

        await make_user()
        login = await engine.login("user@example.com", "correct-password")
        clock.advance(900)
        assert (await engine.validate(login.tokens.access_token)).status is AuthStatus.TOKEN_EXPIRED


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_permission_and_role(self, engine, make_user, member_role):
        await make_user(role_ids=[member_role.id])
        login = await engine.login("user@example.com", "correct-password")
        token = login.tokens.access_token

        assert (await engine.authorize(token, permission="articles:read")).ok
        assert (await engine.authorize(token, resource="articles", action="read")).ok
        assert (await engine.authorize(token, role="member")).ok

        denied = await engine.authorize(token, permission="articles:delete")
        assert denied.status is AuthStatus.FORBIDDEN
        assert denied.http_status == 403

        wrong_role = await engine.authorize(token, role="admin")
        assert wrong_role.status is AuthStatus.FORBIDDEN

    @pytest.mark.asyncio
    async def test_result_serialization(self, engine, make_user):
        await make_user()
        login = await engine.login("user@example.com", "correct-password")

        body = login.to_dict()
        assert body["status"] == "success"
        assert body["tokens"]["token_type"] == "Bearer"
        assert body["user"]["email"] == "user@example.com"

        failed = (await engine.authorize(None)).to_dict()
        assert failed["error"]["code"] == "missing_token"


class TestOAuthLogin:
    """Test OAuth sign-in through the engine."""

    @pytest.mark.asyncio
    async def test_full_flow(self, engine, member_role):
        begin = await engine.begin_oauth("google")
        assert begin.ok
        state_cookie = begin.cookies[0]
        assert state_cookie.name == "oauth_state"

        result = await engine.complete_oauth(
            "google", "auth-code", begin.authorization.state, state_cookie=state_cookie.value
        )

        assert result.status is AuthStatus.SUCCESS
        assert result.is_new_user
        assert result.profile.roles == ["member"]
        assert {"access_token", "refresh_token", "oauth_state"} <= {c.name for c in result.cookies}

    @pytest.mark.asyncio
    async def test_state_cookie_mismatch(self, engine):
        begin = await engine.begin_oauth("google")

        result = await engine.complete_oauth(
            "google", "auth-code", begin.authorization.state, state_cookie="something-else"
        )
        assert result.status is AuthStatus.OAUTH_FAILED

    @pytest.mark.asyncio
    async def test_provider_denied(self, engine):
        begin = await engine.begin_oauth("google")

        result = await engine.complete_oauth(
            "google", None, begin.authorization.state, error="access_denied"
        )
        assert result.status is AuthStatus.OAUTH_FAILED
        assert result.error.code == "oauth_denied"

    @pytest.mark.asyncio
    async def test_upstream_failure(self, engine, provider_stub):
        provider_stub.profile_status = 500
        begin = await engine.begin_oauth("google")

        result = await engine.complete_oauth("google", "auth-code", begin.authorization.state)
        assert result.status is AuthStatus.UPSTREAM_FAILURE
        assert result.http_status == 502

    @pytest.mark.asyncio
    async def test_suspended_linked_user(self, engine, make_user, store):
        user = await make_user(email="ada@example.com", status=UserStatus.SUSPENDED)
        await store.update_user(user.id, auth_provider="google", provider_user_id="google-123")
        begin = await engine.begin_oauth("google")

        result = await engine.complete_oauth("google", "auth-code", begin.authorization.state)
        assert result.status is AuthStatus.ACCOUNT_DISABLED

    @pytest.mark.asyncio
    async def test_email_collision_is_refused(self, engine, make_user, store):
        """A provider email matching a password account does not sign into it."""
        user = await make_user(email="ada@example.com")
        begin = await engine.begin_oauth("google")

        result = await engine.complete_oauth("google", "auth-code", begin.authorization.state)

        assert result.status is AuthStatus.CONFLICT
        assert result.tokens is None
        assert (await store.get_user(user.id)).provider_user_id is None

"""Unit tests for auth/service.py -- AuthCore orchestration.

Covers:
- register -> login -> verify_session round trip
- duplicate registration: IdentityExists, stored hash untouched
- check-then-insert race resolved by the storage constraint
- enumeration resistance: unknown email and wrong password are identical
- token accepted in [T, T+TTL), rejected from T+TTL on
- rate gate: (N+1)-th attempt rejected without a credential check; reset after window
- collaborator exceptions become InternalError
"""

from unittest.mock import MagicMock

import pytest

from auth.errors import (
    IdentityExists,
    InternalError,
    InvalidCredentials,
    RateLimited,
    Unauthorized,
    ValidationFailed,
    is_error,
)
from auth.models import LoggedOut, LoginSuccess, PublicIdentity, Registered, SessionClaims
from auth.ratelimit import RateLimiter
from auth.store import CredentialStore
from tests.support import TEST_TTL, make_core

T0 = 1_700_000_000


class TestRegister:
    def test_register_returns_id_only(self, core):
        result = core.register("a@x.com", "secret1")
        assert isinstance(result, Registered)
        assert isinstance(result.identity_id, int)
        assert not hasattr(result, "password_hash")

    def test_register_normalizes_email(self, core):
        core.register("  A@X.com ", "secret1")
        assert core.store.find_by_email("a@x.com") is not None

    def test_password_is_stored_hashed(self, core):
        core.register("a@x.com", "secret1")
        stored = core.store.find_by_email("a@x.com").password_hash
        assert stored != "secret1"
        assert core.hasher.verify("secret1", stored)

    def test_duplicate_fails_and_keeps_original_hash(self, core):
        core.register("a@x.com", "secret1")
        original = core.store.find_by_email("a@x.com").password_hash

        result = core.register("A@x.com", "another-password")

        assert result == IdentityExists()
        assert core.store.find_by_email("a@x.com").password_hash == original
        assert core.store.count() == 1

    def test_validation_failure_does_not_touch_store(self):
        store = MagicMock(spec=CredentialStore)
        core = make_core(store=store)
        result = core.register("not-an-email", "123")
        assert isinstance(result, ValidationFailed)
        assert set(result.fields) == {"email", "password"}
        store.find_by_email.assert_not_called()
        store.create.assert_not_called()

    @pytest.mark.parametrize(
        "email,password,field",
        [("b@x.com", "\ud800abcdef", "password"), ("\udfff@x.com", "secret1", "email")],
    )
    def test_unencodable_input_is_a_validation_failure(self, core, email, password, field):
        result = core.register(email, password)
        assert isinstance(result, ValidationFailed)
        assert result.fields == {field: f"{field.capitalize()} contains invalid characters"}
        assert core.store.count() == 0

    def test_lost_race_maps_to_identity_exists(self, core):
        """The existence check passes but the INSERT hits the UNIQUE constraint."""
        core.register("a@x.com", "secret1")
        real_store = core.store
        stale = MagicMock(wraps=real_store)
        stale.find_by_email.return_value = None
        core.store = stale

        result = core.register("a@x.com", "secret2")

        assert result == IdentityExists()
        stale.create.assert_called_once()
        assert real_store.count() == 1

    def test_store_failure_becomes_internal_error(self, caplog):
        store = MagicMock(spec=CredentialStore)
        store.find_by_email.side_effect = RuntimeError("database is on fire")
        core = make_core(store=store)

        with caplog.at_level("ERROR", logger="authgate.auth"):
            result = core.register("a@x.com", "secret1")

        assert result == InternalError()
        assert "database is on fire" in caplog.text


class TestLogin:
    def test_register_then_login_then_verify(self, core):
        registered = core.register("a@x.com", "secret1")
        result = core.login("a@x.com", "secret1", now=T0)

        assert isinstance(result, LoginSuccess)
        assert result.identity == PublicIdentity(id=registered.identity_id, email="a@x.com")
        assert result.expires_at == T0 + TEST_TTL

        claims = core.verify_session(result.token, now=T0)
        assert claims == SessionClaims(
            id=registered.identity_id, email="a@x.com", issued_at=T0, expires_at=T0 + TEST_TTL
        )

    def test_login_is_case_insensitive_on_email(self, core):
        core.register("a@x.com", "secret1")
        assert isinstance(core.login("A@X.COM", "secret1"), LoginSuccess)

    def test_wrong_password_and_unknown_email_are_identical(self, core):
        core.register("a@x.com", "secret1")
        wrong_password = core.login("a@x.com", "wrong")
        unknown_email = core.login("nobody@x.com", "secret1")

        assert wrong_password == InvalidCredentials()
        assert unknown_email == InvalidCredentials()
        assert wrong_password.code == unknown_email.code
        assert wrong_password.message == unknown_email.message

    def test_unencodable_password_fails_identically_for_known_and_unknown_email(self, core):
        core.register("a@x.com", "secret1")
        known = core.login("a@x.com", "\ud800abcdef")
        unknown = core.login("ghost@x.com", "\ud800abcdef")
        assert known == unknown == InvalidCredentials()

    def test_unencodable_email_is_treated_as_unknown(self, core):
        core.store = MagicMock(wraps=core.store)
        assert core.login("\ud800@x.com", "secret1") == InvalidCredentials()
        core.store.find_by_email.assert_not_called()

    def test_unknown_email_still_spends_a_hash_check(self, core):
        core.hasher = MagicMock(wraps=core.hasher)
        core.login("nobody@x.com", "secret1")
        core.hasher.dummy_verify.assert_called_once_with("secret1")

    @pytest.mark.parametrize("email,password", [(None, None), ("", ""), ("a@x.com", None)])
    def test_missing_fields_are_invalid_credentials(self, core, email, password):
        core.register("a@x.com", "secret1")
        assert core.login(email, password) == InvalidCredentials()

    def test_token_issue_failure_becomes_internal_error(self, core):
        core.register("a@x.com", "secret1")
        core.tokens = MagicMock()
        core.tokens.issue.side_effect = RuntimeError("signing backend gone")
        assert core.login("a@x.com", "secret1") == InternalError()


class TestSessions:
    @pytest.fixture
    def token(self, core) -> str:
        core.register("a@x.com", "secret1")
        return core.login("a@x.com", "secret1", now=T0).token

    @pytest.mark.parametrize("offset", [0, 60, TEST_TTL - 1])
    def test_token_accepted_inside_ttl(self, core, token, offset):
        assert isinstance(core.verify_session(token, now=T0 + offset), SessionClaims)

    @pytest.mark.parametrize("offset", [TEST_TTL, TEST_TTL + 1, 86400])
    def test_token_rejected_from_ttl_on(self, core, token, offset):
        assert core.verify_session(token, now=T0 + offset) == Unauthorized()

    @pytest.mark.parametrize("bad", [None, "", "garbage", "a.b.c"])
    def test_missing_or_malformed_token(self, core, bad):
        assert core.verify_session(bad, now=T0) == Unauthorized()

    def test_expired_and_malformed_look_the_same(self, core, token):
        expired = core.verify_session(token, now=T0 + TEST_TTL)
        malformed = core.verify_session(token + "x", now=T0)
        assert expired == malformed == Unauthorized()

    def test_expired_and_malformed_are_logged_differently(self, core, token, caplog):
        with caplog.at_level("WARNING", logger="authgate.auth"):
            core.verify_session(token, now=T0 + TEST_TTL)
            core.verify_session("garbage", now=T0)
        assert "Token expired" in caplog.text
        assert "Invalid token" in caplog.text

    def test_get_current_identity(self, core, token):
        identity = core.get_current_identity(token, now=T0 + 1)
        assert identity.email == "a@x.com"
        assert core.get_current_identity(token, now=T0 + TEST_TTL) == Unauthorized()

    def test_verify_session_has_no_side_effects(self, core, token):
        core.store = MagicMock(wraps=core.store)
        core.limiter = MagicMock(wraps=core.limiter)
        core.verify_session(token, now=T0)
        assert core.store.method_calls == []
        assert core.limiter.method_calls == []

    def test_logout_does_not_revoke(self, core, token):
        assert isinstance(core.logout(token, now=T0 + 1), LoggedOut)
        # Stateless sessions: the same token keeps working until it expires.
        assert isinstance(core.verify_session(token, now=T0 + 2), SessionClaims)

    def test_logout_requires_session(self, core):
        assert core.logout(None) == Unauthorized()


class TestRateGate:
    def test_sixth_login_is_limited_without_credential_check(self):
        core = make_core(limiter=RateLimiter(enabled=True), login_attempts=5, login_window=900)
        core.register("a@x.com", "secret1")
        core.hasher = MagicMock(wraps=core.hasher)
        core.store = MagicMock(wraps=core.store)

        results = [core.login("a@x.com", "wrong", source="10.0.0.1", now=T0 + i) for i in range(6)]

        assert results[:5] == [InvalidCredentials()] * 5
        assert isinstance(results[5], RateLimited)
        assert core.store.find_by_email.call_count == 5
        assert core.hasher.verify.call_count == 5

    def test_limit_applies_even_to_correct_password(self):
        core = make_core(limiter=RateLimiter(enabled=True), login_attempts=5)
        core.register("a@x.com", "secret1")
        for i in range(5):
            core.login("a@x.com", "wrong", now=T0 + i)
        assert isinstance(core.login("a@x.com", "secret1", now=T0 + 10), RateLimited)

    def test_login_allowed_again_after_window(self):
        core = make_core(limiter=RateLimiter(enabled=True), login_attempts=5, login_window=900)
        core.register("a@x.com", "secret1")
        for i in range(6):
            core.login("a@x.com", "wrong", now=T0 + i)

        assert isinstance(core.login("a@x.com", "secret1", now=T0 + 901), LoginSuccess)

    def test_login_limit_is_per_identity_across_sources(self):
        core = make_core(limiter=RateLimiter(enabled=True), login_attempts=2)
        core.register("a@x.com", "secret1")
        core.login("a@x.com", "wrong", source="10.0.0.1", now=T0)
        core.login("a@x.com", "wrong", source="10.0.0.2", now=T0)
        assert isinstance(core.login("a@x.com", "wrong", source="10.0.0.3", now=T0), RateLimited)
        # A different account from the same sources is unaffected.
        assert core.login("b@x.com", "wrong", source="10.0.0.1", now=T0) == InvalidCredentials()

    def test_register_limit_is_per_source(self):
        core = make_core(limiter=RateLimiter(enabled=True), register_attempts=2)
        assert isinstance(core.register("a@x.com", "secret1", source="10.0.0.1", now=T0), Registered)
        assert isinstance(core.register("b@x.com", "secret1", source="10.0.0.1", now=T0), Registered)
        limited = core.register("c@x.com", "secret1", source="10.0.0.1", now=T0)
        assert isinstance(limited, RateLimited)
        assert limited.retry_after > 0
        assert core.store.find_by_email("c@x.com") is None
        assert isinstance(core.register("c@x.com", "secret1", source="10.0.0.2", now=T0), Registered)

    def test_invalid_registrations_count_against_budget(self):
        core = make_core(limiter=RateLimiter(enabled=True), register_attempts=2)
        core.register("bad", "x", source="10.0.0.1", now=T0)
        core.register("bad", "x", source="10.0.0.1", now=T0)
        assert isinstance(core.register("a@x.com", "secret1", source="10.0.0.1", now=T0), RateLimited)

    def test_disabled_limiter_never_limits(self, core):
        core.register("a@x.com", "secret1")
        results = [core.login("a@x.com", "wrong") for _ in range(20)]
        assert all(r == InvalidCredentials() for r in results)


def test_is_error_classifies_results():
    assert is_error(Unauthorized())
    assert is_error(RateLimited(retry_after=3))
    assert not is_error(Registered(identity_id=1))
    assert not is_error(None)

"""
Tests for auth/service.py -- the auth facade.

Coroutines are driven with asyncio.run (conftest.run); the fake clock
simulates the 15-minute cooldown and the 24-hour session lifetime.
"""

import asyncio
import time

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import Role
from auth.service import AuthService
from auth.throttle import MemoryLoginThrottle
from core.errors import (
    DuplicateEmailError,
    InvalidCredentialsError,
    NotFoundError,
    PermissionDeniedError,
    ThrottledError,
    UnexpectedError,
    ValidationError,
)
from conftest import run


class TestRegister:
    def test_new_accounts_are_users(self, auth_service: AuthService) -> None:
        identity, session = run(auth_service.register("  Carol@Shop.test ", "carolpass", "Carol"))
        assert identity.role == Role.user
        assert identity.email == "carol@shop.test"
        assert session.identity == identity

    def test_name_is_sanitized(self, auth_service: AuthService) -> None:
        identity, _ = run(auth_service.register("eve@shop.test", "evepass1", "<Eve>"))
        assert identity.name == "&lt;Eve&gt;"

    def test_password_is_stored_hashed(self, auth_service: AuthService, credential_store) -> None:
        run(auth_service.register("dan@shop.test", "danpass1", "Dan"))
        record = credential_store.get_by_email("dan@shop.test")
        assert record.password_hash != "danpass1"
        assert auth_service.hasher.verify("danpass1", record.password_hash)

    def test_duplicate_email_any_case(self, auth_service: AuthService, bob) -> None:
        with pytest.raises(DuplicateEmailError):
            run(auth_service.register("BOB@shop.test", "another1", "Bobby"))

    @pytest.mark.parametrize(
        "email,password,name",
        [
            ("not-an-email", "goodpass", "Name"),
            ("x@shop.test", "short", "Name"),
            ("x@shop.test", "goodpass", "N"),
            ("x@shop.test", "goodpass", "n" * 51),
        ],
    )
    def test_invalid_fields_rejected(self, auth_service: AuthService, credential_store, email, password, name) -> None:
        with pytest.raises(ValidationError):
            run(auth_service.register(email, password, name))
        assert not credential_store.has_records()


class TestFirstAdmin:
    def test_first_admin_on_empty_store(self, auth_service: AuthService) -> None:
        identity = run(auth_service.create_first_admin("root@shop.test", "rootpass1", "Root"))
        assert identity.role == Role.admin

    def test_refused_once_accounts_exist(self, auth_service: AuthService, bob) -> None:
        with pytest.raises(PermissionDeniedError):
            run(auth_service.create_first_admin("root@shop.test", "rootpass1", "Root"))


class TestLogin:
    def test_login_is_case_insensitive(self, auth_service: AuthService, bob) -> None:
        identity, session = run(auth_service.login("Bob@Shop.Test", "bobpass1"))
        assert identity == bob
        assert auth_service.bootstrap(session.token).identity == bob

    def test_wrong_password(self, auth_service: AuthService, bob) -> None:
        with pytest.raises(InvalidCredentialsError) as exc_info:
            run(auth_service.login("bob@shop.test", "wrongpw"))
        assert exc_info.value.reason == "wrong_password"

    def test_unknown_email_counts_and_looks_the_same(self, auth_service: AuthService, bob) -> None:
        with pytest.raises(InvalidCredentialsError) as unknown:
            run(auth_service.login("ghost@shop.test", "whatever"))
        with pytest.raises(InvalidCredentialsError) as wrong:
            run(auth_service.login("bob@shop.test", "wrongpw"))
        assert unknown.value.reason == "unknown_email"
        assert unknown.value.message == wrong.value.message
        assert auth_service.throttle.get_entry("ghost@shop.test").failure_count == 1

    def test_distinct_messages_when_enabled(self, credential_store, hasher, issuer, clock, bob) -> None:
        service = AuthService(
            credential_store, hasher, issuer, MemoryLoginThrottle(clock=clock), distinct_login_errors=True
        )
        with pytest.raises(InvalidCredentialsError) as unknown:
            run(service.login("ghost@shop.test", "whatever"))
        with pytest.raises(InvalidCredentialsError) as wrong:
            run(service.login("bob@shop.test", "wrongpw"))
        assert unknown.value.message == "No account exists for this email."
        assert wrong.value.message == "Incorrect password."

    def test_malformed_email_is_validation_error(self, auth_service: AuthService) -> None:
        with pytest.raises(ValidationError):
            run(auth_service.login("bob", "bobpass1"))

    def test_success_resets_failures(self, auth_service: AuthService, bob) -> None:
        for _ in range(4):
            with pytest.raises(InvalidCredentialsError):
                run(auth_service.login("bob@shop.test", "wrongpw"))
        run(auth_service.login("bob@shop.test", "bobpass1"))
        assert auth_service.throttle.get_entry("bob@shop.test") is None


class TestLockoutScenario:
    """Five wrong passwords, a locked sixth attempt, recovery after the cooldown."""

    def test_lockout_and_recovery(self, auth_service: AuthService, bob, clock, monkeypatch) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(auth_service.login("bob@shop.test", "wrongpw"))

        verified = []
        original_verify = auth_service.hasher.verify

        def spy(plain, digest):
            verified.append(plain)
            return original_verify(plain, digest)

        monkeypatch.setattr(auth_service.hasher, "verify", spy)

        # Correct password, still rejected, and no credential check is made.
        with pytest.raises(ThrottledError) as exc_info:
            run(auth_service.login("bob@shop.test", "bobpass1"))
        assert exc_info.value.wait_minutes == 15
        assert "15 minute" in exc_info.value.message
        assert verified == []

        clock.advance(minutes=16)
        identity, _ = run(auth_service.login("bob@shop.test", "bobpass1"))
        assert identity == bob
        assert verified == ["bobpass1"]

    def test_concurrent_wrong_passwords_stop_at_the_limit(self, auth_service: AuthService, bob, monkeypatch) -> None:
        checked = []
        original_verify = auth_service.hasher.verify

        def spy(plain, digest):
            checked.append(plain)
            return original_verify(plain, digest)

        monkeypatch.setattr(auth_service.hasher, "verify", spy)

        async def attempt_all():
            attempts = [auth_service.login("bob@shop.test", f"wrong-{i}") for i in range(30)]
            return await asyncio.gather(*attempts, return_exceptions=True)

        results = run(attempt_all())
        assert len(checked) == 5
        assert sum(isinstance(r, InvalidCredentialsError) for r in results) == 5
        assert sum(isinstance(r, ThrottledError) for r in results) == 25
        assert auth_service.throttle.get_entry("bob@shop.test").failure_count == 5

    def test_register_then_throttle_then_recover(self, auth_service: AuthService, clock) -> None:
        run(auth_service.register("bob@x.com", "pw123456", "Bob"))
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(auth_service.login("bob@x.com", "nope-nope"))
        with pytest.raises(ThrottledError) as exc_info:
            run(auth_service.login("bob@x.com", "pw123456"))
        assert exc_info.value.wait_minutes > 0

        clock.advance(minutes=15)
        identity, _ = run(auth_service.login("bob@x.com", "pw123456"))
        assert (identity.email, identity.name, identity.role) == ("bob@x.com", "Bob", Role.user)

    def test_mixed_case_registration(self, auth_service: AuthService) -> None:
        run(auth_service.register("A@B.com", "secret1", "Ab"))
        identity, _ = run(auth_service.login("a@b.com", "secret1"))
        assert identity.email == "a@b.com"

    def test_unknown_email_is_throttled_too(self, auth_service: AuthService) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(auth_service.login("ghost@shop.test", "whatever"))
        with pytest.raises(ThrottledError):
            run(auth_service.login("ghost@shop.test", "whatever"))

    def test_lockout_is_per_email(self, auth_service: AuthService, bob, alice) -> None:
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                run(auth_service.login("bob@shop.test", "wrongpw"))
        identity, _ = run(auth_service.login("alice@shop.test", "alicepass"))
        assert identity == alice


class TestBootstrap:
    def test_session_expires_after_24_hours(self, auth_service: AuthService, bob, clock) -> None:
        _, session = run(auth_service.login("bob@shop.test", "bobpass1"))
        clock.advance(hours=23, minutes=59)
        assert auth_service.bootstrap(session.token) is not None
        clock.advance(minutes=1)
        assert auth_service.bootstrap(session.token) is None

    def test_no_blob_no_session(self, auth_service: AuthService) -> None:
        assert auth_service.bootstrap(None) is None


class TestRoles:
    def test_admin_promotes_user(self, auth_service: AuthService, admin, bob, credential_store) -> None:
        updated = run(auth_service.set_role(admin, bob.id, "admin"))
        assert updated.role == Role.admin
        assert credential_store.get_by_id(bob.id).role == Role.admin

    def test_existing_session_keeps_old_role(self, auth_service: AuthService, admin, bob) -> None:
        _, session = run(auth_service.login("bob@shop.test", "bobpass1"))
        run(auth_service.set_role(admin, bob.id, "admin"))
        assert auth_service.bootstrap(session.token).identity.role == Role.user
        identity, _ = run(auth_service.login("bob@shop.test", "bobpass1"))
        assert identity.role == Role.admin

    def test_user_cannot_change_roles(self, auth_service: AuthService, admin, bob) -> None:
        with pytest.raises(PermissionDeniedError):
            run(auth_service.set_role(bob, bob.id, "admin"))

    def test_unknown_target(self, auth_service: AuthService, admin) -> None:
        with pytest.raises(NotFoundError):
            run(auth_service.set_role(admin, "missing", "user"))

    def test_invalid_role(self, auth_service: AuthService, admin, bob) -> None:
        with pytest.raises(ValidationError):
            run(auth_service.set_role(admin, bob.id, "superuser"))

    def test_self_demotion_allowed_by_default(self, auth_service: AuthService, admin) -> None:
        updated = run(auth_service.set_role(admin, admin.id, "user"))
        assert updated.role == Role.user

    def test_last_admin_guard(self, credential_store, hasher, issuer, clock, admin) -> None:
        service = AuthService(
            credential_store, hasher, issuer, MemoryLoginThrottle(clock=clock), enforce_last_admin_guard=True
        )
        with pytest.raises(PermissionDeniedError):
            run(service.set_role(admin, admin.id, "user"))

    def test_list_users_is_admin_only(self, auth_service: AuthService, admin, bob) -> None:
        emails = [r.email for r in run(auth_service.list_users(admin))]
        assert emails == ["bob@shop.test", "root@shop.test"]
        with pytest.raises(PermissionDeniedError):
            run(auth_service.list_users(bob))
        with pytest.raises(PermissionDeniedError):
            run(auth_service.list_users(None))


class TestCollaboratorFailures:
    def test_store_fault_becomes_unexpected_error(self, auth_service: AuthService, monkeypatch) -> None:
        def broken(_email):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(auth_service.store, "get_by_email", broken)
        with pytest.raises(UnexpectedError) as exc_info:
            run(auth_service.login("bob@shop.test", "bobpass1"))
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert "disk" not in exc_info.value.message

    def test_slow_store_times_out(self, auth_service: AuthService, monkeypatch) -> None:
        auth_service.timeout = 0.05

        def slow(_email):
            time.sleep(0.5)

        monkeypatch.setattr(auth_service.store, "get_by_email", slow)
        with pytest.raises(UnexpectedError):
            run(auth_service.login("bob@shop.test", "bobpass1"))

"""Unit tests for auth/throttle.py -- both backends share one suite."""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from auth.store import make_engine
from auth.throttle import DatabaseLoginThrottle, LoginThrottle, MemoryLoginThrottle, build_throttle

EMAIL = "bob@x.com"


@pytest.fixture(params=["memory", "database"])
def throttle(request, clock, tmp_path) -> LoginThrottle:
    if request.param == "memory":
        return MemoryLoginThrottle(max_failures=5, cooldown_seconds=900, clock=clock)
    engine = make_engine(f"sqlite:///{tmp_path / 'throttle.db'}")
    request.addfinalizer(engine.dispose)
    return DatabaseLoginThrottle(engine, max_failures=5, cooldown_seconds=900, clock=clock)


def _fail(throttle: LoginThrottle, times: int) -> None:
    for _ in range(times):
        throttle.record_failure(EMAIL)


class TestLockout:
    def test_unknown_email_is_allowed(self, throttle: LoginThrottle) -> None:
        assert throttle.check_allowed(EMAIL).allowed
        assert throttle.get_entry(EMAIL) is None

    def test_four_failures_still_allowed(self, throttle: LoginThrottle) -> None:
        _fail(throttle, 4)
        assert throttle.check_allowed(EMAIL).allowed

    def test_fifth_failure_locks_for_full_cooldown(self, throttle: LoginThrottle) -> None:
        _fail(throttle, 5)
        decision = throttle.check_allowed(EMAIL)
        assert not decision.allowed
        assert decision.wait_minutes == 15

    def test_wait_rounds_up_to_whole_minutes(self, throttle: LoginThrottle, clock) -> None:
        _fail(throttle, 5)
        clock.advance(minutes=1, seconds=30)
        assert throttle.check_allowed(EMAIL).wait_minutes == 14

    def test_wait_is_never_zero(self, throttle: LoginThrottle, clock) -> None:
        _fail(throttle, 5)
        clock.advance(minutes=14, seconds=59)
        assert throttle.check_allowed(EMAIL).wait_minutes == 1

    def test_unlocks_when_cooldown_elapses(self, throttle: LoginThrottle, clock) -> None:
        _fail(throttle, 5)
        clock.advance(minutes=15)
        assert throttle.check_allowed(EMAIL).allowed

    def test_other_emails_unaffected(self, throttle: LoginThrottle) -> None:
        _fail(throttle, 5)
        assert throttle.check_allowed("alice@x.com").allowed


class TestCounting:
    def test_failures_accumulate_within_window(self, throttle: LoginThrottle, clock) -> None:
        for expected in range(1, 4):
            assert throttle.record_failure(EMAIL).failure_count == expected
            clock.advance(minutes=14)

    def test_failure_after_cooldown_restarts_at_one(self, throttle: LoginThrottle, clock) -> None:
        _fail(throttle, 3)
        clock.advance(minutes=15)
        assert throttle.record_failure(EMAIL).failure_count == 1

    def test_success_resets(self, throttle: LoginThrottle) -> None:
        _fail(throttle, 4)
        throttle.record_success(EMAIL)
        assert throttle.get_entry(EMAIL) is None
        assert throttle.record_failure(EMAIL).failure_count == 1

    def test_last_failure_time_recorded(self, throttle: LoginThrottle, clock) -> None:
        entry = throttle.record_failure(EMAIL)
        assert entry.last_failure_at == clock.now


class TestReservation:
    def test_first_attempts_are_charged_up_front(self, throttle: LoginThrottle, clock) -> None:
        decisions = [throttle.check_and_reserve(EMAIL) for _ in range(5)]
        assert [d.attempt for d in decisions] == [1, 2, 3, 4, 5]
        assert all(d.allowed for d in decisions)
        assert throttle.get_entry(EMAIL).failure_count == 5

    def test_sixth_attempt_is_refused_and_not_counted(self, throttle: LoginThrottle, clock) -> None:
        for _ in range(5):
            throttle.check_and_reserve(EMAIL)
        clock.advance(minutes=5)
        decision = throttle.check_and_reserve(EMAIL)
        assert not decision.allowed
        assert decision.wait_minutes == 10
        entry = throttle.get_entry(EMAIL)
        assert entry.failure_count == 5
        assert entry.last_failure_at == clock.now - timedelta(minutes=5)

    def test_success_gives_the_charge_back(self, throttle: LoginThrottle) -> None:
        throttle.check_and_reserve(EMAIL)
        throttle.record_success(EMAIL)
        assert throttle.get_entry(EMAIL) is None

    def test_reserve_after_cooldown_restarts_at_one(self, throttle: LoginThrottle, clock) -> None:
        for _ in range(5):
            throttle.check_and_reserve(EMAIL)
        clock.advance(minutes=15)
        decision = throttle.check_and_reserve(EMAIL)
        assert decision.allowed
        assert decision.attempt == 1

    def test_expired_entries_are_dropped(self, throttle: LoginThrottle, clock) -> None:
        for i in range(20):
            throttle.check_and_reserve(f"ghost-{i}@x.com")
        clock.advance(minutes=15)
        throttle.check_and_reserve(EMAIL)
        assert all(throttle.get_entry(f"ghost-{i}@x.com") is None for i in range(20))
        assert throttle.get_entry(EMAIL).failure_count == 1


class TestMemoryEviction:
    def test_table_shrinks_once_cooldown_passes(self, clock) -> None:
        throttle = MemoryLoginThrottle(clock=clock)
        for i in range(200):
            throttle.record_failure(f"ghost-{i}@x.com")
        assert len(throttle) == 200
        clock.advance(minutes=15)
        throttle.record_failure(EMAIL)
        assert len(throttle) == 1

    def test_live_entries_survive_eviction(self, clock) -> None:
        throttle = MemoryLoginThrottle(clock=clock)
        throttle.record_failure("old@x.com")
        clock.advance(minutes=10)
        throttle.record_failure(EMAIL)
        clock.advance(minutes=5)
        assert throttle.check_allowed("someone@x.com").allowed
        assert throttle.get_entry("old@x.com") is None
        assert throttle.get_entry(EMAIL).failure_count == 1

    def test_refreshed_entry_moves_behind_newer_ones(self, clock) -> None:
        throttle = MemoryLoginThrottle(clock=clock)
        throttle.record_failure(EMAIL)
        clock.advance(minutes=1)
        throttle.record_failure("alice@x.com")
        clock.advance(minutes=1)
        throttle.record_failure(EMAIL)
        clock.advance(minutes=14)
        throttle.check_allowed(EMAIL)
        assert throttle.get_entry("alice@x.com") is None
        assert throttle.get_entry(EMAIL).failure_count == 2


class TestConcurrency:
    def test_concurrent_reservations_stop_at_the_limit(self, clock) -> None:
        throttle = MemoryLoginThrottle(clock=clock)
        with ThreadPoolExecutor(max_workers=8) as pool:
            decisions = list(pool.map(lambda _: throttle.check_and_reserve(EMAIL), range(40)))
        assert sum(d.allowed for d in decisions) == 5
        assert throttle.get_entry(EMAIL).failure_count == 5

    def test_concurrent_failures_are_all_counted(self, clock) -> None:
        throttle = MemoryLoginThrottle(clock=clock)
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: throttle.record_failure(EMAIL), range(40)))
        assert throttle.get_entry(EMAIL).failure_count == 40

    def test_database_increments_are_sequential(self, clock, tmp_path) -> None:
        engine = make_engine(f"sqlite:///{tmp_path / 'seq.db'}")
        try:
            throttle = DatabaseLoginThrottle(engine, clock=clock)
            counts = [throttle.record_failure(EMAIL).failure_count for _ in range(7)]
            assert counts == [1, 2, 3, 4, 5, 6, 7]
        finally:
            engine.dispose()


class TestDatabaseBackend:
    def test_state_is_shared_between_instances(self, clock, tmp_path) -> None:
        engine = make_engine(f"sqlite:///{tmp_path / 'shared.db'}")
        try:
            first = DatabaseLoginThrottle(engine, clock=clock)
            second = DatabaseLoginThrottle(engine, clock=clock)
            for _ in range(5):
                first.record_failure(EMAIL)
            assert not second.check_allowed(EMAIL).allowed
        finally:
            engine.dispose()


class TestBuildThrottle:
    def test_memory_is_default(self) -> None:
        assert isinstance(build_throttle("memory"), MemoryLoginThrottle)

    def test_database_needs_engine(self) -> None:
        with pytest.raises(ValueError):
            build_throttle("database")

"""Admission guard tests."""

import pytest

from shortener.rate_limiter import AdmissionGuard


@pytest.fixture
def guard(monotonic_clock) -> AdmissionGuard:
    return AdmissionGuard(window_seconds=60, max_requests=10, clock=monotonic_clock)


def test_eleventh_request_in_window_is_rejected(guard: AdmissionGuard, monotonic_clock) -> None:
    for _ in range(10):
        assert guard.check("client-a").allowed

    result = guard.check("client-a")
    assert result.allowed is False
    assert 1 <= result.retry_after <= 60

    monotonic_clock.advance(61)
    assert guard.check("client-a").allowed


def test_retry_after_counts_down(guard: AdmissionGuard, monotonic_clock) -> None:
    for _ in range(10):
        guard.check("client-a")

    monotonic_clock.advance(30)
    assert guard.check("client-a").retry_after == 30

    monotonic_clock.advance(29.5)
    assert guard.check("client-a").retry_after == 1


def test_rejections_do_not_grow_counter(guard: AdmissionGuard) -> None:
    for _ in range(25):
        guard.check("client-a")

    assert guard.window("client-a").count == 11


def test_window_resets_lazily_on_next_request(guard: AdmissionGuard, monotonic_clock) -> None:
    for _ in range(10):
        guard.check("client-a")

    monotonic_clock.advance(120)
    assert guard.window("client-a").count == 10

    assert guard.check("client-a").allowed
    window = guard.window("client-a")
    assert window.count == 1
    assert window.reset_at == monotonic_clock.now + 60


def test_request_at_reset_instant_stays_in_window(guard: AdmissionGuard, monotonic_clock) -> None:
    for _ in range(10):
        guard.check("client-a")

    monotonic_clock.advance(60)
    assert guard.check("client-a").allowed is False


def test_keys_are_independent(guard: AdmissionGuard) -> None:
    for _ in range(11):
        guard.check("client-a")

    assert guard.check("client-b").allowed
    assert guard.check("client-a").allowed is False


def test_sweep_removes_only_elapsed_windows(guard: AdmissionGuard, monotonic_clock) -> None:
    guard.check("old")
    monotonic_clock.advance(45)
    guard.check("recent")
    monotonic_clock.advance(20)

    assert guard.sweep() == 1
    assert guard.window("old") is None
    assert guard.window("recent") is not None
    assert len(guard) == 1

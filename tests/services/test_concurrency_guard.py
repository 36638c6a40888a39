"""Tests for per-session concurrency guards."""

import pytest

from deepdive.services.concurrency_guard import (
    COMPLETE,
    ESCALATE,
    SUBMIT,
    ConcurrencyGuard,
    GuardRegistry,
)


def test_try_enter_is_exclusive():
    guard = ConcurrencyGuard("dd-1")

    assert guard.try_enter(SUBMIT)
    assert not guard.try_enter(SUBMIT)
    assert guard.is_held(SUBMIT)

    guard.exit(SUBMIT)
    assert guard.try_enter(SUBMIT)


def test_locks_are_independent():
    guard = ConcurrencyGuard("dd-1")

    assert guard.try_enter(SUBMIT)
    assert guard.try_enter(COMPLETE)


def test_entered_releases_on_exception():
    guard = ConcurrencyGuard("dd-1")

    with pytest.raises(RuntimeError):
        with guard.entered(SUBMIT) as acquired:
            assert acquired
            raise RuntimeError("boom")

    assert not guard.is_held(SUBMIT)


def test_rejected_entry_does_not_release_holder():
    guard = ConcurrencyGuard("dd-1")

    with guard.entered(SUBMIT) as first:
        with guard.entered(SUBMIT) as second:
            assert first
            assert not second
        assert guard.is_held(SUBMIT)

    assert not guard.is_held(SUBMIT)


def test_registry_returns_same_guard_per_key():
    registry = GuardRegistry()

    assert registry.for_session("dd-1") is registry.for_session("dd-1")
    assert registry.for_session("dd-1") is not registry.for_session("dd-2")


def test_excluded_lock_blocks_entry():
    guard = ConcurrencyGuard("dd-1")

    with guard.entered(COMPLETE):
        with guard.entered(ESCALATE, excludes=(COMPLETE,)) as acquired:
            assert not acquired
        assert not guard.is_held(ESCALATE)

    with guard.entered(ESCALATE, excludes=(COMPLETE,)) as acquired:
        assert acquired

"""Tests for per-user processing locks."""

from shopwatch.engine.locks import UserLockRegistry


def test_try_acquire_is_exclusive():
    locks = UserLockRegistry()
    assert locks.try_acquire("u1")
    assert not locks.try_acquire("u1")
    assert locks.try_acquire("u2")
    locks.release("u1")
    assert locks.try_acquire("u1")


def test_hold_releases_only_what_it_acquired():
    locks = UserLockRegistry()
    with locks.hold("u1") as outer:
        assert outer
        with locks.hold("u1") as inner:
            assert not inner
        assert locks.is_held("u1")
    assert not locks.is_held("u1")
    assert len(locks) == 0


def test_hold_releases_on_error():
    locks = UserLockRegistry()
    try:
        with locks.hold("u1"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert not locks.is_held("u1")

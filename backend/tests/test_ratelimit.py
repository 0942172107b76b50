import time

import pytest
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from scoreguard.errors import RateLimited
from scoreguard.ratelimit import RateLimiter


@pytest.fixture()
def storage():
    return MemoryStorage()


def make_limiter(storage, limit, window_sec=60):
    return RateLimiter(MovingWindowRateLimiter(storage), limit, window_sec=window_sec)


def test_moving_window_blocks_then_recovers(storage):
    limiter = make_limiter(storage, 2, window_sec=1)
    assert limiter.take('k').allowed
    assert limiter.take('k').remaining == 0

    blocked = limiter.take('k')
    assert not blocked.allowed
    assert blocked.retry_after == 1

    time.sleep(1.2)
    assert limiter.take('k').allowed
    assert not limiter.take('k').allowed


def test_keys_are_independent(storage):
    limiter = make_limiter(storage, 1)
    assert limiter.take('user:1').allowed
    assert limiter.take('user:2').allowed
    assert not limiter.take('user:1').allowed


def test_enforce_raises_with_retry_after(storage):
    limiter = make_limiter(storage, 1, window_sec=30)
    limiter.enforce('k')
    with pytest.raises(RateLimited) as info:
        limiter.enforce('k')
    assert 29 <= info.value.retry_after <= 30
    assert info.value.to_dict()['retryAfter'] == info.value.retry_after


def test_rejected_request_charges_no_key(storage):
    limiter = make_limiter(storage, 1)
    assert limiter.take('user:1', 'ip:a').allowed
    # ip:a is full, so user:2 must not be charged either
    assert not limiter.take('user:2', 'ip:a').allowed
    assert limiter.take('user:2', 'ip:b').allowed
    assert not limiter.take('user:2', 'ip:c').allowed


def test_limiter_keeps_no_per_key_state(storage):
    limiter = make_limiter(storage, 1, window_sec=1)
    before = dict(vars(limiter))
    for i in range(200):
        assert limiter.take(f'ip:10.0.0.{i}').allowed
    assert vars(limiter) == before

    # Quiet keys age out of the shared storage
    time.sleep(1.2)
    assert all(limiter.take(f'ip:10.0.0.{i}').allowed for i in range(200))


def test_disabled_limit_allows_everything(storage):
    unlimited = make_limiter(storage, 0)
    assert all(unlimited.take('k').allowed for _ in range(100))
    assert make_limiter(storage, 5).take().allowed

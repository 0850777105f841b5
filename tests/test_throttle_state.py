import threading
import time
from unittest.mock import MagicMock

import redis

from broadcaster.services.throttle_state import (
    InMemoryThrottleState,
    RedisThrottleState,
    is_throttled,
    remaining_seconds,
    retry_after_utc,
)


def test_starts_not_throttled():
    state = InMemoryThrottleState()
    assert state.retry_after() == 0.0
    assert not is_throttled(state)
    assert remaining_seconds(state) == 0.0
    assert retry_after_utc(state) is None


def test_push_forward_never_moves_backward():
    state = InMemoryThrottleState()
    now = time.time()
    state.push_forward(now + 100)
    assert state.push_forward(now + 10) == now + 100
    assert state.retry_after() == now + 100
    assert is_throttled(state, now)
    assert not is_throttled(state, now + 101)


def test_concurrent_push_forward_keeps_maximum():
    state = InMemoryThrottleState()
    base = time.time()
    delay = 660
    candidates = [base + delay + i * 0.01 for i in range(200)]
    threads = [threading.Thread(target=state.push_forward, args=(ts,)) for ts in reversed(candidates)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert state.retry_after() == max(candidates)


def _fake_redis_client():
    store: dict[str, bytes] = {}
    client = MagicMock()
    client.get.side_effect = lambda key: store.get(key)

    def run_script(keys, args):
        key, candidate = keys[0], float(args[0])
        current = store.get(key)
        if current is None or float(current) < candidate:
            store[key] = repr(candidate).encode()
        return store[key]

    client.register_script.return_value = MagicMock(side_effect=run_script)
    return client, store


def test_redis_state_applies_monotonic_max():
    client, store = _fake_redis_client()
    state = RedisThrottleState(client, key="test:retry_after")
    now = time.time()
    assert state.retry_after() == 0.0

    state.push_forward(now + 50)
    state.push_forward(now + 20)
    assert float(store["test:retry_after"]) == now + 50
    assert state.retry_after() == now + 50


def test_redis_state_sees_other_process_updates():
    client, store = _fake_redis_client()
    state = RedisThrottleState(client, key="k")
    later = time.time() + 300
    store["k"] = repr(later).encode()
    assert state.retry_after() == later
    assert is_throttled(state)


def test_redis_state_falls_back_on_errors():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    client.register_script.return_value = MagicMock(side_effect=redis.ConnectionError("down"))
    state = RedisThrottleState(client, key="k")
    until = time.time() + 30
    assert state.push_forward(until) == until
    assert state.retry_after() == until

import threading
import time

import pytest

from storefront.services.lock_service import LockService, LockTimeout


def test_hold_sets_and_releases_key(lock_service, redis_client):
    with lock_service.hold("customer:1"):
        assert redis_client.keys() == ["cart:lock:customer:1"]
    assert redis_client.keys() == []


def test_hold_is_reentrant_in_one_thread(lock_service, redis_client):
    with lock_service.hold("customer:1"):
        with lock_service.hold("customer:1"):
            assert redis_client.keys() == ["cart:lock:customer:1"]
        # inner exit must not release the outer hold
        assert redis_client.keys() == ["cart:lock:customer:1"]
    assert redis_client.keys() == []


def test_busy_key_times_out(redis_client):
    svc = LockService(client=redis_client, wait_seconds=0.05, poll_interval=0.01)
    redis_client.set("cart:lock:customer:1", "other", nx=True, ex=30)

    with pytest.raises(LockTimeout) as exc:
        with svc.hold("customer:1"):
            pass

    assert exc.value.key == "cart:lock:customer:1"
    # the foreign holder is untouched
    assert redis_client.get("cart:lock:customer:1") == "other"


def test_lock_released_on_exception(lock_service, redis_client):
    with pytest.raises(RuntimeError):
        with lock_service.hold("customer:1"):
            raise RuntimeError("boom")
    assert redis_client.keys() == []


def test_second_thread_waits_for_release(lock_service):
    order = []
    entered = threading.Event()

    def first():
        with lock_service.hold("customer:1"):
            entered.set()
            time.sleep(0.1)
            order.append("first")

    def second():
        entered.wait()
        with lock_service.hold("customer:1"):
            order.append("second")

    threads = [threading.Thread(target=first), threading.Thread(target=second)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert order == ["first", "second"]


def test_hold_many_takes_keys_sorted(lock_service, monkeypatch):
    acquired = []
    real = lock_service._try_acquire

    def spy(key, token):
        acquired.append(key)
        return real(key, token)

    monkeypatch.setattr(lock_service, "_try_acquire", spy)

    with lock_service.hold_many(["customer:9", "anonymous:203.0.113.9", "customer:9"]):
        pass

    assert acquired == ["cart:lock:anonymous:203.0.113.9", "cart:lock:customer:9"]


def test_hold_many_with_no_keys(lock_service, redis_client):
    with lock_service.hold_many([]):
        assert redis_client.keys() == []

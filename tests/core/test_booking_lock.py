import threading
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockNotOwnedError

from nexvoy.core.booking_lock import LocalBookingLockManager, RedisBookingLockManager
from nexvoy.core.exceptions import ServiceUnavailableException


class TestLocalBookingLockManager:
    def test_lock_is_reentrant_across_calls_and_cleans_up(self):
        manager = LocalBookingLockManager(timeout_s=0.1)

        with manager.lock("b1"):
            assert manager.active_count() == 1
        with manager.lock("b1"):
            pass

        assert manager.active_count() == 0

    def test_second_holder_times_out(self):
        manager = LocalBookingLockManager(timeout_s=0.05)
        entered = threading.Event()
        release = threading.Event()

        def hold():
            with manager.lock("b1"):
                entered.set()
                release.wait(2)

        holder = threading.Thread(target=hold)
        holder.start()
        entered.wait(2)
        try:
            with pytest.raises(ServiceUnavailableException) as exc_info:
                with manager.lock("b1"):
                    pass
            assert exc_info.value.code == "LOCK_TIMEOUT"
            assert exc_info.value.details == {"booking_id": "b1"}
        finally:
            release.set()
            holder.join()

        assert manager.active_count() == 0

    def test_distinct_ids_are_independent(self):
        manager = LocalBookingLockManager(timeout_s=0.05)

        with manager.lock("b1"):
            with manager.lock("b2"):
                assert manager.active_count() == 2

    def test_lock_released_when_body_raises(self):
        manager = LocalBookingLockManager(timeout_s=0.05)

        with pytest.raises(RuntimeError):
            with manager.lock("b1"):
                raise RuntimeError("boom")

        with manager.lock("b1"):
            pass


class TestRedisBookingLockManager:
    def _manager(self, redis_lock):
        client = MagicMock()
        client.lock.return_value = redis_lock
        return RedisBookingLockManager(client, ttl_s=30, timeout_s=0.5), client

    def test_acquire_and_release(self):
        redis_lock = MagicMock()
        redis_lock.acquire.return_value = True
        manager, client = self._manager(redis_lock)

        with manager.lock("b1"):
            pass

        client.lock.assert_called_once_with(
            "nexvoy:lock:booking:b1:mutex",
            timeout=30,
            blocking_timeout=0.5,
            thread_local=False,
        )
        redis_lock.acquire.assert_called_once_with(blocking=True)
        redis_lock.release.assert_called_once()

    def test_acquire_timeout(self):
        redis_lock = MagicMock()
        redis_lock.acquire.return_value = False
        manager, _ = self._manager(redis_lock)

        with pytest.raises(ServiceUnavailableException) as exc_info:
            with manager.lock("b1"):
                pass

        assert exc_info.value.code == "LOCK_TIMEOUT"
        redis_lock.release.assert_not_called()

    def test_redis_down_fails_closed(self):
        redis_lock = MagicMock()
        redis_lock.acquire.side_effect = RedisConnectionError("connection refused")
        manager, _ = self._manager(redis_lock)
        body = MagicMock()

        with pytest.raises(ServiceUnavailableException) as exc_info:
            with manager.lock("b1"):
                body()

        assert exc_info.value.code == "LOCK_UNAVAILABLE"
        body.assert_not_called()

    def test_expired_lock_on_release_is_logged_not_raised(self):
        redis_lock = MagicMock()
        redis_lock.acquire.return_value = True
        redis_lock.release.side_effect = LockNotOwnedError("expired")
        manager, _ = self._manager(redis_lock)

        with manager.lock("b1"):
            pass

        redis_lock.release.assert_called_once()

import threading
import time
import unittest
from unittest.mock import MagicMock, patch

from redis import exceptions as redis_exceptions

from orchard.errors import StorageError
from orchard.locks import InMemoryKeyLock, RedisKeyLock


class InMemoryKeyLockTests(unittest.TestCase):
    def test_same_key_is_serialised(self):
        lock = InMemoryKeyLock()
        counter = {"value": 0}

        def bump():
            with lock.hold("g:1:1"):
                current = counter["value"]
                time.sleep(0.001)
                counter["value"] = current + 1

        threads = [threading.Thread(target=bump) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(counter["value"], 20)

    def test_different_keys_do_not_block(self):
        lock = InMemoryKeyLock()
        with lock.hold("g:1:1"):
            with lock.hold("g:1:2"):
                self.assertEqual(set(lock.locks), {"g:1:1", "g:1:2"})

    def test_released_keys_are_forgotten(self):
        lock = InMemoryKeyLock()
        for row in range(500):
            with lock.hold(f"g:{row}:0"):
                pass
        self.assertEqual(lock.locks, {})

    def test_contended_key_is_forgotten_after_last_holder(self):
        lock = InMemoryKeyLock()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def first():
            with lock.hold("g:1:1"):
                entered.set()
                release.wait()
                order.append("first")

        def second():
            with lock.hold("g:1:1"):
                order.append("second")

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        threads[0].start()
        entered.wait()
        threads[1].start()
        time.sleep(0.01)
        self.assertIn("g:1:1", lock.locks)
        release.set()
        for thread in threads:
            thread.join()
        self.assertEqual(order, ["first", "second"])
        self.assertEqual(lock.locks, {})


class RedisKeyLockTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("orchard.locks.redis.Redis.from_url")
        self.from_url = patcher.start()
        self.addCleanup(patcher.stop)
        self.redis_lock = MagicMock()
        self.from_url.return_value.lock.return_value = self.redis_lock

    def test_hold_acquires_and_releases(self):
        self.redis_lock.acquire.return_value = True
        lock = RedisKeyLock(url="redis://localhost:6379/0", prefix="t:", timeout=5)

        with lock.hold("g:1:1"):
            self.redis_lock.release.assert_not_called()

        self.from_url.return_value.lock.assert_called_once_with(
            "t:g:1:1", timeout=5, blocking_timeout=5
        )
        self.redis_lock.release.assert_called_once()

    def test_acquire_timeout_raises_storage_error(self):
        self.redis_lock.acquire.return_value = False
        lock = RedisKeyLock(url="redis://localhost:6379/0")
        with self.assertRaises(StorageError):
            with lock.hold("g:1:1"):
                self.fail("body must not run without the lock")

    def test_connection_error_raises_storage_error(self):
        self.redis_lock.acquire.side_effect = redis_exceptions.ConnectionError("down")
        lock = RedisKeyLock(url="redis://localhost:6379/0")
        with self.assertRaises(StorageError):
            with lock.hold("g:1:1"):
                pass

    def test_expired_lock_on_release_is_tolerated(self):
        self.redis_lock.acquire.return_value = True
        self.redis_lock.release.side_effect = redis_exceptions.LockNotOwnedError("gone")
        lock = RedisKeyLock(url="redis://localhost:6379/0")
        with lock.hold("g:1:1"):
            pass


if __name__ == "__main__":
    unittest.main()

"""
Test cases for the activity lock.
"""
import threading
import unittest
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from nodcam.coordinator import ActivityCoordinator, Owner


class TestActivityCoordinator(unittest.TestCase):
    """Test single-session acquisition and release."""

    def setUp(self):
        self.coordinator = ActivityCoordinator()

    def test_starts_free(self):
        """Test that a new coordinator has no holder."""
        self.assertTrue(self.coordinator.is_free())
        self.assertIsNone(self.coordinator.holder)

    def test_second_owner_is_refused(self):
        """Test that a held lock refuses every other owner."""
        lease = self.coordinator.try_acquire(Owner.ANALYSIS)
        self.assertIsNotNone(lease)

        self.assertIsNone(self.coordinator.try_acquire(Owner.VOICE))
        self.assertIsNone(self.coordinator.try_acquire(Owner.GESTURE))
        self.assertIs(self.coordinator.holder, Owner.ANALYSIS)

    def test_second_session_of_same_kind_is_refused(self):
        """Test that a new voice session cannot join one already holding the lock."""
        first = self.coordinator.try_acquire(Owner.VOICE)

        self.assertIsNone(self.coordinator.try_acquire(Owner.VOICE))
        self.assertIsNone(self.coordinator.try_acquire(Owner.VOICE, lease=None))
        self.coordinator.release(first)
        self.assertTrue(self.coordinator.is_free())

    def test_reentrant_with_lease(self):
        """Test that the holding session re-enters and frees after every release."""
        lease = self.coordinator.try_acquire(Owner.VOICE)
        again = self.coordinator.try_acquire(Owner.GESTURE, lease=lease)

        self.assertIs(again, lease)
        self.assertIs(self.coordinator.holder, Owner.VOICE)

        self.coordinator.release(lease)
        self.assertIs(self.coordinator.holder, Owner.VOICE)

        self.coordinator.release(lease)
        self.assertTrue(self.coordinator.is_free())

    def test_stale_lease_cannot_reenter(self):
        """Test that a lease from a finished session grants nothing."""
        old = self.coordinator.try_acquire(Owner.VOICE)
        self.coordinator.release(old)
        current = self.coordinator.try_acquire(Owner.ANALYSIS)

        self.assertIsNone(self.coordinator.try_acquire(Owner.VOICE, lease=old))
        with self.assertRaises(RuntimeError):
            self.coordinator.release(old)
        self.coordinator.release(current)

    def test_release_without_holding(self):
        """Test that releasing a lock nobody holds is an error."""
        lease = self.coordinator.try_acquire(Owner.GESTURE)
        self.coordinator.release(lease)

        with self.assertRaises(RuntimeError):
            self.coordinator.release(lease)

    def test_hold_releases_on_exception(self):
        """Test that a held scope releases the lock when its body raises."""
        with self.assertRaises(KeyError):
            with self.coordinator.hold(Owner.ANALYSIS) as lease:
                self.assertIsNotNone(lease)
                raise KeyError("boom")

        self.assertTrue(self.coordinator.is_free())

    def test_hold_when_busy_releases_nothing(self):
        """Test that a refused scope leaves the holder untouched."""
        self.coordinator.try_acquire(Owner.VOICE)

        with self.coordinator.hold(Owner.ANALYSIS) as lease:
            self.assertIsNone(lease)

        self.assertIs(self.coordinator.holder, Owner.VOICE)

    def test_nested_hold_with_lease(self):
        """Test a nested scope re-entering with the outer lease."""
        with self.coordinator.hold(Owner.VOICE) as outer:
            with self.coordinator.hold(Owner.VOICE, outer) as inner:
                self.assertIs(inner, outer)
            self.assertIs(self.coordinator.holder, Owner.VOICE)

        self.assertTrue(self.coordinator.is_free())

    def test_concurrent_acquire(self):
        """Test that exactly one of many simultaneous callers wins."""
        barrier = threading.Barrier(12)
        wins = []
        owners = [Owner.GESTURE, Owner.ANALYSIS, Owner.VOICE]

        def contend(owner):
            barrier.wait()
            if self.coordinator.try_acquire(owner) is not None:
                wins.append(owner)

        threads = [threading.Thread(target=contend, args=(owners[i % 3],)) for i in range(12)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(wins), 1)
        self.assertIs(self.coordinator.holder, wins[0])


if __name__ == '__main__':
    unittest.main()

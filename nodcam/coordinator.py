"""
Single-owner lock broker for the camera, microphone and reasoner.
"""
import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Iterator, Optional

logger = logging.getLogger(__name__)


class Owner(Enum):
    """Components allowed to hold the activity lock."""
    GESTURE = "gesture"
    ANALYSIS = "analysis"
    VOICE = "voice"


class Lease:
    """
    One acquisition of the activity lock by one logical session.

    Compared by identity: only the session holding this object may
    re-enter or release.
    """

    def __init__(self, owner: Owner):
        self.owner = owner

    def __repr__(self) -> str:
        return f"Lease({self.owner.value}, id={id(self):#x})"


class ActivityCoordinator:
    """
    Holds either nothing or one lease.

    ``try_acquire`` never waits. A session that already holds the lock may
    acquire again by presenting its lease (a voice session running its own
    gesture); any other caller is refused, even one of the same kind. The
    lock frees once every acquisition has been released.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._lease: Optional[Lease] = None
        self._depth = 0

    @property
    def holder(self) -> Optional[Owner]:
        lease = self._lease
        return lease.owner if lease is not None else None

    def is_free(self) -> bool:
        return self._lease is None

    def try_acquire(self, owner: Owner, lease: Optional[Lease] = None) -> Optional[Lease]:
        """
        Take the lock for a new session of ``owner``, or re-enter with ``lease``.

        Returns:
            The lease now holding the lock, or None when busy
        """
        with self._guard:
            if self._lease is None:
                self._lease = Lease(owner)
                self._depth = 1
                logger.debug(f"🔒 Lock taken by {owner.value}")
                return self._lease
            if lease is not None and lease is self._lease:
                self._depth += 1
                return lease
            return None

    def release(self, lease: Lease) -> None:
        """Drop one acquisition made with ``lease``."""
        with self._guard:
            if lease is not self._lease:
                held = repr(self._lease) if self._lease else "nobody"
                raise RuntimeError(f"{lease!r} released a lock held by {held}")
            self._depth -= 1
            if self._depth == 0:
                self._lease = None
                logger.debug(f"🔓 Lock released by {lease.owner.value}")

    @contextmanager
    def hold(self, owner: Owner, lease: Optional[Lease] = None) -> Iterator[Optional[Lease]]:
        """
        Acquire-or-skip scope.

        Yields the lease when the lock was obtained; in that case it is
        released on every exit path. Yields None (and releases nothing)
        when busy.
        """
        acquired = self.try_acquire(owner, lease)
        try:
            yield acquired
        finally:
            if acquired is not None:
                self.release(acquired)

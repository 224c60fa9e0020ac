"""
Gesture engine that turns a gesture into a timed sequence of PTZ commands.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .coordinator import ActivityCoordinator, Lease, Owner
from .types import NEUTRAL, Gesture, GestureStep, MotionVector, PTZDevice

logger = logging.getLogger(__name__)

RETURN_TO_NEUTRAL = "Return to Center"


class GestureState(Enum):
    IDLE = "idle"
    STEPPING = "stepping"
    RETURNING_TO_NEUTRAL = "returning_to_neutral"
    STOPPING = "stopping"


def build_gesture(name: str, steps: List[GestureStep]) -> Gesture:
    return Gesture(name=name, steps=list(steps))


def affirm_gesture(magnitude: float = 0.3, active_ms: int = 800, rest_ms: int = 800) -> Gesture:
    """Nod: tilt up then down."""
    return Gesture(name="affirm", steps=[
        GestureStep("Nod up", MotionVector(tilt=magnitude), active_ms, rest_ms),
        GestureStep("Nod down", MotionVector(tilt=-magnitude), active_ms, rest_ms),
    ])


def negate_gesture(magnitude: float = 0.3, active_ms: int = 800, rest_ms: int = 800) -> Gesture:
    """Head-shake: pan left then right."""
    return Gesture(name="negate", steps=[
        GestureStep("Shake left", MotionVector(pan=-magnitude), active_ms, rest_ms),
        GestureStep("Shake right", MotionVector(pan=magnitude), active_ms, rest_ms),
    ])


class GestureEngine:
    """
    Drives one gesture at a time on the PTZ device.

    Features:
    - Each step: move, hold for active time, stop, rest
    - A failed move or stop is logged and the sequence carries on
    - Always finishes with the neutral vector followed by a stop
    - A shutdown request lets the current step finish, then skips to neutral;
      later gestures are refused until resume()
    """

    def __init__(self, device: PTZDevice, coordinator: ActivityCoordinator,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.device = device
        self.coordinator = coordinator
        self.state = GestureState.IDLE
        self.step_index: Optional[int] = None
        self._sleep = sleep
        self._shutdown_requested = False

    @property
    def busy(self) -> bool:
        return self.state is not GestureState.IDLE

    def request_shutdown(self) -> None:
        """Finish the current step, return to neutral, and refuse new gestures."""
        self._shutdown_requested = True

    def resume(self) -> None:
        """Accept gestures again after a shutdown request."""
        self._shutdown_requested = False

    async def perform(self, gesture: Gesture, owner: Owner = Owner.GESTURE,
                      on_complete: Optional[Callable[[Gesture], None]] = None,
                      lease: Optional[Lease] = None) -> bool:
        """
        Execute ``gesture`` if the activity lock can be taken by ``owner``.

        A voice session passes its own lease so its acquisition is reentrant;
        any other session holding the lock makes this call a no-op.

        Returns:
            True when the gesture ran, False when the lock was busy or a
            shutdown was requested
        """
        if self._shutdown_requested:
            logger.info(f"🛑 Gesture '{gesture.name}' refused: shutting down")
            return False

        with self.coordinator.hold(owner, lease) as acquired:
            if not acquired:
                logger.info(f"⏭️  Gesture '{gesture.name}' skipped: lock held by "
                            f"{self.coordinator.holder.value if self.coordinator.holder else '?'}")
                return False

            logger.info(f"🎬 Gesture '{gesture.name}' ({len(gesture.steps)} steps)")
            try:
                for index, step in enumerate(gesture.steps):
                    if self._shutdown_requested:
                        logger.info("🛑 Shutdown requested, cutting gesture short")
                        break
                    self.state = GestureState.STEPPING
                    self.step_index = index
                    await self._run_step(step)

                self.state = GestureState.RETURNING_TO_NEUTRAL
                self.step_index = None
                await self._move(RETURN_TO_NEUTRAL, NEUTRAL)

                self.state = GestureState.STOPPING
                await self._stop(RETURN_TO_NEUTRAL)
            finally:
                self.state = GestureState.IDLE
                self.step_index = None

        logger.info(f"✅ Gesture '{gesture.name}' complete")
        if on_complete is not None:
            on_complete(gesture)
        return True

    async def _run_step(self, step: GestureStep) -> None:
        v = step.vector
        logger.info(f"🔄 {step.label}: pan={v.pan}, tilt={v.tilt}, zoom={v.zoom}")
        await self._move(step.label, v)
        await self._sleep(step.active_ms / 1000.0)
        await self._stop(step.label)
        await self._sleep(step.rest_ms / 1000.0)

    async def _move(self, label: str, vector: MotionVector) -> None:
        try:
            await self.device.move(vector)
        except Exception as e:
            logger.error(f"❌ Failed to execute {label}: {e}")

    async def _stop(self, label: str) -> None:
        try:
            await self.device.stop()
        except Exception as e:
            logger.error(f"❌ Failed to stop {label}: {e}")

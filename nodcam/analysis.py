"""
Continuous vision polling: capture a frame, ask the reasoner about it, cool down.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from .coordinator import ActivityCoordinator, Owner
from .errors import NodcamError, TransientIOError
from .retry import RetryConfig, with_retry
from .types import (AnalysisCycle, AnalysisOutcome, CaptureKind, CaptureRequest,
                    CaptureResult, MediaExtractor, Reasoner)

logger = logging.getLogger(__name__)


class AnalysisState(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    REASONING = "reasoning"
    COOLDOWN = "cooldown"


class AnalysisScheduler:
    """
    Non-overlapping polling loop around the activity lock.

    Features:
    - Skips a tick outright when another component holds the lock
    - Full poll interval after a successful cycle
    - Shorter retry interval after a failed or skipped cycle
    - Stops cooperatively: the current cooldown runs out, the next tick never arms
    """

    def __init__(self, extractor: MediaExtractor, reasoner: Reasoner,
                 coordinator: ActivityCoordinator, stream_url: str,
                 system_prompt: str, prompt: str,
                 capture_retry: RetryConfig, reason_retry: RetryConfig,
                 poll_interval_ms: int = 10000, fast_retry_ms: int = 2000,
                 observer: Optional[Callable[[AnalysisCycle], None]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.extractor = extractor
        self.reasoner = reasoner
        self.coordinator = coordinator
        self.stream_url = stream_url
        self.system_prompt = system_prompt
        self.prompt = prompt
        self.capture_retry = capture_retry
        self.reason_retry = reason_retry
        self.poll_interval_ms = poll_interval_ms
        self.fast_retry_ms = fast_retry_ms
        self.observer = observer
        self.state = AnalysisState.IDLE
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    def cooldown_ms(self, cycle: AnalysisCycle) -> int:
        if cycle.outcome is AnalysisOutcome.SUCCESS:
            return self.poll_interval_ms
        return self.fast_retry_ms

    async def run(self) -> None:
        """Poll until stop() is called."""
        self._running = True
        logger.info("👁️  Analysis polling started")
        while self._running:
            cycle = await self.tick()
            delay_ms = self.cooldown_ms(cycle)
            self.state = AnalysisState.COOLDOWN
            await self._sleep(delay_ms / 1000.0)
            self.state = AnalysisState.IDLE
        logger.info("👁️  Analysis polling stopped")

    async def tick(self) -> AnalysisCycle:
        """Run one capture -> reason cycle if the lock is free."""
        cycle = AnalysisCycle()

        with self.coordinator.hold(Owner.ANALYSIS) as acquired:
            if not acquired:
                logger.debug("⏭️  Analysis tick skipped: device busy")
                self.state = AnalysisState.COOLDOWN
                cycle.outcome = AnalysisOutcome.SKIPPED
                return cycle

            try:
                await self._cycle(cycle)
            finally:
                self.state = AnalysisState.COOLDOWN

        # Observer runs outside the lock so it may trigger other work
        if self.observer is not None:
            self.observer(cycle)
        return cycle

    async def _cycle(self, cycle: AnalysisCycle) -> None:
        self.state = AnalysisState.CAPTURING
        try:
            cycle.capture = await with_retry(self._capture_frame, self.capture_retry,
                                             label="frame capture")
        except NodcamError as e:
            logger.warning(f"⚠️ Analysis capture failed: {e}")
            cycle.outcome = AnalysisOutcome.CAPTURE_FAILED
            return

        self.state = AnalysisState.REASONING
        frame = cycle.capture
        try:
            cycle.verdict = await with_retry(lambda: self._ask(frame), self.reason_retry,
                                             label="analysis reasoning")
        except NodcamError as e:
            logger.warning(f"⚠️ Analysis reasoning failed: {e}")
            cycle.outcome = AnalysisOutcome.REASONER_FAILED
            return

        cycle.outcome = AnalysisOutcome.SUCCESS
        logger.debug(f"👁️  {cycle.verdict}")

    async def _capture_frame(self) -> CaptureResult:
        return await self.extractor.capture(CaptureRequest(self.stream_url, CaptureKind.FRAME))

    async def _ask(self, frame: CaptureResult) -> str:
        answer = await self.reasoner.ask(self.system_prompt, self.prompt, frame.payload)
        if answer is None:
            raise TransientIOError("reasoner returned no answer")
        return answer.strip()

"""
Wake phrase loop: listen in short clips, and only treat speech as a
question once the wake phrase has been heard.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from .types import TranscriptOutcome
from .voice import SessionResult, VoiceSession

logger = logging.getLogger(__name__)

_STRIP_CHARS = " \t\n,.!?:;-"


def find_wake_phrase(transcript: str, phrase: str, variants: Iterable[str] = ()) -> Optional[str]:
    """
    Look for the wake phrase (or one of its configured variants) in a transcript.

    Args:
        transcript: Recognized text
        phrase: Canonical wake phrase
        variants: Near-homophones accepted as the phrase

    Returns:
        The text following the earliest match (possibly empty), or None if
        no phrase was found
    """
    if not transcript:
        return None
    folded = transcript.casefold()

    best_start, best_end = None, None
    for candidate in [phrase, *variants]:
        candidate = candidate.strip().casefold()
        if not candidate:
            continue
        start = folded.find(candidate)
        if start < 0:
            continue
        end = start + len(candidate)
        # Earliest match wins; on a tie, the longer candidate
        if best_start is None or start < best_start or (start == best_start and end > best_end):
            best_start, best_end = start, end

    if best_start is None:
        return None
    # Separators after the phrase go; the question keeps its own punctuation
    return transcript[best_end:].lstrip(_STRIP_CHARS).rstrip()


class WakeWordMonitor:
    """
    Unbounded listen loop on top of a VoiceSession.

    stop() is checked at the top of each iteration, so the loop ends once
    the in-flight clip has been captured and handled.
    """

    def __init__(self, session: VoiceSession, phrase: str, variants: Iterable[str] = (),
                 listen_ms: int = 4000, loop_delay_ms: int = 500,
                 on_result: Optional[Callable[[SessionResult], None]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.session = session
        self.phrase = phrase
        self.variants = list(variants)
        self.listen_ms = listen_ms
        self.loop_delay_ms = loop_delay_ms
        self.on_result = on_result
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False

    async def run(self) -> None:
        self._running = True
        logger.info(f"👂 Listening for wake phrase '{self.phrase}'")
        while self._running:
            await self.check_once()
            if self._running:
                await self._sleep(self.loop_delay_ms / 1000.0)
        logger.info("👂 Wake phrase loop stopped")

    async def check_once(self) -> Optional[SessionResult]:
        """One listen; runs a full question if the wake phrase was heard."""
        transcript = await self.session.listen(self.listen_ms)
        if transcript is None or transcript.outcome is not TranscriptOutcome.TRANSCRIBED:
            return None

        question = find_wake_phrase(transcript.text, self.phrase, self.variants)
        if question is None:
            return None

        if question:
            logger.info(f"✨ Wake phrase heard, question: {question!r}")
            result = await self.session.run(question)
        else:
            logger.info("✨ Wake phrase heard, waiting for the question")
            result = await self.session.run()

        if self.on_result is not None:
            self.on_result(result)
        return result

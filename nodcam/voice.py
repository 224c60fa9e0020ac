"""
Voice question pipeline: record -> transcribe -> ask -> gesture.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .coordinator import ActivityCoordinator, Lease, Owner
from .errors import NodcamError, TransientIOError
from .gesture_engine import GestureEngine
from .retry import RetryConfig, with_retry
from .speech import NO_SPEECH, transcribe_with_fallback
from .types import (AudioSource, CaptureKind, CaptureRequest, CaptureResult, Gesture,
                    MediaExtractor, Reasoner, SpeechRecognizer, Transcript,
                    TranscriptOutcome, Verdict, VoiceQuestion)

logger = logging.getLogger(__name__)


class VoiceState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    REASONING = "reasoning"
    GESTURING = "gesturing"
    DONE = "done"
    ABORTED = "aborted"


class SessionOutcome(Enum):
    COMPLETED = "completed"      # answered with a nod or shake
    AMBIGUOUS = "ambiguous"      # answered, but neither yes nor no
    NO_SPEECH = "no_speech"      # nothing was said
    REJECTED = "rejected"        # device busy, trigger dropped
    ABORTED = "aborted"          # a pipeline stage failed


@dataclass
class SessionResult:
    question: VoiceQuestion = field(default_factory=VoiceQuestion)
    state: VoiceState = VoiceState.IDLE
    outcome: SessionOutcome = SessionOutcome.ABORTED
    gesture: Optional[Gesture] = None


def classify_answer(answer: Optional[str]) -> Verdict:
    """
    Map free text to a verdict.

    Case-folded and trimmed, then checked for containment: "yes" anywhere
    wins, otherwise "no" anywhere ("Nope", "Not at all") is a negative.
    """
    if not answer:
        return Verdict.AMBIGUOUS
    normalized = answer.strip().casefold()
    if "yes" in normalized:
        return Verdict.YES
    if "no" in normalized:
        return Verdict.NO
    return Verdict.AMBIGUOUS


class VoiceSession:
    """
    Runs one question at a time through the pipeline.

    A trigger that arrives while anything else holds the activity lock is
    dropped, not queued. The lock is released on every exit path.
    """

    def __init__(self, audio_source: AudioSource, recognizer: SpeechRecognizer,
                 reasoner: Reasoner, extractor: MediaExtractor,
                 gesture_engine: GestureEngine, coordinator: ActivityCoordinator,
                 stream_url: str, system_prompt: str,
                 affirm: Gesture, negate: Gesture,
                 capture_retry: RetryConfig, transcribe_retry: RetryConfig,
                 reason_retry: RetryConfig,
                 max_record_ms: int = 6000,
                 no_speech_sentinel: str = NO_SPEECH,
                 silence_rms: float = 300.0):
        self.audio_source = audio_source
        self.recognizer = recognizer
        self.reasoner = reasoner
        self.extractor = extractor
        self.gesture_engine = gesture_engine
        self.coordinator = coordinator
        self.stream_url = stream_url
        self.system_prompt = system_prompt
        self.affirm = affirm
        self.negate = negate
        self.capture_retry = capture_retry
        self.transcribe_retry = transcribe_retry
        self.reason_retry = reason_retry
        self.max_record_ms = max_record_ms
        self.no_speech_sentinel = no_speech_sentinel
        self.silence_rms = silence_rms
        self.state = VoiceState.IDLE

    async def run(self, question_text: Optional[str] = None) -> SessionResult:
        """
        Answer one question with a gesture.

        Args:
            question_text: Typed or already-transcribed question. When None the
                question is recorded from the microphone first.

        Returns:
            SessionResult describing how far the pipeline got
        """
        result = SessionResult(question=VoiceQuestion(raw_text=question_text))

        with self.coordinator.hold(Owner.VOICE) as lease:
            if lease is None:
                holder = self.coordinator.holder
                logger.info(f"⏭️  Question dropped: device busy ({holder.value if holder else '?'})")
                result.outcome = SessionOutcome.REJECTED
                return result

            try:
                await self._pipeline(result, lease)
            except NodcamError as e:
                logger.error(f"❌ Voice session aborted during {self.state.value}: {e}")
                result.outcome = SessionOutcome.ABORTED
                self.state = VoiceState.ABORTED
            finally:
                result.state = self.state
                self.state = VoiceState.IDLE

        logger.info(f"🏁 Voice session {result.outcome.value}")
        return result

    async def listen(self, max_duration_ms: int) -> Optional[Transcript]:
        """
        Record and transcribe a clip without asking anything.

        Returns:
            The transcript, or None when the device is busy
        """
        with self.coordinator.hold(Owner.VOICE) as lease:
            if lease is None:
                return None
            try:
                _, transcript = await self._record_and_transcribe(max_duration_ms)
                return transcript
            finally:
                self.state = VoiceState.IDLE

    async def _pipeline(self, result: SessionResult, lease: Lease) -> None:
        question = result.question

        if question.raw_text is None:
            capture, transcript = await self._record_and_transcribe(self.max_record_ms)
            question.source_capture = capture
        else:
            text = question.raw_text.strip()
            transcript = Transcript(TranscriptOutcome.TRANSCRIBED, text) if text \
                else Transcript(TranscriptOutcome.NO_SPEECH)
        question.transcript = transcript

        if transcript.outcome is TranscriptOutcome.NO_SPEECH:
            logger.info("🔇 No speech detected")
            result.outcome = SessionOutcome.NO_SPEECH
            self.state = VoiceState.ABORTED
            return
        if transcript.outcome is TranscriptOutcome.FAILED:
            raise TransientIOError("speech recognizer failed")

        self.state = VoiceState.REASONING
        logger.info(f"❓ Question: {transcript.text}")
        frame = await with_retry(self._capture_frame, self.capture_retry, label="question frame")
        answer = await with_retry(lambda: self._ask(transcript.text, frame), self.reason_retry,
                                  label="question reasoning")
        question.answer = answer
        question.verdict = classify_answer(answer)
        logger.info(f"💬 Answer: {answer!r} -> {question.verdict.value}")

        if question.verdict is Verdict.AMBIGUOUS:
            result.outcome = SessionOutcome.AMBIGUOUS
            self.state = VoiceState.DONE
            return

        self.state = VoiceState.GESTURING
        gesture = self.affirm if question.verdict is Verdict.YES else self.negate
        result.gesture = gesture
        await self.gesture_engine.perform(gesture, owner=Owner.VOICE, lease=lease)

        result.outcome = SessionOutcome.COMPLETED
        self.state = VoiceState.DONE

    async def _record_and_transcribe(self, max_duration_ms: int):
        self.state = VoiceState.RECORDING
        try:
            capture = await with_retry(lambda: self.audio_source.record(max_duration_ms),
                                       self.capture_retry, label="voice recording")
        except NodcamError as e:
            logger.error(f"❌ Recording failed: {e}")
            return None, Transcript(TranscriptOutcome.FAILED)

        self.state = VoiceState.TRANSCRIBING
        transcript = await transcribe_with_fallback(
            self.recognizer, capture, self.transcribe_retry,
            sentinel=self.no_speech_sentinel, silence_rms=self.silence_rms
        )
        return capture, transcript

    async def _capture_frame(self) -> CaptureResult:
        return await self.extractor.capture(CaptureRequest(self.stream_url, CaptureKind.FRAME))

    async def _ask(self, question: str, frame: CaptureResult) -> str:
        prompt = f"Question: {question}\nAnswer with yes or no."
        answer = await self.reasoner.ask(self.system_prompt, prompt, frame.payload)
        if answer is None:
            raise TransientIOError("reasoner returned no answer")
        return answer

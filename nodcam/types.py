"""
Type definitions for the nod camera orchestrator.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class MotionVector:
    """Continuous-motion velocity for the PTZ axes, each in [-1, 1]."""
    pan: float = 0.0
    tilt: float = 0.0
    zoom: float = 0.0

    def __post_init__(self):
        for axis in ("pan", "tilt", "zoom"):
            value = getattr(self, axis)
            if not -1.0 <= value <= 1.0:
                raise ValueError(f"{axis}={value} outside [-1, 1]")

    @property
    def is_neutral(self) -> bool:
        return self.pan == 0.0 and self.tilt == 0.0 and self.zoom == 0.0


NEUTRAL = MotionVector(0.0, 0.0, 0.0)


@dataclass(frozen=True)
class GestureStep:
    """One timed motion of a gesture."""
    label: str
    vector: MotionVector
    active_ms: int
    rest_ms: int


@dataclass(frozen=True)
class Gesture:
    """Ordered steps; the engine always appends the return-to-neutral step."""
    name: str
    steps: List[GestureStep]


class CaptureKind(Enum):
    FRAME = "frame"
    AUDIO = "audio"


@dataclass
class CaptureRequest:
    """What to pull from a stream and for how long."""
    source_url: str
    kind: CaptureKind
    max_duration_ms: int = 0


@dataclass
class CaptureResult:
    """Raw bytes pulled from a stream."""
    payload: bytes
    mime_hint: str


class AnalysisOutcome(Enum):
    SUCCESS = "success"
    CAPTURE_FAILED = "capture_failed"
    REASONER_FAILED = "reasoner_failed"
    SKIPPED = "skipped"


@dataclass
class AnalysisCycle:
    """One poll tick of the analysis scheduler. Not persisted."""
    started_at: float = field(default_factory=time.time)
    capture: Optional[CaptureResult] = None
    verdict: Optional[str] = None
    outcome: AnalysisOutcome = AnalysisOutcome.SKIPPED


class Verdict(Enum):
    YES = "yes"
    NO = "no"
    AMBIGUOUS = "ambiguous"


class TranscriptOutcome(Enum):
    """Result of the recognizer -> volume heuristic -> failure chain."""
    TRANSCRIBED = "transcribed"
    NO_SPEECH = "no_speech"
    FAILED = "failed"


@dataclass
class Transcript:
    outcome: TranscriptOutcome
    text: str = ""


@dataclass
class VoiceQuestion:
    """A single user question as it moves through the voice pipeline."""
    raw_text: Optional[str] = None
    source_capture: Optional[CaptureResult] = None
    transcript: Optional[Transcript] = None
    answer: Optional[str] = None
    verdict: Optional[Verdict] = None


@runtime_checkable
class PTZDevice(Protocol):
    """Abstract protocol for a camera that accepts continuous-motion commands."""

    async def move(self, vector: MotionVector) -> None:
        """Start continuous motion at the given velocity. Raises on failure."""
        ...

    async def stop(self) -> None:
        """Halt all motion. Raises on failure."""
        ...


@runtime_checkable
class MediaExtractor(Protocol):
    """Pulls stills or raw audio out of a stream URL."""

    async def capture(self, request: CaptureRequest) -> CaptureResult:
        ...


@runtime_checkable
class Reasoner(Protocol):
    """Vision-language model. Returns None on failure, never raises."""

    async def ask(self, system_prompt: str, user_prompt: str,
                  image: Optional[bytes] = None) -> Optional[str]:
        ...


@runtime_checkable
class SpeechRecognizer(Protocol):
    """Returns transcribed text, or the no-speech sentinel. Raises on recognizer failure."""

    async def transcribe(self, audio_path: str) -> str:
        ...


@runtime_checkable
class AudioSource(Protocol):
    """A microphone that can record one bounded clip."""

    async def record(self, max_duration_ms: int) -> CaptureResult:
        ...

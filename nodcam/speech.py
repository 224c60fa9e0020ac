"""
Speech-to-text with ElevenLabs and the recognizer -> volume -> failure fallback chain.
"""
import asyncio
import io
import logging
import os
import tempfile
import wave
from typing import Optional

import numpy as np
from elevenlabs.client import ElevenLabs

from .errors import NodcamError, TransientIOError
from .retry import RetryConfig, with_retry
from .types import CaptureResult, SpeechRecognizer, Transcript, TranscriptOutcome

logger = logging.getLogger(__name__)

NO_SPEECH = "no speech detected"

_SUFFIXES = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/aac": ".aac",
    "audio/basic": ".au",
    "audio/mpeg": ".mp3",
}


class ElevenLabsRecognizer:
    """ElevenLabs Scribe speech-to-text."""

    def __init__(self, api_key: Optional[str], model_id: str = "scribe_v1",
                 language_code: str = "eng", no_speech_sentinel: str = NO_SPEECH):
        if not api_key:
            raise ValueError("ELEVEN_LABS_API_KEY not found in environment variables")
        self.client = ElevenLabs(api_key=api_key)
        self.model_id = model_id
        self.language_code = language_code
        self.no_speech_sentinel = no_speech_sentinel

    async def transcribe(self, audio_path: str) -> str:
        """
        Transcribe an audio file.

        Returns:
            The transcript, or the no-speech sentinel when nothing was said

        Raises:
            TransientIOError: the recognizer call failed
        """
        try:
            transcription = await asyncio.to_thread(self._convert, audio_path)
        except Exception as e:
            raise TransientIOError(f"transcription failed: {e}") from e

        text = (getattr(transcription, "text", "") or "").strip()
        return text or self.no_speech_sentinel

    def _convert(self, audio_path: str):
        logger.info("🔄 Transcribing...")
        with open(audio_path, "rb") as audio_file:
            return self.client.speech_to_text.convert(
                file=audio_file,
                model_id=self.model_id,
                tag_audio_events=False,
                language_code=self.language_code,
                diarize=False
            )


def audio_rms(payload: bytes) -> Optional[float]:
    """RMS level of a 16-bit PCM WAV clip, or None when the clip is not PCM WAV."""
    if not payload.startswith(b"RIFF"):
        return None
    try:
        with wave.open(io.BytesIO(payload), "rb") as wf:
            if wf.getsampwidth() != 2:
                return None
            frames = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError):
        return None

    samples = np.frombuffer(frames, dtype=np.int16).astype(np.float64)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples ** 2)))


def is_no_speech(text: Optional[str], sentinel: str = NO_SPEECH) -> bool:
    if text is None:
        return True
    cleaned = text.strip()
    return not cleaned or cleaned.lower() == sentinel.lower()


async def transcribe_with_fallback(recognizer: SpeechRecognizer, capture: CaptureResult,
                                   retry: RetryConfig,
                                   sentinel: str = NO_SPEECH,
                                   silence_rms: float = 300.0) -> Transcript:
    """
    Turn a captured clip into a Transcript.

    The recognizer is tried first (under ``retry``). If it fails, the clip's
    volume decides between NO_SPEECH (quiet) and FAILED (audible).
    """
    suffix = _SUFFIXES.get(capture.mime_hint.split(";")[0].strip().lower(), ".bin")
    fd, path = tempfile.mkstemp(prefix="nodcam_", suffix=suffix)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(capture.payload)

        try:
            text = await with_retry(lambda: recognizer.transcribe(path), retry, label="transcribe")
        except NodcamError as e:
            rms = audio_rms(capture.payload)
            if rms is not None and rms < silence_rms:
                logger.info(f"🔇 Recognizer failed on a quiet clip (rms={rms:.0f}), treating as silence")
                return Transcript(TranscriptOutcome.NO_SPEECH)
            logger.error(f"❌ Transcription failed: {e}")
            return Transcript(TranscriptOutcome.FAILED)
    finally:
        try:
            os.remove(path)
        except OSError:
            pass

    if is_no_speech(text, sentinel):
        return Transcript(TranscriptOutcome.NO_SPEECH)
    logger.info(f"📝 Transcribed: {text.strip()}")
    return Transcript(TranscriptOutcome.TRANSCRIBED, text.strip())

"""
Microphone sources: the camera's own microphone over Digest-authenticated
HTTP, or a local input device through PyAudio.

Both end a recording at the maximum duration, or once a stretch of quiet
follows detected speech.
"""
import asyncio
import io
import logging
import time
import wave
from typing import List, Optional

import numpy as np

from .config import AudioConfig
from .digest_auth import DigestAuthClient
from .types import CaptureResult

logger = logging.getLogger(__name__)

CHANNELS = 1
SPEECH_RMS_THRESHOLD = 500.0  # int16 RMS above which a chunk counts as speech
G711_SAMPLE_RATE = 8000


def _g711_tables():
    codes = np.arange(256, dtype=np.int32)

    # mu-law: inverted bits, 3-bit exponent, 4-bit mantissa, bias 0x84
    u = ~codes & 0xFF
    exponent = (u >> 4) & 0x07
    mantissa = u & 0x0F
    magnitude = (((mantissa << 3) + 0x84) << exponent) - 0x84
    ulaw = np.where(u & 0x80, -magnitude, magnitude).astype(np.int16)

    # A-law: even bits inverted, sign bit set means positive
    a = codes ^ 0x55
    exponent = (a & 0x70) >> 4
    mantissa = a & 0x0F
    magnitude = np.where(exponent == 0,
                         (mantissa << 4) + 8,
                         ((mantissa << 4) + 0x108) << np.maximum(exponent - 1, 0))
    alaw = np.where(a & 0x80, magnitude, -magnitude).astype(np.int16)
    return alaw, ulaw


G711_ALAW, G711_ULAW = _g711_tables()


def g711_table(mime_hint: str) -> Optional[np.ndarray]:
    """Decode table for a G.711 content type, or None if the stream is something else."""
    kind = mime_hint.split(";")[0].strip().lower()
    if kind in ("audio/g.711a", "audio/pcma", "audio/alaw", "audio/x-alaw-basic"):
        return G711_ALAW
    if kind in ("audio/g.711u", "audio/g.711mu", "audio/pcmu", "audio/basic", "audio/x-mulaw"):
        return G711_ULAW
    return None


class SilenceEndpointer:
    """
    Decides when a recording can stop.

    Quiet is measured in samples rather than wall time, so bursty network
    delivery does not cut a speaker off.
    """

    def __init__(self, sample_rate: int, trailing_silence_ms: int,
                 speech_threshold: float = SPEECH_RMS_THRESHOLD):
        self.sample_rate = sample_rate
        self.trailing_silence_ms = trailing_silence_ms
        self.speech_threshold = speech_threshold
        self.speech_seen = False
        self._silent_samples = 0

    def feed(self, samples: np.ndarray) -> bool:
        """Account for one chunk of int16 samples; True once speech has ended."""
        if samples.size == 0:
            return False
        rms = float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))
        if rms >= self.speech_threshold:
            if not self.speech_seen:
                logger.info("🗣️  Speech detected - recording...")
            self.speech_seen = True
            self._silent_samples = 0
            return False
        if not self.speech_seen:
            return False
        self._silent_samples += samples.size
        if self._silent_samples * 1000 >= self.trailing_silence_ms * self.sample_rate:
            logger.info("🔇 Speech ended")
            return True
        return False


class CameraMicrophone:
    """
    Records from the camera microphone.

    G.711 streams are decoded so the clip can end early on trailing silence
    and is handed on as WAV; any other encoding is read for the full window
    and passed through untouched.
    """

    def __init__(self, client: DigestAuthClient, trailing_silence_ms: int = 1200,
                 speech_threshold: float = SPEECH_RMS_THRESHOLD):
        self.client = client
        self.trailing_silence_ms = trailing_silence_ms
        self.speech_threshold = speech_threshold

    async def record(self, max_duration_ms: int) -> CaptureResult:
        endpointer = SilenceEndpointer(G711_SAMPLE_RATE, self.trailing_silence_ms,
                                       self.speech_threshold)

        def heard_enough(chunk: bytes, mime_hint: str) -> bool:
            table = g711_table(mime_hint)
            if table is None:
                return False
            return endpointer.feed(table[np.frombuffer(chunk, dtype=np.uint8)])

        capture = await self.client.capture_audio(max_duration_ms, stop_when=heard_enough)

        table = g711_table(capture.mime_hint)
        if table is None:
            return capture
        samples = table[np.frombuffer(capture.payload, dtype=np.uint8)]
        return CaptureResult(payload=create_wav([samples], G711_SAMPLE_RATE),
                             mime_hint="audio/wav")


class LocalMicrophone:
    """
    Records from the default input device.

    Stops at ``max_duration_ms`` or once ``trailing_silence_ms`` of quiet
    follows detected speech, whichever comes first.
    """

    def __init__(self, sample_rate: int = 16000, chunk: int = 1024,
                 trailing_silence_ms: int = 1200,
                 speech_threshold: float = SPEECH_RMS_THRESHOLD):
        self.sample_rate = sample_rate
        self.chunk = chunk
        self.trailing_silence_ms = trailing_silence_ms
        self.speech_threshold = speech_threshold

    async def record(self, max_duration_ms: int) -> CaptureResult:
        payload = await asyncio.to_thread(self._record_blocking, max_duration_ms)
        return CaptureResult(payload=payload, mime_hint="audio/wav")

    def _record_blocking(self, max_duration_ms: int) -> bytes:
        import pyaudio

        audio = pyaudio.PyAudio()
        stream = audio.open(
            format=pyaudio.paInt16,
            channels=CHANNELS,
            rate=self.sample_rate,
            input=True,
            frames_per_buffer=self.chunk
        )
        endpointer = SilenceEndpointer(self.sample_rate, self.trailing_silence_ms,
                                       self.speech_threshold)
        frames: List[np.ndarray] = []
        try:
            logger.info("🎤 Listening...")
            started = time.monotonic()
            while (time.monotonic() - started) * 1000 < max_duration_ms:
                data = stream.read(self.chunk, exception_on_overflow=False)
                samples = np.frombuffer(data, dtype=np.int16)
                frames.append(samples)
                if endpointer.feed(samples):
                    break
            sample_width = audio.get_sample_size(pyaudio.paInt16)
        finally:
            stream.stop_stream()
            stream.close()
            audio.terminate()

        return create_wav(frames, self.sample_rate, sample_width)


def create_wav(frames: List[np.ndarray], sample_rate: int, sample_width: int = 2) -> bytes:
    """Pack int16 sample chunks into a mono WAV file."""
    wav_buffer = io.BytesIO()
    wf = wave.open(wav_buffer, 'wb')
    wf.setnchannels(CHANNELS)
    wf.setsampwidth(sample_width)
    wf.setframerate(sample_rate)
    if frames:
        wf.writeframes(np.concatenate(frames).astype(np.int16).tobytes())
    wf.close()
    return wav_buffer.getvalue()


def create_audio_source(cfg: AudioConfig, client: DigestAuthClient):
    """Build the microphone named by ``cfg.source``."""
    if cfg.source == "camera":
        return CameraMicrophone(client, trailing_silence_ms=cfg.trailing_silence_ms)
    if cfg.source == "local":
        return LocalMicrophone(
            sample_rate=cfg.sample_rate,
            chunk=cfg.chunk,
            trailing_silence_ms=cfg.trailing_silence_ms
        )
    raise ValueError(f"Unknown audio source: {cfg.source}")

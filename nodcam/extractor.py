"""
Frame and audio extraction from the camera stream using ffmpeg.
"""
import asyncio
import logging
from typing import List, Optional

from .errors import ExtractorError, NoDataError
from .types import CaptureKind, CaptureRequest, CaptureResult

logger = logging.getLogger(__name__)


class FfmpegExtractor:
    """
    Runs ffmpeg as a subprocess and collects its stdout.

    The process is killed if the awaiting task is cancelled, which is how
    the retry wrapper's timeout reclaims a hung capture.
    """

    def __init__(self, binary: str = "ffmpeg", sample_rate: int = 16000):
        self.binary = binary
        self.sample_rate = sample_rate

    async def capture(self, request: CaptureRequest) -> CaptureResult:
        if request.kind is CaptureKind.FRAME:
            return await self.grab_frame(request.source_url)
        seconds = max(request.max_duration_ms, 1) / 1000.0
        return await self.grab_audio(request.source_url, seconds)

    async def grab_frame(self, url: str) -> CaptureResult:
        """One JPEG still from ``url``."""
        args = self._input_args(url) + [
            "-frames:v", "1",
            "-f", "image2", "-vcodec", "mjpeg",
            "pipe:1",
        ]
        payload = await self._run(args)
        logger.debug(f"📸 Frame captured ({len(payload)} bytes)")
        return CaptureResult(payload=payload, mime_hint="image/jpeg")

    async def grab_audio(self, url: str, seconds: float) -> CaptureResult:
        """``seconds`` of mono 16-bit WAV from ``url``."""
        args = self._input_args(url) + [
            "-t", f"{seconds:.2f}",
            "-vn", "-ac", "1", "-ar", str(self.sample_rate),
            "-f", "wav",
            "pipe:1",
        ]
        payload = await self._run(args)
        return CaptureResult(payload=payload, mime_hint="audio/wav")

    async def encode_aac(self, audio: bytes) -> bytes:
        """Transcode a clip to ADTS AAC for the camera speaker."""
        args = [
            "-i", "pipe:0",
            "-ac", "1", "-ar", "8000",
            "-c:a", "aac", "-b:a", "32k",
            "-f", "adts",
            "pipe:1",
        ]
        return await self._run(args, stdin=audio)

    def _input_args(self, url: str) -> List[str]:
        args = []
        if url.startswith("rtsp://"):
            args += ["-rtsp_transport", "tcp"]
        return args + ["-i", url]

    async def _run(self, args: List[str], stdin: Optional[bytes] = None) -> bytes:
        cmd = [self.binary, "-hide_banner", "-loglevel", "error", "-y"] + args
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ExtractorError(f"{self.binary} not found: {e}") from e

        try:
            stdout, stderr = await proc.communicate(input=stdin)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[-200:]
            raise ExtractorError(f"ffmpeg exited with {proc.returncode}: {detail}",
                                 exit_code=proc.returncode)
        if not stdout:
            raise NoDataError("ffmpeg produced no output")
        return stdout

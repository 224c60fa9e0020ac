"""
Keyboard-driven command loop for the nod camera.
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional, Set

from .analysis import AnalysisScheduler
from .audio import CameraMicrophone, create_audio_source
from .config import load_config
from .coordinator import ActivityCoordinator, Owner
from .digest_auth import DigestAuthClient
from .errors import NodcamError
from .extractor import FfmpegExtractor
from .gesture_engine import GestureEngine, build_gesture
from .ptz import MockPTZDevice, OnvifPTZDevice, with_credentials
from .reasoner import create_reasoner
from .retry import with_retry
from .speech import ElevenLabsRecognizer, audio_rms, transcribe_with_fallback
from .types import AnalysisCycle, AnalysisOutcome
from .voice import SessionOutcome, SessionResult, VoiceSession
from .wake_word import WakeWordMonitor

logger = logging.getLogger(__name__)

MIC_TEST_MS = 3000

MENU = """
🎮 Commands:
  v  ask a spoken question
  t  type a question
  m  microphone self-test
  w  toggle wake-word mode
  a  toggle continuous vision analysis
  d  run the PTZ demo tour
  q  quit
"""


class CommandQueue:
    """
    Keyboard lines and quit requests in arrival order.

    Once a quit has been requested every read returns None, including a
    free-text prompt that was already waiting.
    """

    def __init__(self):
        self._lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.quit_requested = False

    def put_line(self, line: str) -> None:
        self._lines.put_nowait(line)

    def request_quit(self) -> None:
        self.quit_requested = True
        self._lines.put_nowait(None)

    async def next_key(self) -> Optional[str]:
        """Next command key, or None when it is time to quit."""
        if self.quit_requested:
            return None
        line = await self._lines.get()
        if line is None or self.quit_requested:
            return None
        key = line.strip().lower()[:1]
        if key == "q":
            self.quit_requested = True
            return None
        return key

    async def read_text(self) -> Optional[str]:
        """Next line as free text, or None if a quit arrives first."""
        if self.quit_requested:
            return None
        line = await self._lines.get()
        if line is None or self.quit_requested:
            return None
        return line.strip()


class NodCamApp:
    """Wires the camera, the reasoner and the orchestrators together."""

    def __init__(self, config_path: Optional[str] = None, use_mock: bool = False):
        """Initialize the application with configuration."""
        self.config = load_config(config_path)
        cam = self.config.camera

        self.coordinator = ActivityCoordinator()
        if use_mock:
            self.device = MockPTZDevice()
            print("🧪 Using mock PTZ device - the camera will not move")
        else:
            self.device = OnvifPTZDevice(cam.host, cam.port, cam.username, cam.password)

        self.extractor = FfmpegExtractor(sample_rate=self.config.audio.sample_rate)
        self.digest = DigestAuthClient(
            cam.host, cam.port, cam.username, cam.password,
            audio_path=cam.audio_path, channel=cam.audio_channel
        )
        self.reasoner = create_reasoner(self.config.reasoner)
        self.recognizer = ElevenLabsRecognizer(
            api_key=self.config.speech.api_key,
            model_id=self.config.speech.model_id,
            language_code=self.config.speech.language_code,
            no_speech_sentinel=self.config.speech.no_speech_sentinel
        )
        self.audio_source = create_audio_source(self.config.audio, self.digest)
        self.gesture_engine = GestureEngine(self.device, self.coordinator)

        self.voice: Optional[VoiceSession] = None
        self.scheduler: Optional[AnalysisScheduler] = None
        self.wake_monitor: Optional[WakeWordMonitor] = None

        self._commands = CommandQueue()
        self._tasks: Set[asyncio.Task] = set()
        self._wake_task: Optional[asyncio.Task] = None
        self._analysis_task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Connect to the camera and build the orchestrators. Raises if the camera is unreachable."""
        cam = self.config.camera
        stream_url = cam.stream_url
        if isinstance(self.device, OnvifPTZDevice):
            await self.device.connect()
            if not stream_url:
                stream_url = await self.device.get_stream_uri()
        if not stream_url:
            stream_url = with_credentials(
                f"rtsp://{cam.host}:554/cam/realmonitor?channel={cam.audio_channel}&subtype=0",
                cam.username, cam.password
            )
        elif cam.stream_url:
            stream_url = with_credentials(stream_url, cam.username, cam.password)

        cfg = self.config
        self.voice = VoiceSession(
            audio_source=self.audio_source,
            recognizer=self.recognizer,
            reasoner=self.reasoner,
            extractor=self.extractor,
            gesture_engine=self.gesture_engine,
            coordinator=self.coordinator,
            stream_url=stream_url,
            system_prompt=cfg.reasoner.system_prompt,
            affirm=build_gesture("affirm", cfg.gestures.affirm),
            negate=build_gesture("negate", cfg.gestures.negate),
            capture_retry=cfg.retry.capture,
            transcribe_retry=cfg.retry.transcribe,
            reason_retry=cfg.retry.reason,
            max_record_ms=cfg.audio.max_record_ms,
            no_speech_sentinel=cfg.speech.no_speech_sentinel,
            silence_rms=cfg.speech.silence_rms
        )
        self.scheduler = AnalysisScheduler(
            extractor=self.extractor,
            reasoner=self.reasoner,
            coordinator=self.coordinator,
            stream_url=stream_url,
            system_prompt="You are a camera describing what it sees.",
            prompt=cfg.reasoner.analysis_prompt,
            capture_retry=cfg.retry.capture,
            reason_retry=cfg.retry.reason,
            poll_interval_ms=cfg.analysis.poll_interval_ms,
            fast_retry_ms=cfg.analysis.fast_retry_ms,
            observer=self._on_analysis
        )
        self.wake_monitor = WakeWordMonitor(
            session=self.voice,
            phrase=cfg.wake_word.phrase,
            variants=cfg.wake_word.variants,
            listen_ms=cfg.wake_word.listen_ms,
            loop_delay_ms=cfg.wake_word.loop_delay_ms,
            on_result=self._on_session
        )

    async def run(self) -> None:
        """Run the command loop until quit."""
        loop = asyncio.get_running_loop()
        loop.add_reader(sys.stdin.fileno(), self._on_stdin)
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._commands.request_quit)

        print("🎯 Nod Camera ready")
        print(MENU)
        try:
            while True:
                key = await self._commands.next_key()
                if key is None:
                    break
                await self._dispatch(key)
        finally:
            loop.remove_reader(sys.stdin.fileno())
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.shutdown()

    async def _dispatch(self, key: str) -> None:
        if key == "v":
            self._spawn(self._ask(None))
        elif key == "t":
            print("⌨️  Type your question:")
            text = await self._commands.read_text()
            if text is not None:
                self._spawn(self._ask(text))
        elif key == "m":
            self._spawn(self.mic_test())
        elif key == "w":
            self._toggle_wake()
        elif key == "a":
            self._toggle_analysis()
        elif key == "d":
            demo = build_gesture("demo", self.config.gestures.demo)
            self._spawn(self.gesture_engine.perform(demo))
        elif key:
            print(MENU)

    def _on_stdin(self) -> None:
        line = sys.stdin.readline()
        # EOF on stdin quits
        if line:
            self._commands.put_line(line)
        else:
            self._commands.request_quit()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ask(self, text: Optional[str]) -> None:
        result = await self.voice.run(text)
        self._on_session(result)

    def _on_session(self, result: SessionResult) -> None:
        question = result.question
        if result.outcome is SessionOutcome.REJECTED:
            print("⏳ Busy - question dropped, try again in a moment")
            return
        heard = question.transcript.text if question.transcript else ""
        print(f"🗨️  {heard!r} -> {question.answer!r} ({result.outcome.value})")

    def _on_analysis(self, cycle: AnalysisCycle) -> None:
        if cycle.outcome is AnalysisOutcome.SUCCESS:
            print(f"👁️  {cycle.verdict}")
        else:
            print(f"⚠️  Analysis {cycle.outcome.value}")

    def _toggle_wake(self) -> None:
        if self._wake_task is not None and not self._wake_task.done():
            self.wake_monitor.stop()
            print("👂 Wake-word mode off (after the current clip)")
            return
        self._wake_task = asyncio.create_task(self.wake_monitor.run())
        print(f"👂 Wake-word mode on - say '{self.config.wake_word.phrase}' followed by a question")

    def _toggle_analysis(self) -> None:
        if self._analysis_task is not None and not self._analysis_task.done():
            self.scheduler.stop()
            print("👁️  Analysis off (after the current cooldown)")
            return
        self._analysis_task = asyncio.create_task(self.scheduler.run())
        print("👁️  Analysis on")

    async def mic_test(self) -> None:
        """Record a short clip, report its level and transcript, and play it back."""
        with self.coordinator.hold(Owner.VOICE) as acquired:
            if not acquired:
                print("⏳ Busy - microphone test skipped")
                return
            try:
                print(f"🎤 Recording {MIC_TEST_MS // 1000} seconds...")
                capture = await with_retry(lambda: self.audio_source.record(MIC_TEST_MS),
                                           self.config.retry.capture, label="mic test")
                rms = audio_rms(capture.payload)
                level = f"{rms:.0f}" if rms is not None else "n/a"
                print(f"📊 {len(capture.payload)} bytes ({capture.mime_hint}), RMS level {level}")

                transcript = await transcribe_with_fallback(
                    self.recognizer, capture, self.config.retry.transcribe,
                    sentinel=self.config.speech.no_speech_sentinel,
                    silence_rms=self.config.speech.silence_rms
                )
                print(f"📝 {transcript.outcome.value}: {transcript.text!r}")

                if isinstance(self.audio_source, CameraMicrophone):
                    aac = await self.extractor.encode_aac(capture.payload)
                    played = await self.digest.play_audio(aac)
                    print("🔊 Played back through camera" if played else "🔇 Camera playback unsupported")
            except NodcamError as e:
                print(f"❌ Microphone test failed: {e}")

    async def shutdown(self) -> None:
        """Stop loops, let in-flight work finish its current step, then stop the camera."""
        print("\n🛑 Stopping camera movements...")
        if self.wake_monitor is not None:
            self.wake_monitor.stop()
        if self.scheduler is not None:
            self.scheduler.stop()
        self.gesture_engine.request_shutdown()

        pending = list(self._tasks)
        for task in (self._wake_task, self._analysis_task):
            if task is not None:
                pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            await self.device.stop()
        except Exception as e:
            logger.error(f"❌ Failed to stop camera: {e}")
        print("👋 Stopped. Goodbye!")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Nod Camera - yes/no answers as PTZ gestures")
    parser.add_argument("-c", "--config", default=None, help="Path to YAML config (default: config.default.yaml)")
    parser.add_argument("--mock", action="store_true", help="Use a mock PTZ device instead of the camera")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Entry point for the application."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        app = NodCamApp(config_path=args.config, use_mock=args.mock)
    except (ValueError, FileNotFoundError) as e:
        print(f"❌ Configuration Error: {e}")
        print("Please check your config file and set required API keys in your .env file")
        return 1

    try:
        await app.start()
    except Exception as e:
        print(f"❌ Failed to connect to camera: {e}")
        return 1

    await app.run()
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

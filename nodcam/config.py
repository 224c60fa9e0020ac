"""
Configuration management for the nod camera orchestrator.
"""
import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .retry import RetryConfig
from .types import GestureStep, MotionVector


@dataclass
class CameraConfig:
    """Camera connection settings."""
    host: str
    port: int
    username: str
    password: str
    stream_url: str
    audio_path: str
    audio_channel: int


@dataclass
class ReasonerConfig:
    """Vision-language reasoner selection."""
    provider: str
    model: str
    ollama_url: str
    system_prompt: str
    analysis_prompt: str
    api_key: Optional[str] = None


@dataclass
class SpeechConfig:
    """Speech recognizer settings."""
    model_id: str
    language_code: str
    no_speech_sentinel: str
    silence_rms: float
    api_key: Optional[str] = None


@dataclass
class AudioConfig:
    """Microphone recording settings."""
    source: str
    max_record_ms: int
    trailing_silence_ms: int
    sample_rate: int
    chunk: int


@dataclass
class GesturesConfig:
    """Gesture step sequences; neutral return is appended by the engine."""
    affirm: List[GestureStep]
    negate: List[GestureStep]
    demo: List[GestureStep] = field(default_factory=list)


@dataclass
class AnalysisConfig:
    """Vision polling intervals."""
    poll_interval_ms: int
    fast_retry_ms: int


@dataclass
class WakeWordConfig:
    """Wake phrase detection settings."""
    phrase: str
    variants: List[str]
    listen_ms: int
    loop_delay_ms: int


@dataclass
class RetryPolicies:
    """Retry policy per call site."""
    capture: RetryConfig
    reason: RetryConfig
    transcribe: RetryConfig


@dataclass
class Cfg:
    """Main configuration class."""
    camera: CameraConfig
    reasoner: ReasonerConfig
    speech: SpeechConfig
    audio: AudioConfig
    gestures: GesturesConfig
    analysis: AnalysisConfig
    wake_word: WakeWordConfig
    retry: RetryPolicies


def load_config(path: Optional[str] = None) -> Cfg:
    """
    Load configuration from YAML file, with secrets from the environment.

    Args:
        path: Path to config file. If None, uses config.default.yaml

    Returns:
        Configuration object with all settings
    """
    load_dotenv()

    if path is None:
        # Use default config file in project root
        project_root = Path(__file__).parent.parent
        path = project_root / "config.default.yaml"

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f)

    return _dict_to_config(data)


def _steps(items: List[Dict[str, Any]]) -> List[GestureStep]:
    return [
        GestureStep(
            label=item['label'],
            vector=MotionVector(
                pan=float(item.get('pan', 0.0)),
                tilt=float(item.get('tilt', 0.0)),
                zoom=float(item.get('zoom', 0.0))
            ),
            active_ms=int(item['active_ms']),
            rest_ms=int(item['rest_ms'])
        )
        for item in items or []
    ]


def _retry(data: Dict[str, Any]) -> RetryConfig:
    return RetryConfig(
        max_attempts=int(data['max_attempts']),
        backoff_ms=int(data['backoff_ms']),
        timeout_ms=int(data['timeout_ms'])
    )


def _dict_to_config(data: Dict[str, Any]) -> Cfg:
    """Convert dictionary to configuration object."""
    camera_data = data['camera']
    camera = CameraConfig(
        host=camera_data['host'],
        port=int(camera_data['port']),
        username=camera_data['username'],
        password=os.getenv("CAMERA_PASSWORD", ""),
        stream_url=camera_data.get('stream_url') or "",
        audio_path=camera_data['audio_path'],
        audio_channel=int(camera_data['audio_channel'])
    )

    reasoner_data = data['reasoner']
    reasoner = ReasonerConfig(
        provider=reasoner_data['provider'],
        model=reasoner_data['model'],
        ollama_url=reasoner_data['ollama_url'],
        system_prompt=reasoner_data['system_prompt'],
        analysis_prompt=reasoner_data['analysis_prompt'],
        api_key=os.getenv("GOOGLE_API_KEY")
    )

    speech_data = data['speech']
    speech = SpeechConfig(
        model_id=speech_data['model_id'],
        language_code=speech_data['language_code'],
        no_speech_sentinel=speech_data['no_speech_sentinel'],
        silence_rms=float(speech_data['silence_rms']),
        api_key=os.getenv("ELEVEN_LABS_API_KEY")
    )

    audio_data = data['audio']
    audio = AudioConfig(
        source=audio_data['source'],
        max_record_ms=int(audio_data['max_record_ms']),
        trailing_silence_ms=int(audio_data['trailing_silence_ms']),
        sample_rate=int(audio_data['sample_rate']),
        chunk=int(audio_data['chunk'])
    )

    gestures_data = data['gestures']
    gestures = GesturesConfig(
        affirm=_steps(gestures_data['affirm']),
        negate=_steps(gestures_data['negate']),
        demo=_steps(gestures_data.get('demo'))
    )

    analysis_data = data['analysis']
    analysis = AnalysisConfig(
        poll_interval_ms=int(analysis_data['poll_interval_ms']),
        fast_retry_ms=int(analysis_data['fast_retry_ms'])
    )

    wake_data = data['wake_word']
    wake_word = WakeWordConfig(
        phrase=wake_data['phrase'],
        variants=list(wake_data.get('variants') or []),
        listen_ms=int(wake_data['listen_ms']),
        loop_delay_ms=int(wake_data['loop_delay_ms'])
    )

    retry_data = data['retry']
    retry = RetryPolicies(
        capture=_retry(retry_data['capture']),
        reason=_retry(retry_data['reason']),
        transcribe=_retry(retry_data['transcribe'])
    )

    return Cfg(
        camera=camera,
        reasoner=reasoner,
        speech=speech,
        audio=audio,
        gestures=gestures,
        analysis=analysis,
        wake_word=wake_word,
        retry=retry
    )

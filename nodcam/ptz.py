"""
PTZ device implementations: an ONVIF camera and a mock for dry runs and tests.
"""
import asyncio
import logging
from typing import List, Optional, Set, Tuple
from urllib.parse import quote, urlsplit, urlunsplit

from .types import MotionVector

logger = logging.getLogger(__name__)


class MockPTZDevice:
    """Mock device that records commands instead of moving anything."""

    def __init__(self, fail_moves: Optional[Set[int]] = None, fail_stops: Optional[Set[int]] = None):
        """
        Args:
            fail_moves: 0-based indexes of move() calls that should raise
            fail_stops: 0-based indexes of stop() calls that should raise
        """
        self.commands: List[Tuple[str, Optional[MotionVector]]] = []
        self.fail_moves = fail_moves or set()
        self.fail_stops = fail_stops or set()
        self.move_count = 0
        self.stop_count = 0

    async def move(self, vector: MotionVector) -> None:
        index = self.move_count
        self.move_count += 1
        self.commands.append(("move", vector))
        logger.debug(f"[MockPTZDevice] Move: {vector} (call #{self.move_count})")
        if index in self.fail_moves:
            raise ConnectionError(f"simulated move failure #{index}")

    async def stop(self) -> None:
        index = self.stop_count
        self.stop_count += 1
        self.commands.append(("stop", None))
        logger.debug(f"[MockPTZDevice] Stop (call #{self.stop_count})")
        if index in self.fail_stops:
            raise ConnectionError(f"simulated stop failure #{index}")

    def reset_counters(self) -> None:
        """Reset recorded commands for testing."""
        self.commands.clear()
        self.move_count = 0
        self.stop_count = 0


def with_credentials(uri: str, username: str, password: str) -> str:
    """Embed credentials into an RTSP URI that does not carry any."""
    parts = urlsplit(uri)
    if parts.username or not username:
        return uri
    netloc = f"{quote(username, safe='')}:{quote(password, safe='')}@{parts.netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


class OnvifPTZDevice:
    """
    ONVIF camera driven through onvif-zeep.

    The SOAP client is blocking, so every call runs in a worker thread.
    """

    def __init__(self, host: str, port: int, username: str, password: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self._camera = None
        self._ptz = None
        self._media = None
        self._profile_token: Optional[str] = None

    async def connect(self) -> None:
        """Open the ONVIF session and select the first media profile. Raises on failure."""
        await asyncio.to_thread(self._connect_blocking)

    def _connect_blocking(self) -> None:
        from onvif import ONVIFCamera

        logger.info(f"🔍 Connecting to camera at {self.host}:{self.port} as {self.username}")
        self._camera = ONVIFCamera(self.host, self.port, self.username, self.password)
        self._media = self._camera.create_media_service()
        self._ptz = self._camera.create_ptz_service()

        profiles = self._media.GetProfiles()
        if not profiles:
            raise RuntimeError("camera reports no media profiles")
        self._profile_token = profiles[0].token

        try:
            info = self._camera.devicemgmt.GetDeviceInformation()
            logger.info(f"📷 {info.Manufacturer} {info.Model} "
                        f"(firmware {info.FirmwareVersion}, hardware {info.HardwareId})")
        except Exception as e:
            logger.warning(f"⚠️ Could not read device information: {e}")
        logger.info(f"✅ Connected, using profile {self._profile_token}")

    async def get_stream_uri(self) -> str:
        """RTSP URI of the selected profile, with credentials embedded for the extractor."""
        return await asyncio.to_thread(self._stream_uri_blocking)

    def _stream_uri_blocking(self) -> str:
        self._require_connection()
        result = self._media.GetStreamUri({
            'StreamSetup': {'Stream': 'RTP-Unicast', 'Transport': {'Protocol': 'RTSP'}},
            'ProfileToken': self._profile_token,
        })
        logger.info(f"📺 RTSP Stream URL: {result.Uri}")
        return with_credentials(result.Uri, self.username, self.password)

    async def move(self, vector: MotionVector) -> None:
        await asyncio.to_thread(self._move_blocking, vector)

    def _move_blocking(self, vector: MotionVector) -> None:
        self._require_connection()
        request = self._ptz.create_type('ContinuousMove')
        request.ProfileToken = self._profile_token
        request.Velocity = {
            'PanTilt': {'x': vector.pan, 'y': vector.tilt},
            'Zoom': {'x': vector.zoom},
        }
        self._ptz.ContinuousMove(request)

    async def stop(self) -> None:
        await asyncio.to_thread(self._stop_blocking)

    def _stop_blocking(self) -> None:
        self._require_connection()
        self._ptz.Stop({'ProfileToken': self._profile_token, 'PanTilt': True, 'Zoom': True})

    def _require_connection(self) -> None:
        if self._ptz is None or self._profile_token is None:
            raise RuntimeError("ONVIF device not connected")

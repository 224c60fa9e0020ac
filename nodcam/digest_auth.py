"""
HTTP Digest authentication and bounded audio streaming against the camera.

The camera exposes a single CGI endpoint for its microphone (GET) and its
speaker (POST). Both sit behind Digest auth: the first request goes out
bare, the 401 challenge is answered once, and a second rejection is
reported to the caller rather than retried.
"""
import asyncio
import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import aiohttp

from .errors import AuthChallengeFailed, NoDataError, TransientIOError
from .types import CaptureResult

logger = logging.getLogger(__name__)

NONCE_COUNT = "00000001"
PLAYBACK_CONTENT_TYPE = "Audio/AAC"
PLAYBACK_ACCEPT_MARKER = "OK"

_PARAM_RE = re.compile(r'(\w+)\s*=\s*(?:"([^"]*)"|([^\s,]+))')


@dataclass(frozen=True)
class DigestChallenge:
    """Parameters of one ``WWW-Authenticate: Digest`` header."""
    realm: str
    nonce: str
    opaque: Optional[str] = None
    qop: Optional[str] = None
    algorithm: Optional[str] = None


def parse_challenge(header: Optional[str]) -> DigestChallenge:
    """
    Parse a Digest challenge header.

    Raises:
        AuthChallengeFailed: header missing, not Digest, or lacking realm/nonce
    """
    if not header:
        raise AuthChallengeFailed("401 without WWW-Authenticate header", status=401)

    scheme, _, rest = header.strip().partition(" ")
    if scheme.lower() != "digest":
        raise AuthChallengeFailed(f"unsupported auth scheme: {scheme}", status=401)

    params: Dict[str, str] = {}
    for match in _PARAM_RE.finditer(rest):
        key, quoted, bare = match.groups()
        params[key.lower()] = quoted if quoted is not None else bare

    if "realm" not in params or "nonce" not in params:
        raise AuthChallengeFailed(f"malformed digest challenge: {header}", status=401)

    return DigestChallenge(
        realm=params["realm"],
        nonce=params["nonce"],
        opaque=params.get("opaque"),
        qop=params.get("qop"),
        algorithm=params.get("algorithm"),
    )


def _md5(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def select_qop(challenge: DigestChallenge) -> Optional[str]:
    """Return "auth" when offered, None when the server sent no qop."""
    if challenge.qop is None:
        return None
    offered: List[str] = [token.strip().lower() for token in challenge.qop.split(",")]
    if "auth" in offered:
        return "auth"
    raise AuthChallengeFailed(f"unsupported qop: {challenge.qop}", status=401)


def compute_digest_response(username: str, password: str, method: str, uri: str,
                            challenge: DigestChallenge, cnonce: str,
                            nc: str = NONCE_COUNT) -> Tuple[str, str, str]:
    """
    Compute the (HA1, HA2, response) triple for one request.

    Returns:
        Tuple of hex digests (ha1, ha2, response)
    """
    if challenge.algorithm and challenge.algorithm.upper() != "MD5":
        raise AuthChallengeFailed(f"unsupported algorithm: {challenge.algorithm}", status=401)

    ha1 = _md5(f"{username}:{challenge.realm}:{password}")
    ha2 = _md5(f"{method.upper()}:{uri}")

    if select_qop(challenge) == "auth":
        response = _md5(f"{ha1}:{challenge.nonce}:{nc}:{cnonce}:auth:{ha2}")
    else:
        response = _md5(f"{ha1}:{challenge.nonce}:{ha2}")
    return ha1, ha2, response


def build_authorization(username: str, password: str, method: str, uri: str,
                        challenge: DigestChallenge, cnonce: str,
                        nc: str = NONCE_COUNT) -> str:
    """Render the ``Authorization: Digest ...`` header value."""
    _, _, response = compute_digest_response(username, password, method, uri,
                                             challenge, cnonce, nc)
    parts = [
        f'username="{username}"',
        f'realm="{challenge.realm}"',
        f'nonce="{challenge.nonce}"',
        f'uri="{uri}"',
        f'response="{response}"',
    ]
    if challenge.algorithm:
        parts.append(f"algorithm={challenge.algorithm}")
    if select_qop(challenge) == "auth":
        parts.extend(["qop=auth", f"nc={nc}", f'cnonce="{cnonce}"'])
    if challenge.opaque is not None:
        parts.append(f'opaque="{challenge.opaque}"')
    return "Digest " + ", ".join(parts)


class DigestAuthClient:
    """Pulls audio from and pushes audio to the camera over Digest-authenticated HTTP."""

    def __init__(self, host: str, port: int, username: str, password: str,
                 audio_path: str = "/cgi-bin/audio.cgi", channel: int = 1,
                 scheme: str = "http",
                 cnonce_factory: Optional[Callable[[], str]] = None,
                 playback_timeout_s: float = 30.0):
        self.base_url = f"{scheme}://{host}:{port}"
        self.username = username
        self.password = password
        self.audio_path = audio_path
        self.channel = channel
        self.playback_timeout_s = playback_timeout_s
        self._cnonce_factory = cnonce_factory or (lambda: secrets.token_hex(8))

    def audio_uri(self, action: str) -> str:
        return f"{self.audio_path}?action={action}&httptype=singlepart&channel={self.channel}"

    async def request(self, session: aiohttp.ClientSession, method: str, uri: str,
                      data: Optional[bytes] = None,
                      headers: Optional[Dict[str, str]] = None) -> aiohttp.ClientResponse:
        """
        Issue ``method uri``, answering one Digest challenge if the server sends it.

        The caller owns the returned response and must release or close it.

        Raises:
            AuthChallengeFailed: challenge unparseable, or credentials rejected
        """
        headers = dict(headers or {})
        url = self.base_url + uri

        response = await session.request(method, url, data=data, headers=headers)
        if response.status != 401:
            return response

        www_authenticate = response.headers.get("WWW-Authenticate")
        response.release()
        challenge = parse_challenge(www_authenticate)

        headers["Authorization"] = build_authorization(
            self.username, self.password, method, uri, challenge, self._cnonce_factory()
        )
        response = await session.request(method, url, data=data, headers=headers)
        if response.status == 401:
            response.release()
            raise AuthChallengeFailed(f"credentials rejected for {uri}", status=401)
        return response

    async def capture_audio(self, max_duration_ms: int,
                            stop_when: Optional[Callable[[bytes, str], bool]] = None) -> CaptureResult:
        """
        Read the camera microphone until the stream ends or ``max_duration_ms`` elapses.

        Partial data read before the cutoff is a successful capture.

        Args:
            max_duration_ms: Hard cap on the read window
            stop_when: Called with each chunk and the stream content type;
                returning True ends the capture early

        Raises:
            NoDataError: nothing arrived before the cutoff
            TransientIOError: non-2xx response
            AuthChallengeFailed: digest handshake failed
        """
        uri = self.audio_uri("getAudio")
        chunks: List[bytes] = []
        mime_hint = "application/octet-stream"
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=10)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            response = await self.request(session, "GET", uri)
            try:
                if not 200 <= response.status < 300:
                    raise TransientIOError(f"audio capture returned HTTP {response.status}")
                mime_hint = response.headers.get("Content-Type", mime_hint)

                loop = asyncio.get_running_loop()
                deadline = loop.time() + max_duration_ms / 1000.0
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    try:
                        chunk = await asyncio.wait_for(response.content.readany(), timeout=remaining)
                    except asyncio.TimeoutError:
                        break
                    if not chunk:
                        break
                    chunks.append(chunk)
                    if stop_when is not None and stop_when(chunk, mime_hint):
                        break
            finally:
                # Forcibly drop the connection; the camera streams indefinitely
                response.close()

        payload = b"".join(chunks)
        if not payload:
            raise NoDataError("camera microphone produced no audio")
        logger.info(f"🎤 Captured {len(payload)} bytes from camera microphone")
        return CaptureResult(payload=payload, mime_hint=mime_hint)

    async def play_audio(self, payload: bytes) -> bool:
        """
        Push an AAC clip to the camera speaker.

        Best-effort: any failure is logged and reported as False.
        """
        uri = self.audio_uri("postAudio")
        headers = {"Content-Type": PLAYBACK_CONTENT_TYPE}
        timeout = aiohttp.ClientTimeout(total=self.playback_timeout_s)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                response = await self.request(session, "POST", uri, data=payload, headers=headers)
                try:
                    status = response.status
                    body = (await response.read()).decode("utf-8", errors="replace")
                finally:
                    response.release()
        except (aiohttp.ClientError, asyncio.TimeoutError, AuthChallengeFailed) as e:
            logger.warning(f"⚠️ Playback unsupported: {e}")
            return False

        if not 200 <= status < 300:
            logger.warning(f"⚠️ Playback unsupported: HTTP {status}")
            return False
        if PLAYBACK_ACCEPT_MARKER not in body:
            logger.warning(f"⚠️ Playback unsupported: camera replied {body.strip()[:80]!r}")
            return False

        logger.info(f"🔊 Played {len(payload)} bytes through camera speaker")
        return True

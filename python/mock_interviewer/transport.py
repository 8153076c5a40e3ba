"""
Realtime transport establishment.

Negotiates the peer-to-peer audio + data session with the remote
conversational model:

    1. fetch a short-lived bearer credential from the credential provider
    2. create the peer connection and the inbound audio sink
    3. acquire the microphone and add its track (before the data channel,
       so the offer advertises audio)
    4. create the data channel
    5. POST the SDP offer to the realtime endpoint and apply the answer

Uses aiortc for WebRTC and httpx for both HTTP calls.

Last Grunted: 10/17/2026
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

import httpx
from aiortc import RTCPeerConnection, RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder

from .channel import DataChannel
from .config import RealtimeConfig
from .errors import CredentialError, MicrophoneError, NegotiationError, TransportError


__all__ = [
    "CredentialProvider",
    "RealtimeTransport",
    "Transport",
    "open_microphone",
    "open_audio_sink",
]


logger = logging.getLogger(__name__)


FailureCallback = Callable[[str], None]


class Transport(Protocol):
    """Interface the session uses to establish and release its transport."""

    async def prepare(self, on_failure: Optional[FailureCallback] = None) -> DataChannel:
        """Acquire credential and local media, and create the data channel."""

    async def negotiate(self) -> None:
        """Run the offer/answer exchange with the remote endpoint."""

    async def close(self) -> None:
        """Release every resource. Must be safe to call at any point."""


class CredentialProvider:
    """
    Fetches the short-lived realtime credential from the token endpoint.

    The endpoint must answer with JSON carrying `client_secret.value`.

    Example:
        >>> provider = CredentialProvider("http://127.0.0.1:3000/token")
        >>> key = await provider.fetch()
    """

    def __init__(
        self,
        token_url: str,
        timeout_seconds: float = 10.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token_url = token_url
        self.timeout_seconds = timeout_seconds
        self._http_transport = http_transport

    async def fetch(self) -> str:
        """
        Request one credential.

        Returns:
            The bearer credential value.

        Raises:
            CredentialError: If the request fails or the response lacks
                the credential field.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                transport=self._http_transport,
            ) as client:
                response = await client.get(self.token_url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise CredentialError(f"Credential request failed: {exc}") from exc
        except ValueError as exc:
            raise CredentialError(f"Credential response is not JSON: {exc}") from exc

        try:
            value = data["client_secret"]["value"]
        except (KeyError, TypeError) as exc:
            raise CredentialError("Credential response lacks client_secret.value") from exc

        if not isinstance(value, str) or not value:
            raise CredentialError("Credential response has an empty client_secret.value")
        return value


def open_microphone(config: RealtimeConfig) -> MediaPlayer:
    """Open the capture device through ffmpeg."""
    return MediaPlayer(config.microphone_device, format=config.microphone_format)


def open_audio_sink(config: RealtimeConfig) -> Any:
    """Record inbound audio to a file when configured, otherwise discard it."""
    if config.audio_output_path is not None:
        return MediaRecorder(str(config.audio_output_path))
    return MediaBlackhole()


class RealtimeTransport:
    """
    WebRTC transport to the realtime endpoint.

    Owns the peer connection, the microphone player, the inbound audio
    sink and the raw data channel until close() is called.

    Example:
        >>> transport = RealtimeTransport(config)
        >>> raw_channel = await transport.prepare()
        >>> await transport.negotiate()
        >>> ...
        >>> await transport.close()
    """

    def __init__(
        self,
        config: RealtimeConfig,
        credentials: Optional[CredentialProvider] = None,
        *,
        peer_factory: Callable[[], Any] = RTCPeerConnection,
        microphone_factory: Callable[[RealtimeConfig], Any] = open_microphone,
        audio_sink_factory: Callable[[RealtimeConfig], Any] = open_audio_sink,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._credentials = credentials or CredentialProvider(
            config.token_url,
            timeout_seconds=config.http_timeout_seconds,
            http_transport=http_transport,
        )
        self._peer_factory = peer_factory
        self._microphone_factory = microphone_factory
        self._audio_sink_factory = audio_sink_factory
        self._http_transport = http_transport

        self._credential: Optional[str] = None
        self._pc: Any = None
        self._microphone: Any = None
        self._audio_sink: Any = None
        self._channel: Optional[DataChannel] = None
        self._closed = False

    async def prepare(self, on_failure: Optional[FailureCallback] = None) -> DataChannel:
        """
        Fetch the credential, set up local media and create the data channel.

        Args:
            on_failure: Called with the connection state if the peer
                connection later fails.

        Returns:
            The raw data channel (not yet open).

        Raises:
            CredentialError: If the credential cannot be fetched.
            MicrophoneError: If capture cannot be opened.
            TransportError: If close() ran while the credential was in flight.
        """
        self._credential = await self._credentials.fetch()
        if self._closed:
            self._credential = None
            raise TransportError("Transport closed while fetching the credential")
        logger.debug("Realtime credential obtained")

        pc = self._peer_factory()
        self._pc = pc
        sink = self._audio_sink_factory(self._config)
        self._audio_sink = sink

        def on_track(track: Any) -> None:
            if track.kind == "audio":
                logger.info("Remote audio track received")
                sink.addTrack(track)

        def on_connection_state_change() -> None:
            state = pc.connectionState
            logger.debug("Peer connection state: %s", state)
            if state == "failed" and on_failure is not None:
                on_failure(state)

        pc.on("track", on_track)
        pc.on("connectionstatechange", on_connection_state_change)

        try:
            microphone = self._microphone_factory(self._config)
        except Exception as exc:  # noqa: BLE001
            raise MicrophoneError(f"Microphone access failed: {exc}") from exc
        if getattr(microphone, "audio", None) is None:
            raise MicrophoneError(
                f"Capture device '{self._config.microphone_device}' has no audio track"
            )
        self._microphone = microphone
        pc.addTrack(microphone.audio)

        self._channel = pc.createDataChannel(self._config.data_channel_label)
        return self._channel

    async def negotiate(self) -> None:
        """
        Run the offer/answer exchange and start the inbound audio sink.

        Raises:
            NegotiationError: If the remote endpoint rejects the offer or
                returns something that is not an SDP answer.
            TransportError: If prepare() has not been called, or close()
                ran while the offer was in flight.
        """
        pc = self._pc
        if pc is None or self._credential is None:
            raise TransportError("Transport is not prepared")

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        answer_sdp = await self._exchange(pc.localDescription.sdp)
        if self._pc is not pc:
            raise TransportError("Transport closed during the SDP exchange")

        try:
            await pc.setRemoteDescription(
                RTCSessionDescription(sdp=answer_sdp, type="answer")
            )
        except ValueError as exc:
            raise NegotiationError(f"Remote answer could not be applied: {exc}") from exc

        await self._audio_sink.start()
        logger.info("Realtime transport negotiated (model=%s)", self._config.model)

    async def _exchange(self, offer_sdp: str) -> str:
        headers = {
            "Authorization": f"Bearer {self._credential}",
            "Content-Type": "application/sdp",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._config.http_timeout_seconds,
                transport=self._http_transport,
            ) as client:
                response = await client.post(
                    self._config.realtime_base_url,
                    params={"model": self._config.model},
                    content=offer_sdp,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise NegotiationError(f"SDP exchange failed: {exc}") from exc

        if not response.is_success:
            raise NegotiationError(
                f"SDP exchange rejected: HTTP {response.status_code}: {response.text[:160]}",
                status_code=response.status_code,
            )

        answer = response.text
        if not answer.lstrip().startswith("v="):
            raise NegotiationError(
                "SDP exchange returned a malformed answer",
                status_code=response.status_code,
            )
        return answer

    async def close(self) -> None:
        """
        Close the channel, stop outbound tracks, close the connection, stop the sink.

        Safe to call more than once, and at any point. A prepare() or
        negotiate() still awaiting the network fails once it resumes.
        """
        self._closed = True
        channel, pc, sink = self._channel, self._pc, self._audio_sink
        self._channel = None
        self._pc = None
        self._audio_sink = None
        self._microphone = None
        self._credential = None

        if channel is not None and channel.readyState != "closed":
            channel.close()

        if pc is not None:
            for sender in pc.getSenders():
                if sender.track is not None:
                    sender.track.stop()
            await pc.close()

        if sink is not None:
            await sink.stop()

        if pc is not None:
            logger.info("Realtime transport closed")

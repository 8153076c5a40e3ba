"""
Tests for credential retrieval and WebRTC transport establishment.

The peer connection, microphone and audio sink are replaced with fakes;
both HTTP calls go through httpx.MockTransport.

Last Grunted: 10/18/2026
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import httpx
import pytest
from aiortc import RTCSessionDescription
from aiortc.contrib.media import MediaBlackhole

from mock_interviewer.config import RealtimeConfig
from mock_interviewer.errors import (
    CredentialError,
    MicrophoneError,
    NegotiationError,
    TransportError,
)
from mock_interviewer.models import InterviewStage
from mock_interviewer.session import InterviewSession
from mock_interviewer.transport import CredentialProvider, RealtimeTransport, open_audio_sink
from tests.mock_data import FakeDataChannel, make_profile


TOKEN_URL = "http://127.0.0.1:3000/token"
EPHEMERAL_KEY = "ek_test_123"
OFFER_SDP = "v=0\r\no=- 1 1 IN IP4 127.0.0.1\r\ns=-\r\nm=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
ANSWER_SDP = "v=0\r\no=- 2 2 IN IP4 10.0.0.1\r\ns=-\r\nm=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"


# =============================================================================
# Fakes
# =============================================================================


class FakeTrack:
    def __init__(self, kind: str = "audio") -> None:
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeSender:
    def __init__(self, track: Optional[FakeTrack]) -> None:
        self.track = track


class FakeMicrophone:
    def __init__(self, audio: Optional[FakeTrack] = None) -> None:
        self.audio = audio


class FakeAudioSink:
    def __init__(self) -> None:
        self.tracks: list[FakeTrack] = []
        self.started = False
        self.stopped = False

    def addTrack(self, track: FakeTrack) -> None:
        self.tracks.append(track)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True


class FakePeerConnection:
    """Records the calls RealtimeTransport makes on an RTCPeerConnection."""

    def __init__(self, reject_answer: bool = False) -> None:
        self.calls: list[str] = []
        self.handlers: dict[str, Callable[..., Any]] = {}
        self.connectionState = "new"
        self.localDescription: Optional[RTCSessionDescription] = None
        self.remoteDescription: Optional[RTCSessionDescription] = None
        self.channel = FakeDataChannel()
        self.senders: list[FakeSender] = []
        self.closed = False
        self.reject_answer = reject_answer

    def on(self, event: str, f: Callable[..., Any]) -> None:
        self.handlers[event] = f

    def addTrack(self, track: FakeTrack) -> None:
        self.calls.append("addTrack")
        self.senders.append(FakeSender(track))

    def createDataChannel(self, label: str) -> FakeDataChannel:
        self.calls.append(f"createDataChannel:{label}")
        self.channel.label = label
        return self.channel

    async def createOffer(self) -> RTCSessionDescription:
        self.calls.append("createOffer")
        return RTCSessionDescription(sdp=OFFER_SDP, type="offer")

    async def setLocalDescription(self, description: RTCSessionDescription) -> None:
        self.calls.append("setLocalDescription")
        self.localDescription = description

    async def setRemoteDescription(self, description: RTCSessionDescription) -> None:
        self.calls.append("setRemoteDescription")
        if self.reject_answer:
            raise ValueError("Invalid SDP")
        self.remoteDescription = description

    def getSenders(self) -> list[FakeSender]:
        return list(self.senders)

    async def close(self) -> None:
        self.closed = True


class RealtimeEndpoint:
    """MockTransport handler serving the token and SDP endpoints."""

    def __init__(
        self,
        token_response: Optional[httpx.Response] = None,
        sdp_response: Optional[httpx.Response] = None,
    ) -> None:
        self.token_response = token_response or httpx.Response(
            200,
            json={"client_secret": {"value": EPHEMERAL_KEY, "expires_at": 1760000000}},
        )
        self.sdp_response = sdp_response or httpx.Response(
            201, text=ANSWER_SDP, headers={"Content-Type": "application/sdp"}
        )
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and request.url.path == "/token":
            return self.token_response
        if request.method == "POST" and request.url.path == "/v1/realtime":
            return self.sdp_response
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def sdp_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


class GatedEndpoint(RealtimeEndpoint):
    """RealtimeEndpoint that holds requests to one path until released."""

    def __init__(self, held_path: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.held_path = held_path
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == self.held_path:
            self.reached.set()
            await self.release.wait()
        return super().__call__(request)

    async def wait_reached(self) -> None:
        await asyncio.wait_for(self.reached.wait(), timeout=1)


class TransportHarness:
    """RealtimeTransport wired to fakes."""

    def __init__(
        self,
        endpoint: Optional[RealtimeEndpoint] = None,
        microphone: Any = None,
        microphone_error: Optional[Exception] = None,
        reject_answer: bool = False,
    ) -> None:
        self.endpoint = endpoint or RealtimeEndpoint()
        self.config = RealtimeConfig(token_url=TOKEN_URL)
        self.pcs: list[FakePeerConnection] = []
        self.sink = FakeAudioSink()
        self.microphone = microphone if microphone is not None else FakeMicrophone(FakeTrack())
        self.microphone_error = microphone_error
        self.reject_answer = reject_answer
        self.transport = RealtimeTransport(
            self.config,
            peer_factory=self._make_pc,
            microphone_factory=self._open_microphone,
            audio_sink_factory=lambda config: self.sink,
            http_transport=self.endpoint.transport,
        )

    def _make_pc(self) -> FakePeerConnection:
        pc = FakePeerConnection(reject_answer=self.reject_answer)
        self.pcs.append(pc)
        return pc

    def _open_microphone(self, config: RealtimeConfig) -> Any:
        if self.microphone_error is not None:
            raise self.microphone_error
        return self.microphone

    @property
    def pc(self) -> FakePeerConnection:
        return self.pcs[-1]


# =============================================================================
# Credential Provider Tests
# =============================================================================


class TestCredentialProvider:
    """Tests for fetching the short-lived credential."""

    @pytest.mark.asyncio
    async def test_fetch_returns_client_secret(self):
        """The credential is read from client_secret.value."""
        endpoint = RealtimeEndpoint()
        provider = CredentialProvider(TOKEN_URL, http_transport=endpoint.transport)

        assert await provider.fetch() == EPHEMERAL_KEY
        assert endpoint.requests[0].method == "GET"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"session": {}}),
            httpx.Response(200, json={"client_secret": "flat"}),
            httpx.Response(200, json={"client_secret": {"value": ""}}),
        ],
        ids=["http-500", "not-json", "missing", "wrong-shape", "empty"],
    )
    async def test_fetch_failures(self, response):
        """Any unusable response raises CredentialError."""
        endpoint = RealtimeEndpoint(token_response=response)
        provider = CredentialProvider(TOKEN_URL, http_transport=endpoint.transport)

        with pytest.raises(CredentialError):
            await provider.fetch()

    @pytest.mark.asyncio
    async def test_fetch_unreachable(self):
        """A connection failure raises CredentialError."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        provider = CredentialProvider(TOKEN_URL, http_transport=httpx.MockTransport(refuse))

        with pytest.raises(CredentialError, match="Connection refused"):
            await provider.fetch()


# =============================================================================
# Prepare Tests
# =============================================================================


class TestPrepare:
    """Tests for credential + local media + data channel setup."""

    @pytest.mark.asyncio
    async def test_audio_track_added_before_data_channel(self):
        """The microphone track is added before the data channel is created."""
        harness = TransportHarness()

        channel = await harness.transport.prepare()

        assert harness.pc.calls == ["addTrack", "createDataChannel:oai-events"]
        assert channel is harness.pc.channel

    @pytest.mark.asyncio
    async def test_credential_failure_creates_nothing(self):
        """No peer connection is created without a credential."""
        harness = TransportHarness(
            endpoint=RealtimeEndpoint(token_response=httpx.Response(503))
        )

        with pytest.raises(CredentialError):
            await harness.transport.prepare()

        assert harness.pcs == []

    @pytest.mark.asyncio
    async def test_microphone_failure(self):
        """Capture errors become MicrophoneError."""
        harness = TransportHarness(microphone_error=OSError("Device or resource busy"))

        with pytest.raises(MicrophoneError, match="resource busy"):
            await harness.transport.prepare()

        assert harness.pc.calls == []

    @pytest.mark.asyncio
    async def test_microphone_without_audio(self):
        """A capture device with no audio track is rejected."""
        harness = TransportHarness(microphone=FakeMicrophone(audio=None))

        with pytest.raises(MicrophoneError):
            await harness.transport.prepare()

    @pytest.mark.asyncio
    async def test_remote_audio_routed_to_sink(self):
        """Remote audio tracks go to the audio sink; other kinds are ignored."""
        harness = TransportHarness()
        await harness.transport.prepare()

        audio, video = FakeTrack("audio"), FakeTrack("video")
        harness.pc.handlers["track"](audio)
        harness.pc.handlers["track"](video)

        assert harness.sink.tracks == [audio]

    @pytest.mark.asyncio
    async def test_failed_connection_reported(self):
        """A failed connection state invokes the failure callback."""
        failures: list[str] = []
        harness = TransportHarness()
        await harness.transport.prepare(on_failure=failures.append)

        harness.pc.connectionState = "connected"
        harness.pc.handlers["connectionstatechange"]()
        harness.pc.connectionState = "failed"
        harness.pc.handlers["connectionstatechange"]()

        assert failures == ["failed"]


# =============================================================================
# Negotiation Tests
# =============================================================================


class TestNegotiate:
    """Tests for the SDP offer/answer exchange."""

    @pytest.mark.asyncio
    async def test_offer_posted_and_answer_applied(self):
        """The offer is POSTed with the bearer credential and the answer applied."""
        harness = TransportHarness()
        await harness.transport.prepare()

        await harness.transport.negotiate()

        request = harness.endpoint.sdp_requests[0]
        assert request.headers["Authorization"] == f"Bearer {EPHEMERAL_KEY}"
        assert request.headers["Content-Type"] == "application/sdp"
        assert request.url.params["model"] == harness.config.model
        assert request.content.decode() == OFFER_SDP

        assert harness.pc.remoteDescription.type == "answer"
        assert harness.pc.remoteDescription.sdp == ANSWER_SDP
        assert harness.sink.started is True

    @pytest.mark.asyncio
    async def test_local_description_set_before_exchange(self):
        """The local description is set before the answer is applied."""
        harness = TransportHarness()
        await harness.transport.prepare()

        await harness.transport.negotiate()

        assert harness.pc.calls[2:] == [
            "createOffer",
            "setLocalDescription",
            "setRemoteDescription",
        ]

    @pytest.mark.asyncio
    async def test_rejected_offer(self):
        """A non-2xx answer raises NegotiationError carrying the status."""
        harness = TransportHarness(
            endpoint=RealtimeEndpoint(
                sdp_response=httpx.Response(401, json={"error": {"message": "Invalid key"}})
            )
        )
        await harness.transport.prepare()

        with pytest.raises(NegotiationError) as exc_info:
            await harness.transport.negotiate()

        assert exc_info.value.status_code == 401
        assert harness.pc.remoteDescription is None
        assert harness.sink.started is False

    @pytest.mark.asyncio
    async def test_malformed_answer(self):
        """A 2xx body that is not SDP raises NegotiationError."""
        harness = TransportHarness(
            endpoint=RealtimeEndpoint(sdp_response=httpx.Response(200, text="<html>oops</html>"))
        )
        await harness.transport.prepare()

        with pytest.raises(NegotiationError, match="malformed"):
            await harness.transport.negotiate()

    @pytest.mark.asyncio
    async def test_unappliable_answer(self):
        """An answer the peer connection rejects raises NegotiationError."""
        harness = TransportHarness(reject_answer=True)
        await harness.transport.prepare()

        with pytest.raises(NegotiationError):
            await harness.transport.negotiate()

    @pytest.mark.asyncio
    async def test_negotiate_requires_prepare(self):
        """Negotiating an unprepared transport is an error."""
        harness = TransportHarness()

        with pytest.raises(TransportError):
            await harness.transport.negotiate()


# =============================================================================
# Close Tests
# =============================================================================


class TestClose:
    """Tests for releasing transport resources."""

    @pytest.mark.asyncio
    async def test_close_releases_everything(self):
        """Close stops outbound tracks, the connection and the sink."""
        harness = TransportHarness()
        channel = await harness.transport.prepare()
        await harness.transport.negotiate()

        await harness.transport.close()

        assert channel.readyState == "closed"
        assert harness.microphone.audio.stopped is True
        assert harness.pc.closed is True
        assert harness.sink.stopped is True

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Closing twice is safe."""
        harness = TransportHarness()
        await harness.transport.prepare()

        await harness.transport.close()
        await harness.transport.close()

        assert harness.pc.closed is True

    @pytest.mark.asyncio
    async def test_close_before_prepare(self):
        """Closing an unused transport does nothing."""
        harness = TransportHarness()

        await harness.transport.close()

        assert harness.pcs == []

    @pytest.mark.asyncio
    async def test_close_after_microphone_failure(self):
        """Resources acquired before a microphone failure are released."""
        harness = TransportHarness(microphone_error=OSError("no device"))
        with pytest.raises(MicrophoneError):
            await harness.transport.prepare()

        await harness.transport.close()

        assert harness.pc.closed is True
        assert harness.sink.stopped is True


# =============================================================================
# Close While In Flight Tests
# =============================================================================


class TestCloseInFlight:
    """Tests for close() racing a setup step that awaits the network."""

    @pytest.mark.asyncio
    async def test_close_during_credential_fetch(self):
        """prepare() stops before creating any media once closed."""
        endpoint = GatedEndpoint("/token")
        harness = TransportHarness(endpoint=endpoint)
        prepare_task = asyncio.create_task(harness.transport.prepare())
        await endpoint.wait_reached()

        await harness.transport.close()
        endpoint.release.set()

        with pytest.raises(TransportError, match="closed while fetching"):
            await prepare_task
        assert harness.pcs == []

    @pytest.mark.asyncio
    async def test_close_during_sdp_exchange(self):
        """negotiate() does not apply the answer or start the sink once closed."""
        endpoint = GatedEndpoint("/v1/realtime")
        harness = TransportHarness(endpoint=endpoint)
        await harness.transport.prepare()
        negotiate_task = asyncio.create_task(harness.transport.negotiate())
        await endpoint.wait_reached()

        await harness.transport.close()
        endpoint.release.set()

        with pytest.raises(TransportError, match="during the SDP exchange"):
            await negotiate_task
        assert harness.pc.remoteDescription is None
        assert harness.sink.started is False


# =============================================================================
# Session Teardown Tests
# =============================================================================


class TestSessionTeardown:
    """Tests for stopping a session while the real transport is mid-setup."""

    @staticmethod
    def _session(harness: TransportHarness) -> InterviewSession:
        return InterviewSession(
            harness.config,
            make_profile(),
            transport_factory=lambda config: harness.transport,
        )

    @pytest.mark.asyncio
    async def test_stop_while_fetching_credential(self):
        """Stopping during the credential fetch leaves no connection or capture behind."""
        endpoint = GatedEndpoint("/token")
        harness = TransportHarness(endpoint=endpoint)
        session = self._session(harness)
        start_task = asyncio.create_task(session.start())
        await endpoint.wait_reached()

        await session.stop()
        endpoint.release.set()
        await start_task

        assert session.stage == InterviewStage.IDLE
        assert session.channel is None
        assert all(pc.closed for pc in harness.pcs)
        assert harness.pcs == []
        assert harness.microphone.audio.stopped is False
        assert harness.sink.started is False

    @pytest.mark.asyncio
    async def test_stop_during_sdp_exchange(self):
        """Stopping mid-negotiation closes the connection and stops the microphone."""
        endpoint = GatedEndpoint("/v1/realtime")
        harness = TransportHarness(endpoint=endpoint)
        session = self._session(harness)
        start_task = asyncio.create_task(session.start())
        await endpoint.wait_reached()

        await session.stop()
        endpoint.release.set()
        await start_task

        assert session.stage == InterviewStage.IDLE
        assert len(harness.pcs) == 1
        assert all(pc.closed for pc in harness.pcs)
        assert all(sender.track.stopped for sender in harness.pc.senders)
        assert harness.pc.channel.readyState == "closed"
        assert harness.pc.remoteDescription is None
        assert harness.sink.started is False
        assert harness.sink.stopped is True

    @pytest.mark.asyncio
    async def test_stop_after_full_start_releases_transport(self):
        """A normal stop closes everything the transport opened."""
        harness = TransportHarness()
        session = self._session(harness)
        start_task = asyncio.create_task(session.start())
        for _ in range(20):
            if harness.pcs and harness.sink.started:
                break
            await asyncio.sleep(0.01)
        harness.pc.channel.open()
        await asyncio.wait_for(start_task, timeout=1)
        assert session.stage == InterviewStage.MIC_CHECK

        await session.stop()

        assert harness.pc.closed is True
        assert harness.microphone.audio.stopped is True
        assert harness.sink.stopped is True


# =============================================================================
# Audio Sink Tests
# =============================================================================


class TestAudioSink:
    """Tests for choosing the inbound audio destination."""

    def test_discards_without_output_path(self):
        """Without AUDIO_OUTPUT_PATH inbound audio is discarded."""
        assert isinstance(open_audio_sink(RealtimeConfig()), MediaBlackhole)

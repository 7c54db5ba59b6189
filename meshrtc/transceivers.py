import logging
from dataclasses import dataclass
from typing import Any, Callable

from aiortc import MediaStreamTrack, RTCPeerConnection, RTCRtpTransceiver

from .common import NegotiationNeededEvent
from .constants import MEDIA_KINDS, TRACK_KINDS, MediaKind
from .log import PeerLoggerAdapter, configLogger
from .stream import MediaStream
from .utils import ensure_future

logger = configLogger(logger=logging.getLogger('meshrtc-transceivers'))


@dataclass
class ChannelRef:
    kind: MediaKind
    transceiver: RTCRtpTransceiver
    stream: MediaStream | None = None
    """
    Local composite stream the channel was seeded with.
    """

    @property
    def track(self) -> MediaStreamTrack | None:
        return self.transceiver.sender.track

    @property
    def active(self) -> bool:
        return self.transceiver.direction != 'inactive'


class TransceiverSet:
    """
    The outgoing media channels of one peer connection, at most one per
    media kind.

    A channel is created the first time a kind is attached, which is the only
    operation that asks for a renegotiation. Later attach/detach cycles swap
    the sender track and flip the direction in place.
    """

    peer_id: str
    connection: RTCPeerConnection
    mic: ChannelRef | None
    camera: ChannelRef | None
    screen: ChannelRef | None
    generation: int
    """
    Number of channels created so far.
    """
    replacements: int
    """
    Number of in-place track swaps, detaches included.
    """
    _on_negotiation_needed: Callable[[NegotiationNeededEvent], Any]

    def __init__(self, peer_id: str, connection: RTCPeerConnection, on_negotiation_needed: Callable[[NegotiationNeededEvent], Any]) -> None:
        self.peer_id = peer_id
        self.connection = connection
        self.mic = None
        self.camera = None
        self.screen = None
        self.generation = 0
        self.replacements = 0
        self._on_negotiation_needed = on_negotiation_needed
        self._log = PeerLoggerAdapter(logger, peer_id)

    def get(self, kind: MediaKind) -> ChannelRef | None:
        return getattr(self, kind)

    def channels(self) -> list[ChannelRef]:
        return [channel for channel in (self.get(kind) for kind in MEDIA_KINDS) if channel is not None]

    def __len__(self) -> int:
        return len(self.channels())

    async def attach(self, kind: MediaKind, track: MediaStreamTrack, stream: MediaStream | None = None) -> bool:
        """
        Send ``track`` on the ``kind`` channel.

        Returns:
            True when a new channel was created and a renegotiation requested.
        """
        if track.kind != TRACK_KINDS[kind]:
            raise ValueError(f'A {track.kind} track cannot be sent on the {kind} channel.')
        channel = self.get(kind)
        if channel is None:
            transceiver = self.connection.addTransceiver(track, direction='sendrecv')
            setattr(self, kind, ChannelRef(kind=kind, transceiver=transceiver, stream=stream))
            self.generation += 1
            self._log.debug(f'{kind} channel created')
            self._on_negotiation_needed(NegotiationNeededEvent(self.peer_id, kind))
            return True
        await ensure_future(channel.transceiver.sender.replaceTrack, track)
        if channel.transceiver.direction != 'sendrecv':
            channel.transceiver.direction = 'sendrecv'
        self.replacements += 1
        self._log.debug(f'{kind} track replaced')
        return False

    async def detach(self, kind: MediaKind) -> bool:
        """
        Stop sending on the ``kind`` channel. The channel itself is kept for
        the lifetime of the connection.
        """
        channel = self.get(kind)
        if channel is None:
            return False
        await ensure_future(channel.transceiver.sender.replaceTrack, None)
        channel.transceiver.direction = 'inactive'
        self.replacements += 1
        self._log.debug(f'{kind} channel deactivated')
        return True

    def clear(self) -> None:
        self.mic = None
        self.camera = None
        self.screen = None

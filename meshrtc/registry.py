import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterator

from aiortc import MediaStreamTrack, RTCIceCandidate, RTCPeerConnection

from .common import (ConnectionStateEvent, IceCandidateEvent, MeshError,
                     MeshEvent, RemoteTrackEvent)
from .log import PeerLoggerAdapter, configLogger
from .participant import Participant
from .protocol import IceCandidateInit
from .stream import MediaStream, with_track, without_track
from .transceivers import TransceiverSet
from .webrtc import candidate_from_init

logger = configLogger(logger=logging.getLogger('meshrtc-registry'))


class ConnectionState(Enum):
    NEW = 'new'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    DISCONNECTED = 'disconnected'
    FAILED = 'failed'
    CLOSED = 'closed'

    def can_transition(self, target: "ConnectionState") -> bool:
        """
        States only move forward, except that a disconnected connection may
        recover. ``closed`` is terminal.
        """
        if self == target or self == ConnectionState.CLOSED:
            return False
        if target == ConnectionState.CLOSED:
            return True
        if self == ConnectionState.DISCONNECTED and target == ConnectionState.CONNECTED:
            return True
        return _ORDER[target] > _ORDER[self]

_ORDER = {state: i for i, state in enumerate(ConnectionState)}


@dataclass
class RemoteConnectionEntry:
    participant: Participant
    connection: RTCPeerConnection
    transceivers: TransceiverSet
    connection_state: ConnectionState = ConnectionState.NEW
    is_negotiating: bool = False
    remote_stream: MediaStream | None = None
    pending_candidates: list[IceCandidateInit] = field(default_factory=list)
    """
    Candidates received before any remote description, replayed once one is applied.
    """
    offered_generation: int = 0
    """
    Channel generation covered by the last offer sent to this peer.
    """
    established: bool = False
    """
    Whether a remote description has been applied at least once.
    """
    closed: bool = False

    @property
    def participant_id(self) -> str:
        return self.participant.id

    @property
    def log(self) -> PeerLoggerAdapter:
        return PeerLoggerAdapter(logger, self.participant.id)


PeerConnectionFactory = Callable[[], RTCPeerConnection]


class PeerConnectionRegistry:
    """
    Owns exactly one connection entry per remote participant.

    The observers wired on each connection never touch the entry directly:
    they post events which the owner routes back through ``dispatch`` so
    that every mutation of an entry happens on that peer's ordered chain.
    """

    _entries: dict[str, RemoteConnectionEntry]
    _early_candidates: dict[str, list[IceCandidateInit]]
    _factory: PeerConnectionFactory
    _post: Callable[[MeshEvent], Any]

    def __init__(self, factory: PeerConnectionFactory, post: Callable[[MeshEvent], Any]) -> None:
        self._entries = {}
        self._early_candidates = {}
        self._factory = factory
        self._post = post

    def __contains__(self, peer_id: str) -> bool:
        return peer_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RemoteConnectionEntry]:
        return iter(list(self._entries.values()))

    def get(self, peer_id: str) -> RemoteConnectionEntry | None:
        return self._entries.get(peer_id)

    def entries(self) -> list[RemoteConnectionEntry]:
        return list(self._entries.values())

    def peer_ids(self) -> list[str]:
        return list(self._entries.keys())

    def create_connection(self, participant: Participant) -> RemoteConnectionEntry:
        peer_id = participant.id
        if peer_id in self._entries:
            raise MeshError(f'Connection to {peer_id} already exists.')
        pc = self._factory()
        entry = RemoteConnectionEntry(
            participant=participant,
            connection=pc,
            transceivers=TransceiverSet(peer_id, pc, self._post),
            pending_candidates=self._early_candidates.pop(peer_id, []),
        )
        self._entries[peer_id] = entry
        log = entry.log

        def on_ice_candidate(candidate: RTCIceCandidate | None):
            if candidate is not None:
                self._post(IceCandidateEvent(peer_id, candidate))
        pc.on('icecandidate', on_ice_candidate)

        def on_connection_state_change():
            log.debug(f'connection state: {pc.connectionState}')
            self._post(ConnectionStateEvent(peer_id, pc.connectionState))
        pc.on('connectionstatechange', on_connection_state_change)

        def on_signaling_state_change():
            log.debug(f'signaling state: {pc.signalingState}')
        pc.on('signalingstatechange', on_signaling_state_change)

        def on_track(track: MediaStreamTrack):
            log.debug(f'remote {track.kind} track {track.id} received')
            def on_ended():
                self._post(RemoteTrackEvent('trackended', peer_id, track))
            track.on('ended', on_ended)
            self._post(RemoteTrackEvent('track', peer_id, track))
        pc.on('track', on_track)

        log.debug('connection created')
        return entry

    async def close_connection(self, peer_id: str) -> bool:
        """
        Close and forget the connection to ``peer_id``. Unknown ids are ignored.
        """
        self._early_candidates.pop(peer_id, None)
        entry = self._entries.pop(peer_id, None)
        if entry is None:
            return False
        entry.closed = True
        entry.is_negotiating = False
        entry.pending_candidates.clear()
        entry.transceivers.clear()
        entry.remote_stream = None
        entry.connection_state = ConnectionState.CLOSED
        pc = entry.connection
        pc.remove_all_listeners()
        if pc.signalingState != 'closed':
            await pc.close()
        entry.log.debug('connection closed')
        return True

    async def close_all(self) -> None:
        self._early_candidates.clear()
        for peer_id in self.peer_ids():
            await self.close_connection(peer_id)

    def update_connection_state(self, peer_id: str, state: str) -> bool:
        """
        Mirror a connection state reported by the peer connection.

        Returns:
            True if the entry moved to ``state``.
        """
        entry = self._entries.get(peer_id)
        if entry is None:
            return False
        try:
            target = ConnectionState(state)
        except ValueError:
            entry.log.warning(f'Unknown connection state {state}')
            return False
        if not entry.connection_state.can_transition(target):
            entry.log.info(f'Ignore connection state {entry.connection_state.value} -> {target.value}')
            return False
        entry.connection_state = target
        return True

    def add_remote_track(self, peer_id: str, track: MediaStreamTrack) -> bool:
        entry = self._entries.get(peer_id)
        if entry is None:
            return False
        entry.remote_stream = with_track(entry.remote_stream, track)
        return True

    def remove_remote_track(self, peer_id: str, track: MediaStreamTrack) -> bool:
        entry = self._entries.get(peer_id)
        if entry is None or entry.remote_stream is None or not entry.remote_stream.hasTrack(track):
            return False
        entry.remote_stream = without_track(entry.remote_stream, track)
        return True

    def hold_candidate(self, peer_id: str, init: IceCandidateInit) -> None:
        """
        Keep a candidate from a peer that has no connection yet. It becomes
        pending on the connection once one is created for that peer.
        """
        held = self._early_candidates.setdefault(peer_id, [])
        held.append(init)
        PeerLoggerAdapter(logger, peer_id).debug(f'candidate held until a connection exists ({len(held)} held)')

    async def add_remote_candidate(self, entry: RemoteConnectionEntry, init: IceCandidateInit) -> bool:
        """
        Apply a remote ICE candidate, or keep it until a remote description
        exists.

        Returns:
            True if the candidate was handed to the connection.
        """
        if entry.connection.remoteDescription is None:
            entry.pending_candidates.append(init)
            entry.log.debug(f'candidate buffered ({len(entry.pending_candidates)} pending)')
            return False
        await entry.connection.addIceCandidate(candidate_from_init(init))
        return True

    async def flush_candidates(self, entry: RemoteConnectionEntry) -> int:
        pending = entry.pending_candidates
        entry.pending_candidates = []
        applied = 0
        for init in pending:
            try:
                await entry.connection.addIceCandidate(candidate_from_init(init))
                applied += 1
            except MeshError as e:
                entry.log.warning(f'Drop buffered candidate: {e.message}')
        if applied:
            entry.log.debug(f'{applied} buffered candidate(s) applied')
        return applied

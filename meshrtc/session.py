import asyncio
import logging
from typing import Any, Awaitable, Callable, Literal, cast, overload

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection

from . import protocol
from .api import signaling_url
from .common import (ConnectionStateEvent, ErrorEvent, EventDispatcher,
                     IceCandidateEvent, LocalTrackEndedEvent, MeshError,
                     MeshEvent, MessageEvent, NegotiationNeededEvent,
                     PeerEvent, RemoteTrackEvent, SignalingError, StateEvent)
from .config import (IceServerDict, SessionConfiguration,
                     SessionConfigurationDict)
from .log import configLogger
from .media import (MediaController, MediaDevices, MediaDeviceState,
                    PlayerMediaDevices)
from .negotiation import Negotiator, is_initiator
from .participant import Participant, RemoteParticipant
from .protocol import (AnswerMessage, CandidateMessage, ErrorMessage,
                       JoinedMessage, OfferMessage, PeerJoinedMessage,
                       PeerLeftMessage, RoomClosedMessage, ServerMessage)
from .registry import (ConnectionState, PeerConnectionRegistry,
                       RemoteConnectionEntry)
from .signaling import WebSocketSignaling
from .stream import MediaStream
from .utils import chain_future, resolved_future
from .webrtc import (HAVE_LOCAL_OFFER, candidate_to_init, remote_answer,
                     remote_offer)

logger = configLogger(logger=logging.getLogger('meshrtc-session'))

MeetingState = Literal['idle', 'connecting', 'connected', 'error', 'closed']

PeerConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]

SESSION_CHAIN = ''
"""
Chain key of the messages that concern no particular peer.
"""


def default_peer_connection_factory(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class MeshSession(EventDispatcher):
    """
    One participant's side of a full-mesh group call.

    Every inbound signaling message and every event posted by a peer
    connection goes through ``dispatch``. Work is queued on a chain per
    remote participant, so one peer's messages are handled strictly in
    arrival order while different peers proceed concurrently. Messages that
    concern no particular peer run on a session chain that new peer chains
    start behind.
    """

    config: SessionConfiguration
    signaling: WebSocketSignaling
    registry: PeerConnectionRegistry
    negotiator: Negotiator
    media: MediaController
    _meeting_state: MeetingState
    _error: str | None
    _my_id: str | None
    _participants: dict[str, Participant]
    _pc_factory: PeerConnectionFactory
    _rtc_configuration: RTCConfiguration
    _chains: dict[str, asyncio.Future]
    _tasks: set[asyncio.Future]
    _epoch: int

    def __init__(
        self,
        config: SessionConfiguration | SessionConfigurationDict | None = None,
        signaling: WebSocketSignaling | None = None,
        devices: MediaDevices | None = None,
        pc_factory: PeerConnectionFactory | None = None,
    ) -> None:
        super().__init__()
        self.config = SessionConfiguration.fromConfigLike(config)
        self.signaling = signaling if signaling is not None else WebSocketSignaling(heartbeat_interval=self.config.heartbeatInterval)
        self._pc_factory = pc_factory or default_peer_connection_factory
        self._rtc_configuration = self.config.rtcConfigurationObject
        self.registry = PeerConnectionRegistry(self._create_peer_connection, self.dispatch)
        self.negotiator = Negotiator(self.signaling.send)
        self.media = MediaController(
            devices if devices is not None else PlayerMediaDevices(),
            self.registry,
            self.dispatch,
            permission_retry_delay=self.config.permissionRetryDelay,
        )
        self._meeting_state = 'idle'
        self._error = None
        self._my_id = None
        self._participants = {}
        self._chains = {}
        self._tasks = set()
        self._epoch = 0
        self.signaling.addEventListener('data', self._on_signaling_data)
        self.signaling.addEventListener('error', self._on_signaling_error)
        self.signaling.addEventListener('closed', self._on_signaling_closed)
        self.media.addEventListener('localstreamchange', self.dispatchEventAwaitable)
        self.media.addEventListener('mediastatechange', self.dispatchEventAwaitable)

    @property
    def meeting_state(self) -> MeetingState:
        return self._meeting_state

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def my_participant_id(self) -> str | None:
        return self._my_id

    @property
    def participants(self) -> list[RemoteParticipant]:
        result = []
        for participant in self._participants.values():
            entry = self.registry.get(participant.id)
            result.append(RemoteParticipant(
                participant=participant,
                connection_state=entry.connection_state.value if entry is not None else ConnectionState.CLOSED.value,
                stream=entry.remote_stream if entry is not None else None,
            ))
        return result

    @property
    def local_stream(self) -> MediaStream | None:
        return self.media.local_stream

    @property
    def media_state(self) -> MediaDeviceState:
        return self.media.state

    def _create_peer_connection(self) -> RTCPeerConnection:
        return self._pc_factory(self._rtc_configuration)

    async def connect(self, room_id: str, token: str, ice_servers: list[IceServerDict | RTCIceServer] | None = None) -> None:
        """
        Open the signaling channel of ``room_id``. A failure to open it moves
        the session to ``error``; it is not raised.
        """
        if self._meeting_state in ('connecting', 'connected'):
            raise MeshError('The session is already connected, disconnect at first.')
        if self._meeting_state != 'idle':
            await self.disconnect()
        self._rtc_configuration = self.config.withIceServers(ice_servers)
        self._error = None
        await self._set_state('connecting')
        endpoint = signaling_url(self.config.baseUrl, room_id, token)
        logger.info(f'Connecting to room {room_id}')
        try:
            await self.signaling.connect(endpoint)
        except SignalingError as e:
            await self._fail(e.message)

    async def disconnect(self) -> None:
        """
        Leave the room and release everything. Queued work is abandoned.
        """
        self._epoch += 1
        self.signaling.send(protocol.leave())
        await self.media.stop_local_stream()
        await self.registry.close_all()
        await self.signaling.close()
        chains = list(self._chains.values())
        self._chains.clear()
        for future in chains:
            if not future.done():
                future.cancel()
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        self._my_id = None
        self.negotiator.own_id = None
        self._error = None
        if self._participants:
            self._participants = {}
            await self.dispatchEventAwaitable(StateEvent('participantschange', []))
        await self._set_state('idle')
        logger.info('Disconnected')

    async def toggle_mic(self) -> bool:
        return await self.media.toggle_mic()

    async def toggle_camera(self) -> bool:
        return await self.media.toggle_camera()

    async def toggle_screen_share(self) -> bool:
        return await self.media.toggle_screen_share()

    async def init_local_stream(self) -> MediaStream | None:
        return await self.media.init_local_stream()

    async def stop_local_stream(self) -> None:
        await self.media.stop_local_stream()

    def dispatch(self, event: ServerMessage | MeshEvent) -> asyncio.Future:
        """
        The single entry point of the state machine. Accepts decoded server
        messages and the events posted by peer connections and local tracks.
        """
        if isinstance(event, PeerEvent):
            return self._enqueue(event.peer_id, lambda: self._handle_peer_event(cast(PeerEvent, event)))
        elif isinstance(event, LocalTrackEndedEvent):
            return self._spawn(self.media.handle_local_track_ended(event))
        elif isinstance(event, MeshEvent):
            logger.warning(f'Unexpected event {event}')
            return resolved_future()
        message = event
        peer_id = protocol.peer_of(message)
        return self._enqueue(peer_id if peer_id is not None else SESSION_CHAIN, lambda: self._handle_message(message))

    async def flush(self) -> None:
        """
        Wait until every queued message and event has been handled.
        """
        while True:
            pending = [f for f in (*self._chains.values(), *self._tasks) if not f.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _enqueue(self, key: str, work: Callable[[], Awaitable[Any]]) -> asyncio.Future:
        previous = self._chains.get(key)
        if previous is None and key != SESSION_CHAIN:
            previous = self._chains.get(SESSION_CHAIN)
        if previous is None:
            previous = resolved_future()
        epoch = self._epoch
        async def run(_):
            if epoch != self._epoch:
                return
            try:
                await work()
            except Exception as e:
                logger.exception(f'Failed to handle work on chain {key or "session"}: {e}')
        future = chain_future(previous, then=run, catch=run)
        self._chains[key] = future
        def on_done(f: asyncio.Future):
            if self._chains.get(key) is f:
                del self._chains[key]
        future.add_done_callback(on_done)
        return future

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Future:
        async def run():
            try:
                await coro
            except Exception as e:
                logger.exception(f'Background work failed: {e}')
        task = asyncio.ensure_future(run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _on_signaling_data(self, evt: MessageEvent):
        self.dispatch(evt.message)

    async def _on_signaling_error(self, evt: ErrorEvent):
        if self._meeting_state in ('idle', 'error'):
            return
        message = evt.error.message if isinstance(evt.error, MeshError) else f'{evt.error}'
        await self._fail(message)

    async def _on_signaling_closed(self, _):
        if self._meeting_state in ('idle', 'error'):
            return
        logger.info('Signaling closed by the server')
        await self._set_state('closed')

    async def _set_state(self, state: MeetingState):
        if self._meeting_state == state:
            return
        logger.debug(f'meeting state: {self._meeting_state} -> {state}')
        self._meeting_state = state
        await self.dispatchEventAwaitable(StateEvent('statechange', state))

    async def _fail(self, reason: str):
        logger.warning(f'Session error: {reason}')
        self._error = reason
        await self._set_state('error')
        await self.dispatchEventAwaitable(ErrorEvent('error', MeshError(reason)))

    async def _fire_participants_change(self):
        await self.dispatchEventAwaitable(StateEvent('participantschange', self.participants))

    async def _handle_message(self, message: ServerMessage):
        type = message['type']
        if type == 'joined':
            await self._on_joined(cast(JoinedMessage, message))
        elif type == 'peer_joined':
            await self._on_peer_joined(cast(PeerJoinedMessage, message))
        elif type == 'peer_left':
            await self._on_peer_left(cast(PeerLeftMessage, message))
        elif type == 'offer':
            await self._on_offer(cast(OfferMessage, message))
        elif type == 'answer':
            await self._on_answer(cast(AnswerMessage, message))
        elif type == 'candidate':
            await self._on_candidate(cast(CandidateMessage, message))
        elif type == 'room_closed':
            await self._fail(cast(RoomClosedMessage, message).get('reason') or 'The room has been closed.')
        elif type == 'error':
            await self._fail(cast(ErrorMessage, message).get('message') or 'Unknown signaling error.')
        elif type == 'pong':
            pass
        else:
            logger.warning(f'Unknown message type: {type}')

    def _ensure_entry(self, participant: Participant) -> RemoteConnectionEntry:
        entry = self.registry.get(participant.id)
        if entry is None:
            entry = self.registry.create_connection(participant)
        return entry

    async def _on_joined(self, message: JoinedMessage):
        my_id = message['participant_id']
        self._my_id = my_id
        self.negotiator.own_id = my_id
        participants = [Participant.from_info(info) for info in message['participants'] if info['id'] != my_id]
        self._participants = {participant.id: participant for participant in participants}
        logger.info(f'Joined as {my_id} with {len(participants)} other participant(s)')
        for participant in participants:
            self._ensure_entry(participant)
        await self._set_state('connected')
        await self._fire_participants_change()
        for participant in participants:
            if is_initiator(my_id, participant.id):
                peer_id = participant.id
                self._enqueue(peer_id, lambda peer_id=peer_id: self._bootstrap(peer_id))

    async def _on_peer_joined(self, message: PeerJoinedMessage):
        participant = Participant.from_info(message['participant'])
        if participant.id == self._my_id:
            return
        self._participants[participant.id] = participant
        self._ensure_entry(participant)
        await self._fire_participants_change()
        if self._my_id is not None and is_initiator(self._my_id, participant.id):
            await self._bootstrap(participant.id)

    async def _on_peer_left(self, message: PeerLeftMessage):
        peer_id = message['participant_id']
        await self.registry.close_connection(peer_id)
        if self._participants.pop(peer_id, None) is not None:
            await self._fire_participants_change()

    async def _bootstrap(self, peer_id: str):
        """
        Send the local media to a peer this side initiates with. When no
        channel had to be created the initial offer is requested here.
        """
        participant = self._participants.get(peer_id)
        if participant is None:
            return
        entry = self._ensure_entry(participant)
        created = False
        for kind, track in self.media.enabled_tracks():
            if await entry.transceivers.attach(kind, track, self.media.local_stream):
                created = True
        if not created:
            await self.negotiator.request_negotiation(entry)

    async def _on_offer(self, message: OfferMessage):
        peer_id = cast(str, protocol.sender_of(message))
        participant = self._participants.get(peer_id) or Participant(id=peer_id, display_name=peer_id)
        entry = self._ensure_entry(participant)
        pc = entry.connection
        if pc.signalingState == HAVE_LOCAL_OFFER:
            entry.log.info('Discard offer colliding with the local one')
            return
        await pc.setRemoteDescription(remote_offer(message['sdp']))
        entry.established = True
        await self.registry.flush_candidates(entry)
        for kind, track in self.media.enabled_tracks():
            await entry.transceivers.attach(kind, track, self.media.local_stream)
        answer = await pc.createAnswer()
        await pc.setLocalDescription(answer)
        if entry.closed:
            return
        local = pc.localDescription
        self.signaling.send(protocol.answer(peer_id, local.sdp if local is not None else answer.sdp))
        entry.log.debug('answer sent')
        if self.negotiator.needs_renegotiation(entry):
            await self.negotiator.request_negotiation(entry)

    async def _on_answer(self, message: AnswerMessage):
        peer_id = cast(str, protocol.sender_of(message))
        entry = self.registry.get(peer_id)
        if entry is None:
            logger.info(f'Discard answer from unknown peer {peer_id}')
            return
        pc = entry.connection
        if pc.signalingState != HAVE_LOCAL_OFFER:
            entry.log.info(f'Discard stale answer in signaling state {pc.signalingState}')
            return
        await pc.setRemoteDescription(remote_answer(message['sdp']))
        entry.established = True
        await self.registry.flush_candidates(entry)
        if self.negotiator.needs_renegotiation(entry):
            entry.log.debug('channels created during the last exchange, renegotiate')
            await self.negotiator.request_negotiation(entry)

    async def _on_candidate(self, message: CandidateMessage):
        peer_id = cast(str, protocol.sender_of(message))
        entry = self.registry.get(peer_id)
        if entry is None:
            self.registry.hold_candidate(peer_id, message['candidate'])
            return
        try:
            await self.registry.add_remote_candidate(entry, message['candidate'])
        except MeshError as e:
            entry.log.warning(f'Discard candidate: {e.message}')

    async def _handle_peer_event(self, event: PeerEvent):
        entry = self.registry.get(event.peer_id)
        if entry is None:
            logger.debug(f'Ignore {event} for a closed connection')
            return
        if isinstance(event, NegotiationNeededEvent):
            await self.negotiator.request_negotiation(entry)
        elif isinstance(event, IceCandidateEvent):
            self.signaling.send(protocol.candidate(event.peer_id, candidate_to_init(event.candidate)))
        elif isinstance(event, ConnectionStateEvent):
            if self.registry.update_connection_state(event.peer_id, event.state):
                if entry.connection_state == ConnectionState.CLOSED:
                    await self.registry.close_connection(event.peer_id)
                await self._fire_participants_change()
        elif isinstance(event, RemoteTrackEvent):
            if event.type == 'track':
                changed = self.registry.add_remote_track(event.peer_id, event.track)
            else:
                changed = self.registry.remove_remote_track(event.peer_id, event.track)
            if changed:
                await self._fire_participants_change()
        else:
            logger.warning(f'Unexpected event {event}')

    @overload
    def addEventListener(self, eventType: Literal['statechange'], listener: Callable[[StateEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: Literal['participantschange'], listener: Callable[[StateEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: Literal['localstreamchange'], listener: Callable[[StateEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: Literal['mediastatechange'], listener: Callable[[StateEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: Literal['error'], listener: Callable[[ErrorEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    def addEventListener(self, eventType: str, listener: Callable[[Any], Any], once: bool = False, seq: bool = True) -> None:
        return super().addEventListener(eventType, listener, once, seq)

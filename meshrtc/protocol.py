"""
Wire format of the room signaling channel.

Every frame is a JSON object tagged by ``type``. Server frames address the
remote participant with ``from``; client frames address it with ``to``.
"""
import json
import sys
from typing import cast

if sys.version_info < (3, 11):
    from typing_extensions import (Any, Literal, NotRequired, TypeAlias,
                                   TypedDict)
else:
    from typing import TypedDict, NotRequired, Any, Literal, TypeAlias

from .common import MeshError


class UserInfo(TypedDict):
    user_id: str | None
    """
    Account id of a logged in user, None for guests.
    """
    nickname: str
    avatar_url: str | None
    is_authenticated: bool

class ParticipantInfo(TypedDict):
    id: str
    """
    Participant id assigned by the signaling server. Stable for the lifetime of the session.
    """
    name: str
    is_creator: NotRequired[bool]
    user_info: NotRequired[UserInfo | None]

class IceCandidateInit(TypedDict):
    candidate: str
    sdpMLineIndex: int | None
    sdpMid: str | None

class JoinedMessage(TypedDict):
    type: Literal['joined']
    participant_id: str
    participants: list[ParticipantInfo]

class PeerJoinedMessage(TypedDict):
    type: Literal['peer_joined']
    participant: ParticipantInfo

class PeerLeftMessage(TypedDict):
    type: Literal['peer_left']
    participant_id: str

class OfferMessage(TypedDict):
    type: Literal['offer']
    sdp: str

class AnswerMessage(TypedDict):
    type: Literal['answer']
    sdp: str

class CandidateMessage(TypedDict):
    type: Literal['candidate']
    candidate: IceCandidateInit

class RoomClosedMessage(TypedDict):
    type: Literal['room_closed']
    reason: str

class ErrorMessage(TypedDict):
    type: Literal['error']
    code: NotRequired[str]
    message: str

class PongMessage(TypedDict):
    type: Literal['pong']
    timestamp: NotRequired[str]

ServerMessage: TypeAlias = JoinedMessage | PeerJoinedMessage | PeerLeftMessage | OfferMessage | AnswerMessage | CandidateMessage | RoomClosedMessage | ErrorMessage | PongMessage
"""
``offer``, ``answer`` and ``candidate`` additionally carry the sender id
under the ``from`` key, which is not a valid Python identifier and is read
with :func:`sender_of`.
"""

class PingMessage(TypedDict):
    type: Literal['ping']

class ClientOfferMessage(TypedDict):
    type: Literal['offer']
    to: str
    sdp: str

class ClientAnswerMessage(TypedDict):
    type: Literal['answer']
    to: str
    sdp: str

class ClientCandidateMessage(TypedDict):
    type: Literal['candidate']
    to: str
    candidate: IceCandidateInit

class LeaveMessage(TypedDict):
    type: Literal['leave']

ClientMessage: TypeAlias = PingMessage | ClientOfferMessage | ClientAnswerMessage | ClientCandidateMessage | LeaveMessage

SERVER_MESSAGE_TYPES = frozenset(['joined', 'peer_joined', 'peer_left', 'offer', 'answer', 'candidate', 'room_closed', 'error', 'pong'])

_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    'joined': ('participant_id', 'participants'),
    'peer_joined': ('participant',),
    'peer_left': ('participant_id',),
    'offer': ('from', 'sdp'),
    'answer': ('from', 'sdp'),
    'candidate': ('from', 'candidate'),
    'room_closed': (),
    'error': (),
    'pong': (),
}


def ping() -> PingMessage:
    return { 'type': 'ping' }

def leave() -> LeaveMessage:
    return { 'type': 'leave' }

def offer(to: str, sdp: str) -> ClientOfferMessage:
    return { 'type': 'offer', 'to': to, 'sdp': sdp }

def answer(to: str, sdp: str) -> ClientAnswerMessage:
    return { 'type': 'answer', 'to': to, 'sdp': sdp }

def candidate(to: str, init: IceCandidateInit) -> ClientCandidateMessage:
    return { 'type': 'candidate', 'to': to, 'candidate': init }

def encode(message: ClientMessage) -> str:
    return json.dumps(message, separators=(',', ':'), ensure_ascii=False)

def decode(data: str | bytes) -> ServerMessage:
    """
    Parse one inbound frame.

    Raises:
        MeshError: the frame is not JSON, is not an object, has an unknown
            ``type`` or misses a field that type requires.
    """
    try:
        message = json.loads(data)
    except ValueError as e:
        raise MeshError(f'Malformed signaling frame: {e}')
    if not isinstance(message, dict):
        raise MeshError('Signaling frame is not an object.')
    msg_type = message.get('type')
    if msg_type not in SERVER_MESSAGE_TYPES:
        raise MeshError(f'Unknown signaling message type: {msg_type}')
    missing = [f for f in _REQUIRED_FIELDS[msg_type] if f not in message]
    if missing:
        raise MeshError(f'Signaling message {msg_type} misses {", ".join(missing)}.')
    return cast(ServerMessage, message)

def sender_of(message: ServerMessage) -> str | None:
    return cast(dict[str, Any], message).get('from')

def peer_of(message: ServerMessage) -> str | None:
    """
    The remote participant a server message is about, or None for
    session-wide messages.
    """
    msg = cast(dict[str, Any], message)
    msg_type = msg['type']
    if msg_type in ('offer', 'answer', 'candidate'):
        return msg.get('from')
    elif msg_type == 'peer_left':
        return msg.get('participant_id')
    elif msg_type == 'peer_joined':
        return msg['participant'].get('id')
    return None

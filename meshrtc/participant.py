from dataclasses import dataclass

from .protocol import ParticipantInfo
from .stream import MediaStream


@dataclass(frozen=True)
class Participant:
    id: str
    """
    The ID of the participant, assigned by the signaling server. It orders the peers for the initiator rule.
    """
    display_name: str
    avatar_url: str | None = None
    is_creator: bool = False

    @staticmethod
    def from_info(info: ParticipantInfo) -> "Participant":
        user_info = info.get('user_info') or None
        return Participant(
            id=info['id'],
            display_name=info.get('name') or (user_info['nickname'] if user_info else '') or info['id'],
            avatar_url=user_info.get('avatar_url') if user_info else None,
            is_creator=bool(info.get('is_creator', False)),
        )


@dataclass(frozen=True)
class RemoteParticipant:
    """
    Read-only view of a remote participant handed to the UI layer. A new
    instance is built whenever anything about the participant changes.
    """
    participant: Participant
    connection_state: str = 'new'
    stream: MediaStream | None = None

    @property
    def id(self) -> str:
        return self.participant.id

    @property
    def display_name(self) -> str:
        return self.participant.display_name

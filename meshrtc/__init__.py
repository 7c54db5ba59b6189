from .api import create_room, get_ice_servers, join_room, signaling_url
from .common import (CompoundError, DeviceNotFoundError, ErrorEvent, MeshError,
                     MeshEvent, PermissionDeniedError, SignalingError,
                     StateEvent)
from .config import SessionConfiguration
from .log import configRoot
from .media import (MediaController, MediaDeviceInfo, MediaDevices,
                    MediaDeviceState, PlayerMediaDevices)
from .negotiation import is_initiator
from .participant import Participant, RemoteParticipant
from .registry import ConnectionState, PeerConnectionRegistry
from .session import MeetingState, MeshSession
from .signaling import WebSocketSignaling
from .stream import MediaStream

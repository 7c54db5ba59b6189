from typing import Literal

MediaKind = Literal['mic', 'camera', 'screen']
"""
Independent media channels a peer connection may carry. 'mic' is an audio
track, 'camera' and 'screen' are video tracks.
"""

MEDIA_KINDS: tuple[MediaKind, ...] = ('mic', 'camera', 'screen')

TRACK_KINDS: dict[MediaKind, Literal['audio', 'video']] = {
    'mic': 'audio',
    'camera': 'video',
    'screen': 'video',
}

TransceiverDirection = Literal['sendrecv', 'sendonly', 'recvonly', 'inactive']

DeviceKind = Literal['audioinput', 'videoinput', 'audiooutput']

HEARTBEAT_INTERVAL = 25
"""
Seconds between two heartbeat pings while the signaling socket is open.
"""

PERMISSION_RETRY_DELAY = 0.5

CLEAN_CLOSE_CODES = (1000, 1001)
"""
WebSocket close codes treated as a normal shutdown.
"""

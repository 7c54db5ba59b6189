from typing import Any, Literal

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from .common import MeshError
from .protocol import IceCandidateInit

SignalingState = Literal['stable', 'have-local-offer', 'have-remote-offer', 'have-local-pranswer', 'have-remote-pranswer', 'closed']

STABLE: SignalingState = 'stable'
HAVE_LOCAL_OFFER: SignalingState = 'have-local-offer'

CANDIDATE_PREFIX = 'candidate:'


def candidate_to_init(candidate: RTCIceCandidate) -> IceCandidateInit:
    """
    Serialize an aiortc candidate the way browsers expose
    ``RTCIceCandidate.toJSON()``.
    """
    return {
        'candidate': f'{CANDIDATE_PREFIX}{candidate_to_sdp(candidate)}',
        'sdpMLineIndex': candidate.sdpMLineIndex,
        'sdpMid': candidate.sdpMid,
    }

def candidate_from_init(init: IceCandidateInit | dict[str, Any]) -> RTCIceCandidate:
    candidate_str = init.get('candidate') or ''
    if candidate_str.startswith(CANDIDATE_PREFIX):
        candidate_str = candidate_str[len(CANDIDATE_PREFIX):]
    try:
        candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, ValueError, IndexError) as e:
        raise MeshError(f'Malformed ICE candidate: {init.get("candidate")!r}') from e
    candidate.sdpMid = init.get('sdpMid')
    candidate.sdpMLineIndex = init.get('sdpMLineIndex')
    return candidate

def remote_offer(sdp: str) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=sdp, type='offer')

def remote_answer(sdp: str) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=sdp, type='answer')

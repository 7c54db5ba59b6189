import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Literal, overload

from aiortc import MediaStreamTrack

from .constants import MediaKind
from .utils import ensure_future


class MeshError(Exception):
    message: str

    def __init__(self, message: str, *args: object) -> None:
        self.message = message
        super().__init__(self.message, *args)

class SignalingError(MeshError):
    """
    The signaling socket could not be opened, failed while open, or was closed
    with an unexpected close code.
    """
    code: int | None

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code

class PermissionDeniedError(MeshError):
    """
    Capture access was refused or the user cancelled the device picker.
    """

class DeviceNotFoundError(MeshError):
    pass

class CompoundError(MeshError):
    errors: list[BaseException]

    def __init__(self, errors: list[BaseException]) -> None:
        super().__init__('|'.join((f'{e}' for e in errors)))
        self.errors = errors


class MeshEvent:
    type: str

    def __init__(self, type: str) -> None:
        self.type = type

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.type!r})'

class ErrorEvent(MeshEvent):
    error: Exception

    def __init__(self, type: str, error: Exception) -> None:
        super().__init__(type)
        self.error = error

class MessageEvent(MeshEvent):

    def __init__(self, type: str, message: Any) -> None:
        super().__init__(type)
        self.message = message

class StateEvent(MeshEvent):
    state: Any

    def __init__(self, type: str, state: Any) -> None:
        super().__init__(type)
        self.state = state

class PeerEvent(MeshEvent):
    """
    Base class of the events a single peer connection posts back to the
    session. They are routed to that peer's ordered chain.
    """
    peer_id: str

    def __init__(self, type: str, peer_id: str) -> None:
        super().__init__(type)
        self.peer_id = peer_id

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.type!r}, peer={self.peer_id!r})'

class NegotiationNeededEvent(PeerEvent):
    kind: MediaKind | None

    def __init__(self, peer_id: str, kind: MediaKind | None = None) -> None:
        super().__init__('negotiationneeded', peer_id)
        self.kind = kind

class IceCandidateEvent(PeerEvent):
    candidate: Any

    def __init__(self, peer_id: str, candidate: Any) -> None:
        super().__init__('icecandidate', peer_id)
        self.candidate = candidate

class ConnectionStateEvent(PeerEvent):
    state: str

    def __init__(self, peer_id: str, state: str) -> None:
        super().__init__('connectionstatechange', peer_id)
        self.state = state

class RemoteTrackEvent(PeerEvent):
    track: MediaStreamTrack

    def __init__(self, type: Literal['track', 'trackended'], peer_id: str, track: MediaStreamTrack) -> None:
        super().__init__(type, peer_id)
        self.track = track

class LocalTrackEndedEvent(MeshEvent):
    kind: MediaKind
    track: MediaStreamTrack

    def __init__(self, kind: MediaKind, track: MediaStreamTrack) -> None:
        super().__init__('localtrackended')
        self.kind = kind
        self.track = track


Listener = Callable[[MeshEvent], Any]

@dataclass
class ListenerBox:
    listener: Listener
    once: bool
    seq: bool

class EventDispatcher:

    listeners_map: dict[str, list[ListenerBox]]
    lock: asyncio.Lock

    def __init__(self) -> None:
        self.listeners_map = {}
        self.lock = asyncio.Lock()

    @overload
    def addEventListener(self, eventType: Literal['data'], listener: Callable[[MessageEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: Literal['error'], listener: Callable[[ErrorEvent], Any], once: bool = False, seq: bool = True) -> None: ...
    @overload
    def addEventListener(self, eventType: str, listener: Listener, once: bool = False, seq: bool = True) -> None: ...
    def addEventListener(self, eventType: str, listener: Any, once: bool = False, seq: bool = True) -> None:
        if eventType not in self.listeners_map:
            self.listeners_map[eventType] = []
        self.listeners_map[eventType].append(ListenerBox(listener=listener, once=once, seq=seq))

    def removeEventListener(self, eventType: str, listener: Any) -> None:
        if eventType in self.listeners_map:
            boxes = self.listeners_map[eventType]
            box = next((box for box in boxes if box.listener == listener), None)
            if box:
                boxes.remove(box)
                if len(boxes) == 0:
                    del self.listeners_map[eventType]

    async def dispatchEventAwaitable(self, event: MeshEvent):
        # Listeners may dispatch further events on this dispatcher, so the
        # lock only guards the listener bookkeeping.
        async with self.lock:
            boxes = self.listeners_map.get(event.type, [])
            if len(boxes) == 0:
                return
            remaining = [box for box in boxes if not box.once]
            if remaining:
                self.listeners_map[event.type] = remaining
            else:
                del self.listeners_map[event.type]
        pal_listeners: list[Listener] = []
        seq_listeners: list[Listener] = []
        for box in boxes:
            if box.seq:
                seq_listeners.append(box.listener)
            else:
                pal_listeners.append(box.listener)
        async def invoke_pal_listeners():
            results = await asyncio.gather(*[ensure_future(l, event) for l in pal_listeners], return_exceptions=True)
            excs = [e for e in results if isinstance(e, BaseException)]
            if len(excs) > 0:
                if len(excs) > 1:
                    raise CompoundError(excs)
                else:
                    raise excs[0]
        async def invoke_seq_listeners():
            for l in seq_listeners:
                await ensure_future(l, event)
        results = await asyncio.gather(invoke_pal_listeners(), invoke_seq_listeners(), return_exceptions=True)
        errors: list[BaseException] = []
        for res in results:
            if isinstance(res, BaseException):
                if isinstance(res, CompoundError):
                    errors.extend(res.errors)
                else:
                    errors.append(res)
        if len(errors) > 0:
            if len(errors) > 1:
                raise CompoundError(errors)
            else:
                raise errors[0]

import logging
from typing import TYPE_CHECKING, Any, Callable

from . import protocol
from .log import PeerLoggerAdapter, configLogger
from .protocol import ClientMessage
from .webrtc import STABLE

if TYPE_CHECKING:
    from .registry import RemoteConnectionEntry

logger = configLogger(logger=logging.getLogger('meshrtc-negotiation'))


def is_initiator(own_id: str, peer_id: str) -> bool:
    """
    Glare tie-break: of every pair of participants only the one whose id
    sorts first sends the initial offer.
    """
    return own_id < peer_id


class Negotiator:
    """
    Issues offers, one at a time per peer.

    A request is dropped, not queued, while an offer for the same peer is
    being produced or while the connection is not ``stable``. Until the first
    remote description has been applied only the initiator of the pair may
    offer. The entry keeps the channel generation its last offer covered so
    that a channel created in the meantime can be negotiated once the answer
    arrives.
    """

    own_id: str | None
    _send: Callable[[ClientMessage], Any]

    def __init__(self, send: Callable[[ClientMessage], Any], own_id: str | None = None) -> None:
        self.own_id = own_id
        self._send = send

    async def request_negotiation(self, entry: "RemoteConnectionEntry") -> bool:
        """
        Returns:
            True if an offer was sent.
        """
        log = PeerLoggerAdapter(logger, entry.participant_id)
        if entry.is_negotiating:
            log.debug('negotiation already in flight, drop request')
            return False
        if not entry.established and not self.is_initiator_for(entry.participant_id):
            log.debug('waiting for the initial offer, drop request')
            return False
        pc = entry.connection
        if pc.signalingState != STABLE:
            log.debug(f'signaling state is {pc.signalingState}, drop request')
            return False
        entry.is_negotiating = True
        try:
            generation = entry.transceivers.generation
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
            if entry.closed:
                log.debug('connection closed while creating offer')
                return False
            entry.offered_generation = generation
            local = pc.localDescription
            self._send(protocol.offer(entry.participant_id, local.sdp if local is not None else offer.sdp))
            log.debug(f'offer sent covering {generation} channel(s)')
            return True
        finally:
            entry.is_negotiating = False

    def is_initiator_for(self, peer_id: str) -> bool:
        return self.own_id is not None and is_initiator(self.own_id, peer_id)

    def needs_renegotiation(self, entry: "RemoteConnectionEntry") -> bool:
        return entry.transceivers.generation > entry.offered_generation

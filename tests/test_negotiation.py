import pytest

from meshrtc.negotiation import Negotiator, is_initiator
from meshrtc.participant import Participant
from meshrtc.registry import PeerConnectionRegistry, RemoteConnectionEntry

from .fakes import FakePeerConnection


def test_initiator_is_the_smaller_id():
    assert is_initiator('a1', 'b2')
    assert not is_initiator('b2', 'a1')
    assert is_initiator('a1', 'z9')
    assert not is_initiator('z9', 'a1')

def test_exactly_one_side_initiates():
    ids = ['a', 'b', 'c', 'a1', 'b2', 'z9', 'Z', '10', '9']
    for x in ids:
        for y in ids:
            if x != y:
                assert is_initiator(x, y) != is_initiator(y, x)

@pytest.fixture
def sent() -> list[dict]:
    return []

@pytest.fixture
def events() -> list:
    return []

@pytest.fixture
def registry(events: list) -> PeerConnectionRegistry:
    return PeerConnectionRegistry(FakePeerConnection, events.append)

@pytest.fixture
def negotiator(sent: list[dict]) -> Negotiator:
    return Negotiator(sent.append, own_id='a1')

@pytest.fixture
def entry(registry: PeerConnectionRegistry) -> RemoteConnectionEntry:
    return registry.create_connection(Participant(id='b2', display_name='Bob'))

@pytest.mark.asyncio
async def test_request_sends_offer(negotiator: Negotiator, entry: RemoteConnectionEntry, sent: list[dict]):
    assert await negotiator.request_negotiation(entry)
    assert len(sent) == 1
    assert sent[0]['type'] == 'offer'
    assert sent[0]['to'] == 'b2'
    assert entry.connection.signalingState == 'have-local-offer'
    assert not entry.is_negotiating

@pytest.mark.asyncio
async def test_request_while_in_flight_is_noop(negotiator: Negotiator, entry: RemoteConnectionEntry, sent: list[dict]):
    entry.is_negotiating = True
    assert not await negotiator.request_negotiation(entry)
    assert sent == []
    pc = entry.connection
    assert isinstance(pc, FakePeerConnection)
    assert pc.offers_created == 0
    assert entry.is_negotiating

@pytest.mark.asyncio
async def test_concurrent_requests_send_one_offer(negotiator: Negotiator, entry: RemoteConnectionEntry, sent: list[dict]):
    import asyncio
    results = await asyncio.gather(negotiator.request_negotiation(entry), negotiator.request_negotiation(entry))
    assert sorted(results) == [False, True]
    assert len(sent) == 1

@pytest.mark.asyncio
async def test_request_outside_stable_is_noop(negotiator: Negotiator, entry: RemoteConnectionEntry, sent: list[dict]):
    assert await negotiator.request_negotiation(entry)
    assert not await negotiator.request_negotiation(entry)
    assert len(sent) == 1

@pytest.mark.asyncio
async def test_non_initiator_waits_for_initial_offer(registry: PeerConnectionRegistry, sent: list[dict]):
    negotiator = Negotiator(sent.append, own_id='z9')
    entry = registry.create_connection(Participant(id='a1', display_name='Alice'))
    assert not await negotiator.request_negotiation(entry)
    entry.established = True
    assert await negotiator.request_negotiation(entry)
    assert sent[0]['to'] == 'a1'

@pytest.mark.asyncio
async def test_flag_cleared_when_offer_fails(negotiator: Negotiator, entry: RemoteConnectionEntry, sent: list[dict]):
    async def broken_offer():
        raise RuntimeError('boom')
    entry.connection.createOffer = broken_offer
    with pytest.raises(RuntimeError):
        await negotiator.request_negotiation(entry)
    assert not entry.is_negotiating
    assert sent == []

@pytest.mark.asyncio
async def test_offer_records_channel_generation(negotiator: Negotiator, entry: RemoteConnectionEntry, events: list):
    from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
    await entry.transceivers.attach('mic', AudioStreamTrack())
    await negotiator.request_negotiation(entry)
    assert entry.offered_generation == 1
    assert not negotiator.needs_renegotiation(entry)
    await entry.transceivers.attach('camera', VideoStreamTrack())
    assert negotiator.needs_renegotiation(entry)

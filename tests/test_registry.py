import asyncio

import pytest
from aiortc import RTCSessionDescription
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from meshrtc.common import (ConnectionStateEvent, IceCandidateEvent, MeshError,
                            RemoteTrackEvent)
from meshrtc.participant import Participant
from meshrtc.registry import ConnectionState, PeerConnectionRegistry

from .fakes import FakePeerConnection

CANDIDATE = {
    'candidate': 'candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host',
    'sdpMLineIndex': 0,
    'sdpMid': '0',
}


@pytest.fixture
def events() -> list:
    return []

@pytest.fixture
def registry(events: list) -> PeerConnectionRegistry:
    return PeerConnectionRegistry(FakePeerConnection, events.append)

def bob() -> Participant:
    return Participant(id='b2', display_name='Bob')

@pytest.mark.asyncio
async def test_create_connection(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    assert 'b2' in registry
    assert registry.get('b2') is entry
    assert registry.peer_ids() == ['b2']
    assert entry.connection_state == ConnectionState.NEW
    assert not entry.is_negotiating
    assert entry.remote_stream is None

@pytest.mark.asyncio
async def test_duplicate_connection_is_an_error(registry: PeerConnectionRegistry):
    registry.create_connection(bob())
    with pytest.raises(MeshError):
        registry.create_connection(bob())
    assert len(registry) == 1

@pytest.mark.asyncio
async def test_close_twice_is_safe(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    assert await registry.close_connection('b2')
    assert not await registry.close_connection('b2')
    assert 'b2' not in registry
    assert entry.closed
    pc = entry.connection
    assert isinstance(pc, FakePeerConnection)
    assert pc.closed

@pytest.mark.asyncio
async def test_close_unknown_peer(registry: PeerConnectionRegistry):
    assert not await registry.close_connection('nobody')

@pytest.mark.asyncio
async def test_close_discards_entry_state(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    await entry.transceivers.attach('mic', AudioStreamTrack())
    entry.is_negotiating = True
    entry.pending_candidates.append(CANDIDATE)
    await registry.close_connection('b2')
    assert entry.transceivers.mic is None
    assert not entry.is_negotiating
    assert entry.pending_candidates == []

@pytest.mark.asyncio
async def test_observers_post_events(registry: PeerConnectionRegistry, events: list):
    entry = registry.create_connection(bob())
    pc = entry.connection
    assert isinstance(pc, FakePeerConnection)
    pc.set_connection_state('connecting')
    track = VideoStreamTrack()
    pc.emit('track', track)
    pc.emit('icecandidate', 'fake-candidate')
    pc.emit('icecandidate', None)
    track.stop()
    await asyncio.sleep(0)
    kinds = [type(e) for e in events]
    assert kinds == [ConnectionStateEvent, RemoteTrackEvent, IceCandidateEvent, RemoteTrackEvent]
    assert events[0].state == 'connecting'
    assert events[1].type == 'track'
    assert events[2].candidate == 'fake-candidate'
    assert events[3].type == 'trackended'
    assert all(e.peer_id == 'b2' for e in events)

@pytest.mark.asyncio
async def test_connection_state_is_monotonic(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    assert registry.update_connection_state('b2', 'connecting')
    assert registry.update_connection_state('b2', 'connected')
    assert not registry.update_connection_state('b2', 'connecting')
    assert not registry.update_connection_state('b2', 'new')
    assert entry.connection_state == ConnectionState.CONNECTED
    assert registry.update_connection_state('b2', 'disconnected')
    assert registry.update_connection_state('b2', 'connected')
    assert registry.update_connection_state('b2', 'failed')
    assert not registry.update_connection_state('b2', 'connected')
    assert registry.update_connection_state('b2', 'closed')
    assert not registry.update_connection_state('b2', 'connected')
    assert entry.connection_state == ConnectionState.CLOSED

def test_connection_state_transitions():
    assert ConnectionState.NEW.can_transition(ConnectionState.CLOSED)
    assert ConnectionState.DISCONNECTED.can_transition(ConnectionState.CONNECTED)
    assert not ConnectionState.FAILED.can_transition(ConnectionState.DISCONNECTED)
    assert not ConnectionState.CLOSED.can_transition(ConnectionState.NEW)
    assert not ConnectionState.CONNECTED.can_transition(ConnectionState.CONNECTED)

@pytest.mark.asyncio
async def test_unknown_connection_state_is_ignored(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    assert not registry.update_connection_state('b2', 'weird')
    assert entry.connection_state == ConnectionState.NEW

@pytest.mark.asyncio
async def test_remote_stream_is_rebuilt(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    audio = AudioStreamTrack()
    video = VideoStreamTrack()
    assert registry.add_remote_track('b2', audio)
    first = entry.remote_stream
    assert first is not None and first.tracks == (audio,)
    assert registry.add_remote_track('b2', video)
    second = entry.remote_stream
    assert second is not first
    assert second is not None and second.tracks == (audio, video)
    assert first.tracks == (audio,)
    assert registry.remove_remote_track('b2', audio)
    third = entry.remote_stream
    assert third is not second
    assert third is not None and third.tracks == (video,)
    assert registry.remove_remote_track('b2', video)
    assert entry.remote_stream is None
    assert not registry.remove_remote_track('b2', video)

@pytest.mark.asyncio
async def test_candidates_buffered_until_remote_description(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    pc = entry.connection
    assert isinstance(pc, FakePeerConnection)
    assert not await registry.add_remote_candidate(entry, CANDIDATE)
    assert entry.pending_candidates == [CANDIDATE]
    assert pc.candidates == []
    await pc.setRemoteDescription(RTCSessionDescription(sdp='offer', type='offer'))
    assert await registry.flush_candidates(entry) == 1
    assert entry.pending_candidates == []
    assert len(pc.candidates) == 1
    candidate = pc.candidates[0]
    assert candidate.ip == '192.168.1.2'
    assert candidate.port == 50000
    assert candidate.sdpMid == '0'
    assert candidate.sdpMLineIndex == 0
    assert await registry.add_remote_candidate(entry, CANDIDATE)
    assert len(pc.candidates) == 2

@pytest.mark.asyncio
async def test_malformed_buffered_candidate_is_dropped(registry: PeerConnectionRegistry):
    entry = registry.create_connection(bob())
    await registry.add_remote_candidate(entry, {'candidate': 'garbage', 'sdpMLineIndex': 0, 'sdpMid': '0'})
    await registry.add_remote_candidate(entry, CANDIDATE)
    await entry.connection.setRemoteDescription(RTCSessionDescription(sdp='offer', type='offer'))
    assert await registry.flush_candidates(entry) == 1

@pytest.mark.asyncio
async def test_candidates_held_until_connection_exists(registry: PeerConnectionRegistry):
    registry.hold_candidate('b2', CANDIDATE)
    registry.hold_candidate('c3', CANDIDATE)
    assert 'b2' not in registry
    entry = registry.create_connection(bob())
    assert entry.pending_candidates == [CANDIDATE]
    await entry.connection.setRemoteDescription(RTCSessionDescription(sdp='offer', type='offer'))
    assert await registry.flush_candidates(entry) == 1
    await registry.close_connection('c3')
    other = registry.create_connection(Participant(id='c3', display_name='Carol'))
    assert other.pending_candidates == []

@pytest.mark.asyncio
async def test_close_all_drops_held_candidates(registry: PeerConnectionRegistry):
    registry.hold_candidate('b2', CANDIDATE)
    await registry.close_all()
    entry = registry.create_connection(bob())
    assert entry.pending_candidates == []

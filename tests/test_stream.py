from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from meshrtc.stream import MediaStream, with_track, without_track


def test_with_track_builds_new_stream():
    audio = AudioStreamTrack()
    first = with_track(None, audio)
    assert first.tracks == (audio,)
    assert first.hasAudio() and not first.hasVideo()
    video = VideoStreamTrack()
    second = with_track(first, video)
    assert second is not first
    assert second.id != first.id
    assert second.tracks == (audio, video)
    assert second.audioTrack is audio
    assert second.videoTracks == [video]

def test_with_track_ignores_duplicates():
    audio = AudioStreamTrack()
    stream = with_track(None, audio)
    again = with_track(stream, audio)
    assert again is not stream
    assert again.tracks == (audio,)

def test_without_track():
    audio = AudioStreamTrack()
    video = VideoStreamTrack()
    stream = MediaStream(tracks=(audio, video))
    rest = without_track(stream, audio)
    assert rest is not None and rest.tracks == (video,)
    assert without_track(rest, video) is None
    assert without_track(None, video) is None
    assert len(stream) == 2

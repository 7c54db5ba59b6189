import uuid
from dataclasses import dataclass, field

from aiortc import MediaStreamTrack


@dataclass(frozen=True)
class MediaStream:
    """
    A composite of media tracks.

    Instances are never mutated: adding or removing a track returns a new
    stream so observers comparing by identity always notice the change.
    """

    tracks: tuple[MediaStreamTrack, ...] = ()
    id: str = field(default_factory=lambda: f'{uuid.uuid4()}')

    def hasAudio(self) -> bool:
        for track in self.tracks:
            if track.kind == 'audio':
                return True
        return False

    def hasVideo(self) -> bool:
        for track in self.tracks:
            if track.kind == 'video':
                return True
        return False

    @property
    def audioTracks(self) -> list[MediaStreamTrack]:
        return [track for track in self.tracks if track.kind == 'audio']

    @property
    def audioTrack(self) -> MediaStreamTrack | None:
        for track in self.tracks:
            if track.kind == 'audio':
                return track
        return None

    @property
    def videoTracks(self) -> list[MediaStreamTrack]:
        return [track for track in self.tracks if track.kind == 'video']

    def hasTrack(self, track: MediaStreamTrack) -> bool:
        return any(t is track or t.id == track.id for t in self.tracks)

    def __len__(self) -> int:
        return len(self.tracks)


def with_track(stream: MediaStream | None, track: MediaStreamTrack) -> MediaStream:
    """
    Return a fresh stream holding the tracks of ``stream`` plus ``track``.
    """
    tracks = stream.tracks if stream is not None else ()
    if stream is not None and stream.hasTrack(track):
        return MediaStream(tracks=tracks)
    return MediaStream(tracks=tracks + (track,))

def without_track(stream: MediaStream | None, track: MediaStreamTrack) -> MediaStream | None:
    """
    Return a fresh stream without ``track``, or None when nothing is left.
    """
    if stream is None:
        return None
    tracks = tuple(t for t in stream.tracks if t is not track and t.id != track.id)
    if not tracks:
        return None
    return MediaStream(tracks=tracks)

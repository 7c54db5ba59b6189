import asyncio
import glob
import logging
import os
import platform
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Iterable, Literal

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from .common import (DeviceNotFoundError, EventDispatcher, LocalTrackEndedEvent,
                     MeshError, MeshEvent, PermissionDeniedError, StateEvent)
from .constants import MEDIA_KINDS, DeviceKind, MediaKind
from .log import configLogger
from .registry import PeerConnectionRegistry, RemoteConnectionEntry
from .stream import MediaStream, with_track, without_track
from .utils import remove_none_value

logger = configLogger(logger=logging.getLogger('meshrtc-media'))


@dataclass(frozen=True)
class MediaDeviceState:
    mic_enabled: bool = False
    camera_enabled: bool = False
    screen_sharing: bool = False

    def enabled(self, kind: MediaKind) -> bool:
        if kind == 'mic':
            return self.mic_enabled
        elif kind == 'camera':
            return self.camera_enabled
        else:
            return self.screen_sharing

    def with_kind(self, kind: MediaKind, enabled: bool) -> "MediaDeviceState":
        if kind == 'mic':
            return replace(self, mic_enabled=enabled)
        elif kind == 'camera':
            return replace(self, camera_enabled=enabled)
        else:
            return replace(self, screen_sharing=enabled)


@dataclass(frozen=True)
class MediaDeviceInfo:
    kind: DeviceKind
    device_id: str
    label: str = ''


class MediaDevices(ABC):
    """
    Capture primitives used by the session. Implementations raise
    ``PermissionDeniedError`` when access is refused or cancelled and
    ``DeviceNotFoundError`` when there is nothing to capture.
    """

    @abstractmethod
    async def enumerate_devices(self) -> list[MediaDeviceInfo]:
        raise NotImplementedError()

    @abstractmethod
    async def get_user_media(self, kind: Literal['mic', 'camera']) -> MediaStreamTrack:
        raise NotImplementedError()

    @abstractmethod
    async def get_display_media(self) -> MediaStreamTrack:
        raise NotImplementedError()

    async def reset_permissions(self) -> None:
        """
        Best effort. Called once after a denial, before trying again.
        """
        pass


class PlayerMediaDevices(MediaDevices):
    """
    Capture through ffmpeg input devices with ``MediaPlayer``.

    On Windows dshow needs the device names, pass them as ``microphone`` and
    ``camera``.
    """

    microphone: str | None
    camera: str | None
    display: str | None
    options: dict[str, str]

    def __init__(self, microphone: str | None = None, camera: str | None = None, display: str | None = None, options: dict[str, str] | None = None) -> None:
        self.microphone = microphone
        self.camera = camera
        self.display = display
        self.options = options if options is not None else {"framerate": "20", "video_size": "640x480"}

    async def enumerate_devices(self) -> list[MediaDeviceInfo]:
        system = platform.system()
        if system == 'Linux':
            devices = [MediaDeviceInfo(kind='videoinput', device_id=path, label=os.path.basename(path)) for path in sorted(glob.glob('/dev/video*'))]
            devices.extend(MediaDeviceInfo(kind='audioinput', device_id=path, label=os.path.basename(path)) for path in sorted(glob.glob('/dev/snd/pcmC*D*c')))
            return devices
        devices = []
        if system == 'Darwin' or self.microphone:
            devices.append(MediaDeviceInfo(kind='audioinput', device_id=self.microphone or 'default'))
        if system == 'Darwin' or self.camera:
            devices.append(MediaDeviceInfo(kind='videoinput', device_id=self.camera or 'default'))
        return devices

    async def get_user_media(self, kind: Literal['mic', 'camera']) -> MediaStreamTrack:
        system = platform.system()
        if kind == 'mic':
            if system == 'Darwin':
                return self._open('audio', f'none:{self.microphone or "default"}', 'avfoundation')
            elif system == 'Windows':
                if not self.microphone:
                    raise DeviceNotFoundError('No microphone configured.')
                return self._open('audio', f'audio={self.microphone}', 'dshow')
            else:
                return self._open('audio', self.microphone or 'default', 'pulse')
        else:
            if system == 'Darwin':
                return self._open('video', f'{self.camera or "default"}:none', 'avfoundation', self.options)
            elif system == 'Windows':
                if not self.camera:
                    raise DeviceNotFoundError('No camera configured.')
                return self._open('video', f'video={self.camera}', 'dshow', self.options)
            else:
                return self._open('video', self.camera or '/dev/video0', 'v4l2', self.options)

    async def get_display_media(self) -> MediaStreamTrack:
        system = platform.system()
        options = remove_none_value({'framerate': self.options.get('framerate'), 'video_size': self.options.get('video_size')})
        if system == 'Darwin':
            return self._open('video', self.display or 'Capture screen 0', 'avfoundation', options)
        elif system == 'Windows':
            return self._open('video', self.display or 'desktop', 'gdigrab', options)
        else:
            return self._open('video', self.display or os.environ.get('DISPLAY', ':0'), 'x11grab', options)

    def _open(self, track_kind: Literal['audio', 'video'], file: str, format: str, options: dict[str, str] | None = None) -> MediaStreamTrack:
        try:
            player = MediaPlayer(file, format=format, options=options or {})
        except PermissionError as e:
            raise PermissionDeniedError(f'Access to {file} denied. {e}') from e
        except FileNotFoundError as e:
            raise DeviceNotFoundError(f'Unable to find {file}. {e}') from e
        except OSError as e:
            raise DeviceNotFoundError(f'Unable to open {file}. {e}') from e
        track = player.audio if track_kind == 'audio' else player.video
        if track is None:
            raise DeviceNotFoundError(f'{file} provides no {track_kind}.')
        return track


class MediaController(EventDispatcher):
    """
    Owns the local capture tracks and the local preview stream.

    Each media kind toggles independently; toggles of the same kind are
    serialized. A kind is only marked enabled once its device was acquired
    and the track was handed to every peer. Peers that connect while a toggle
    is under way see the track from the moment it is acquired until its
    disable starts. Dispatches ``localstreamchange`` and ``mediastatechange``.
    """

    devices: MediaDevices
    registry: PeerConnectionRegistry
    permission_retry_delay: float
    _state: MediaDeviceState
    _local_stream: MediaStream | None
    _tracks: dict[MediaKind, MediaStreamTrack | None]
    _live: set[MediaKind]
    _locks: dict[MediaKind, asyncio.Lock]
    _post: Callable[[MeshEvent], Any]

    def __init__(self, devices: MediaDevices, registry: PeerConnectionRegistry, post: Callable[[MeshEvent], Any], permission_retry_delay: float = 0.5) -> None:
        super().__init__()
        self.devices = devices
        self.registry = registry
        self.permission_retry_delay = permission_retry_delay
        self._state = MediaDeviceState()
        self._local_stream = None
        self._tracks = {kind: None for kind in MEDIA_KINDS}
        self._live = set()
        self._locks = {kind: asyncio.Lock() for kind in MEDIA_KINDS}
        self._post = post

    @property
    def state(self) -> MediaDeviceState:
        return self._state

    @property
    def local_stream(self) -> MediaStream | None:
        return self._local_stream

    def track(self, kind: MediaKind) -> MediaStreamTrack | None:
        return self._tracks[kind]

    def enabled_tracks(self) -> list[tuple[MediaKind, MediaStreamTrack]]:
        return [(kind, track) for kind, track in self._tracks.items() if track is not None and kind in self._live]

    async def toggle_mic(self) -> bool:
        return await self.toggle('mic')

    async def toggle_camera(self) -> bool:
        return await self.toggle('camera')

    async def toggle_screen_share(self) -> bool:
        return await self.toggle('screen')

    async def toggle(self, kind: MediaKind) -> bool:
        """
        Returns:
            Whether ``kind`` is enabled afterwards.
        """
        async with self._locks[kind]:
            if self._state.enabled(kind):
                await self._disable(kind)
            else:
                await self._enable(kind)
            return self._state.enabled(kind)

    async def handle_local_track_ended(self, event: LocalTrackEndedEvent) -> None:
        async with self._locks[event.kind]:
            if self._tracks[event.kind] is not event.track:
                return
            logger.info(f'{event.kind} capture ended')
            await self._disable(event.kind)

    async def _acquire(self, kind: MediaKind) -> MediaStreamTrack:
        if kind == 'screen':
            return await self.devices.get_display_media()
        else:
            return await self.devices.get_user_media(kind)

    async def _enable(self, kind: MediaKind) -> None:
        try:
            track = await self._acquire(kind)
        except PermissionDeniedError as e:
            logger.info(f'{kind} access denied: {e.message}')
            return
        except MeshError as e:
            logger.warning(f'Unable to acquire {kind}: {e.message}')
            return
        self._tracks[kind] = track
        self._live.add(kind)
        if kind == 'screen':
            def on_ended():
                self._post(LocalTrackEndedEvent(kind, track))
            track.on('ended', on_ended)
        stream = self._local_stream
        await self._fan_out(f'attach {kind}', self.registry.entries(), lambda entry: entry.transceivers.attach(kind, track, stream))
        await self._commit(with_track(self._local_stream, track), self._state.with_kind(kind, True))
        logger.debug(f'{kind} enabled for {len(self.registry)} peer(s)')

    async def _disable(self, kind: MediaKind) -> None:
        track = self._tracks[kind]
        self._live.discard(kind)
        await self._fan_out(f'detach {kind}', self.registry.entries(), lambda entry: entry.transceivers.detach(kind))
        self._tracks[kind] = None
        stream = self._local_stream
        if track is not None:
            track.stop()
            stream = without_track(stream, track)
        await self._commit(stream, self._state.with_kind(kind, False))
        logger.debug(f'{kind} disabled')

    async def _fan_out(self, what: str, entries: Iterable[RemoteConnectionEntry], op: Callable[[RemoteConnectionEntry], Awaitable]):
        entries = list(entries)
        results = await asyncio.gather(*[op(entry) for entry in entries], return_exceptions=True)
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                entry.log.error(f'Failed to {what}: {result}', exc_info=result)

    async def _commit(self, stream: MediaStream | None, state: MediaDeviceState) -> None:
        await self._set_local_stream(stream)
        if state != self._state:
            self._state = state
            await self.dispatchEventAwaitable(StateEvent('mediastatechange', state))

    async def _set_local_stream(self, stream: MediaStream | None) -> None:
        if stream is self._local_stream:
            return
        self._local_stream = stream
        await self.dispatchEventAwaitable(StateEvent('localstreamchange', stream))

    async def init_local_stream(self) -> MediaStream | None:
        """
        Check that a microphone exists and that it may be opened, then publish
        an empty preview stream. Returns None when there is no audio input.
        """
        try:
            devices = await self.devices.enumerate_devices()
        except MeshError as e:
            logger.warning(f'Unable to enumerate devices: {e.message}')
            return None
        if not any(device.kind == 'audioinput' for device in devices):
            logger.info('No audio input available.')
            return None
        try:
            await self._open_mic()
        except PermissionDeniedError as e:
            logger.info(f'Microphone access denied, reset permissions and retry: {e.message}')
            try:
                await self.devices.reset_permissions()
            except MeshError as e:
                logger.warning(f'Unable to reset permissions: {e.message}')
            await asyncio.sleep(self.permission_retry_delay)
            try:
                await self._open_mic()
            except MeshError as e:
                logger.warning(f'Microphone still unavailable: {e.message}')
        except MeshError as e:
            logger.warning(f'Microphone unavailable: {e.message}')
        stream = MediaStream()
        await self._set_local_stream(stream)
        return stream

    async def _open_mic(self) -> None:
        track = await self.devices.get_user_media('mic')
        track.stop()

    async def stop_local_stream(self) -> None:
        """
        Stop every capture track and reset all media flags. Peers are not told.
        """
        for kind in MEDIA_KINDS:
            track = self._tracks[kind]
            self._tracks[kind] = None
            self._live.discard(kind)
            if track is not None:
                track.stop()
        await self._commit(None, MediaDeviceState())

import sys
from dataclasses import dataclass
from typing import Any, cast

from aiortc import RTCConfiguration, RTCIceServer

if sys.version_info < (3, 11):
    from typing_extensions import NotRequired, TypedDict
else:
    from typing import NotRequired, TypedDict

from .constants import HEARTBEAT_INTERVAL, PERMISSION_RETRY_DELAY

DEFAULT_BASE_URL = 'https://api.huanvae.cn'


class IceServerDict(TypedDict):
    username: NotRequired[str | None]
    credential: NotRequired[str | None]
    credentialType: NotRequired[str | None]
    urls: str | list[str]

class RTCConfigurationDict(TypedDict):
    iceServers: NotRequired[list[IceServerDict | RTCIceServer] | None]

def toRTCIceServers(ice_servers: list[IceServerDict | RTCIceServer] | None) -> list[RTCIceServer]:
    return [RTCIceServer(
        urls=cast(Any, ice_server['urls']),
        username=ice_server.get('username'),
        credential=ice_server.get('credential'),
        credentialType=ice_server.get('credentialType', 'password') or 'password',
    ) if isinstance(ice_server, dict) else ice_server for ice_server in ice_servers or []]

def toRTCConfiguration(value: RTCConfiguration | RTCConfigurationDict) -> RTCConfiguration:
    if isinstance(value, RTCConfiguration):
        return value
    iceservers = value.get('iceServers')
    if iceservers is None:
        return RTCConfiguration()
    else:
        return RTCConfiguration(iceServers=toRTCIceServers(iceservers))

class SessionConfigurationDict(TypedDict):
    baseUrl: NotRequired[str | None]
    rtcConfiguration: NotRequired[RTCConfiguration | RTCConfigurationDict | None]
    heartbeatInterval: NotRequired[float | None]
    permissionRetryDelay: NotRequired[float | None]

@dataclass
class SessionConfiguration:
    baseUrl: str = DEFAULT_BASE_URL
    """
    HTTP(S) root of the room service. The signaling socket lives under the same host.
    """
    rtcConfiguration: RTCConfiguration | RTCConfigurationDict | None = None
    heartbeatInterval: float = HEARTBEAT_INTERVAL
    """
    Seconds between two heartbeat pings.
    """
    permissionRetryDelay: float = PERMISSION_RETRY_DELAY
    """
    Seconds to wait after resetting capture permissions before trying again.
    """

    @property
    def rtcConfigurationObject(self) -> RTCConfiguration:
        if self.rtcConfiguration is None:
            return RTCConfiguration()
        else:
            return toRTCConfiguration(self.rtcConfiguration)

    def withIceServers(self, ice_servers: list[IceServerDict | RTCIceServer] | None) -> RTCConfiguration:
        """
        The RTC configuration for one session. A non-empty list from the room
        service replaces the configured ICE servers.
        """
        if not ice_servers:
            return self.rtcConfigurationObject
        return RTCConfiguration(iceServers=toRTCIceServers(ice_servers))

    @staticmethod
    def fromConfigLike(value: "SessionConfiguration | SessionConfigurationDict | None"):
        if value is None:
            return SessionConfiguration()
        if isinstance(value, SessionConfiguration):
            return value
        rtcConfiguration = value.get('rtcConfiguration')
        if rtcConfiguration:
            rtcConfiguration = toRTCConfiguration(rtcConfiguration)
        heartbeatInterval = value.get('heartbeatInterval')
        permissionRetryDelay = value.get('permissionRetryDelay')
        return SessionConfiguration(
            baseUrl=value.get('baseUrl') or DEFAULT_BASE_URL,
            rtcConfiguration=rtcConfiguration,
            heartbeatInterval=heartbeatInterval if heartbeatInterval is not None else HEARTBEAT_INTERVAL,
            permissionRetryDelay=permissionRetryDelay if permissionRetryDelay is not None else PERMISSION_RETRY_DELAY,
        )

from aiortc import RTCConfiguration, RTCIceServer

from meshrtc.config import DEFAULT_BASE_URL, SessionConfiguration
from meshrtc.constants import HEARTBEAT_INTERVAL, PERMISSION_RETRY_DELAY


def test_defaults():
    config = SessionConfiguration.fromConfigLike(None)
    assert config.baseUrl == DEFAULT_BASE_URL
    assert config.heartbeatInterval == HEARTBEAT_INTERVAL
    assert config.permissionRetryDelay == PERMISSION_RETRY_DELAY
    assert config.rtcConfigurationObject.iceServers is None

def test_from_dict():
    config = SessionConfiguration.fromConfigLike({
        'baseUrl': 'https://rooms.example.com',
        'rtcConfiguration': {'iceServers': [{'urls': 'stun:stun.example.com'}]},
        'heartbeatInterval': 5,
        'permissionRetryDelay': 0,
    })
    assert config.baseUrl == 'https://rooms.example.com'
    assert config.heartbeatInterval == 5
    assert config.permissionRetryDelay == 0
    servers = config.rtcConfigurationObject.iceServers
    assert servers is not None and len(servers) == 1
    assert servers[0].urls == 'stun:stun.example.com'
    assert servers[0].credentialType == 'password'

def test_instance_is_kept():
    config = SessionConfiguration(baseUrl='https://rooms.example.com')
    assert SessionConfiguration.fromConfigLike(config) is config

def test_ice_servers_replace_configured_ones():
    configured = RTCConfiguration(iceServers=[RTCIceServer(urls='stun:configured.example.com')])
    config = SessionConfiguration(rtcConfiguration=configured)
    assert config.withIceServers(None) is configured
    assert config.withIceServers([]) is configured
    rtc = config.withIceServers([{'urls': ['turn:turn.example.com'], 'username': 'u', 'credential': 'c'}])
    assert rtc.iceServers is not None
    assert [s.urls for s in rtc.iceServers] == [['turn:turn.example.com']]
    assert rtc.iceServers[0].username == 'u'
    assert rtc.iceServers[0].credential == 'c'

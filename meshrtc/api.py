"""
HTTP calls to the room service: ICE server lookup, room creation and join.
"""
import json
import logging
import sys
from typing import Any, cast
from urllib.parse import quote

import aiohttp

if sys.version_info < (3, 11):
    from typing_extensions import NotRequired, TypedDict, Unpack
else:
    from typing import NotRequired, TypedDict, Unpack

from .common import MeshError
from .config import IceServerDict
from .log import configLogger
from .protocol import UserInfo
from .utils import remove_none_value

logger = configLogger(logger=logging.getLogger('meshrtc-api'))


class IceConfigResponse(TypedDict):
    ice_servers: list[IceServerDict]
    expires_at: str

class CreateRoomOptions(TypedDict, total=False):
    name: str | None
    display_name: str | None
    avatar_url: str | None
    password: str | None
    """
    Six digits. Generated by the server when omitted.
    """
    max_participants: int | None
    expires_minutes: int | None

class CreateRoomResponse(TypedDict):
    room_id: str
    password: str
    name: str
    max_participants: int
    expires_at: str
    participant_id: str
    ws_token: str
    token_expires_at: str
    user_info: UserInfo

class JoinRoomResponse(TypedDict):
    participant_id: str
    ws_token: str
    room_name: str
    ice_servers: list[IceServerDict]
    token_expires_at: str
    user_info: NotRequired[UserInfo]


def signaling_url(base_url: str, room_id: str, token: str) -> str:
    """
    The WebSocket endpoint of a room, on the same host as the HTTP API.
    """
    ws_base = base_url.rstrip('/')
    if ws_base.startswith('http'):
        ws_base = 'ws' + ws_base[len('http'):]
    return f'{ws_base}/ws/webrtc/rooms/{quote(room_id, safe="")}?token={quote(token, safe="")}'


def _headers(access_token: str | None) -> dict[str, str]:
    headers = { 'Content-Type': 'application/json' }
    if access_token:
        headers['Authorization'] = f'Bearer {access_token}'
    return headers

async def _unwrap(r: aiohttp.ClientResponse) -> Any:
    text = await r.text(encoding='utf-8')
    try:
        body = json.loads(text) if text else {}
    except json.JSONDecodeError as e:
        raise MeshError(f'Invalid response from {r.url}: HTTP {r.status}') from e
    if not isinstance(body, dict):
        raise MeshError(f'Invalid response from {r.url}: HTTP {r.status}')
    if r.status >= 400 or not body.get('success', False):
        message = body.get('message') or body.get('error') or f'HTTP {r.status}'
        logger.warning(f'{r.method} {r.url} failed: {message}')
        raise MeshError(message)
    return body.get('data')

async def _request(method: str, url: str, access_token: str | None = None, data: dict | None = None, session: aiohttp.ClientSession | None = None) -> Any:
    payload = json.dumps(data, separators=(',', ':'), ensure_ascii=True) if data is not None else None
    logger.debug(f'{method} {url}')
    try:
        if session is not None:
            async with session.request(method, url, headers=_headers(access_token), data=payload) as r:
                return await _unwrap(r)
        async with aiohttp.ClientSession() as own_session:
            async with own_session.request(method, url, headers=_headers(access_token), data=payload) as r:
                return await _unwrap(r)
    except aiohttp.ClientError as e:
        raise MeshError(f'Request to {url} failed: {e}') from e


async def get_ice_servers(base_url: str, access_token: str, region: str | None = None, session: aiohttp.ClientSession | None = None) -> IceConfigResponse:
    url = f'{base_url.rstrip("/")}/api/webrtc/ice_servers'
    if region:
        url += f'?region={quote(region, safe="")}'
    return cast(IceConfigResponse, await _request('GET', url, access_token=access_token, session=session))

async def create_room(base_url: str, access_token: str, session: aiohttp.ClientSession | None = None, **options: Unpack[CreateRoomOptions]) -> CreateRoomResponse:
    url = f'{base_url.rstrip("/")}/api/webrtc/rooms'
    data = remove_none_value(dict(options))
    return cast(CreateRoomResponse, await _request('POST', url, access_token=access_token, data=data, session=session))

async def join_room(base_url: str, room_id: str, password: str, display_name: str, avatar_url: str | None = None, session: aiohttp.ClientSession | None = None) -> JoinRoomResponse:
    """
    Join as a guest, no access token needed. The returned ``ws_token`` opens
    the signaling socket.
    """
    url = f'{base_url.rstrip("/")}/api/webrtc/rooms/{quote(room_id, safe="")}/join'
    data = remove_none_value({
        'password': password,
        'display_name': display_name,
        'avatar_url': avatar_url or None,
    })
    return cast(JoinRoomResponse, await _request('POST', url, data=data, session=session))

import asyncio
import logging
from typing import Any, Dict, NamedTuple, Optional, Tuple, Union

import aiohttp

from ._errors import ResolutionError

try:
    from ujson import dumps as json_dumps
    from ujson import loads as json_loads
except ImportError:
    from json import dumps as json_dumps
    from json import loads as json_loads


__all__ = (
    'API_VERSION',
    'API_BASE',
    'GatewayInfo',
    'HTTPClient',
    'resolve_gateway',
)


log = logging.getLogger(__name__)

API_VERSION = 8
API_BASE = f'https://discord.com/api/v{API_VERSION}'


class GatewayInfo(NamedTuple):
    """Result of the Get Gateway (Bot) endpoints."""

    url: str
    shards: int


class HTTPClient:
    """Minimal client for the REST API, authorized with one token.

    The `aiohttp.ClientSession` is created on the first request unless one is
    passed in, in which case closing it is left to the caller.
    """

    def __init__(
        self,
        token: str,
        *,
        is_bot: bool = True,
        base_url: str = API_BASE,
        session: Optional[aiohttp.ClientSession] = None
    ) -> None:
        self.token = token
        self.is_bot = is_bot
        self.base_url = base_url.rstrip('/')

        self._session = session
        self._owns_session = session is None

    @property
    def authorization(self) -> str:
        return ('Bot ' if self.is_bot else 'Bearer ') + self.token

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def request_raw(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None
    ) -> Tuple[int, Any]:
        """Send a request and return the status with the parsed body.

        The body is None when the response had none. Bodies that are not
        JSON are returned as text.

        Raises:
            aiohttp.ClientError: The request could not be completed.
        """
        headers = {
            'Authorization': self.authorization,
            'Content-Type': 'application/json',
        }
        data = json_dumps(body) if body is not None else None

        log.debug('%s %s', method, path)

        async with self._get_session().request(
            method, self.base_url + path, data=data, headers=headers
        ) as resp:
            text = await resp.text()

            if not text:
                return resp.status, None

            try:
                return resp.status, json_loads(text)
            except ValueError:
                return resp.status, text

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None
    ) -> Union[Any, int]:
        """Send a request returning the parsed body, or the status code if empty.

        Many endpoints respond with 204 No Content, for those the status is
        all there is to return.
        """
        status, data = await self.request_raw(method, path, body)
        return status if data is None else data

    async def get_channel(self, channel_id: str) -> Union[Dict[str, Any], int]:
        return await self.request('GET', f'/channels/{channel_id}')

    async def get_guild(self, guild_id: str) -> Union[Dict[str, Any], int]:
        return await self.request('GET', f'/guilds/{guild_id}')

    async def create_message(self, channel_id: str, content: str) -> Union[Dict[str, Any], int]:
        return await self.request(
            'POST', f'/channels/{channel_id}/messages', {'content': content}
        )

    async def get_current_user(self) -> Union[Dict[str, Any], int]:
        return await self.request('GET', '/users/@me')

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None


async def resolve_gateway(http: HTTPClient, is_bot: bool = True) -> GatewayInfo:
    """Look up the URL to connect to and the recommended shard count.

    Parameters:
        http: Client to request the endpoint with.
        is_bot:
            Whether to use Get Gateway Bot, which also returns the number of
            shards. User accounts use Get Gateway, with one shard assumed.

    Raises:
        ResolutionError:
            The request failed or returned an unexpected response. This is
            never retried, startup should be aborted.
    """
    path = '/gateway/bot' if is_bot else '/gateway'

    try:
        status, data = await http.request_raw('GET', path)
    except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
        raise ResolutionError(f'Requesting {path} failed: {exc!r}') from exc

    if not 200 <= status < 300:
        raise ResolutionError(f'Requesting {path} failed with status {status}', status)

    if not isinstance(data, dict) or not isinstance(data.get('url'), str):
        raise ResolutionError(f'Response of {path} is missing the gateway URL', status)

    return GatewayInfo(data['url'], data.get('shards', 1))

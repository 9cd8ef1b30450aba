import aiohttp
import pytest

from nord import HTTPClient, ResolutionError, resolve_gateway

from conftest import FakeHTTP


class TestResolveGateway:
    @pytest.mark.asyncio
    async def test_bot(self, http: FakeHTTP) -> None:
        info = await resolve_gateway(http)

        assert info.url == 'wss://gateway.example'
        assert info.shards == 2
        assert http.requests == [('GET', '/gateway/bot', None)]

    @pytest.mark.asyncio
    async def test_user(self, http: FakeHTTP) -> None:
        info = await resolve_gateway(http, is_bot=False)

        assert info.shards == 1
        assert http.requests == [('GET', '/gateway', None)]

    @pytest.mark.asyncio
    async def test_error_status(self, http: FakeHTTP) -> None:
        http.responses[('GET', '/gateway/bot')] = (401, {'message': '401: Unauthorized'})

        with pytest.raises(ResolutionError) as exc_info:
            await resolve_gateway(http)

        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_request_failed(self, http: FakeHTTP) -> None:
        http.responses[('GET', '/gateway/bot')] = aiohttp.ClientConnectionError('refused')

        with pytest.raises(ResolutionError) as exc_info:
            await resolve_gateway(http)

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize('body', (None, 'Bad Gateway', {}, {'url': 5}))
    async def test_missing_url(self, http: FakeHTTP, body) -> None:
        http.responses[('GET', '/gateway/bot')] = (200, body)

        with pytest.raises(ResolutionError):
            await resolve_gateway(http)


class TestHTTPClient:
    @pytest.mark.parametrize('is_bot,expected', ((True, 'Bot abc'), (False, 'Bearer abc')))
    def test_authorization(self, is_bot: bool, expected: str) -> None:
        assert HTTPClient('abc', is_bot=is_bot).authorization == expected

    @pytest.mark.asyncio
    async def test_empty_body_returns_status(self, http: FakeHTTP) -> None:
        http.responses[('DELETE', '/channels/30/messages/40')] = (204, None)

        assert await http.request('DELETE', '/channels/30/messages/40') == 204

    @pytest.mark.asyncio
    async def test_create_message(self, http: FakeHTTP) -> None:
        http.responses[('POST', '/channels/30/messages')] = (200, {'id': '40'})

        assert await http.create_message('30', 'hi') == {'id': '40'}
        assert http.requests == [('POST', '/channels/30/messages', {'content': 'hi'})]

    @pytest.mark.asyncio
    async def test_close_without_session(self) -> None:
        client = HTTPClient('abc')

        await client.close()

        assert client._session is None

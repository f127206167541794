from __future__ import annotations

from typing import Any

import httpx
import pytest

from installer.app.providers.errors import (
    PlatformAPIError,
    PlatformAuthError,
    PlatformTimeoutError,
)
from installer.app.providers.upstash import QStashClient, RedisRestClient, normalize_redis_url

QSTASH_TOKEN = 'q' * 30
REDIS_TOKEN = 'r' * 30


class TestNormalizeRedisUrl:
    def test_returns_origin(self):
        assert normalize_redis_url('https://eu1-cat.upstash.io/some/path') == 'https://eu1-cat.upstash.io'

    def test_rejects_plain_http(self):
        with pytest.raises(ValueError, match='https'):
            normalize_redis_url('http://eu1-cat.upstash.io')

    def test_rejects_other_hosts(self):
        with pytest.raises(ValueError, match='upstash'):
            normalize_redis_url('https://redis.example.com')

    def test_rejects_lookalike_hosts(self):
        with pytest.raises(ValueError):
            normalize_redis_url('https://upstash.io.evil.com')


@pytest.mark.asyncio
async def test_qstash_verify_token_lists_schedules():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['path'] = request.url.path
        seen['auth'] = request.headers['authorization']
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = QStashClient(token=QSTASH_TOKEN, http_client=http_client)
        await client.verify_token()

    assert seen == {'path': '/v2/schedules', 'auth': f'Bearer {QSTASH_TOKEN}'}


@pytest.mark.asyncio
async def test_qstash_rejected_token():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text='invalid token')

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = QStashClient(token=QSTASH_TOKEN, http_client=http_client)
        with pytest.raises(PlatformAuthError) as exc_info:
            await client.verify_token()

    assert exc_info.value.message == 'invalid token'
    assert QSTASH_TOKEN not in str(exc_info.value)


@pytest.mark.asyncio
async def test_redis_ping_hits_origin():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['url'] = str(request.url)
        return httpx.Response(200, json={'result': 'PONG'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = RedisRestClient(
            rest_url='https://eu1-cat.upstash.io/', token=REDIS_TOKEN, http_client=http_client,
        )
        await client.ping()

    assert seen['url'] == 'https://eu1-cat.upstash.io/ping'


@pytest.mark.asyncio
async def test_redis_ping_rejects_unexpected_reply():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={'result': 'NOPE'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = RedisRestClient(
            rest_url='https://eu1-cat.upstash.io', token=REDIS_TOKEN, http_client=http_client,
        )
        with pytest.raises(PlatformAPIError, match='unexpected ping reply'):
            await client.ping()


@pytest.mark.asyncio
async def test_redis_ping_validates_url_before_any_request():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError('no request expected')

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = RedisRestClient(
            rest_url='https://redis.example.com', token=REDIS_TOKEN, http_client=http_client,
        )
        with pytest.raises(ValueError):
            await client.ping()


@pytest.mark.asyncio
async def test_timeout_maps_to_platform_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout('slow', request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = QStashClient(token=QSTASH_TOKEN, http_client=http_client)
        with pytest.raises(PlatformTimeoutError) as exc_info:
            await client.verify_token()

    assert exc_info.value.status_code == 0


def test_client_requires_token():
    with pytest.raises(ValueError, match='token is required'):
        QStashClient(token='')

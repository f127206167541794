from __future__ import annotations

import base64
import json
from typing import Any

import httpx
import pytest
from nacl import encoding, public

from installer.app.providers.errors import PlatformAuthError, PlatformNotFoundError
from installer.app.providers.github_client import GitHubClient, seal_secret

TOKEN = 'ghp_secret_token'


def _keypair() -> tuple[public.PrivateKey, str]:
    private_key = public.PrivateKey.generate()
    public_b64 = private_key.public_key.encode(encoding.Base64Encoder()).decode()
    return private_key, public_b64


def _open(private_key: public.PrivateKey, sealed_b64: str) -> str:
    return public.SealedBox(private_key).decrypt(base64.b64decode(sealed_b64)).decode()


def _client(http_client: httpx.AsyncClient) -> GitHubClient:
    return GitHubClient(token=TOKEN, base_url='https://api.github.test', http_client=http_client)


def test_sealed_secret_opens_with_repository_private_key():
    private_key, public_b64 = _keypair()
    sealed = seal_secret(public_b64, 'hunter2')
    assert 'hunter2' not in sealed
    assert _open(private_key, sealed) == 'hunter2'


@pytest.mark.asyncio
async def test_get_repository_uses_github_accept_header():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['path'] = request.url.path
        seen['accept'] = request.headers['accept']
        seen['auth'] = request.headers['authorization']
        return httpx.Response(200, json={'full_name': 'ada/shop'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        repo = await _client(http_client).get_repository('ada', 'shop')

    assert repo['full_name'] == 'ada/shop'
    assert seen == {
        'path': '/repos/ada/shop',
        'accept': 'application/vnd.github.v3+json',
        'auth': f'Bearer {TOKEN}',
    }


@pytest.mark.asyncio
async def test_missing_repository_is_not_found():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={'message': 'Not Found'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(PlatformNotFoundError):
            await _client(http_client).get_repository('ada', 'missing')


@pytest.mark.asyncio
async def test_set_actions_secrets_fetches_key_once_and_encrypts_each_value():
    private_key, public_b64 = _keypair()
    puts: list[tuple[str, dict]] = []
    key_fetches = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal key_fetches
        if request.method == 'GET':
            key_fetches += 1
            assert request.url.path == '/repos/ada/shop/actions/secrets/public-key'
            return httpx.Response(200, json={'key_id': 'kid-1', 'key': public_b64})
        puts.append((request.url.path, json.loads(request.content)))
        return httpx.Response(201)

    secrets = {'QSTASH_TOKEN': 'q-value', 'REDIS_TOKEN': 'r-value'}
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        written = await _client(http_client).set_actions_secrets('ada', 'shop', secrets)

    assert written == ['QSTASH_TOKEN', 'REDIS_TOKEN']
    assert key_fetches == 1
    assert [path for path, _ in puts] == [
        '/repos/ada/shop/actions/secrets/QSTASH_TOKEN',
        '/repos/ada/shop/actions/secrets/REDIS_TOKEN',
    ]
    for (_, body), expected in zip(puts, secrets.values()):
        assert set(body) == {'encrypted_value', 'key_id'}
        assert body['key_id'] == 'kid-1'
        assert _open(private_key, body['encrypted_value']) == expected


@pytest.mark.asyncio
async def test_set_actions_secrets_stops_at_first_failure():
    _, public_b64 = _keypair()
    puts = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal puts
        if request.method == 'GET':
            return httpx.Response(200, json={'key_id': 'kid-1', 'key': public_b64})
        puts += 1
        return httpx.Response(403, json={'message': 'Resource not accessible by integration'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(PlatformAuthError) as exc_info:
            await _client(http_client).set_actions_secrets('ada', 'shop', {'A': '1', 'B': '2'})

    assert puts == 1
    assert TOKEN not in str(exc_info.value)

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from installer.app.providers.errors import PlatformAPIError, PlatformConflictError
from installer.app.providers.supabase_management import (
    SupabaseManagementClient,
    pick_pooler_host,
    region_for_deployment,
)

PAT = 'sbp_' + 'a' * 40


def _client(http_client: httpx.AsyncClient, token: str = PAT) -> SupabaseManagementClient:
    return SupabaseManagementClient(
        token=token, base_url='https://api.supabase.test', http_client=http_client,
    )


def test_token_format_check():
    assert SupabaseManagementClient(token=PAT).has_valid_token_format
    assert not SupabaseManagementClient(token='pat_123').has_valid_token_format


def test_region_mapping():
    assert region_for_deployment('fra1') == 'eu-central-1'
    assert region_for_deployment('IAD1') == 'us-east-1'
    assert region_for_deployment('unknown') == 'us-east-1'
    assert region_for_deployment(None) == 'us-east-1'


class TestPickPoolerHost:
    def test_prefers_primary_transaction_pooler(self):
        configs = [
            {'database_type': 'READ_REPLICA', 'pool_mode': 'transaction', 'db_host': 'replica.host'},
            {'database_type': 'PRIMARY', 'pool_mode': 'session', 'db_host': 'session.host'},
            {'database_type': 'PRIMARY', 'pool_mode': 'transaction', 'db_host': 'primary.host'},
        ]
        assert pick_pooler_host(configs) == 'primary.host'

    def test_falls_back_to_first_entry(self):
        assert pick_pooler_host([{'dbHost': 'first.host'}, {'db_host': 'second.host'}]) == 'first.host'

    def test_none_without_configs_or_host(self):
        assert pick_pooler_host([]) is None
        assert pick_pooler_host([{'database_type': 'PRIMARY'}]) is None


@pytest.mark.asyncio
async def test_list_organizations_prefers_slug():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == '/v1/organizations'
        return httpx.Response(200, json=[
            {'slug': 'acme', 'name': 'Acme'},
            {'id': 'org-legacy', 'name': 'Legacy'},
            {'name': 'No id'},
        ])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        orgs = await _client(http_client).list_organizations()

    assert [o.slug for o in orgs] == ['acme', 'org-legacy']


@pytest.mark.asyncio
async def test_create_project_posts_password_and_region():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['method'] = request.method
        seen['body'] = json.loads(request.content)
        return httpx.Response(201, json={'id': 'abcdefgh', 'ref': 'abcdefgh'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        ref = await _client(http_client).create_project(
            name='app-v2', organization_slug='acme', db_password='pw!', region='eu-central-1',
        )

    assert ref == 'abcdefgh'
    assert seen['method'] == 'POST'
    assert seen['body'] == {
        'name': 'app-v2',
        'organization_slug': 'acme',
        'db_pass': 'pw!',
        'region': 'eu-central-1',
    }


@pytest.mark.asyncio
async def test_create_project_conflict_is_typed():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={'message': 'Project name already exists'})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(PlatformConflictError) as exc_info:
            await _client(http_client).create_project(
                name='app', organization_slug='acme', db_password='pw', region='us-east-1',
            )

    assert exc_info.value.message == 'Project name already exists'


@pytest.mark.asyncio
async def test_is_project_ready_checks_active_status():
    statuses = iter(['COMING_UP', 'ACTIVE_HEALTHY'])

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={'status': next(statuses)})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        client = _client(http_client)
        assert await client.is_project_ready('abc') is False
        assert await client.is_project_ready('abc') is True


@pytest.mark.asyncio
async def test_get_api_keys_reveals_and_picks_by_name_then_type():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen['params'] = dict(request.url.params)
        return httpx.Response(200, json=[
            {'name': 'anon', 'type': 'legacy', 'api_key': 'anon-key'},
            {'name': 'default', 'type': 'secret', 'api_key': 'sb_secret_x'},
            {'name': 'service_role', 'type': 'legacy', 'api_key': 'service-key'},
        ])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        keys = await _client(http_client).get_api_keys('abc')

    assert seen['params'] == {'reveal': 'true'}
    assert keys.publishable == 'anon-key'
    assert keys.secret == 'service-key'
    assert 'service-key' not in repr(keys)


@pytest.mark.asyncio
async def test_get_api_keys_missing_secret_raises():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{'name': 'anon', 'api_key': 'anon-key'}])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(PlatformAPIError, match='API keys'):
            await _client(http_client).get_api_keys('abc')


@pytest.mark.asyncio
async def test_get_pooler_host():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == '/v1/projects/abc/config/database/pooler'
        return httpx.Response(200, json=[
            {'database_type': 'PRIMARY', 'pool_mode': 'transaction', 'db_host': 'pool.host'},
        ])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        assert await _client(http_client).get_pooler_host('abc') == 'pool.host'

"""Tests for the provisioning route and app factory.

Validates:
  1. POST /api/installer/provision returns 403 when the installer is disabled
  2. Empty body, invalid JSON and schema mismatches return 400
  3. A valid request streams SSE frames ending with exactly one terminal event
  4. A failing run streams an error frame with the wizard screen to return to
  5. X-Request-ID is generated or propagated; /health reports status
"""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from installer.app.inmemory import (
    InMemoryAdminBootstrapper,
    InMemorySchemaMigrator,
    create_inmemory_clients,
)
from installer.app.main import create_app
from installer.app.providers.factory import build_platform_clients
from installer.app.providers.github_client import GitHubClient
from installer.app.providers.supabase_management import SupabaseManagementClient
from installer.app.providers.upstash import QStashClient, RedisRestClient
from installer.app.providers.vercel_client import VercelClient
from installer.app.provisioning.payload import ProvisionRequest
from installer.app.provisioning.steps import STEPS
from installer.app.settings import InstallerSettings

URL = '/api/installer/provision'

VALID = {
    'identity': {'name': 'Ada Admin', 'email': 'ada@example.com', 'password': 'correct-horse'},
    'github': {
        'token': 'ghp_token',
        'username': 'ada',
        'repoName': 'shop',
        'repoUrl': 'https://github.com/ada/shop',
        'repoFullName': 'ada/shop',
    },
    'vercel': {'token': 'v' * 24},
    'supabase': {'pat': 'sbp_' + 'p' * 40},
    'qstash': {'token': 'q' * 30},
    'redis': {'restUrl': 'https://eu1-cat.upstash.io', 'restToken': 'r' * 30},
}


def _create_test_app(settings: InstallerSettings | None = None, clients=None):
    clients = clients or create_inmemory_clients()
    migrator = InMemorySchemaMigrator()
    app = create_app(
        settings or InstallerSettings(),
        clients_factory=lambda request, settings: clients,
        migrator=migrator,
        bootstrapper=InMemoryAdminBootstrapper(),
    )
    return app, clients, migrator


def _frames(body: str) -> list[dict]:
    frames = []
    for chunk in body.split('\n\n'):
        if chunk.strip():
            assert chunk.startswith('data: ')
            frames.append(json.loads(chunk[len('data: '):]))
    return frames


@pytest.fixture
def client():
    app, _, _ = _create_test_app()
    return TestClient(app)


# ── Gating and validation ─────────────────────────────────────────────


def test_disabled_installer_returns_403():
    app, clients, _ = _create_test_app(InstallerSettings(installer_enabled=False))
    resp = TestClient(app).post(URL, json=VALID)

    assert resp.status_code == 403
    assert 'error' in resp.json()
    assert clients.repository.log.calls == []


def test_empty_body_returns_400(client):
    resp = client.post(URL, content=b'', headers={'content-type': 'application/json'})
    assert resp.status_code == 400
    assert resp.json()['error']


def test_invalid_json_returns_400(client):
    resp = client.post(URL, content=b'{nope', headers={'content-type': 'application/json'})
    assert resp.status_code == 400
    assert 'JSON' in resp.json()['error']


def test_schema_mismatch_returns_400_with_details(client):
    bad = json.loads(json.dumps(VALID))
    bad['supabase']['pat'] = 'sbp_short'
    resp = client.post(URL, json=bad)

    assert resp.status_code == 400
    body = resp.json()
    assert body['error']
    assert ['supabase', 'pat'] in [detail['loc'] for detail in body['details']]
    assert 'sbp_short' not in resp.text


# ── Streaming ─────────────────────────────────────────────────────────


def test_valid_request_streams_progress_then_complete(client):
    resp = client.post(URL, json=VALID)

    assert resp.status_code == 200
    assert resp.headers['content-type'].startswith('text/event-stream')
    assert resp.headers['cache-control'] == 'no-cache'

    frames = _frames(resp.text)
    assert frames[-1] == {'type': 'complete'}
    assert all(f['type'] == 'progress' for f in frames[:-1])
    progress = [f['progress'] for f in frames[:-1]]
    assert progress == sorted(progress)
    assert max(progress) <= 99
    titles = list(dict.fromkeys(f['title'] for f in frames[:-1]))
    assert titles == [step.title for step in STEPS]


def test_failing_run_streams_single_error_frame():
    clients = create_inmemory_clients()
    clients.database.token = 'not-a-pat'
    app, _, migrator = _create_test_app(clients=clients)

    frames = _frames(TestClient(app).post(URL, json=VALID).text)

    terminal = [f for f in frames if f['type'] != 'progress']
    assert len(terminal) == 1
    assert frames[-1]['type'] == 'error'
    assert frames[-1]['returnToStep'] == 4
    assert frames[-1]['errorDetails']
    assert migrator.migrate_calls == 0


# ── App factory ───────────────────────────────────────────────────────


def test_health_and_request_id():
    app, _, _ = _create_test_app()
    with TestClient(app) as client:
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.json()['status'] == 'ok'
        assert resp.headers['x-request-id']

        resp = client.get('/health', headers={'X-Request-ID': 'req-12345678'})
        assert resp.headers['x-request-id'] == 'req-12345678'

        resp = client.get('/health', headers={'X-Request-ID': 'bad id!'})
        assert resp.headers['x-request-id'] != 'bad id!'


def test_invalid_settings_rejected():
    with pytest.raises(ValueError, match='settings validation failed'):
        create_app(InstallerSettings(run_timeout_seconds=0))


def test_default_factory_builds_http_clients():
    request = ProvisionRequest.model_validate(VALID)
    clients = build_platform_clients(request, InstallerSettings())

    assert isinstance(clients.repository, GitHubClient)
    assert isinstance(clients.deployment, VercelClient)
    assert isinstance(clients.database, SupabaseManagementClient)
    assert isinstance(clients.queue, QStashClient)
    assert isinstance(clients.cache, RedisRestClient)
    assert clients.database.has_valid_token_format


def test_cli_defaults():
    from installer.__main__ import parse_args

    args = parse_args([])
    assert (args.host, args.port) == ('0.0.0.0', 8000)
    assert parse_args(['--port', '9001']).port == 9001

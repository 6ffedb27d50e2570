"""Tests for the REST surface of the coordinator."""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import FakeStore
from tests.test_dispatcher import FakeClient
from webrelay.api import server
from webrelay.channel.service import LocalChannel
from webrelay.context.service import ExecutionContext
from webrelay.dispatcher.service import Dispatcher

WAIT = [{'type': 'wait', 'id': 'w1', 'waitType': 'time', 'value': 0}]


@pytest.fixture
def api(monkeypatch, bridge, fast_config, dispatcher_config):
	channel = LocalChannel()
	dispatcher = Dispatcher(channel, FakeClient(), FakeStore(), config=dispatcher_config)
	context = ExecutionContext('tab-1', bridge, channel, config=fast_config)
	context.attach()

	monkeypatch.setattr(server, 'channel', channel)
	monkeypatch.setattr(server, 'dispatcher', dispatcher)
	return TestClient(server.app), dispatcher


def test_health(api):
	client, _ = api
	response = client.get('/')
	assert response.status_code == 200
	assert response.json()['features']['dispatcher'] is True


def test_enqueue_stats_and_clear(api):
	client, dispatcher = api

	response = client.post('/api/v1/queue/tab-1', json={'instructions': WAIT})
	assert response.json() == {'target': 'tab-1', 'added': 1, 'pending': 1}
	assert client.get('/api/v1/queue').json() == {'tab-1': 1}

	response = client.delete('/api/v1/queue/tab-1')
	assert response.json()['cleared'] is True
	assert dispatcher.queue.count('tab-1') == 0


def test_sweep_with_zero_age(api):
	client, dispatcher = api
	dispatcher.queue.enqueue('tab-1', WAIT)

	response = client.post('/api/v1/queue/sweep', json={'max_age_ms': 0})
	assert response.json() == {'removed': 1, 'max_age_ms': 0}


def test_cycle_endpoint(api):
	client, _ = api
	response = client.post('/api/v1/cycle')
	assert response.status_code == 200
	assert response.json()['fetched'] is True


def test_connections_endpoint(api):
	client, dispatcher = api
	dispatcher.registry.record('tab-1', index=0, url='https://a.example.com')
	records = client.get('/api/v1/connections').json()
	assert records[0]['target'] == 'tab-1'


def test_execute_on_target(api):
	client, _ = api
	response = client.post('/api/v1/targets/tab-1/execute', json={'instructions': WAIT})
	body = response.json()
	assert body['success'] is True
	assert body['data']['results'][0]['instructionID'] == 'w1'


def test_message_to_unknown_target_is_404(api):
	client, _ = api
	response = client.post('/api/v1/targets/tab-9/messages', json={'action': 'ping'})
	assert response.status_code == 404


def test_profile_update_clears_token(api):
	client, dispatcher = api
	dispatcher.client.token = 'cached'

	response = client.put('/api/v1/profile', json={'node_name': 'renamed'})
	assert response.json()['node_name'] == 'renamed'
	assert dispatcher.client.token is None
	assert client.get('/api/v1/profile').json()['node_name'] == 'renamed'


def test_unavailable_without_dispatcher(monkeypatch):
	monkeypatch.setattr(server, 'dispatcher', None)
	client = TestClient(server.app)
	assert client.get('/api/v1/queue').status_code == 503

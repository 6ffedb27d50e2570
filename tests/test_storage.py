"""Tests for the identity store and configuration loading."""

import json

import pytest

from webrelay.config import load_config
from webrelay.storage.service import IdentityStore


def test_identity_is_generated_once(tmp_path):
	store = IdentityStore(tmp_path, default_token='initial')
	profile = store.get_or_create_identity()

	assert profile.node_id
	assert profile.node_name == 'node'
	assert profile.node_token == 'initial'
	assert profile.node_type == 'crawler'

	reopened = IdentityStore(tmp_path)
	assert reopened.get_or_create_identity() == profile


def test_partial_identity_is_completed(tmp_path):
	(tmp_path / 'identity.json').write_text(json.dumps({'node_id': 'fixed', 'node_name': 'scraper'}))
	profile = IdentityStore(tmp_path).get_or_create_identity()

	assert profile.node_id == 'fixed'
	assert profile.node_name == 'scraper'
	assert profile.node_type == 'crawler'
	assert json.loads((tmp_path / 'identity.json').read_text())['node_type'] == 'crawler'


def test_update_identity_only_changes_mutable_fields(tmp_path):
	store = IdentityStore(tmp_path)
	original = store.get_or_create_identity()

	updated = store.update_identity({'node_name': 'renamed', 'node_token': 'new', 'node_id': 'hijacked'})
	assert updated.node_name == 'renamed'
	assert updated.node_token == 'new'
	assert updated.node_id == original.node_id
	assert store.get('node_name') == 'renamed'


def test_corrupt_identity_file_raises(tmp_path):
	(tmp_path / 'identity.json').write_text('{broken')
	with pytest.raises(ValueError):
		IdentityStore(tmp_path).get_or_create_identity()


def test_load_config_reads_prefixed_environment(monkeypatch):
	monkeypatch.setenv('WEBRELAY_STORAGE_DIR', '/tmp/relay')
	monkeypatch.setenv('WEBRELAY_DISPATCHER_SERVER_URL', 'http://tasks.test/api')
	monkeypatch.setenv('WEBRELAY_DISPATCHER_NOTIFY_ATTEMPTS', '5')
	monkeypatch.setenv('WEBRELAY_BROWSER_HEADLESS', 'true')

	config = load_config(dotenv=False)

	assert config.storage_dir == '/tmp/relay'
	assert config.dispatcher.server_url == 'http://tasks.test/api'
	assert config.dispatcher.notify_attempts == 5
	assert config.browser.headless is True
	assert config.runner.retry_pause_seconds == 1.0


def test_load_config_defaults(monkeypatch):
	for name in ('WEBRELAY_STORAGE_DIR', 'WEBRELAY_DISPATCHER_SERVER_URL', 'WEBRELAY_BROWSER_HEADLESS'):
		monkeypatch.delenv(name, raising=False)
	config = load_config(dotenv=False)
	assert config.dispatcher.interval_seconds == 600
	assert config.dispatcher.probe_grace_seconds == 5

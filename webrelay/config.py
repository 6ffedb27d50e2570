"""Configuration models for the webrelay coordinator and execution contexts."""

import logging
import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = 'WEBRELAY_'


class RunnerConfig(BaseModel):
	"""Timing knobs of the instruction runner."""

	model_config = ConfigDict(extra='forbid')

	retry_pause_seconds: float = Field(default=1.0, ge=0, description='Pause between retry attempts')
	poll_interval_seconds: float = Field(default=0.1, gt=0, description='Polling granularity of wait loops')
	drag_settle_seconds: float = Field(default=0.3, ge=0, description='Settle delay after scrolling drag endpoints')
	network_settle_seconds: float = Field(default=0.5, ge=0, description='Idle window that ends a network wait')
	change_defer_seconds: float = Field(default=0.05, ge=0, description='Delay before the deferred change event of a key press')
	visibility_margin_px: int = Field(default=100, ge=0, description='Lenient viewport margin used by visibility checks')


class DispatcherConfig(BaseModel):
	"""Configuration for the coordinator dispatch loop."""

	model_config = ConfigDict(extra='forbid')

	server_url: str = Field(default='http://127.0.0.1:5000/api', description='Base URL of the remote task server')
	request_timeout_seconds: float = Field(default=30.0, gt=0, description='HTTP timeout for task server calls')
	interval_seconds: float = Field(default=600.0, gt=0, description='Period of the dispatch cycle')
	notify_attempts: int = Field(default=3, ge=1, description='Attempts per notify before giving up on a target')
	notify_backoff_seconds: float = Field(default=1.0, ge=0, description='Backoff unit, multiplied by the attempt number')
	expire_after_ms: int = Field(default=60 * 60 * 1000, ge=0, description='Default maximum age of queued instructions')
	probe_grace_seconds: float = Field(default=5.0, ge=0, description='Delay before re-probing a navigated target')
	default_token: str = Field(default='', description='Credential token used when the identity store has none')


class BrowserConfig(BaseModel):
	"""Configuration for the browser host."""

	model_config = ConfigDict(extra='forbid')

	enabled: bool = Field(default=True, description='Start a browser session with the API')
	headless: bool = Field(default=False, description='Run browser in headless mode')
	default_url: str = Field(default='https://www.example.com', description='URL opened for new tabs')
	default_index: int = Field(default=0, ge=0, description='Tab index guaranteed to exist at startup')


class AppConfig(BaseModel):
	"""Top level configuration."""

	model_config = ConfigDict(extra='forbid')

	storage_dir: str = Field(default='webrelay_data', description='Directory of the identity store')
	dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
	runner: RunnerConfig = Field(default_factory=RunnerConfig)
	browser: BrowserConfig = Field(default_factory=BrowserConfig)


def _section_from_env(model: type[BaseModel], prefix: str) -> dict[str, Any]:
	values: dict[str, Any] = {}
	for name in model.model_fields:
		raw = os.environ.get(f'{prefix}{name.upper()}')
		if raw is not None:
			values[name] = raw
	return values


def load_config(dotenv: bool = True) -> AppConfig:
	"""Build the configuration from ``WEBRELAY_*`` environment variables.

	Variables of nested sections carry the section name, e.g.
	``WEBRELAY_DISPATCHER_SERVER_URL`` or ``WEBRELAY_BROWSER_HEADLESS``.

	Args:
		dotenv: Load a ``.env`` file first

	Returns:
		Validated application config
	"""
	if dotenv:
		load_dotenv()

	data: dict[str, Any] = {}
	storage_dir = os.environ.get(f'{ENV_PREFIX}STORAGE_DIR')
	if storage_dir:
		data['storage_dir'] = storage_dir

	sections = {
		'dispatcher': DispatcherConfig,
		'runner': RunnerConfig,
		'browser': BrowserConfig,
	}
	for section, model in sections.items():
		values = _section_from_env(model, f'{ENV_PREFIX}{section.upper()}_')
		if values:
			data[section] = values

	config = AppConfig.model_validate(data)
	logger.debug(f'Configuration loaded: {config.model_dump()}')
	return config

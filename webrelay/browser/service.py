"""Browser host - binds one execution context to every tab of a browser-use session."""

import logging
from typing import Any

from browser_use.browser import BrowserProfile, BrowserSession
from browser_use.browser.events import NavigateToUrlEvent, NavigationCompleteEvent, TabClosedEvent, TabCreatedEvent

from webrelay.channel.service import LocalChannel
from webrelay.config import BrowserConfig, RunnerConfig
from webrelay.context.service import ExecutionContext
from webrelay.dispatcher.service import Dispatcher
from webrelay.errors import TransportError
from webrelay.locator.bridge import BrowserUseBridge

logger = logging.getLogger(__name__)


class BrowserHost:
	"""Owns the browser session and the per-tab execution contexts.

	Tab targets are CDP target ids. The index of a tab is its position in
	the session's tab list.
	"""

	def __init__(
		self,
		channel: LocalChannel,
		config: BrowserConfig | None = None,
		runner_config: RunnerConfig | None = None,
		session: BrowserSession | None = None,
	):
		self.channel = channel
		self.config = config or BrowserConfig()
		self.runner_config = runner_config or RunnerConfig()
		self.session = session
		self.dispatcher: Dispatcher | None = None
		self.contexts: dict[str, ExecutionContext] = {}

	async def start(self) -> None:
		"""Start the browser, attach contexts to open tabs and ensure the default tab."""
		if self.session is None:
			profile = BrowserProfile(
				headless=self.config.headless,
				disable_security=False,
			)
			self.session = BrowserSession(browser_profile=profile)

		await self.session.start()
		logger.info('Browser started successfully')

		self.session.event_bus.on(TabCreatedEvent, self._on_tab_created)
		self.session.event_bus.on(TabClosedEvent, self._on_tab_closed)
		self.session.event_bus.on(NavigationCompleteEvent, self._on_navigation_complete)

		for tab in await self.session.get_tabs():
			await self._attach(tab.target_id)

		await self.spawn_if_missing(self.config.default_index, self.config.default_url)

	async def stop(self) -> None:
		for context in list(self.contexts.values()):
			context.detach()
		self.contexts.clear()
		if self.session is None:
			return
		try:
			await self.session.stop()
			logger.info('Browser stopped')
		except Exception as e:
			logger.error(f'Error stopping browser: {e}')

	def bind(self, dispatcher: Dispatcher) -> None:
		self.dispatcher = dispatcher
		dispatcher.host = self

	# ==================== TargetHost ====================

	async def spawn_if_missing(self, index: int, url: str) -> int:
		"""Open new tabs until a tab exists at index.

		Returns:
			Number of tabs opened
		"""
		session = self._require_session()
		opened = 0
		while len(await session.get_tabs()) <= index:
			logger.info(f'Opening tab for index {index}: {url}')
			event = session.event_bus.dispatch(NavigateToUrlEvent(url=url, new_tab=True))
			await event
			await event.event_result(raise_if_any=True, raise_if_none=False)
			opened += 1
		return opened

	async def target_exists(self, target: str) -> bool:
		return await self.describe(target) is not None

	async def describe(self, target: str) -> dict[str, Any] | None:
		session = self._require_session()
		for index, tab in enumerate(await session.get_tabs()):
			if tab.target_id == target:
				return {'index': index, 'url': tab.url}
		return None

	# ==================== EVENTS ====================

	async def _on_tab_created(self, event: TabCreatedEvent) -> None:
		await self._attach(event.target_id)

	async def _on_tab_closed(self, event: TabClosedEvent) -> None:
		context = self.contexts.pop(event.target_id, None)
		if context is not None:
			context.detach()
		if self.dispatcher is not None:
			self.dispatcher.on_target_closed(event.target_id)

	async def _on_navigation_complete(self, event: NavigationCompleteEvent) -> None:
		context = self.contexts.get(event.target_id)
		if context is None:
			await self._attach(event.target_id)
		else:
			await self._announce(context)
		if self.dispatcher is not None:
			self.dispatcher.on_target_navigated(event.target_id)

	async def _attach(self, target: str) -> ExecutionContext:
		if target in self.contexts:
			return self.contexts[target]

		session = self._require_session()
		info = await self.describe(target)
		context = ExecutionContext(
			target,
			BrowserUseBridge(session, target),
			self.channel,
			config=self.runner_config,
			index=info['index'] if info else -1,
		)
		context.attach()
		self.contexts[target] = context
		await self._announce(context)
		return context

	async def _announce(self, context: ExecutionContext) -> None:
		info = await self.describe(context.target)
		if info is not None:
			context.index = info['index']
		await context.announce_ready()

	def _require_session(self) -> BrowserSession:
		if self.session is None:
			raise TransportError('Browser session is not started')
		return self.session


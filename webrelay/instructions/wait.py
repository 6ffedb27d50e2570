"""Wait modes of the wait instruction."""

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from webrelay.config import RunnerConfig
from webrelay.errors import InstructionValidationError, WaitTimeoutError
from webrelay.locator.bridge import DocumentBridge
from webrelay.locator.registry import ElementRegistry
from webrelay.locator.service import ElementLocator
from webrelay.shared_views import ElementDescriptor, ElementHandle, WaitInstruction, WaitType

logger = logging.getLogger(__name__)

Condition = Callable[[], bool]
WaitFunction = Callable[[], Any]


class Waiter:
	"""Polls element, visibility, predicate and network state at a fixed interval."""

	def __init__(
		self,
		bridge: DocumentBridge,
		locator: ElementLocator,
		registry: ElementRegistry,
		config: RunnerConfig | None = None,
	):
		self.bridge = bridge
		self.locator = locator
		self.registry = registry
		self.config = config or RunnerConfig()
		self.conditions: dict[str, Condition] = {}
		self.functions: dict[str, WaitFunction] = {}

	async def poll(self, check: Callable[[], Awaitable[bool]], timeout: float) -> bool:
		"""Run check until it returns True or the timeout passes.

		One last check happens at the deadline before giving up.
		"""
		deadline = time.monotonic() + max(0.0, timeout)
		while True:
			if await check():
				return True
			remaining = deadline - time.monotonic()
			if remaining <= 0:
				return False
			await asyncio.sleep(min(self.config.poll_interval_seconds, remaining))

	async def until_visible(self, descriptor: ElementDescriptor, handle: ElementHandle, timeout: float) -> None:
		"""Scroll the element into view and wait for it to become visible.

		Raises:
			WaitTimeoutError: If the element is still not visible at the deadline
		"""
		if await self.locator.is_visible(handle):
			return
		await self.locator.scroll_into_view(handle)

		if not await self.poll(lambda: self.locator.is_descriptor_visible(descriptor), timeout):
			raise WaitTimeoutError(f'Timeout waiting for element "{descriptor.name}" to become visible')

	async def run(self, instruction: WaitInstruction) -> dict[str, Any]:
		mode = instruction.wait_type
		value = instruction.value
		timeout = instruction.timeout

		if mode == WaitType.TIME:
			await asyncio.sleep(max(0.0, float(value)))
			return {'waitType': mode, 'value': value}

		if mode in (WaitType.ELEMENT, WaitType.VISIBLE):
			name = str(value)
			require_visible = mode == WaitType.VISIBLE

			async def element_ready() -> bool:
				descriptor = self.registry.get(name)
				if descriptor is None:
					return False
				handle = await self.locator.resolve(descriptor)
				if handle is None:
					return False
				return not require_visible or await self.locator.is_visible(handle)

			if not await self.poll(element_ready, timeout):
				state = 'visible' if require_visible else 'present'
				raise WaitTimeoutError(f'Timeout waiting for element "{name}" to be {state}')
			return {'waitType': mode, 'value': value}

		if mode == WaitType.CONDITION:
			predicate = self._lookup(self.conditions, value, 'condition')
			if not await self.poll(lambda: self._call_safely(predicate), timeout):
				raise WaitTimeoutError(f'Timeout waiting for condition "{value}"')
			return {'waitType': mode, 'value': value}

		if mode == WaitType.FUNCTION:
			callback = self._lookup(self.functions, value, 'function')
			if not await self.poll(lambda: self._call_safely(callback), timeout):
				raise WaitTimeoutError(f'Timeout waiting for function "{value}"')
			return {'waitType': mode, 'value': value}

		if mode == WaitType.NETWORK:
			idle = await self.wait_network_idle(timeout)
			return {'waitType': mode, 'value': value, 'idle': idle}

		raise InstructionValidationError(f'Unknown wait type: {mode}')

	async def wait_network_idle(self, timeout: float) -> bool:
		"""Wait until no resource is in flight for one settle window.

		Never fails: a timeout or a host error simply ends the wait.

		Returns:
			True if the network settled before the timeout
		"""
		settle = self.config.network_settle_seconds
		deadline = time.monotonic() + max(0.0, timeout)
		idle_since: float | None = None

		while time.monotonic() < deadline:
			try:
				pending = await self.bridge.pending_resources()
			except Exception as e:
				logger.debug(f'Pending resource check failed, ending network wait: {e}')
				return False

			now = time.monotonic()
			if pending == 0:
				if idle_since is None:
					idle_since = now
				if now - idle_since >= settle:
					return True
			else:
				idle_since = None
			await asyncio.sleep(min(self.config.poll_interval_seconds, max(0.0, deadline - now)))

		logger.info('Network wait timed out, continuing')
		return False

	@staticmethod
	def _lookup(table: dict[str, Callable[[], Any]], name: Any, kind: str) -> Callable[[], Any]:
		if not isinstance(name, str) or name not in table:
			raise InstructionValidationError(f'No {kind} registered under "{name}"')
		return table[name]

	@staticmethod
	async def _call_safely(callback: Callable[[], Any]) -> bool:
		try:
			result = callback()
			if inspect.isawaitable(result):
				result = await result
			return bool(result)
		except Exception as e:
			logger.debug(f'Wait predicate raised, polling continues: {e}')
			return False

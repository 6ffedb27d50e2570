"""In-process request/response channel between the coordinator and execution contexts."""

import logging
from collections.abc import Awaitable, Callable

from webrelay.errors import ReceiverMissingError, TransportError, WebRelayError
from webrelay.shared_views import Message, Reply

logger = logging.getLogger(__name__)

ContextHandler = Callable[[Message], Awaitable[Reply]]
CoordinatorHandler = Callable[[str, Message], Awaitable[Reply]]


class LocalChannel:
	"""Routes action-tagged messages by target.

	Delivery is at most once per call: there is no queueing and no retry here.
	Callers own the retry policy.
	"""

	def __init__(self):
		self._receivers: dict[str, ContextHandler] = {}
		self._coordinator: CoordinatorHandler | None = None

	def attach(self, target: str, handler: ContextHandler) -> None:
		if target in self._receivers:
			logger.debug(f'Replacing receiver for target {target}')
		self._receivers[target] = handler

	def detach(self, target: str) -> bool:
		return self._receivers.pop(target, None) is not None

	def is_attached(self, target: str) -> bool:
		return target in self._receivers

	def targets(self) -> list[str]:
		return list(self._receivers)

	def bind_coordinator(self, handler: CoordinatorHandler) -> None:
		self._coordinator = handler

	async def send(self, target: str, message: Message) -> Reply:
		"""Deliver a message to the context attached for target.

		Raises:
			ReceiverMissingError: If no context is attached for target
			TransportError: If the receiving handler failed
		"""
		handler = self._receivers.get(target)
		if handler is None:
			raise ReceiverMissingError(
				f'Could not establish connection. Receiving end does not exist: {target}', details={'target': target}
			)
		return await self._deliver(handler(message), target, message)

	async def send_to_coordinator(self, target: str, message: Message) -> Reply:
		"""Deliver a message from the context of target to the coordinator."""
		if self._coordinator is None:
			raise ReceiverMissingError('No coordinator bound to the channel')
		return await self._deliver(self._coordinator(target, message), target, message)

	@staticmethod
	async def _deliver(pending: Awaitable[Reply], target: str, message: Message) -> Reply:
		try:
			return await pending
		except WebRelayError:
			raise
		except Exception as e:
			raise TransportError(f'Message {message.action} to {target} failed: {e}', details={'target': target}) from e

"""Execution context - the per-tab runtime answering channel messages."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from webrelay.channel.service import LocalChannel
from webrelay.config import RunnerConfig
from webrelay.errors import InstructionValidationError, WebRelayError
from webrelay.executor.service import Executor
from webrelay.executor.views import ExecutionReport
from webrelay.instructions.service import InstructionRunner
from webrelay.locator.bridge import DocumentBridge
from webrelay.locator.registry import ElementRegistry
from webrelay.locator.service import ElementLocator
from webrelay.shared_views import ExecutionResult, Message, Reply, parse_instructions

logger = logging.getLogger(__name__)

# Upper bound of instructions pulled per notify
MAX_DRAIN_INSTRUCTIONS = 1000


class ExecutionContext:
	"""Owns the locator, registry, runner and executor of one document.

	The context answers coordinator messages through :meth:`handle_message`,
	which never raises: every failure is encoded in the reply.
	"""

	def __init__(
		self,
		target: str,
		bridge: DocumentBridge,
		channel: LocalChannel,
		config: RunnerConfig | None = None,
		index: int = -1,
		max_drain: int = MAX_DRAIN_INSTRUCTIONS,
	):
		self.target = target
		self.index = index
		self.bridge = bridge
		self.channel = channel
		self.max_drain = max_drain
		self.locator = ElementLocator(bridge, config)
		self.registry = ElementRegistry()
		self.runner = InstructionRunner(bridge, self.locator, self.registry, config)
		self.executor = Executor(self.runner)
		self._drain_tasks: set[asyncio.Task] = set()
		self._execution_lock = asyncio.Lock()

		self._actions: dict[str, Callable[[Any], Awaitable[Reply]]] = {
			'ping': self._ping,
			'notify': self._notify,
			'executeInstructions': self._execute_instructions,
			'getStatistics': self._get_statistics,
			'pauseExecution': self._pause_execution,
			'stopExecution': self._stop_execution,
			'exportResults': self._export_results,
			'exportElements': self._export_elements,
			'importElements': self._import_elements,
			'validateAll': self._validate_all,
		}

	def attach(self) -> None:
		self.channel.attach(self.target, self.handle_message)
		logger.info(f'Execution context attached to target {self.target}')

	def detach(self) -> None:
		self.channel.detach(self.target)
		self.executor.stop()
		for task in list(self._drain_tasks):
			task.cancel()
		logger.info(f'Execution context detached from target {self.target}')

	async def announce_ready(self) -> Reply | None:
		"""Tell the coordinator this context is live."""
		try:
			url = await self.bridge.location()
		except WebRelayError as e:
			logger.warning(f'Could not read location of target {self.target}: {e}')
			url = ''
		message = Message(
			action='contextReady',
			data={'url': url, 'index': self.index, 'timestamp': int(time.time() * 1000)},
		)
		try:
			reply = await self.channel.send_to_coordinator(self.target, message)
		except WebRelayError as e:
			logger.error(f'Failed to announce target {self.target}: {e}')
			return None
		if not reply.success:
			logger.warning(f'Coordinator rejected ready message from {self.target}: {reply.error}')
		return reply

	async def handle_message(self, message: Message) -> Reply:
		handler = self._actions.get(message.action)
		if handler is None:
			logger.warning(f'Unknown action: {message.action}')
			return Reply.fail(f'Unknown action: {message.action}')
		try:
			return await handler(message.data)
		except Exception as e:
			logger.error(f'Failed to handle {message.action}: {e}', exc_info=True)
			return Reply.fail(str(e) or type(e).__name__, 'Failed to handle message')

	async def load_and_execute(self, payload: Any) -> tuple[ExecutionReport, bool]:
		"""Replace the instruction list with the parsed payload and run it.

		Runs are serialized, so a drain and a direct execute never share the
		executor mid-batch.

		Returns:
			The batch report and whether a successful navigate ended the batch
		"""
		instructions = parse_instructions(payload)
		async with self._execution_lock:
			self.executor.clear_instructions()
			self.executor.add_instructions(instructions)
			results = await self.executor.execute_all()
			return self.executor.report(), self._navigated(results)

	async def drain(self) -> int:
		"""Pull and execute queued instructions one at a time.

		Stops when the queue is empty, on any pull or parse error, after a
		successful navigate, or when the per-notify cap is reached.

		Returns:
			Number of payloads executed
		"""
		executed = 0

		while executed < self.max_drain:
			try:
				reply = await self.channel.send_to_coordinator(self.target, Message(action='getSingleInstruction'))
			except WebRelayError as e:
				logger.error(f'Failed to pull instruction for {self.target}: {e}')
				break

			if not reply.success or not reply.data:
				logger.info('No more instructions')
				break
			payload = reply.data.get('instruction') if isinstance(reply.data, dict) else None
			if payload is None:
				logger.warning('Received entry without instruction, stopping')
				break

			try:
				report, navigated = await self.load_and_execute(payload)
			except InstructionValidationError as e:
				logger.error(f'Dropping malformed instruction payload: {e}')
				break
			executed += 1
			await self._relay_results(report)

			if navigated:
				logger.info('Document is navigating, stopping drain')
				break

		if executed >= self.max_drain:
			logger.warning(f'Reached the instruction limit ({self.max_drain}), stopping')
		logger.info(f'Drain finished for {self.target}, executed {executed} payloads')
		return executed

	def _navigated(self, results: list[ExecutionResult]) -> bool:
		if not results:
			return False
		last = len(results) - 1
		return results[last].success and self.executor.instructions[last].terminal

	async def _relay_results(self, report: ExecutionReport) -> None:
		message = Message(action='instructionReply', data=report.to_payload())
		try:
			await self.channel.send_to_coordinator(self.target, message)
		except WebRelayError as e:
			logger.warning(f'Failed to relay results for {self.target}: {e}')

	@property
	def is_draining(self) -> bool:
		return any(not task.done() for task in self._drain_tasks)

	def _spawn_drain(self) -> asyncio.Task:
		task = asyncio.create_task(self.drain())
		self._drain_tasks.add(task)
		task.add_done_callback(self._drain_tasks.discard)
		return task

	# ==================== ACTIONS ====================

	async def _ping(self, data: Any) -> Reply:
		return Reply.ok(message='pong')

	async def _notify(self, data: Any) -> Reply:
		if self.is_draining:
			logger.info(f'Notified while a drain is running for {self.target}, ignoring')
			return Reply.ok(message='Drain already running')
		logger.info(f'Notified, draining instructions for {self.target}')
		self._spawn_drain()
		return Reply.ok(message='Instruction execution started')

	async def _execute_instructions(self, data: Any) -> Reply:
		if not data:
			return Reply.fail('Missing instruction data')
		report, _ = await self.load_and_execute(data)
		return Reply.ok(data=report.to_payload(), message='Instructions executed')

	async def _get_statistics(self, data: Any) -> Reply:
		return Reply.ok(data=self.executor.statistics().model_dump(by_alias=True), message='Statistics collected')

	async def _pause_execution(self, data: Any) -> Reply:
		self.executor.pause()
		return Reply.ok(message='Execution paused')

	async def _stop_execution(self, data: Any) -> Reply:
		self.executor.stop()
		return Reply.ok(message='Execution stopped')

	async def _export_results(self, data: Any) -> Reply:
		return Reply.ok(data=self.executor.export_results(), message='Results exported')

	async def _export_elements(self, data: Any) -> Reply:
		return Reply.ok(data=self.registry.export_elements(), message='Elements exported')

	async def _import_elements(self, data: Any) -> Reply:
		if not data:
			return Reply.fail('Missing element data')
		if not isinstance(data, str):
			return Reply.fail('Element data must be a JSON string')
		if self.registry.import_elements(data):
			return Reply.ok(data=self.registry.statistics(), message='Elements imported')
		return Reply.fail('Element import failed', 'Element import failed, check the element configuration format')

	async def _validate_all(self, data: Any) -> Reply:
		validation = {
			'elements': await self.registry.validate_all(self.locator),
			'instructions': self.executor.validate_all(),
		}
		if validation['elements']['valid'] and validation['instructions']['valid']:
			return Reply.ok(data=validation, message='Validation passed')
		errors = validation['elements']['errors'] + validation['instructions']['errors']
		return Reply.fail(', '.join(errors), 'Validation failed, check the instruction configuration format')

"""Dispatcher service - the coordinator's periodic poll/notify loop."""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from pydantic import ValidationError

from webrelay.channel.service import LocalChannel
from webrelay.config import DispatcherConfig
from webrelay.dispatcher.client import TaskServerClient
from webrelay.dispatcher.queue import InstructionQueue, target_key
from webrelay.dispatcher.registry import ConnectionRegistry
from webrelay.dispatcher.views import CoordinatorTask, CycleReport, NotifyOutcome
from webrelay.errors import ReceiverMissingError, TransportError, WebRelayError
from webrelay.shared_views import COORDINATOR_TARGET, Message, QueueEntry, Reply, ReplyType, ServerReply
from webrelay.storage.service import IdentityStore

logger = logging.getLogger(__name__)


class TargetHost(Protocol):
	"""Tab lifecycle operations the dispatcher needs from the browser."""

	async def spawn_if_missing(self, index: int, url: str) -> int: ...

	async def target_exists(self, target: str) -> bool: ...

	async def describe(self, target: str) -> dict[str, Any] | None: ...


def _as_int(value: Any) -> int | None:
	if isinstance(value, bool):
		return None
	try:
		return int(value)
	except (TypeError, ValueError):
		return None


def entry_payload(entry: QueueEntry) -> dict[str, Any]:
	"""Wire shape of a queue entry handed to an execution context."""
	return {'tabId': entry.target, 'instruction': entry.instruction, 'created_at': entry.enqueued_at}


class Dispatcher:
	"""Coordinates work between the task server and execution contexts.

	All state (queue, registry, token) is touched only from the event loop
	running the dispatcher. Overlapping cycles are skipped.
	"""

	def __init__(
		self,
		channel: LocalChannel,
		client: TaskServerClient,
		store: IdentityStore,
		queue: InstructionQueue | None = None,
		registry: ConnectionRegistry | None = None,
		host: TargetHost | None = None,
		config: DispatcherConfig | None = None,
	):
		"""Initialize the Dispatcher.

		Args:
			channel: Messaging channel to execution contexts
			client: Task server client
			store: Identity store
			queue: Instruction queue, created if omitted
			registry: Connection registry, created if omitted
			host: Browser host for tab lifecycle tasks
			config: Dispatcher configuration
		"""
		self.channel = channel
		self.client = client
		self.store = store
		self.queue = queue or InstructionQueue()
		self.registry = registry or ConnectionRegistry()
		self.host = host
		self.config = config or DispatcherConfig()
		self._cycle_lock = asyncio.Lock()
		self._background: set[asyncio.Task] = set()

		self._actions: dict[str, Callable[[str, Any], Awaitable[Reply]]] = {
			'contextReady': self._context_ready,
			'instructionReply': self._instruction_reply,
			'getNodeProfile': self._get_node_profile,
			'updateNodeProfile': self._update_node_profile,
			'getInstructions': self._get_instructions,
			'getSingleInstruction': self._get_single_instruction,
			'getInstructionsCount': self._get_instructions_count,
			'getAllInstructionsStats': self._get_all_instructions_stats,
			'clearInstructions': self._clear_instructions,
			'getConnectedContentScripts': self._get_connected,
		}
		channel.bind_coordinator(self.handle_message)

	# ==================== CYCLE ====================

	async def run_cycle(self) -> CycleReport:
		"""Run one dispatch cycle.

		Login when no token is cached; fetch work only when nothing is pending;
		notify every target with queued instructions. Errors abort this cycle
		only and are reported in the returned summary.
		"""
		if self._cycle_lock.locked():
			logger.warning('Previous dispatch cycle still running, skipping')
			return CycleReport(skipped=True)

		async with self._cycle_lock:
			report = CycleReport()
			logger.info('Dispatch cycle started')
			try:
				await self.ensure_login()

				report.pending_before = self.queue.total_count()
				if report.pending_before > 0:
					logger.info(f'Found {report.pending_before} pending instructions, skipping fetch')
				else:
					await self._fetch_and_enqueue(report)

				if self.queue.total_count() > 0:
					report.notified = await self.notify_all()
			except WebRelayError as e:
				logger.error(f'Dispatch cycle aborted: {e}')
				report.error = str(e)
			except Exception as e:
				logger.error(f'Dispatch cycle failed unexpectedly: {e}', exc_info=True)
				report.error = str(e) or type(e).__name__

			logger.info(f'Dispatch cycle finished, success: {report.success}')
			return report

	async def run_periodic(self, interval: float | None = None, stop_event: asyncio.Event | None = None) -> None:
		"""Run cycles every interval seconds until stop_event is set."""
		interval = interval or self.config.interval_seconds
		stop_event = stop_event or asyncio.Event()
		logger.info(f'Periodic dispatch started, interval: {interval}s')
		while not stop_event.is_set():
			await self.run_cycle()
			try:
				await asyncio.wait_for(stop_event.wait(), timeout=interval)
			except asyncio.TimeoutError:
				continue
		logger.info('Periodic dispatch stopped')

	async def ensure_login(self) -> None:
		if self.client.token:
			return
		profile = self.store.get_or_create_identity()
		await self.client.login(profile)

	async def _fetch_and_enqueue(self, report: CycleReport) -> None:
		profile = self.store.get_or_create_identity()
		work = await self.client.fetch_work(profile, self.registry.tabs_summary())
		report.fetched = True

		tasks = list(work.tasks)
		instructions = []
		for entry in work.instructions:
			if target_key(entry.get('tabId')) == COORDINATOR_TARGET:
				tasks.append(entry)
			else:
				instructions.append(entry)

		for raw in tasks:
			task = self._coerce_task(raw)
			if task is None:
				continue
			await self.execute_task(task)
			report.tasks_executed += 1

		report.enqueued = self.queue.enqueue_fetched(instructions)

	@staticmethod
	def _coerce_task(raw: dict[str, Any]) -> CoordinatorTask | None:
		candidate: Any = raw
		if 'type' not in raw and 'instruction' in raw:
			candidate = raw['instruction']
			if isinstance(candidate, str):
				try:
					candidate = json.loads(candidate)
				except json.JSONDecodeError:
					logger.warning(f'Ignoring coordinator task with invalid JSON: {candidate[:100]}')
					return None
		if not isinstance(candidate, dict) or not candidate.get('type'):
			logger.warning(f'Ignoring malformed coordinator task: {raw}')
			return None
		try:
			return CoordinatorTask.model_validate({'type': candidate['type'], 'data': candidate.get('data') or {}})
		except ValidationError as e:
			logger.warning(f'Ignoring coordinator task with invalid fields: {e.error_count()} errors')
			return None

	async def execute_task(self, task: CoordinatorTask) -> None:
		"""Execute one coordinator-local task."""
		start_time = time.monotonic()
		logger.info(f'Executing coordinator task: {task.type}, data: {task.data}')

		if task.type == 'newTab':
			if self.host is None:
				logger.warning('No browser host available, cannot open tabs')
			else:
				index = _as_int(task.data.get('index', 0))
				if index is None or index < 0:
					logger.warning(f'New tab task has an invalid index: {task.data.get("index")!r}, skipping')
				else:
					url = str(task.data.get('url') or '')
					await self.host.spawn_if_missing(index, url)
		elif task.type == 'execute':
			logger.info('Script execution tasks are not supported, ignoring')
		elif task.type == 'clear':
			target = target_key(task.data.get('tabId'))
			if target is None:
				logger.warning('Clear task has no tabId, skipping')
			else:
				self.queue.clear(target)
		elif task.type == 'expire':
			raw_age = task.data.get('elapsedTime')
			max_age = self.config.expire_after_ms if raw_age is None else _as_int(raw_age)
			if max_age is None or max_age < 0:
				logger.warning(f'Expire task has an invalid elapsedTime: {raw_age!r}, skipping')
			else:
				self.queue.sweep_expired(max_age)
		elif task.type == 'connections':
			connections = [record.model_dump() for record in self.registry.list_connected()]
			await self.relay(COORDINATOR_TARGET, ReplyType.CONNECTIONS, {'connections': connections}, task=True)
		else:
			logger.info(f'Unknown coordinator task type: {task.type}, ignoring')

		elapsed = int((time.monotonic() - start_time) * 1000)
		logger.info(f'Coordinator task {task.type} finished in {elapsed} ms')

	# ==================== NOTIFY ====================

	async def notify_all(self) -> list[NotifyOutcome]:
		"""Notify every target with pending instructions and report failures upstream."""
		targets = [t for t in self.queue.targets_with_pending() if t != COORDINATOR_TARGET]
		if not targets:
			logger.info('No pending instructions, nothing to notify')
			return []

		logger.info(f'Targets with pending instructions: {", ".join(targets)}')
		outcomes = [await self.notify_target(target) for target in targets]

		succeeded = sum(1 for outcome in outcomes if outcome.success)
		failed = len(outcomes) - succeeded
		logger.info(f'Notify finished: {succeeded} succeeded, {failed} failed')

		if failed:
			summary = {
				'success': False,
				'error': 'Execution context notify failed',
				'results': [outcome.model_dump(by_alias=True) for outcome in outcomes],
			}
			await self.relay(COORDINATOR_TARGET, ReplyType.NOTIFY, summary)
		return outcomes

	async def notify_target(self, target: str) -> NotifyOutcome:
		if not self.registry.is_connected(target):
			logger.warning(f'Target {target} has pending instructions but no connected execution context')
			return NotifyOutcome(target=target, success=False, error='No connected execution context')

		if self.host is not None and not await self.host.target_exists(target):
			logger.warning(f'Target {target} no longer exists, removing connection record')
			self.registry.remove(target)
			return NotifyOutcome(target=target, success=False, error='Target does not exist')

		return await self.send_notify(target)

	async def send_notify(self, target: str) -> NotifyOutcome:
		"""Send the drain signal with bounded retry and linear backoff."""
		attempts = self.config.notify_attempts
		for attempt in range(1, attempts + 1):
			logger.info(f'Notifying target {target} (attempt {attempt}/{attempts})')
			try:
				reply = await self.channel.send(target, Message(action='notify'))
			except ReceiverMissingError as e:
				self.registry.remove(target)
				return NotifyOutcome(target=target, success=False, error=str(e))
			except TransportError as e:
				logger.error(f'Notify to target {target} failed (attempt {attempt}/{attempts}): {e}')
				if attempt < attempts:
					await asyncio.sleep(self.config.notify_backoff_seconds * attempt)
					continue
				self.registry.remove(target)
				return NotifyOutcome(target=target, success=False, error=f'Notify failed after {attempts} attempts: {e}')

			if not reply.success:
				logger.error(f'Target {target} rejected notify: {reply.error}')
				self.registry.remove(target)
				return NotifyOutcome(target=target, success=False, error=reply.error or 'Notify rejected')

			logger.info(f'✓ Target {target} notified')
			return NotifyOutcome(target=target, success=True)

		return NotifyOutcome(target=target, success=False, error='Notify not attempted')

	async def relay(self, target: str, reply_type: ReplyType, data: Any, task: bool = False) -> bool:
		"""Send a reply envelope upstream. Failures are logged and reported as False.

		Args:
			target: Target the reply concerns, the coordinator target for summaries
			reply_type: Kind of reply
			data: Reply payload
			task: Post to the task reply endpoint instead of the instruction one
		"""
		profile = self.store.get_or_create_identity()
		envelope = ServerReply(
			node_id=profile.node_id,
			node_name=profile.node_name,
			node_type=profile.node_type,
			target=target,
			type=reply_type,
			data=data,
			created_at=int(time.time() * 1000),
		)
		try:
			if task:
				return await self.client.reply_task(envelope)
			return await self.client.reply_instruction(envelope)
		except TransportError as e:
			logger.error(f'Failed to relay {reply_type.value} reply for {target}: {e}')
			return False

	# ==================== LIVENESS ====================

	async def probe(self, target: str) -> bool:
		"""Ping the context of target and update its record.

		Raises:
			TransportError: If the ping failed for another reason than a missing receiver
		"""
		try:
			reply = await self.channel.send(target, Message(action='ping'))
		except ReceiverMissingError:
			logger.info(f'Target {target} has no execution context, removing record')
			self.registry.remove(target)
			return False

		if reply.success:
			await self._record_activity(target)
			return True
		self.registry.remove(target)
		return False

	def on_target_closed(self, target: str) -> None:
		self.registry.remove(target)

	def on_target_navigated(self, target: str) -> asyncio.Task | None:
		"""Re-validate the record of target after the grace delay."""
		if not self.registry.is_connected(target):
			return None
		task = asyncio.create_task(self._delayed_probe(target))
		self._background.add(task)
		task.add_done_callback(self._background.discard)
		return task

	async def _delayed_probe(self, target: str) -> None:
		await asyncio.sleep(self.config.probe_grace_seconds)
		if not self.registry.is_connected(target):
			return
		try:
			await self.probe(target)
		except WebRelayError as e:
			logger.warning(f'Liveness probe of target {target} failed: {e}')

	async def _record_activity(self, target: str, index: int | None = None, url: str | None = None) -> None:
		if target == COORDINATOR_TARGET:
			return
		if self.host is not None and (index is None or url is None):
			info = await self.host.describe(target)
			if info is None:
				return
			index = index if index is not None else info.get('index')
			url = url if url is not None else info.get('url')
		self.registry.record(target, index=index, url=url)

	async def shutdown(self) -> None:
		for task in list(self._background):
			task.cancel()

	# ==================== MESSAGES ====================

	async def handle_message(self, target: str, message: Message) -> Reply:
		"""Serve an action sent by the context of target. Never raises."""
		logger.debug(f'Received {message.action} from target {target}')
		handler = self._actions.get(message.action)
		if handler is None:
			reply = Reply.fail(f'Unknown message: {message.action}')
		else:
			try:
				reply = await handler(target, message.data)
			except Exception as e:
				logger.error(f'Failed to handle {message.action} from {target}: {e}', exc_info=True)
				reply = Reply.fail(str(e) or type(e).__name__, 'Failed to handle message')

		if message.action != 'contextReady':
			try:
				await self._record_activity(target)
			except Exception as e:
				logger.error(f'Failed to record activity of target {target}: {e}')
		return reply

	async def _context_ready(self, target: str, data: Any) -> Reply:
		data = data if isinstance(data, dict) else {}
		index = data.get('index')
		index = int(index) if isinstance(index, int) and index >= 0 else None
		await self._record_activity(target, index=index, url=data.get('url'))
		return Reply.ok(message='Connection recorded')

	async def _instruction_reply(self, target: str, data: Any) -> Reply:
		success = await self.relay(target, ReplyType.INSTRUCTION, data)
		if success:
			return Reply.ok(message='Instruction reply relayed')
		return Reply.fail('Instruction reply failed')

	async def _get_node_profile(self, target: str, data: Any) -> Reply:
		return Reply.ok(data=self.store.get_or_create_identity().model_dump(), message='Node profile loaded')

	async def _update_node_profile(self, target: str, data: Any) -> Reply:
		profile = self.store.update_identity(data if isinstance(data, dict) else {})
		return Reply.ok(data=profile.model_dump(), message='Node profile updated')

	async def _get_instructions(self, target: str, data: Any) -> Reply:
		entries = [entry_payload(entry) for entry in self.queue.drain_all(target)]
		return Reply.ok(data=entries, message='Instructions loaded')

	async def _get_single_instruction(self, target: str, data: Any) -> Reply:
		entry = self.queue.drain_first(target)
		return Reply.ok(data=entry_payload(entry) if entry else None, message='First instruction loaded')

	async def _get_instructions_count(self, target: str, data: Any) -> Reply:
		return Reply.ok(data={'count': self.queue.count(target)}, message='Instruction count loaded')

	async def _get_all_instructions_stats(self, target: str, data: Any) -> Reply:
		return Reply.ok(data=self.queue.stats_all(), message='Instruction statistics loaded')

	async def _clear_instructions(self, target: str, data: Any) -> Reply:
		return Reply(success=self.queue.clear(target), message='Instruction queue cleared')

	async def _get_connected(self, target: str, data: Any) -> Reply:
		return Reply.ok(data=[record.model_dump() for record in self.registry.list_connected()], message='Connections loaded')

"""Per-target FIFO instruction queues held by the coordinator."""

import logging
import time
from collections.abc import Callable
from typing import Any

from webrelay.shared_views import QueueEntry

logger = logging.getLogger(__name__)

ONE_HOUR_MS = 60 * 60 * 1000

Clock = Callable[[], int]


def now_ms() -> int:
	return int(time.time() * 1000)


def target_key(value: Any) -> str | None:
	"""Normalize a server-side target id. Missing, empty and zero ids yield None."""
	if value is None or value == '' or value == 0:
		return None
	return str(value)


class InstructionQueue:
	"""Map from target to an ordered list of queue entries.

	A target without a list behaves exactly like a target with an empty list.
	"""

	def __init__(self, clock: Clock | None = None):
		"""Initialize the queue.

		Args:
			clock: Millisecond clock, defaults to wall time
		"""
		self._queues: dict[str, list[QueueEntry]] = {}
		self._clock = clock or now_ms

	def enqueue(self, target: str, instructions: list[Any]) -> int:
		"""Append instruction payloads to the queue of target.

		Args:
			target: Target identity
			instructions: Raw payloads, kept as received

		Returns:
			Number of entries added
		"""
		if not instructions:
			return 0
		now = self._clock()
		queue = self._queues.setdefault(target, [])
		queue.extend(QueueEntry(target=target, instruction=payload, enqueued_at=now) for payload in instructions)
		logger.info(f'Added {len(instructions)} instructions to target {target}, total: {len(queue)}')
		return len(instructions)

	def enqueue_fetched(self, entries: list[dict[str, Any]]) -> int:
		"""Group server instruction entries by ``tabId`` and enqueue them.

		Entries without a target are skipped.

		Returns:
			Number of entries actually added
		"""
		grouped: dict[str, list[Any]] = {}
		for entry in entries:
			target = target_key(entry.get('tabId')) if isinstance(entry, dict) else None
			if target is None:
				logger.warning('Instruction entry has no tabId, skipping')
				continue
			grouped.setdefault(target, []).append(entry.get('instruction'))

		added = sum(self.enqueue(target, payloads) for target, payloads in grouped.items())
		logger.info(f'Enqueued fetched instructions, received: {len(entries)}, added: {added}')
		return added

	def drain_all(self, target: str) -> list[QueueEntry]:
		entries = self._queues.get(target, [])
		if entries:
			self._queues[target] = []
		logger.debug(f'Drained {len(entries)} instructions from target {target}')
		return entries

	def drain_first(self, target: str) -> QueueEntry | None:
		entries = self._queues.get(target)
		if not entries:
			logger.debug(f'Target {target} has no pending instructions')
			return None
		entry = entries.pop(0)
		logger.debug(f'Took first instruction of target {target}, remaining: {len(entries)}')
		return entry

	def count(self, target: str) -> int:
		return len(self._queues.get(target, []))

	def total_count(self) -> int:
		return sum(len(entries) for entries in self._queues.values())

	def stats_all(self) -> dict[str, int]:
		return {target: len(entries) for target, entries in self._queues.items()}

	def targets_with_pending(self) -> list[str]:
		return [target for target, entries in self._queues.items() if entries]

	def clear(self, target: str) -> bool:
		self._queues[target] = []
		logger.info(f'Cleared instruction queue of target {target}')
		return True

	def sweep_expired(self, max_age_ms: int = ONE_HOUR_MS) -> int:
		"""Remove entries whose age is not below max_age_ms.

		Args:
			max_age_ms: Maximum age in milliseconds, 0 removes everything

		Returns:
			Number of entries removed across all targets
		"""
		now = self._clock()
		removed_total = 0
		for target, entries in self._queues.items():
			remaining = [entry for entry in entries if now - entry.enqueued_at < max_age_ms]
			removed = len(entries) - len(remaining)
			if removed:
				removed_total += removed
				self._queues[target] = remaining
				logger.info(f'Removed {removed} expired instructions from target {target}, remaining: {len(remaining)}')
		if removed_total:
			logger.info(f'Removed {removed_total} expired instructions in total')
		return removed_total

"""Liveness registry of attached execution contexts."""

import logging
from typing import Any

from webrelay.dispatcher.queue import Clock, now_ms
from webrelay.shared_views import ConnectionRecord

logger = logging.getLogger(__name__)


class ConnectionRegistry:
	"""Tracks which targets have a live execution context.

	``connected_at`` keeps the earliest observation of a target across
	re-registrations; ``last_seen_at`` moves with every observed activity.
	"""

	def __init__(self, clock: Clock | None = None):
		self._records: dict[str, ConnectionRecord] = {}
		self._clock = clock or now_ms

	def record(self, target: str, index: int | None = None, url: str | None = None) -> ConnectionRecord:
		"""Insert or refresh the record of target.

		Args:
			target: Target identity
			index: Tab index, keeps the previous value when None
			url: Document URL, keeps the previous value when None

		Returns:
			The stored record
		"""
		now = self._clock()
		previous = self._records.get(target)
		record = ConnectionRecord(
			target=target,
			index=index if index is not None else (previous.index if previous else -1),
			connected_at=min(previous.connected_at, now) if previous else now,
			last_seen_at=now,
			url=url if url is not None else (previous.url if previous else ''),
		)
		self._records[target] = record
		if previous is None:
			logger.info(f'Recorded connection: target {target} (index: {record.index})')
		return record

	def remove(self, target: str) -> bool:
		if self._records.pop(target, None) is None:
			return False
		logger.info(f'Removed connection record: target {target}')
		return True

	def is_connected(self, target: str) -> bool:
		return target in self._records

	def get(self, target: str) -> ConnectionRecord | None:
		return self._records.get(target)

	def list_connected(self) -> list[ConnectionRecord]:
		return list(self._records.values())

	def find_by_index(self, index: int) -> str | None:
		for record in self._records.values():
			if record.index == index:
				return record.target
		return None

	def stats_all(self) -> dict[str, dict[str, Any]]:
		return {target: record.model_dump() for target, record in self._records.items()}

	def tabs_summary(self) -> list[dict[str, Any]]:
		"""Known targets in the shape the task server expects."""
		return [{'tabId': r.target, 'index': r.index, 'url': r.url} for r in self._records.values()]

"""Data models for the dispatch loop."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CoordinatorTask(BaseModel):
	"""A task addressed to the coordinator itself."""

	model_config = ConfigDict(extra='ignore')

	type: str = Field(description='newTab, execute, clear, expire or connections')
	data: dict[str, Any] = Field(default_factory=dict, description='Task specific payload')


class FetchedWork(BaseModel):
	"""Tasks and instructions returned by the task server."""

	model_config = ConfigDict(extra='ignore')

	tasks: list[dict[str, Any]] = Field(default_factory=list)
	instructions: list[dict[str, Any]] = Field(default_factory=list)


class NotifyOutcome(BaseModel):
	"""Result of notifying one target."""

	model_config = ConfigDict(extra='forbid')

	target: str = Field(serialization_alias='tabId')
	success: bool
	error: str | None = None


class CycleReport(BaseModel):
	"""Summary of one dispatch cycle."""

	model_config = ConfigDict(extra='forbid')

	skipped: bool = Field(default=False, description='Another cycle was still running')
	pending_before: int = Field(default=0, description='Queued instructions when the cycle started')
	fetched: bool = Field(default=False, description='Work was fetched from the server')
	tasks_executed: int = Field(default=0, description='Coordinator tasks executed')
	enqueued: int = Field(default=0, description='Instructions added to queues')
	notified: list[NotifyOutcome] = Field(default_factory=list)
	error: str | None = Field(default=None, description='Error that aborted the cycle')

	@property
	def success(self) -> bool:
		if self.skipped or self.error is not None:
			return False
		if not self.notified:
			return True
		return any(outcome.success for outcome in self.notified)

"""Data models for the Executor component."""

from pydantic import BaseModel, ConfigDict, Field

from webrelay.shared_views import ExecutionResult


class ExecutionStatistics(BaseModel):
	"""Aggregate view over a results list, derived on demand."""

	model_config = ConfigDict(frozen=True, populate_by_name=True)

	total: int = Field(default=0, description='Number of results')
	success: int = Field(default=0, description='Number of successful results')
	failure: int = Field(default=0, description='Number of failed results')
	success_rate: float = Field(default=0.0, alias='successRate', description='Success percentage, 0 when empty')
	total_duration: int = Field(default=0, alias='totalDuration', description='Sum of durations in milliseconds')
	average_duration: float = Field(default=0.0, alias='averageDuration', description='Mean duration, 0 when empty')

	@classmethod
	def from_results(cls, results: list[ExecutionResult]) -> 'ExecutionStatistics':
		total = len(results)
		success = sum(1 for result in results if result.success)
		total_duration = sum(result.duration_ms for result in results)
		return cls(
			total=total,
			success=success,
			failure=total - success,
			success_rate=(success / total * 100) if total else 0.0,
			total_duration=total_duration,
			average_duration=(total_duration / total) if total else 0.0,
		)


class ExecutionReport(BaseModel):
	"""Results of a batch together with their statistics."""

	model_config = ConfigDict(populate_by_name=True)

	statistics: ExecutionStatistics
	results: list[ExecutionResult] = Field(default_factory=list)

	def to_payload(self) -> dict:
		return self.model_dump(by_alias=True, mode='json')

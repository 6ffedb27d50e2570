"""Executor service - runs an ordered instruction list with cooperative interruption."""

import json
import logging

from webrelay.executor.views import ExecutionReport, ExecutionStatistics
from webrelay.instructions.service import InstructionRunner
from webrelay.shared_views import ExecutionResult, InstructionBase

logger = logging.getLogger(__name__)


class Executor:
	"""Executes instructions sequentially through an :class:`InstructionRunner`.

	Pause and stop only flip ``is_running``; the flag is checked between
	instructions, so an instruction already in flight always runs to
	completion. A successful navigate ends the batch because the document
	hosting the runner is about to be replaced.
	"""

	def __init__(self, runner: InstructionRunner, instructions: list[InstructionBase] | None = None):
		"""Initialize the Executor.

		Args:
			runner: Runner executing single instructions
			instructions: Optional initial instruction list
		"""
		self.runner = runner
		self.instructions: list[InstructionBase] = list(instructions or [])
		self.results: list[ExecutionResult] = []
		self.is_running = False
		self.current_index = 0

	def add_instruction(self, instruction: InstructionBase) -> None:
		self.instructions.append(instruction)

	def add_instructions(self, instructions: list[InstructionBase]) -> None:
		self.instructions.extend(instructions)

	def clear_instructions(self) -> None:
		self.instructions = []
		self.results = []
		self.current_index = 0

	async def execute_all(self) -> list[ExecutionResult]:
		"""Execute every instruction in order.

		Returns:
			Results of the instructions that ran, in order
		"""
		self.is_running = True
		self.current_index = 0
		self.results = []
		total = len(self.instructions)
		logger.info(f'Starting execution of {total} instructions')

		for index, instruction in enumerate(self.instructions):
			if not self.is_running:
				logger.info('Execution interrupted')
				break

			self.current_index = index
			logger.info(f'Executing instruction {index + 1}/{total}: {instruction.type} ({instruction.id})')

			try:
				result = await self.runner.execute(instruction)
			except Exception as e:
				logger.error(f'Instruction {instruction.id} raised: {e}', exc_info=True)
				self.results.append(self._error_result(instruction, e))
				continue

			self.results.append(result)
			if result.success:
				if instruction.terminal:
					logger.info('Navigate instruction succeeded, stopping batch')
					break
			else:
				logger.error(f'Instruction {instruction.id} failed: {result.error}')

		self.is_running = False
		statistics = self.statistics()
		logger.info(f'Execution finished, success: {statistics.success}, failure: {statistics.failure}')
		return self.results

	async def execute_instruction(self, index: int) -> ExecutionResult | None:
		"""Run a single instruction out of band and store its result at the same index.

		Args:
			index: Position in the instruction list

		Returns:
			The result, or None if the index is out of range
		"""
		if index < 0 or index >= len(self.instructions):
			logger.error(f'Instruction index {index} out of range')
			return None

		instruction = self.instructions[index]
		logger.info(f'Executing single instruction: {instruction.type} ({instruction.id})')
		try:
			result = await self.runner.execute(instruction)
		except Exception as e:
			logger.error(f'Instruction {instruction.id} raised: {e}', exc_info=True)
			result = self._error_result(instruction, e)

		if index < len(self.results):
			self.results[index] = result
		else:
			self.results.append(result)
		return result

	def pause(self) -> None:
		self.is_running = False
		logger.info('Execution paused')

	def stop(self) -> None:
		self.is_running = False
		self.current_index = 0
		logger.info('Execution stopped')

	def statistics(self) -> ExecutionStatistics:
		return ExecutionStatistics.from_results(self.results)

	def get_failed_results(self) -> list[ExecutionResult]:
		return [result for result in self.results if not result.success]

	def get_successful_results(self) -> list[ExecutionResult]:
		return [result for result in self.results if result.success]

	def report(self) -> ExecutionReport:
		return ExecutionReport(statistics=self.statistics(), results=list(self.results))

	def export_results(self) -> str:
		return json.dumps(self.report().to_payload(), indent=2, ensure_ascii=False)

	def validate_all(self) -> dict:
		errors = []
		for index, instruction in enumerate(self.instructions):
			problems = instruction.validation_errors()
			if problems:
				errors.append(f'Instruction {index} ({instruction.id}): {"; ".join(problems)}')
		return {'valid': not errors, 'errors': errors}

	@staticmethod
	def _error_result(instruction: InstructionBase, error: Exception) -> ExecutionResult:
		return ExecutionResult(
			instruction_id=instruction.id,
			success=False,
			error=str(error) or 'Unknown error',
			duration_ms=0,
		)

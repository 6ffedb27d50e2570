"""Instruction runner - validates, delays, retries and dispatches instructions to handlers."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from webrelay.config import RunnerConfig
from webrelay.errors import InstructionValidationError, ResolutionError
from webrelay.instructions.input import InputSimulator, click_point
from webrelay.instructions.wait import Condition, Waiter, WaitFunction
from webrelay.locator.bridge import DocumentBridge
from webrelay.locator.registry import ElementRegistry
from webrelay.locator.service import ElementLocator
from webrelay.shared_views import (
	ClickInstruction,
	DragInstruction,
	ElementDescriptor,
	ElementHandle,
	ExecutionResult,
	GetTextInstruction,
	InputTextInstruction,
	InstructionBase,
	KeyPressInstruction,
	LocateInstruction,
	NavigateInstruction,
	WaitInstruction,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[dict[str, Any] | None]]


class InstructionRunner:
	"""Executes single instructions against one document.

	Every call to :meth:`execute` returns exactly one :class:`ExecutionResult`.
	Errors never escape: validation failures, missing elements, timeouts and
	host errors all become failure results with the elapsed duration.
	"""

	def __init__(
		self,
		bridge: DocumentBridge,
		locator: ElementLocator | None = None,
		registry: ElementRegistry | None = None,
		config: RunnerConfig | None = None,
	):
		self.config = config or RunnerConfig()
		self.bridge = bridge
		self.locator = locator or ElementLocator(bridge, self.config)
		self.registry = registry or ElementRegistry()
		self.input = InputSimulator(bridge, self.config)
		self.waiter = Waiter(bridge, self.locator, self.registry, self.config)

		self._handlers: dict[type[InstructionBase], Handler] = {
			NavigateInstruction: self._navigate,
			LocateInstruction: self._locate,
			ClickInstruction: self._click,
			DragInstruction: self._drag,
			InputTextInstruction: self._input_text,
			KeyPressInstruction: self._key_press,
			WaitInstruction: self._wait,
			GetTextInstruction: self._get_text,
		}

	def register_condition(self, name: str, predicate: Condition) -> None:
		"""Make a predicate available to ``condition`` waits under the given name."""
		self.waiter.conditions[name] = predicate

	def register_function(self, name: str, callback: WaitFunction) -> None:
		"""Make a callback (sync or async) available to ``function`` waits."""
		self.waiter.functions[name] = callback

	async def execute(self, instruction: InstructionBase) -> ExecutionResult:
		"""Run one instruction and build its result.

		Args:
			instruction: Parsed instruction

		Returns:
			Result carrying success, error and duration in milliseconds
		"""
		start_time = time.monotonic()

		errors = instruction.validation_errors()
		if errors:
			logger.error(f'Invalid {instruction.type} instruction {instruction.id}: {"; ".join(errors)}')
			return self._result(instruction, start_time, success=False, error='; '.join(errors))

		handler = self._handlers.get(type(instruction))
		if handler is None:
			return self._result(instruction, start_time, success=False, error=f'Unsupported instruction type: {instruction.type}')

		try:
			if instruction.delay > 0:
				await asyncio.sleep(instruction.delay)
			data = await self.execute_with_retry(instruction, lambda: handler(instruction))
		except Exception as e:
			logger.error(f'Instruction {instruction.id} ({instruction.type}) failed: {e}')
			return self._result(instruction, start_time, success=False, error=str(e) or type(e).__name__)

		logger.info(f'✓ Instruction {instruction.id} ({instruction.type}) succeeded')
		return self._result(instruction, start_time, success=True, data=data)

	async def execute_with_retry(self, instruction: InstructionBase, body: Callable[[], Awaitable[Any]]) -> Any:
		"""Run body up to ``max(1, retry)`` times with a pause between attempts.

		Validation errors are raised immediately. After the last failed
		attempt the last error is raised.
		"""
		attempts = max(1, instruction.retry)
		last_error: Exception | None = None

		for attempt in range(1, attempts + 1):
			try:
				return await body()
			except InstructionValidationError:
				raise
			except Exception as e:
				last_error = e
				if attempt < attempts:
					logger.warning(f'Retry {attempt}/{attempts} for instruction {instruction.id}: {e}')
					await asyncio.sleep(self.config.retry_pause_seconds)

		assert last_error is not None
		raise last_error

	@staticmethod
	def _result(
		instruction: InstructionBase,
		start_time: float,
		success: bool,
		error: str | None = None,
		data: Any = None,
	) -> ExecutionResult:
		return ExecutionResult(
			instruction_id=instruction.id,
			success=success,
			error=error,
			duration_ms=int((time.monotonic() - start_time) * 1000),
			data=data,
		)

	async def _require(self, name: str) -> tuple[ElementDescriptor, ElementHandle]:
		descriptor = self.registry.get(name)
		if descriptor is None:
			raise ResolutionError(f'Element "{name}" is not registered', details={'elementName': name})
		handle = await self.locator.resolve(descriptor)
		if handle is None:
			raise ResolutionError(
				f'Element "{name}" not found with selector: {descriptor.selector}', details={'elementName': name}
			)
		return descriptor, handle

	async def _box_center(self, name: str, handle: ElementHandle) -> tuple[float, float]:
		box = await self.locator.bounding_box(handle)
		if box is None:
			raise ResolutionError(f'Element "{name}" has no geometry')
		return box.center()

	# ==================== HANDLERS ====================

	async def _navigate(self, instruction: NavigateInstruction) -> dict[str, Any]:
		logger.info(f'Navigating to: {instruction.url}')
		await self.bridge.navigate(instruction.url)
		return {'url': instruction.url}

	async def _locate(self, instruction: LocateInstruction) -> dict[str, Any]:
		assert instruction.element is not None
		# Each attempt works on a fresh copy so the instruction itself stays untouched
		descriptor = instruction.element.model_copy(deep=True)
		handle = await self.locator.resolve(descriptor)
		if handle is None:
			raise ResolutionError(f'Element "{descriptor.name}" not found with selector: {descriptor.selector}')
		if instruction.wait_visible:
			await self.waiter.until_visible(descriptor, handle, instruction.timeout)
		self.registry.set(descriptor)
		return {'element': descriptor.to_object()}

	async def _click(self, instruction: ClickInstruction) -> dict[str, Any]:
		descriptor, handle = await self._require(instruction.element_name)
		if instruction.wait_visible:
			await self.waiter.until_visible(descriptor, handle, instruction.timeout)
			handle = descriptor.handle or handle

		box = await self.locator.bounding_box(handle)
		if box is None:
			raise ResolutionError(f'Element "{instruction.element_name}" has no geometry')
		x, y = click_point(box, instruction.offset_x, instruction.offset_y)
		await self.input.click(handle, (x, y), instruction.button, instruction.click_type)
		return {
			'elementName': instruction.element_name,
			'button': instruction.button,
			'clickType': instruction.click_type,
			'offsetX': instruction.offset_x,
			'offsetY': instruction.offset_y,
			'x': x,
			'y': y,
		}

	async def _drag(self, instruction: DragInstruction) -> dict[str, Any]:
		source_descriptor, source = await self._require(instruction.source_name)
		target_descriptor, target = await self._require(instruction.target_name)

		settle_needed = False
		for descriptor, handle in ((source_descriptor, source), (target_descriptor, target)):
			if instruction.wait_visible:
				await self.waiter.until_visible(descriptor, handle, instruction.timeout)
			elif not await self.locator.is_visible(handle):
				await self.locator.scroll_into_view(handle)
				settle_needed = True
		if settle_needed:
			await asyncio.sleep(self.config.drag_settle_seconds)

		start = await self._box_center(instruction.source_name, source)
		end = await self._box_center(instruction.target_name, target)
		steps = await self.input.drag(source, target, start, end, instruction.duration)
		return {
			'sourceName': instruction.source_name,
			'targetName': instruction.target_name,
			'duration': instruction.duration,
			'steps': steps,
		}

	async def _input_text(self, instruction: InputTextInstruction) -> dict[str, Any]:
		descriptor, handle = await self._require(instruction.element_name)
		if instruction.wait_visible:
			await self.waiter.until_visible(descriptor, handle, instruction.timeout)
		if not await self.bridge.is_editable(handle.handle_id):
			raise ResolutionError(f'Element "{instruction.element_name}" is not editable')

		text = instruction.text or ''
		await self.input.type_text(handle, text, instruction.clear_first, instruction.time_delay)
		return {'elementName': instruction.element_name, 'text': text, 'clearFirst': instruction.clear_first}

	async def _key_press(self, instruction: KeyPressInstruction) -> dict[str, Any]:
		descriptor, handle = await self._require(instruction.element_name)
		if instruction.wait_visible:
			await self.waiter.until_visible(descriptor, handle, instruction.timeout)
		pressed = await self.input.press_key(handle, instruction.key, instruction.modifiers)
		return {'elementName': instruction.element_name, 'key': pressed, 'modifiers': list(instruction.modifiers)}

	async def _wait(self, instruction: WaitInstruction) -> dict[str, Any]:
		return await self.waiter.run(instruction)

	async def _get_text(self, instruction: GetTextInstruction) -> dict[str, Any]:
		descriptor, handle = await self._require(instruction.element_name)
		if instruction.wait_visible:
			await self.waiter.until_visible(descriptor, handle, instruction.timeout)
		text = await self.bridge.read_text(handle.handle_id, instruction.text_type, instruction.include_html)
		descriptor.text = text
		return {
			'elementName': instruction.element_name,
			'textType': instruction.text_type,
			'includeHTML': instruction.include_html,
			'text': text,
		}

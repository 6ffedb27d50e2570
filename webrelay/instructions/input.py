"""Synthetic user-input protocols: click, drag, typing and key presses."""

import asyncio
import logging

from webrelay.config import RunnerConfig
from webrelay.locator.bridge import DocumentBridge
from webrelay.shared_views import BoundingBox, ElementHandle

logger = logging.getLogger(__name__)

MOUSE_BUTTONS = {'left': 0, 'middle': 1, 'right': 2}

MODIFIER_ALIASES = {
	'control': 'ctrl',
	'ctrl': 'ctrl',
	'shift': 'shift',
	'alt': 'alt',
	'option': 'alt',
	'meta': 'meta',
	'cmd': 'meta',
	'command': 'meta',
}

NAMED_KEY_CODES = {' ': 'Space'}


def click_point(box: BoundingBox, offset_x: float = 0, offset_y: float = 0) -> tuple[float, float]:
	"""Center of the box shifted by the offset."""
	center_x, center_y = box.center()
	return center_x + offset_x, center_y + offset_y


def normalize_modifiers(modifiers: list[str]) -> dict[str, bool]:
	flags = {'ctrl': False, 'shift': False, 'alt': False, 'meta': False}
	for modifier in modifiers:
		name = MODIFIER_ALIASES.get(modifier.lower())
		if name:
			flags[name] = True
		else:
			logger.warning(f'Ignoring unknown key modifier: {modifier}')
	return flags


def effective_key(key: str, modifiers: dict[str, bool]) -> str:
	if modifiers.get('shift') and len(key) == 1 and key.isalpha():
		return key.upper()
	return key


def key_code(key: str) -> str:
	if len(key) == 1 and key.isalpha():
		return f'Key{key.upper()}'
	if len(key) == 1 and key.isdigit():
		return f'Digit{key}'
	return NAMED_KEY_CODES.get(key, key)


def is_printable(key: str, modifiers: dict[str, bool]) -> bool:
	return len(key) == 1 and not (modifiers.get('ctrl') or modifiers.get('alt') or modifiers.get('meta'))


def interpolate(start: tuple[float, float], end: tuple[float, float], steps: int) -> list[tuple[float, float]]:
	"""Evenly spaced points from start (exclusive) to end (inclusive)."""
	points = []
	for step in range(1, steps + 1):
		ratio = step / steps
		points.append((start[0] + (end[0] - start[0]) * ratio, start[1] + (end[1] - start[1]) * ratio))
	return points


def drag_steps(duration: float) -> int:
	return max(5, int(duration * 10))


class InputSimulator:
	"""Emits DOM event sequences that mimic a user through the bridge."""

	def __init__(self, bridge: DocumentBridge, config: RunnerConfig | None = None):
		self.bridge = bridge
		self.config = config or RunnerConfig()

	async def click(
		self,
		handle: ElementHandle,
		point: tuple[float, float],
		button: str = 'left',
		click_type: str = 'single',
	) -> None:
		"""Single click is press, release, click. Double repeats it and ends with dblclick."""
		x, y = point
		code = MOUSE_BUTTONS.get(button, 0)
		cycles = 2 if click_type == 'double' else 1
		for detail in range(1, cycles + 1):
			await self.bridge.dispatch_mouse(handle.handle_id, 'mousedown', x, y, code, detail)
			await self.bridge.dispatch_mouse(handle.handle_id, 'mouseup', x, y, code, detail)
			await self.bridge.dispatch_mouse(handle.handle_id, 'click', x, y, code, detail)
		if click_type == 'double':
			await self.bridge.dispatch_mouse(handle.handle_id, 'dblclick', x, y, code, 2)

	async def drag(
		self,
		source: ElementHandle,
		target: ElementHandle,
		start: tuple[float, float],
		end: tuple[float, float],
		duration: float,
	) -> int:
		"""Run the pointer drag protocol from source to target.

		Drop listeners on the target and the source ``draggable`` attribute are
		restored even when a step fails.

		Returns:
			Number of interpolation steps emitted
		"""
		steps = drag_steps(duration)
		pause = duration / steps if duration > 0 else 0
		listener_token: str | None = None
		draggable_changed = False
		previous_draggable: str | None = None

		try:
			listener_token = await self.bridge.install_drop_listeners(target.handle_id)
			previous_draggable = await self.bridge.set_draggable(source.handle_id)
			draggable_changed = True

			await self.bridge.dispatch_mouse(source.handle_id, 'mousedown', start[0], start[1], 0, 1)
			transfer = await self.bridge.create_transfer()
			await self.bridge.dispatch_drag(source.handle_id, 'dragstart', start[0], start[1], transfer)

			for x, y in interpolate(start, end, steps):
				await self.bridge.dispatch_mouse(source.handle_id, 'mousemove', x, y, 0, 0)
				await self.bridge.dispatch_drag(target.handle_id, 'dragover', x, y, transfer)
				if pause:
					await asyncio.sleep(pause)

			await self.bridge.dispatch_drag(target.handle_id, 'dragenter', end[0], end[1], transfer)
			await self.bridge.dispatch_drag(target.handle_id, 'dragover', end[0], end[1], transfer)
			await self.bridge.dispatch_mouse(target.handle_id, 'mouseup', end[0], end[1], 0, 1)
			await self.bridge.dispatch_drag(target.handle_id, 'drop', end[0], end[1], transfer)
			await self.bridge.dispatch_drag(source.handle_id, 'dragend', end[0], end[1], transfer)
			await self.bridge.dispatch_mouse(target.handle_id, 'click', end[0], end[1], 0, 1)
		finally:
			if listener_token is not None:
				await self.bridge.remove_drop_listeners(listener_token)
			if draggable_changed:
				await self.bridge.restore_draggable(source.handle_id, previous_draggable)

		return steps

	async def type_text(self, handle: ElementHandle, text: str, clear_first: bool, time_delay: float) -> None:
		if clear_first:
			await self.bridge.clear_value(handle.handle_id)
		await self.bridge.focus(handle.handle_id)

		no_modifiers = normalize_modifiers([])
		for index, char in enumerate(text):
			code = key_code(char)
			await self.bridge.dispatch_key(handle.handle_id, 'keydown', char, code, no_modifiers)
			await self.bridge.insert_text(handle.handle_id, char)
			await self.bridge.dispatch_key(handle.handle_id, 'keyup', char, code, no_modifiers)
			if time_delay > 0 and index < len(text) - 1:
				await asyncio.sleep(time_delay)

		await self.bridge.dispatch_change(handle.handle_id)

	async def press_key(self, handle: ElementHandle, key: str, modifiers: list[str]) -> str:
		"""Press one key on the element.

		Returns:
			The effective key after applying shift
		"""
		flags = normalize_modifiers(modifiers)
		pressed = effective_key(key, flags)
		code = key_code(pressed)

		await self.bridge.focus(handle.handle_id)
		await self.bridge.dispatch_key(handle.handle_id, 'keydown', pressed, code, flags)
		if is_printable(pressed, flags):
			await self.bridge.insert_text(handle.handle_id, pressed)
		await self.bridge.dispatch_key(handle.handle_id, 'keyup', pressed, code, flags)

		if await self.bridge.is_editable(handle.handle_id):
			await asyncio.sleep(self.config.change_defer_seconds)
			await self.bridge.dispatch_change(handle.handle_id)
		return pressed

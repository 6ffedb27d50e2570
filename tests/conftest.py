"""Shared fakes for the webrelay test-suite."""

from typing import Any

import pytest

from webrelay.config import DispatcherConfig, RunnerConfig
from webrelay.shared_views import NodeProfile


class FakeElement:
	"""A node of the fake document."""

	def __init__(
		self,
		handle_id: str,
		rect: dict[str, float] | None = None,
		tag: str = 'DIV',
		style: dict[str, Any] | None = None,
		editable: bool = False,
		text: str = '',
		offset: dict[str, float] | None = None,
	):
		self.handle_id = handle_id
		self.rect = rect if rect is not None else {'left': 0, 'top': 0, 'width': 10, 'height': 10}
		self.tag = tag
		self.style = style or {'display': 'block', 'visibility': 'visible', 'opacity': '1'}
		self.editable = editable
		self.text = text
		self.value = ''
		self.offset = offset or {'left': 0, 'top': 0, 'width': 0, 'height': 0}
		self.attached = True
		self.draggable: str | None = None


class FakeBridge:
	"""In-memory DocumentBridge recording every dispatched event."""

	def __init__(self):
		self.elements: dict[str, FakeElement] = {}
		self.selectors: dict[tuple[str, str], str] = {}
		self.calls: list[tuple] = []
		self.viewport_size = {'width': 1024, 'height': 768}
		self.pending = 0
		self.url = 'https://example.com/'
		self.navigations: list[str] = []
		self.resolve_count = 0
		self.fail_drag_after: int | None = None
		self._drag_events = 0
		self._listeners = 0

	def add(self, selector: str, element: FakeElement, selector_type: str = 'css') -> FakeElement:
		self.elements[element.handle_id] = element
		self.selectors[(selector, selector_type)] = element.handle_id
		return element

	def detach_all(self) -> None:
		for element in self.elements.values():
			element.attached = False

	def events(self, name: str | None = None) -> list[tuple]:
		return [call for call in self.calls if name is None or call[0] == name]

	async def resolve(self, selector: str, selector_type: str) -> str | None:
		self.resolve_count += 1
		handle_id = self.selectors.get((selector, selector_type))
		if handle_id is None or not self.elements[handle_id].attached:
			return None
		return handle_id

	async def is_attached(self, handle_id: str) -> bool:
		element = self.elements.get(handle_id)
		return element is not None and element.attached

	async def style(self, handle_id: str) -> dict[str, Any] | None:
		element = self.elements.get(handle_id)
		return dict(element.style) if element else None

	async def rect(self, handle_id: str) -> dict[str, Any] | None:
		element = self.elements.get(handle_id)
		if element is None:
			return None
		return {'rect': dict(element.rect) if element.rect else None, 'offset': dict(element.offset), 'tag': element.tag}

	async def viewport(self) -> dict[str, float]:
		return dict(self.viewport_size)

	async def scroll_into_view(self, handle_id: str) -> bool:
		self.calls.append(('scroll', handle_id))
		return True

	async def dispatch_mouse(self, handle_id, event_type, x, y, button=0, detail=1) -> None:
		self.calls.append(('mouse', handle_id, event_type, x, y, button, detail))

	async def create_transfer(self) -> str:
		return 'transfer-1'

	async def dispatch_drag(self, handle_id, event_type, x, y, transfer_id) -> None:
		self._drag_events += 1
		if self.fail_drag_after is not None and self._drag_events > self.fail_drag_after:
			raise RuntimeError('drag dispatch failed')
		self.calls.append(('drag', handle_id, event_type, x, y, transfer_id))

	async def install_drop_listeners(self, handle_id: str) -> str:
		self._listeners += 1
		self.calls.append(('install_listeners', handle_id))
		return f'listeners-{self._listeners}'

	async def remove_drop_listeners(self, token: str) -> bool:
		self.calls.append(('remove_listeners', token))
		return True

	async def set_draggable(self, handle_id: str) -> str | None:
		element = self.elements[handle_id]
		previous = element.draggable
		element.draggable = 'true'
		self.calls.append(('set_draggable', handle_id))
		return previous

	async def restore_draggable(self, handle_id: str, previous: str | None) -> bool:
		self.elements[handle_id].draggable = previous
		self.calls.append(('restore_draggable', handle_id, previous))
		return True

	async def is_editable(self, handle_id: str) -> bool:
		return self.elements[handle_id].editable

	async def clear_value(self, handle_id: str) -> None:
		self.elements[handle_id].value = ''
		self.calls.append(('clear', handle_id))

	async def focus(self, handle_id: str) -> None:
		self.calls.append(('focus', handle_id))

	async def dispatch_key(self, handle_id, event_type, key, code, modifiers) -> None:
		self.calls.append(('key', handle_id, event_type, key, code, dict(modifiers)))

	async def insert_text(self, handle_id: str, text: str) -> None:
		self.elements[handle_id].value += text
		self.calls.append(('insert', handle_id, text))

	async def dispatch_change(self, handle_id: str) -> None:
		self.calls.append(('change', handle_id))

	async def read_text(self, handle_id: str, mode: str, include_html: bool) -> str:
		element = self.elements[handle_id]
		if mode == 'value':
			return element.value
		return element.text

	async def navigate(self, url: str) -> None:
		self.navigations.append(url)
		self.url = url

	async def pending_resources(self) -> int:
		return self.pending

	async def location(self) -> str:
		return self.url


class FakeClock:
	def __init__(self, now: int = 1_000_000):
		self.now = now

	def __call__(self) -> int:
		return self.now


class FakeHost:
	"""TargetHost backed by a plain list of (target, url) tabs."""

	def __init__(self, tabs: list[tuple[str, str]] | None = None):
		self.tabs = list(tabs or [])
		self.spawned: list[tuple[int, str]] = []

	async def spawn_if_missing(self, index: int, url: str) -> int:
		opened = 0
		while len(self.tabs) <= index:
			self.tabs.append((f'new-{len(self.tabs)}', url))
			self.spawned.append((index, url))
			opened += 1
		return opened

	async def target_exists(self, target: str) -> bool:
		return await self.describe(target) is not None

	async def describe(self, target: str) -> dict[str, Any] | None:
		for index, (tab_target, url) in enumerate(self.tabs):
			if tab_target == target:
				return {'index': index, 'url': url}
		return None


class FakeStore:
	def __init__(self, profile: NodeProfile | None = None):
		self.profile = profile or NodeProfile(node_id='node-1', node_name='node', node_token='secret', node_type='crawler')

	def get_or_create_identity(self) -> NodeProfile:
		return self.profile

	def update_identity(self, partial: dict[str, Any]) -> NodeProfile:
		updates = {key: partial[key] for key in ('node_name', 'node_token') if partial.get(key) is not None}
		self.profile = self.profile.model_copy(update=updates)
		return self.profile


@pytest.fixture
def bridge() -> FakeBridge:
	return FakeBridge()


@pytest.fixture
def fast_config() -> RunnerConfig:
	return RunnerConfig(
		retry_pause_seconds=0,
		poll_interval_seconds=0.01,
		drag_settle_seconds=0,
		network_settle_seconds=0.02,
		change_defer_seconds=0,
	)


@pytest.fixture
def dispatcher_config() -> DispatcherConfig:
	return DispatcherConfig(notify_attempts=3, notify_backoff_seconds=0, probe_grace_seconds=0)

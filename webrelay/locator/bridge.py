"""Document bridge - the closed set of host primitives used by the execution engine.

Every interaction with a rendered document goes through a :class:`DocumentBridge`.
The production implementation, :class:`BrowserUseBridge`, installs a small
JavaScript runtime into the page on demand and calls it through CDP
``Runtime.evaluate`` on a browser-use session. Element handles are opaque ids
into an in-page table and silently go stale after navigation.
"""

import json
import logging
from typing import Any, Protocol

from browser_use.browser import BrowserSession

from webrelay.errors import ResolutionError, TransportError

logger = logging.getLogger(__name__)


class DocumentBridge(Protocol):
	"""Primitives a document host must provide."""

	async def resolve(self, selector: str, selector_type: str) -> str | None: ...

	async def is_attached(self, handle_id: str) -> bool: ...

	async def style(self, handle_id: str) -> dict[str, Any] | None: ...

	async def rect(self, handle_id: str) -> dict[str, Any] | None: ...

	async def viewport(self) -> dict[str, float]: ...

	async def scroll_into_view(self, handle_id: str) -> bool: ...

	async def dispatch_mouse(
		self, handle_id: str, event_type: str, x: float, y: float, button: int = 0, detail: int = 1
	) -> None: ...

	async def create_transfer(self) -> str: ...

	async def dispatch_drag(self, handle_id: str, event_type: str, x: float, y: float, transfer_id: str | None) -> None: ...

	async def install_drop_listeners(self, handle_id: str) -> str: ...

	async def remove_drop_listeners(self, token: str) -> bool: ...

	async def set_draggable(self, handle_id: str) -> str | None: ...

	async def restore_draggable(self, handle_id: str, previous: str | None) -> bool: ...

	async def is_editable(self, handle_id: str) -> bool: ...

	async def clear_value(self, handle_id: str) -> None: ...

	async def focus(self, handle_id: str) -> None: ...

	async def dispatch_key(self, handle_id: str, event_type: str, key: str, code: str, modifiers: dict[str, bool]) -> None: ...

	async def insert_text(self, handle_id: str, text: str) -> None: ...

	async def dispatch_change(self, handle_id: str) -> None: ...

	async def read_text(self, handle_id: str, mode: str, include_html: bool) -> str: ...

	async def navigate(self, url: str) -> None: ...

	async def pending_resources(self) -> int: ...

	async def location(self) -> str: ...


RUNTIME_SOURCE = r"""
(() => {
	if (window.__webrelay) return true;
	const handles = new Map();
	const transfers = new Map();
	const listeners = new Map();
	let nextId = 1;
	const BUTTON_MASK = {0: 1, 1: 4, 2: 2};
	const EDITABLE_INPUTS = ['text', 'search', 'email', 'url', 'tel', 'password', 'number'];

	const store = (node) => {
		for (const [id, existing] of handles) {
			if (existing === node) return id;
		}
		const id = 'h' + (nextId++);
		handles.set(id, node);
		return id;
	};
	const get = (id) => {
		const node = handles.get(id);
		if (!node || !node.isConnected) {
			handles.delete(id);
			return null;
		}
		return node;
	};
	const need = (id) => {
		const node = get(id);
		if (!node) throw new Error('Stale element handle: ' + id);
		return node;
	};

	window.__webrelay = {
		resolve(selector, selectorType) {
			let node = null;
			try {
				if (selectorType === 'css') {
					node = document.querySelector(selector);
				} else if (selectorType === 'xpath') {
					node = document.evaluate(selector, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null).singleNodeValue;
				} else if (selectorType === 'id') {
					node = document.getElementById(selector);
				}
			} catch (e) {
				return null;
			}
			return node ? store(node) : null;
		},
		isAttached(id) {
			return get(id) !== null;
		},
		style(id) {
			const node = get(id);
			if (!node) return null;
			const s = window.getComputedStyle(node);
			return {display: s.display, visibility: s.visibility, opacity: s.opacity, tag: node.tagName};
		},
		rect(id) {
			const node = get(id);
			if (!node) return null;
			let rect = null;
			try {
				const r = node.getBoundingClientRect();
				rect = {left: r.left, top: r.top, width: r.width, height: r.height};
			} catch (e) {
				rect = null;
			}
			let left = node.offsetLeft || 0;
			let top = node.offsetTop || 0;
			let parent = node.offsetParent;
			while (parent) {
				left += parent.offsetLeft;
				top += parent.offsetTop;
				parent = parent.offsetParent;
			}
			left -= window.scrollX || window.pageXOffset || 0;
			top -= window.scrollY || window.pageYOffset || 0;
			const offset = {left, top, width: node.offsetWidth || 0, height: node.offsetHeight || 0};
			return {rect, offset, tag: node.tagName};
		},
		viewport() {
			return {
				width: window.innerWidth || document.documentElement.clientWidth,
				height: window.innerHeight || document.documentElement.clientHeight,
			};
		},
		scrollIntoView(id) {
			const node = get(id);
			if (!node) return false;
			node.scrollIntoView({behavior: 'smooth', block: 'center', inline: 'center'});
			return true;
		},
		mouse(id, type, x, y, button, detail) {
			const node = need(id);
			const pressed = type === 'mousedown' || type === 'mousemove';
			node.dispatchEvent(new MouseEvent(type, {
				bubbles: true, cancelable: true, view: window,
				clientX: x, clientY: y, button, buttons: pressed ? (BUTTON_MASK[button] || 0) : 0, detail,
			}));
			return true;
		},
		createTransfer() {
			const id = 't' + (nextId++);
			let transfer = null;
			try {
				transfer = new DataTransfer();
				transfer.effectAllowed = 'all';
				transfer.dropEffect = 'move';
			} catch (e) {
				transfer = null;
			}
			transfers.set(id, transfer);
			return id;
		},
		drag(id, type, x, y, transferId) {
			const node = need(id);
			const dataTransfer = transfers.get(transferId) || null;
			let event;
			try {
				event = new DragEvent(type, {bubbles: true, cancelable: true, view: window, clientX: x, clientY: y, dataTransfer});
			} catch (e) {
				event = new MouseEvent(type, {bubbles: true, cancelable: true, view: window, clientX: x, clientY: y});
			}
			node.dispatchEvent(event);
			if (type === 'dragend') transfers.delete(transferId);
			return true;
		},
		installDropListeners(id) {
			const node = need(id);
			const allow = (e) => {
				e.preventDefault();
				if (e.dataTransfer) e.dataTransfer.dropEffect = 'move';
			};
			node.addEventListener('dragenter', allow);
			node.addEventListener('dragover', allow);
			document.addEventListener('dragover', allow);
			const token = 'l' + (nextId++);
			listeners.set(token, {node, allow});
			return token;
		},
		removeDropListeners(token) {
			const entry = listeners.get(token);
			if (!entry) return false;
			entry.node.removeEventListener('dragenter', entry.allow);
			entry.node.removeEventListener('dragover', entry.allow);
			document.removeEventListener('dragover', entry.allow);
			listeners.delete(token);
			return true;
		},
		setDraggable(id) {
			const node = need(id);
			const previous = node.getAttribute('draggable');
			node.setAttribute('draggable', 'true');
			return previous;
		},
		restoreDraggable(id, previous) {
			const node = get(id);
			if (!node) return false;
			if (previous === null || previous === undefined) node.removeAttribute('draggable');
			else node.setAttribute('draggable', previous);
			return true;
		},
		isEditable(id) {
			const node = get(id);
			if (!node) return false;
			if (node.isContentEditable) return true;
			if (node.tagName === 'TEXTAREA') return !node.disabled && !node.readOnly;
			if (node.tagName === 'INPUT') {
				const type = (node.type || 'text').toLowerCase();
				return EDITABLE_INPUTS.includes(type) && !node.disabled && !node.readOnly;
			}
			return false;
		},
		clearValue(id) {
			const node = need(id);
			if (node.isContentEditable) node.textContent = '';
			else node.value = '';
			node.dispatchEvent(new Event('input', {bubbles: true}));
			return true;
		},
		focus(id) {
			const node = need(id);
			if (typeof node.focus === 'function') node.focus();
			return true;
		},
		key(id, type, key, code, modifiers) {
			const node = need(id);
			node.dispatchEvent(new KeyboardEvent(type, {
				bubbles: true, cancelable: true, key, code,
				ctrlKey: !!modifiers.ctrl, shiftKey: !!modifiers.shift, altKey: !!modifiers.alt, metaKey: !!modifiers.meta,
			}));
			return true;
		},
		insertText(id, text) {
			const node = need(id);
			if (node.isContentEditable) node.textContent = (node.textContent || '') + text;
			else if ('value' in node) node.value = (node.value || '') + text;
			node.dispatchEvent(new InputEvent('input', {bubbles: true, data: text, inputType: 'insertText'}));
			return true;
		},
		change(id) {
			const node = get(id);
			if (!node) return false;
			node.dispatchEvent(new Event('change', {bubbles: true}));
			return true;
		},
		readText(id, mode, includeHtml) {
			const node = need(id);
			if (includeHtml) return node.outerHTML || '';
			if (mode === 'value') return node.value !== undefined && node.value !== null ? String(node.value) : '';
			if (mode === 'textContent') return node.textContent || '';
			return node.innerText || node.textContent || '';
		},
		navigate(url) {
			window.location.href = url;
			return true;
		},
		pendingResources() {
			return performance.getEntriesByType('resource').filter((entry) => entry.responseEnd === 0).length;
		},
		location() {
			return window.location.href;
		},
	};
	return true;
})()
"""


class BrowserUseBridge:
	"""DocumentBridge on one tab of a browser-use session.

	Args:
		session: Started browser-use session
		target_id: CDP target id of the tab
	"""

	def __init__(self, session: BrowserSession, target_id: str):
		self.session = session
		self.target_id = target_id

	async def _evaluate(self, expression: str) -> Any:
		try:
			cdp_session = await self.session.get_or_create_cdp_session(target_id=self.target_id, focus=False)
			response = await cdp_session.cdp_client.send.Runtime.evaluate(
				params={'expression': expression, 'returnByValue': True, 'awaitPromise': True},
				session_id=cdp_session.session_id,
			)
		except Exception as e:
			raise TransportError(f'Runtime.evaluate failed on target {self.target_id}: {e}') from e

		details = response.get('exceptionDetails')
		if details:
			exception = details.get('exception') or {}
			text = exception.get('description') or details.get('text') or 'Unknown JavaScript error'
			raise ResolutionError(text, details={'target': self.target_id})
		return response.get('result', {}).get('value')

	async def _call(self, name: str, *args: Any) -> Any:
		expression = (
			'(() => { const runtime = window.__webrelay; if (!runtime) return {missing: true}; '
			f'return {{value: runtime.{name}(...{json.dumps(list(args))})}}; }})()'
		)
		payload = await self._evaluate(expression)
		if isinstance(payload, dict) and payload.get('missing'):
			logger.debug(f'Installing page runtime on target {self.target_id}')
			await self._evaluate(RUNTIME_SOURCE)
			payload = await self._evaluate(expression)
		if not isinstance(payload, dict):
			return None
		return payload.get('value')

	async def resolve(self, selector: str, selector_type: str) -> str | None:
		return await self._call('resolve', selector, selector_type)

	async def is_attached(self, handle_id: str) -> bool:
		return bool(await self._call('isAttached', handle_id))

	async def style(self, handle_id: str) -> dict[str, Any] | None:
		return await self._call('style', handle_id)

	async def rect(self, handle_id: str) -> dict[str, Any] | None:
		return await self._call('rect', handle_id)

	async def viewport(self) -> dict[str, float]:
		return await self._call('viewport') or {'width': 0, 'height': 0}

	async def scroll_into_view(self, handle_id: str) -> bool:
		return bool(await self._call('scrollIntoView', handle_id))

	async def dispatch_mouse(
		self, handle_id: str, event_type: str, x: float, y: float, button: int = 0, detail: int = 1
	) -> None:
		await self._call('mouse', handle_id, event_type, x, y, button, detail)

	async def create_transfer(self) -> str:
		return await self._call('createTransfer')

	async def dispatch_drag(self, handle_id: str, event_type: str, x: float, y: float, transfer_id: str | None) -> None:
		await self._call('drag', handle_id, event_type, x, y, transfer_id)

	async def install_drop_listeners(self, handle_id: str) -> str:
		return await self._call('installDropListeners', handle_id)

	async def remove_drop_listeners(self, token: str) -> bool:
		return bool(await self._call('removeDropListeners', token))

	async def set_draggable(self, handle_id: str) -> str | None:
		return await self._call('setDraggable', handle_id)

	async def restore_draggable(self, handle_id: str, previous: str | None) -> bool:
		return bool(await self._call('restoreDraggable', handle_id, previous))

	async def is_editable(self, handle_id: str) -> bool:
		return bool(await self._call('isEditable', handle_id))

	async def clear_value(self, handle_id: str) -> None:
		await self._call('clearValue', handle_id)

	async def focus(self, handle_id: str) -> None:
		await self._call('focus', handle_id)

	async def dispatch_key(self, handle_id: str, event_type: str, key: str, code: str, modifiers: dict[str, bool]) -> None:
		await self._call('key', handle_id, event_type, key, code, modifiers)

	async def insert_text(self, handle_id: str, text: str) -> None:
		await self._call('insertText', handle_id, text)

	async def dispatch_change(self, handle_id: str) -> None:
		await self._call('change', handle_id)

	async def read_text(self, handle_id: str, mode: str, include_html: bool) -> str:
		return await self._call('readText', handle_id, mode, include_html) or ''

	async def navigate(self, url: str) -> None:
		await self._call('navigate', url)

	async def pending_resources(self) -> int:
		return int(await self._call('pendingResources') or 0)

	async def location(self) -> str:
		return await self._call('location') or ''

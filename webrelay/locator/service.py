"""ElementLocator - resolves descriptors to live nodes and answers geometry queries."""

import logging
from typing import Any

from webrelay.config import RunnerConfig
from webrelay.locator.bridge import DocumentBridge
from webrelay.shared_views import SELECTOR_TYPES, BoundingBox, ElementDescriptor, ElementHandle

logger = logging.getLogger(__name__)

# Form controls whose bounding rect may be degenerate while the box model is not
OFFSET_FALLBACK_TAGS = frozenset({'INPUT', 'TEXTAREA', 'SELECT', 'BUTTON'})


def box_from_geometry(geometry: dict[str, Any]) -> BoundingBox | None:
	"""Pick the effective box from a bridge ``rect`` reply.

	The bounding rect is used unless it is missing, or it is zero-sized on a
	form control, in which case the offset box (position accumulated through
	the offsetParent chain, minus scroll) takes over.

	Args:
		geometry: Mapping with ``rect``, ``offset`` and ``tag`` keys

	Returns:
		The bounding box, or None if neither source has a usable size
	"""
	rect = geometry.get('rect')
	offset = geometry.get('offset') or {}
	tag = str(geometry.get('tag') or '').upper()
	offset_width = float(offset.get('width') or 0)
	offset_height = float(offset.get('height') or 0)

	if rect is None:
		if offset_width > 0 or offset_height > 0:
			return BoundingBox(
				left=float(offset.get('left') or 0),
				top=float(offset.get('top') or 0),
				width=offset_width,
				height=offset_height,
			)
		return None

	box = BoundingBox(**rect)
	if (box.width == 0 or box.height == 0) and tag in OFFSET_FALLBACK_TAGS:
		if offset_width > 0 or offset_height > 0:
			return BoundingBox(
				left=float(offset.get('left', box.left)),
				top=float(offset.get('top', box.top)),
				width=offset_width or box.width or 1,
				height=offset_height or box.height or 1,
			)
	return box


class ElementLocator:
	"""Resolves element descriptors through a document bridge.

	Resolution failures are reported as None, never raised. A cached handle is
	checked for attachment before reuse and cleared when stale.
	"""

	def __init__(self, bridge: DocumentBridge, config: RunnerConfig | None = None):
		self.bridge = bridge
		self.config = config or RunnerConfig()

	async def resolve(self, descriptor: ElementDescriptor) -> ElementHandle | None:
		"""Return a live handle for the descriptor, resolving it if needed.

		Args:
			descriptor: Element descriptor; its cached handle is updated in place

		Returns:
			Live handle, or None if the element is not in the document
		"""
		cached = descriptor.handle
		if cached is not None:
			if await self.bridge.is_attached(cached.handle_id):
				return cached
			logger.debug(f'Cached handle for "{descriptor.name}" is stale, re-resolving')
			descriptor.clear_handle()

		if not descriptor.selector or descriptor.selector_type not in SELECTOR_TYPES:
			logger.error(f'Element "{descriptor.name}" has an unusable selector: {descriptor.selector_type}')
			return None

		handle_id = await self.bridge.resolve(descriptor.selector, descriptor.selector_type)
		if handle_id is None:
			logger.debug(f'Element "{descriptor.name}" not found with selector: {descriptor.selector}')
			descriptor.clear_handle()
			return None

		handle = ElementHandle(handle_id=handle_id)
		descriptor.attach_handle(handle)
		return handle

	async def refresh(self, descriptor: ElementDescriptor) -> ElementHandle | None:
		"""Drop the cached handle and resolve again."""
		descriptor.clear_handle()
		return await self.resolve(descriptor)

	async def bounding_box(self, handle: ElementHandle) -> BoundingBox | None:
		geometry = await self.bridge.rect(handle.handle_id)
		if geometry is None:
			return None
		return box_from_geometry(geometry)

	async def is_visible(self, handle: ElementHandle) -> bool:
		"""Check computed style, size and lenient viewport intersection.

		Args:
			handle: Live element handle

		Returns:
			True if the element is displayed, non-transparent, sized and within
			the configured margin around the viewport
		"""
		style = await self.bridge.style(handle.handle_id)
		if style is None:
			return False
		if style.get('display') == 'none' or style.get('visibility') == 'hidden':
			return False
		try:
			opacity = float(style.get('opacity', 1))
		except (TypeError, ValueError):
			return False
		if opacity == 0:
			return False

		box = await self.bounding_box(handle)
		if box is None or box.width <= 0 or box.height <= 0:
			return False

		viewport = await self.bridge.viewport()
		margin = self.config.visibility_margin_px
		return not (
			box.right < -margin
			or box.bottom < -margin
			or box.left > viewport.get('width', 0) + margin
			or box.top > viewport.get('height', 0) + margin
		)

	async def scroll_into_view(self, handle: ElementHandle) -> bool:
		return await self.bridge.scroll_into_view(handle.handle_id)

	async def is_descriptor_visible(self, descriptor: ElementDescriptor) -> bool:
		handle = await self.resolve(descriptor)
		if handle is None:
			return False
		return await self.is_visible(handle)

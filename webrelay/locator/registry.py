"""Element registry - the name to descriptor map shared by one execution context."""

import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from webrelay.shared_views import ElementDescriptor

if TYPE_CHECKING:
	from webrelay.locator.service import ElementLocator

logger = logging.getLogger(__name__)


class ElementRegistry:
	"""Stores element descriptors by name. Last write wins.

	Parent, children and related links are kept loosely consistent for
	bookkeeping and export. They are never traversed during execution.
	"""

	def __init__(self):
		self._elements: dict[str, ElementDescriptor] = {}

	def get(self, name: str) -> ElementDescriptor | None:
		return self._elements.get(name)

	def set(self, descriptor: ElementDescriptor) -> bool:
		"""Insert or replace a descriptor and update back-links.

		Args:
			descriptor: Descriptor to store

		Returns:
			False if the descriptor has no name
		"""
		if not descriptor.name:
			logger.error('Element name is required')
			return False

		if descriptor.name in self._elements:
			self._cleanup_references(descriptor.name)

		self._elements[descriptor.name] = descriptor
		self._update_relationships(descriptor)
		logger.debug(f'Element "{descriptor.name}" saved')
		return True

	def set_many(self, descriptors: list[ElementDescriptor]) -> None:
		for descriptor in descriptors:
			self.set(descriptor)

	def remove(self, name: str) -> bool:
		if name not in self._elements:
			logger.warning(f'Element "{name}" does not exist')
			return False
		del self._elements[name]
		self._cleanup_references(name)
		logger.debug(f'Element "{name}" removed')
		return True

	def has(self, name: str) -> bool:
		return name in self._elements

	def names(self) -> list[str]:
		return list(self._elements)

	def all(self) -> list[ElementDescriptor]:
		return list(self._elements.values())

	def clear(self) -> None:
		self._elements.clear()
		logger.debug('All elements cleared')

	def count(self) -> int:
		return len(self._elements)

	def find_by_selector(self, selector: str, selector_type: str) -> ElementDescriptor | None:
		for descriptor in self._elements.values():
			if descriptor.selector == selector and descriptor.selector_type == selector_type:
				return descriptor
		return None

	def children_of(self, parent_name: str) -> list[ElementDescriptor]:
		return [d for d in self._elements.values() if d.parent_name == parent_name]

	def parent_of(self, child_name: str) -> ElementDescriptor | None:
		child = self._elements.get(child_name)
		if child is None or not child.parent_name:
			return None
		return self._elements.get(child.parent_name)

	def related_to(self, name: str) -> list[ElementDescriptor]:
		descriptor = self._elements.get(name)
		if descriptor is None:
			return []
		return [self._elements[n] for n in descriptor.related_names if n in self._elements]

	def statistics(self) -> dict[str, Any]:
		stats: dict[str, Any] = {
			'total': len(self._elements),
			'bySelectorType': {},
			'withParent': 0,
			'withChildren': 0,
			'withRelated': 0,
		}
		for descriptor in self._elements.values():
			by_type = stats['bySelectorType']
			by_type[descriptor.selector_type] = by_type.get(descriptor.selector_type, 0) + 1
			if descriptor.parent_name:
				stats['withParent'] += 1
			if descriptor.children_names:
				stats['withChildren'] += 1
			if descriptor.related_names:
				stats['withRelated'] += 1
		return stats

	def export_elements(self) -> str:
		return json.dumps([d.to_object() for d in self._elements.values()], indent=2, ensure_ascii=False)

	def import_elements(self, json_data: str) -> bool:
		"""Load descriptors from a JSON array, validating each entry.

		Invalid entries are logged and skipped.

		Args:
			json_data: JSON array of descriptor objects

		Returns:
			True if at least one descriptor was imported
		"""
		try:
			entries = json.loads(json_data)
		except (TypeError, json.JSONDecodeError) as e:
			logger.error(f'Failed to import elements: {e}')
			return False

		if not isinstance(entries, list):
			logger.error('Invalid elements data format: expected array')
			return False

		errors: list[str] = []
		imported = 0
		for position, entry in enumerate(entries, start=1):
			if not isinstance(entry, dict):
				errors.append(f'Element {position}: expected an object')
				continue
			try:
				descriptor = ElementDescriptor.model_validate(entry)
			except ValidationError as e:
				errors.append(f'Element {position}: {e}')
				continue
			problems = descriptor.validation_errors()
			if problems:
				errors.extend(problems)
				continue
			self.set(descriptor)
			imported += 1

		if errors:
			logger.warning(f'Import finished, imported: {imported}, failed: {len(errors)}')
			for error in errors:
				logger.error(error)
		else:
			logger.info(f'Imported {imported} elements')
		return imported > 0

	async def validate_all(self, locator: 'ElementLocator') -> dict[str, Any]:
		"""Resolve every descriptor and report the ones that cannot be found."""
		errors = []
		for name, descriptor in self._elements.items():
			if await locator.resolve(descriptor) is None:
				errors.append(f'Element "{name}" validation failed')
		return {'valid': not errors, 'errors': errors}

	async def refresh_all(self, locator: 'ElementLocator') -> None:
		for descriptor in self._elements.values():
			await locator.refresh(descriptor)
		logger.debug('All element handles refreshed')

	def _update_relationships(self, descriptor: ElementDescriptor) -> None:
		if descriptor.parent_name:
			parent = self._elements.get(descriptor.parent_name)
			if parent is not None and descriptor.name not in parent.children_names:
				parent.children_names.append(descriptor.name)

		for child_name in descriptor.children_names:
			child = self._elements.get(child_name)
			if child is not None:
				child.parent_name = descriptor.name

		for related_name in descriptor.related_names:
			related = self._elements.get(related_name)
			if related is not None and descriptor.name not in related.related_names:
				related.related_names.append(descriptor.name)

	def _cleanup_references(self, removed_name: str) -> None:
		for descriptor in self._elements.values():
			if removed_name in descriptor.children_names:
				descriptor.children_names.remove(removed_name)
			if removed_name in descriptor.related_names:
				descriptor.related_names.remove(removed_name)

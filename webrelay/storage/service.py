"""Storage service - persists the node identity in a JSON file."""

import json
import logging
from pathlib import Path
from typing import Any

from uuid_extensions import uuid7str

from webrelay.shared_views import NodeProfile

logger = logging.getLogger(__name__)

DEFAULT_NODE_NAME = 'node'
DEFAULT_NODE_TYPE = 'crawler'

# Only these fields may be changed after creation
UPDATABLE_FIELDS = ('node_name', 'node_token')


class IdentityStore:
	"""Key-value store for the identity of this coordinator node.

	Values live in ``identity.json`` under the storage directory. Missing
	fields are filled with generated defaults on first read and persisted.
	"""

	def __init__(self, storage_dir: Path | str = 'webrelay_data', default_token: str = ''):
		"""Initialize the IdentityStore.

		Args:
			storage_dir: Directory holding the identity file
			default_token: Credential used when none is stored yet
		"""
		self.storage_dir = Path(storage_dir)
		self.identity_path = self.storage_dir / 'identity.json'
		self.default_token = default_token
		self._cached: NodeProfile | None = None

		# Create directory if it doesn't exist
		self.storage_dir.mkdir(parents=True, exist_ok=True)

		logger.info(f'IdentityStore initialized at {self.storage_dir}')

	def get(self, key: str) -> Any:
		return self._read().get(key)

	def set(self, values: dict[str, Any]) -> None:
		data = self._read()
		data.update(values)
		self._write(data)

	def get_or_create_identity(self) -> NodeProfile:
		"""Return the stored identity, generating and persisting missing fields.

		Returns:
			Complete node profile
		"""
		if self._cached is not None:
			return self._cached

		stored = self._read()
		defaults = {
			'node_id': uuid7str,
			'node_name': lambda: DEFAULT_NODE_NAME,
			'node_token': lambda: self.default_token,
			'node_type': lambda: DEFAULT_NODE_TYPE,
		}
		created = {key: factory() for key, factory in defaults.items() if stored.get(key) is None}
		if created:
			self.set(created)
			logger.info(f'Generated identity fields: {", ".join(created)}')

		self._cached = NodeProfile.model_validate({**stored, **created})
		return self._cached

	def update_identity(self, partial: dict[str, Any]) -> NodeProfile:
		"""Update the mutable identity fields.

		Args:
			partial: Mapping with ``node_name`` and/or ``node_token``; other keys are ignored

		Returns:
			The updated profile
		"""
		updates = {key: partial[key] for key in UPDATABLE_FIELDS if partial.get(key) is not None}
		if updates:
			self.set(updates)
			self._cached = None
		logger.info(f'Node profile updated: {sorted(updates)}')
		return self.get_or_create_identity()

	def _read(self) -> dict[str, Any]:
		if not self.identity_path.exists():
			return {}
		try:
			with open(self.identity_path, 'r') as f:
				data = json.load(f)
		except (OSError, json.JSONDecodeError) as e:
			logger.error(f'Failed to read identity file: {str(e)}')
			raise ValueError(f'Invalid identity data: {str(e)}') from e
		if not isinstance(data, dict):
			raise ValueError('Invalid identity data: expected an object')
		return data

	def _write(self, data: dict[str, Any]) -> None:
		try:
			with open(self.identity_path, 'w') as f:
				json.dump(data, f, indent=2)
		except OSError as e:
			logger.error(f'Failed to save identity: {str(e)}')
			raise IOError(f'Failed to save identity: {str(e)}') from e

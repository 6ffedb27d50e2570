"""HTTP client of the remote task server."""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from webrelay.config import DispatcherConfig
from webrelay.dispatcher.views import FetchedWork
from webrelay.errors import AuthExpiredError, TransportError
from webrelay.shared_views import NodeProfile, ServerReply

logger = logging.getLogger(__name__)

LOGIN_PATH = '/auth/login'
INSTRUCTIONS_PATH = '/instructions/list'
INSTRUCTION_REPLY_PATH = '/instructions/reply'
TASK_REPLY_PATH = '/tasks/reply'


def _unwrap(body: Any) -> Any:
	if isinstance(body, dict) and isinstance(body.get('data'), dict):
		return body['data']
	return body


class TaskServerClient:
	"""Authenticates against the task server and exchanges work and replies.

	The bearer token is cached until a request is rejected. Any non-2xx
	response clears it so the next cycle logs in again.
	"""

	def __init__(self, config: DispatcherConfig | None = None, http_client: httpx.AsyncClient | None = None):
		self.config = config or DispatcherConfig()
		self.token: str | None = None
		self._client = http_client or httpx.AsyncClient(
			base_url=self.config.server_url, timeout=self.config.request_timeout_seconds
		)

	async def aclose(self) -> None:
		await self._client.aclose()

	def clear_token(self) -> None:
		self.token = None

	async def _request(self, method: str, path: str, payload: dict[str, Any], authenticated: bool = True) -> Any:
		headers = {'Content-Type': 'application/json'}
		if authenticated:
			headers['Authorization'] = f'Bearer {self.token or ""}'

		try:
			response = await self._client.request(method, path, json=payload, headers=headers)
		except httpx.HTTPError as e:
			raise TransportError(f'{method} {path} failed: {e}') from e

		if not response.is_success:
			self.clear_token()
			message = f'{method} {path} failed: {response.status_code} {response.reason_phrase}'
			if response.status_code in (401, 403):
				raise AuthExpiredError(message, details={'status': response.status_code})
			raise TransportError(message, details={'status': response.status_code})

		if not response.content:
			return {}
		try:
			return response.json()
		except ValueError as e:
			raise TransportError(f'{method} {path} returned invalid JSON: {e}') from e

	async def login(self, profile: NodeProfile) -> str:
		"""Exchange the node identity for a bearer token.

		Returns:
			The cached token
		"""
		body = await self._request('POST', LOGIN_PATH, profile.model_dump(), authenticated=False)
		data = _unwrap(body)
		token = data.get('token') if isinstance(data, dict) else None
		if not token:
			raise TransportError('Login response carries no token')
		self.token = token
		logger.info(f'Logged in as node {profile.node_id}')
		return token

	async def fetch_work(self, profile: NodeProfile, tabs: list[dict[str, Any]]) -> FetchedWork:
		"""Fetch tasks and instructions for the known targets."""
		body = await self._request('POST', INSTRUCTIONS_PATH, {'node_id': profile.node_id, 'tabs': tabs})
		data = _unwrap(body)
		try:
			work = FetchedWork.model_validate(data if isinstance(data, dict) else {})
		except ValidationError as e:
			raise TransportError(f'Malformed work response: {e.error_count()} invalid fields', details={'errors': e.errors()}) from e
		logger.info(f'Fetched {len(work.tasks)} tasks and {len(work.instructions)} instructions')
		return work

	async def reply_instruction(self, reply: ServerReply) -> bool:
		return await self._reply(INSTRUCTION_REPLY_PATH, reply)

	async def reply_task(self, reply: ServerReply) -> bool:
		return await self._reply(TASK_REPLY_PATH, reply)

	async def _reply(self, path: str, reply: ServerReply) -> bool:
		body = await self._request('POST', path, reply.model_dump(by_alias=True, mode='json'))
		return not (isinstance(body, dict) and body.get('success') is False)

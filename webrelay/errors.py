"""Error taxonomy shared by the execution engine and the dispatcher."""

from typing import Any


class WebRelayError(Exception):
	"""Base class for all webrelay errors."""

	code = 'WEBRELAY_ERROR'

	def __init__(self, message: str, *, details: dict[str, Any] | None = None):
		super().__init__(message)
		self.details = details or {}


class InstructionValidationError(WebRelayError):
	"""Malformed instruction or configuration. Never retried."""

	code = 'VALIDATION_ERROR'


class ResolutionError(WebRelayError):
	"""Element could not be found or is not usable for the requested action."""

	code = 'RESOLUTION_ERROR'


class WaitTimeoutError(WebRelayError):
	"""A visibility, condition or element wait exceeded its budget."""

	code = 'TIMEOUT'


class TransportError(WebRelayError):
	"""Messaging or HTTP failure."""

	code = 'TRANSPORT_ERROR'


class ReceiverMissingError(TransportError):
	"""No execution context is attached for the target."""

	code = 'NO_RECEIVER'


class AuthExpiredError(TransportError):
	"""The remote server rejected the cached credential."""

	code = 'AUTH_EXPIRED'

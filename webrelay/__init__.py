"""webrelay - remote browser instruction relay.

A coordinator polls a remote task server for browser instructions, queues
them per tab and notifies the execution context of each tab, which pulls
and runs them deterministically against the live document.

Components:
- Dispatcher: Polls the task server, queues work and notifies targets
- ExecutionContext: Per-tab runtime pulling and executing instructions
- InstructionRunner: Executes one typed instruction with retry
- ElementLocator / ElementRegistry: Resolve and track named elements
- IdentityStore: Persists the node identity
- API: REST interface for the coordinator
"""

from webrelay.browser.service import BrowserHost
from webrelay.channel.service import LocalChannel
from webrelay.config import AppConfig, BrowserConfig, DispatcherConfig, RunnerConfig, load_config
from webrelay.context.service import ExecutionContext
from webrelay.dispatcher.client import TaskServerClient
from webrelay.dispatcher.queue import InstructionQueue
from webrelay.dispatcher.registry import ConnectionRegistry
from webrelay.dispatcher.service import Dispatcher
from webrelay.dispatcher.views import CycleReport
from webrelay.errors import (
	AuthExpiredError,
	InstructionValidationError,
	ReceiverMissingError,
	ResolutionError,
	TransportError,
	WaitTimeoutError,
	WebRelayError,
)
from webrelay.executor.service import Executor
from webrelay.instructions.service import InstructionRunner
from webrelay.locator.bridge import BrowserUseBridge, DocumentBridge
from webrelay.locator.registry import ElementRegistry
from webrelay.locator.service import ElementLocator
from webrelay.shared_views import (
	ConnectionRecord,
	ElementDescriptor,
	ExecutionResult,
	Instruction,
	Message,
	NodeProfile,
	Reply,
	parse_instruction,
	parse_instructions,
)
from webrelay.storage.service import IdentityStore

__version__ = '1.0.0'

__all__ = [
	# Services
	'Dispatcher',
	'ExecutionContext',
	'Executor',
	'InstructionRunner',
	'IdentityStore',
	'BrowserHost',
	# Coordinator
	'InstructionQueue',
	'ConnectionRegistry',
	'TaskServerClient',
	'LocalChannel',
	'CycleReport',
	# Elements
	'ElementLocator',
	'ElementRegistry',
	'DocumentBridge',
	'BrowserUseBridge',
	# Models
	'Instruction',
	'ElementDescriptor',
	'ExecutionResult',
	'ConnectionRecord',
	'NodeProfile',
	'Message',
	'Reply',
	'parse_instruction',
	'parse_instructions',
	# Config
	'AppConfig',
	'BrowserConfig',
	'DispatcherConfig',
	'RunnerConfig',
	'load_config',
	# Errors
	'WebRelayError',
	'InstructionValidationError',
	'ResolutionError',
	'WaitTimeoutError',
	'TransportError',
	'ReceiverMissingError',
	'AuthExpiredError',
]

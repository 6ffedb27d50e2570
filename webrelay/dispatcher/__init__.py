from webrelay.dispatcher.client import TaskServerClient
from webrelay.dispatcher.queue import InstructionQueue
from webrelay.dispatcher.registry import ConnectionRegistry
from webrelay.dispatcher.service import Dispatcher, TargetHost
from webrelay.dispatcher.views import CoordinatorTask, CycleReport, FetchedWork, NotifyOutcome

__all__ = [
	'ConnectionRegistry',
	'CoordinatorTask',
	'CycleReport',
	'Dispatcher',
	'FetchedWork',
	'InstructionQueue',
	'NotifyOutcome',
	'TargetHost',
	'TaskServerClient',
]

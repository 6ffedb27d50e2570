from webrelay.executor.service import Executor
from webrelay.executor.views import ExecutionReport, ExecutionStatistics

__all__ = ['ExecutionReport', 'ExecutionStatistics', 'Executor']

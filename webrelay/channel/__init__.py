from webrelay.channel.service import ContextHandler, CoordinatorHandler, LocalChannel

__all__ = ['ContextHandler', 'CoordinatorHandler', 'LocalChannel']

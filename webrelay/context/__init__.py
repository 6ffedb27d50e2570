from webrelay.context.service import MAX_DRAIN_INSTRUCTIONS, ExecutionContext

__all__ = ['MAX_DRAIN_INSTRUCTIONS', 'ExecutionContext']

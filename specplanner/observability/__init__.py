from .tracing import Span, log_event, new_trace_id

__all__ = ['Span', 'log_event', 'new_trace_id']

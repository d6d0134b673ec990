"""Run tracing for planning runs.

Every event is one JSON line on stderr; stdout stays free for the plan a
caller prints. A planning run gets one trace id, model round trips and tool
calls each get a Span, and ``log_event`` folds the span into the event line.
"""

from __future__ import annotations

import json
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class Span:
    """Timed section of a run. Use as a context manager or call ``end()``."""

    name: str
    trace_id: str
    attributes: dict[str, Any] = field(default_factory=dict)
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])
    status: str = 'ok'
    _start: float = field(default_factory=time.perf_counter, repr=False)
    _end: float | None = field(default=None, repr=False)

    def __enter__(self) -> Span:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.status = 'error'
        self.end()

    def end(self) -> None:
        if self._end is None:
            self._end = time.perf_counter()

    @property
    def duration_ms(self) -> float | None:
        if self._end is None:
            return None
        return round((self._end - self._start) * 1000.0, 3)

    def as_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'span_id': self.span_id,
            'status': self.status,
            'duration_ms': self.duration_ms,
            'attributes': self.attributes,
        }


def new_trace_id() -> str:
    return uuid.uuid4().hex


def log_event(event: str, *, trace_id: str, span: Span | None = None, **fields: Any) -> None:
    payload: dict[str, Any] = {
        'ts': datetime.now(timezone.utc).isoformat(timespec='milliseconds'),
        'event': event,
        'trace_id': trace_id,
        **fields,
    }
    if span is not None:
        payload['span'] = span.as_dict()
    # Enums, paths and the like fall back to str().
    print(json.dumps(payload, ensure_ascii=False, default=str), file=sys.stderr)

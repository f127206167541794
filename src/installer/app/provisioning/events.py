"""One-way progress event stream for a provisioning run.

Wire contract (one JSON object per ``data:`` line):

  {"type": "progress", "progress": 42, "title": ..., "subtitle": ...}
  {"type": "error", "error": ..., "errorDetails": ..., "returnToStep": 4}
  {"type": "complete"}

A stream is an append-only sequence of ``progress`` events terminated by
exactly one ``error`` or ``complete`` event, after which it is closed for
good. There is a single producer (the orchestrator) and a single consumer
(the HTTP response body). Nothing is buffered for replay: a consumer that
goes away simply misses whatever is produced afterwards.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Union

from .steps import WizardScreen

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = 'text/event-stream'


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    progress: int
    title: str
    subtitle: str

    terminal = False

    def to_payload(self) -> dict[str, Any]:
        return {
            'type': 'progress',
            'progress': self.progress,
            'title': self.title,
            'subtitle': self.subtitle,
        }


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    error: str
    error_details: str
    return_to_step: WizardScreen

    terminal = True

    def to_payload(self) -> dict[str, Any]:
        return {
            'type': 'error',
            'error': self.error,
            'errorDetails': self.error_details,
            'returnToStep': int(self.return_to_step),
        }


@dataclass(frozen=True, slots=True)
class CompleteEvent:
    terminal = True

    def to_payload(self) -> dict[str, Any]:
        return {'type': 'complete'}


StreamEvent = Union[ProgressEvent, ErrorEvent, CompleteEvent]


class StreamClosedError(RuntimeError):
    """Raised when an event is sent after the stream was closed."""


def encode_sse(event: StreamEvent) -> bytes:
    """Serialize ``event`` as a single SSE ``data:`` frame."""
    body = json.dumps(event.to_payload(), ensure_ascii=False, separators=(',', ':'))
    return f'data: {body}\n\n'.encode()


_CLOSED = object()


class EventStream:
    """Single-producer/single-consumer channel of provisioning events."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._terminated = False
        self._sent: int = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminated(self) -> bool:
        """True once a terminal (error/complete) event has been sent."""
        return self._terminated

    @property
    def sent_count(self) -> int:
        return self._sent

    async def send(self, event: StreamEvent) -> None:
        """Append ``event``; a terminal event closes the stream."""
        if self._closed:
            raise StreamClosedError(
                f'cannot send {event.to_payload()["type"]!r} event: stream is closed'
            )
        self._queue.put_nowait(event)
        self._sent += 1
        if event.terminal:
            self._terminated = True
            self.close()

    def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self._terminated:
            logger.warning('Event stream closed without a terminal event')
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until the stream closes."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    async def iter_sse(self) -> AsyncIterator[bytes]:
        """Yield SSE-encoded frames; used as a ``StreamingResponse`` body."""
        async for event in self.events():
            yield encode_sse(event)

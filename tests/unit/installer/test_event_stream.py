"""Event stream and SSE framing tests."""

from __future__ import annotations

import asyncio
import json

import pytest

from installer.app.provisioning.events import (
    CompleteEvent,
    ErrorEvent,
    EventStream,
    ProgressEvent,
    StreamClosedError,
    encode_sse,
)
from installer.app.provisioning.steps import WizardScreen


def _decode(frame: bytes) -> dict:
    text = frame.decode()
    assert text.startswith('data: ')
    assert text.endswith('\n\n')
    return json.loads(text[len('data: '):-2])


class TestWireFormat:
    def test_progress_frame(self):
        frame = encode_sse(ProgressEvent(progress=42, title='Deploying...', subtitle='Triggering'))
        assert _decode(frame) == {
            'type': 'progress',
            'progress': 42,
            'title': 'Deploying...',
            'subtitle': 'Triggering',
        }

    def test_error_frame_uses_camel_case_and_int_screen(self):
        frame = encode_sse(
            ErrorEvent(
                error='Queue token rejected',
                error_details='ProvisioningError: Queue token rejected',
                return_to_step=WizardScreen.QUEUE,
            )
        )
        assert _decode(frame) == {
            'type': 'error',
            'error': 'Queue token rejected',
            'errorDetails': 'ProvisioningError: Queue token rejected',
            'returnToStep': 5,
        }

    def test_complete_frame(self):
        assert _decode(encode_sse(CompleteEvent())) == {'type': 'complete'}

    def test_non_ascii_is_kept(self):
        frame = encode_sse(ProgressEvent(progress=1, title='Démarrage', subtitle='…'))
        assert _decode(frame)['title'] == 'Démarrage'


class TestEventStream:
    @pytest.mark.asyncio
    async def test_terminal_event_closes_stream(self):
        stream = EventStream()
        await stream.send(ProgressEvent(progress=0, title='a', subtitle='b'))
        await stream.send(CompleteEvent())

        assert stream.closed
        assert stream.terminated
        assert stream.sent_count == 2
        events = [event async for event in stream.events()]
        assert [type(e) for e in events] == [ProgressEvent, CompleteEvent]

    @pytest.mark.asyncio
    async def test_send_after_close_raises(self):
        stream = EventStream()
        await stream.send(CompleteEvent())
        with pytest.raises(StreamClosedError):
            await stream.send(ProgressEvent(progress=1, title='a', subtitle='b'))

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        stream = EventStream()
        stream.close()
        stream.close()
        assert stream.closed
        assert not stream.terminated
        assert [event async for event in stream.events()] == []

    @pytest.mark.asyncio
    async def test_consumer_sees_events_as_they_arrive(self):
        stream = EventStream()
        received: list[bytes] = []

        async def consume() -> None:
            async for frame in stream.iter_sse():
                received.append(frame)

        consumer = asyncio.create_task(consume())
        await stream.send(ProgressEvent(progress=5, title='a', subtitle='b'))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert len(received) == 1

        await stream.send(
            ErrorEvent(error='boom', error_details='x', return_to_step=WizardScreen.DATABASE)
        )
        await asyncio.wait_for(consumer, timeout=1)
        assert [_decode(f)['type'] for f in received] == ['progress', 'error']

"""Streaming decoder - line-delimited SSE feed to ChatStreamEvents.

The transport hands us raw lines; the decoder groups ``event:``/``data:``
fields into records terminated by a blank line, parses the record payload as
JSON and asks a vendor translator what the record means:

    translate(event_name, payload) -> iterable of ChatStreamEvent

Comments, keep-alives, unknown fields and malformed payloads are dropped.
A ``data: [DONE]`` record is the generic end-of-stream marker. Everything
after the first terminal event is ignored, and a feed that ends without one
produces a synthetic ERROR event so consumers can tell "finished" from
"connection dropped".
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Iterable, Optional

import httpx

from .errors import StreamDroppedError, classify_transport_error
from .types import ChatStreamEvent

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

Translator = Callable[[Optional[str], Any], Iterable[ChatStreamEvent]]


class SSEDecoder:
    """Incremental, side-effect free SSE record decoder.

    Args:
        translate: Vendor translator for parsed records
        provider: Provider name attached to synthesized errors
    """

    def __init__(self, translate: Translator, provider: Optional[str] = None):
        self._translate = translate
        self._provider = provider
        self._event: Optional[str] = None
        self._data: list[str] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        """True once a terminal event has been produced."""
        return self._finished

    def feed(self, line: str) -> list[ChatStreamEvent]:
        """Consume one raw line and return any events it completes."""
        if self._finished:
            return []

        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            # comment / heartbeat
            return []

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if name == "data":
            self._data.append(value)
        elif name == "event":
            self._event = value
        return []

    def finish(self) -> list[ChatStreamEvent]:
        """Signal end of input; flush a pending record or report the drop."""
        events = [] if self._finished else self._dispatch()
        if not self._finished:
            self._finished = True
            events.append(
                ChatStreamEvent.failure(
                    StreamDroppedError(
                        "Stream ended without a terminal event",
                        provider=self._provider,
                    )
                )
            )
        return events

    def _dispatch(self) -> list[ChatStreamEvent]:
        event_name, data_lines = self._event, self._data
        self._event, self._data = None, []
        if not data_lines:
            return []

        data = "\n".join(data_lines)
        if data.strip() == DONE_SENTINEL:
            return self._emit([ChatStreamEvent.done()])

        try:
            payload = json.loads(data)
        except ValueError:
            logger.debug("Dropping malformed SSE payload: %.200s", data)
            return []
        return self._emit(self._translate(event_name, payload))

    def _emit(self, events: Iterable[ChatStreamEvent]) -> list[ChatStreamEvent]:
        out: list[ChatStreamEvent] = []
        for event in events:
            out.append(event)
            if event.is_terminal:
                self._finished = True
                break
        return out


async def decode_sse(
    lines: AsyncIterator[str],
    translate: Translator,
    *,
    provider: Optional[str] = None,
) -> AsyncIterator[ChatStreamEvent]:
    """Decode an async line source into a terminated event sequence.

    Stops pulling from ``lines`` as soon as a terminal event is produced.
    Transport failures while reading become a terminal ERROR event.
    """
    decoder = SSEDecoder(translate, provider=provider)
    try:
        async for line in lines:
            for event in decoder.feed(line):
                yield event
            if decoder.finished:
                return
    except httpx.HTTPError as e:
        yield ChatStreamEvent.failure(classify_transport_error(provider or "unknown", e))
        return

    for event in decoder.finish():
        yield event


__all__ = [
    "DONE_SENTINEL",
    "Translator",
    "SSEDecoder",
    "decode_sse",
]

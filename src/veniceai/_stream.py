"""
Streaming support for the veniceai SDK.

This module turns the raw byte stream of a server-sent events response into
discrete messages:

- FrameDecoder: pure, stateful transform from byte chunks to StreamEvents.
- MessageStream: consume-once iterator over a streaming HTTP response that
  owns the decoder, the connection and the admission slot.

Wire format (OpenAI-compatible)::

    data: {"choices":[{"index":0,"delta":{"content":"Hel"}}]}
    data: {"choices":[{"index":0,"delta":{"content":"lo"}}]}
    data: [DONE]

Example:
    >>> with client.chat_stream({"model": "llama-3.3-70b", "messages": messages}) as stream:
    ...     for text in stream.text_stream:
    ...         print(text, end="", flush=True)
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import requests

from veniceai._errors import RequestCancelledError, StreamInterruptedError

if TYPE_CHECKING:
    from veniceai._models import RequestSpec
    from veniceai._retry import Retrying

logger = logging.getLogger(__name__)


class StreamEventType(StrEnum):
    """Type of a decoded streaming message."""

    DELTA = "delta"
    DONE = "done"


@dataclass(frozen=True)
class StreamEvent:
    """
    A single decoded message from a streaming response.

    Attributes:
        type: DELTA for a parsed data frame, DONE for the terminal sentinel.
        data: The parsed JSON payload (None for DONE).
    """

    type: StreamEventType
    data: Any = None

    @property
    def is_delta(self) -> bool:
        return self.type == StreamEventType.DELTA

    @property
    def is_done(self) -> bool:
        return self.type == StreamEventType.DONE

    @property
    def text(self) -> str:
        """
        Text content carried by this message.

        Supports the OpenAI-compatible format (``choices[0].delta.content``)
        with fallback to flat fields for forward-compatibility.
        """
        data = self.data
        if not isinstance(data, dict):
            return ""

        choices = data.get("choices")
        if isinstance(choices, list) and len(choices) > 0:
            choice = choices[0]
            if isinstance(choice, dict):
                delta = choice.get("delta")
                if isinstance(delta, dict):
                    content = delta.get("content")
                    if content is not None:
                        return str(content)

        for field in ("content", "text"):
            value = data.get(field)
            if isinstance(value, str):
                return value

        return ""


# =============================================================================
# Frame Decoder
# =============================================================================


class FrameDecoder:
    """
    Incremental decoder for line-delimited event frames.

    Bytes are appended to an internal buffer; every complete line (terminated
    by ``\\n``) is cut out and classified:

    - blank line: ignored
    - ``data: [DONE]``: emits a DONE event and stops decoding for good
    - ``data: <json>``: emits a DELTA event
    - ``data: <not json>``: skipped (intermediaries emit keep-alive noise)
    - anything else (``event:``, ``id:``, ``: comment``): ignored

    The output depends only on the concatenated bytes, never on how they were
    chunked. Lines are split on raw bytes, so multi-byte UTF-8 characters
    spanning two chunks are reassembled before decoding.

    The decoder never raises for malformed content; ``malformed_count``
    counts the frames it had to skip.

    Example:
        >>> decoder = FrameDecoder()
        >>> decoder.feed(b'data: {"v": 1}\\ndata: {"v"')
        [StreamEvent(type=<StreamEventType.DELTA: 'delta'>, data={'v': 1})]
        >>> decoder.feed(b': 2}\\ndata: [DONE]\\n')
        [StreamEvent(type=<StreamEventType.DELTA: 'delta'>, data={'v': 2}), StreamEvent(type=<StreamEventType.DONE: 'done'>, data=None)]
    """

    DATA_PREFIX = "data:"
    SENTINEL = "[DONE]"

    def __init__(self) -> None:
        self._buffer = bytearray()
        # Everything before _offset has been consumed; _scan_from marks where
        # the newline search resumes so a long partial line is scanned once.
        self._offset = 0
        self._scan_from = 0
        self.done = False
        self.malformed_count = 0

    @property
    def pending_bytes(self) -> int:
        """Number of buffered bytes belonging to an incomplete trailing line."""
        return len(self._buffer) - self._offset

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """
        Append ``chunk`` and return the events for every line it completes.

        Returns an empty list once the sentinel has been seen.
        """
        if self.done or not chunk:
            return []

        self._buffer += chunk
        events: list[StreamEvent] = []
        while not self.done:
            newline = self._buffer.find(b"\n", self._scan_from)
            if newline == -1:
                self._scan_from = len(self._buffer)
                break
            line = bytes(self._buffer[self._offset:newline])
            self._offset = newline + 1
            self._scan_from = self._offset
            event = self._classify(line)
            if event is not None:
                events.append(event)

        self._compact()
        return events

    def finish(self) -> list[StreamEvent]:
        """
        Flush the trailing unterminated line, if any, at end of stream.

        The remainder is classified exactly like a complete line, then the
        buffer is cleared.
        """
        if self.done:
            return []
        remainder = bytes(self._buffer[self._offset:])
        self._reset_buffer()
        event = self._classify(remainder) if remainder else None
        return [event] if event is not None else []

    def _classify(self, raw_line: bytes) -> StreamEvent | None:
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line or not line.startswith(self.DATA_PREFIX):
            return None

        payload = line[len(self.DATA_PREFIX):].strip()
        if payload == self.SENTINEL:
            self.done = True
            self._reset_buffer()
            return StreamEvent(type=StreamEventType.DONE)

        try:
            data = json.loads(payload)
        except ValueError:
            self.malformed_count += 1
            logger.debug(f"Skipping malformed stream frame: {payload[:100]!r}")
            return None
        return StreamEvent(type=StreamEventType.DELTA, data=data)

    def _compact(self) -> None:
        if self._offset:
            del self._buffer[:self._offset]
            self._scan_from -= self._offset
            self._offset = 0

    def _reset_buffer(self) -> None:
        self._buffer.clear()
        self._offset = 0
        self._scan_from = 0


# =============================================================================
# Message Stream
# =============================================================================


class MessageStream:
    """
    Context manager and iterator for streaming responses.

    Wraps an HTTP response opened with ``stream=True`` and decodes its frames
    into StreamEvents lazily, as the caller iterates. Consumable only once.

    The stream holds the request's admission slot and releases it exactly
    once, at whichever comes first: the ``[DONE]`` sentinel, end of the body,
    an error, cancellation, or ``close()``. Use it as a context manager so an
    abandoned stream still gives its slot back::

        with client.chat_stream(body) as stream:
            for event in stream:
                ...

    **Error handling:** a failure before any message was yielded is treated
    like a failed request: it is retried (new connection, fresh decoder,
    same retry budget, same slot). A failure after messages were yielded
    raises StreamInterruptedError and is never retried. Cancellation raises
    RequestCancelledError.

    Attributes:
        spec: The RequestSpec that opened this stream.
        delivered: Number of DELTA messages yielded so far.
        accumulated_text: Text accumulated so far during iteration.
    """

    def __init__(
        self,
        spec: RequestSpec,
        http_response: requests.Response,
        retrying: Retrying,
        reopen: Callable[[], requests.Response],
        release: Callable[[], None],
    ) -> None:
        self._spec = spec
        self._http_response = http_response
        self._retrying = retrying
        self._reopen = reopen
        self._release = release
        self._release_lock = threading.Lock()
        self._released = False
        self._iterated = False
        self._unwatch_cancellation: Callable[[], None] | None = None
        self._accumulated_parts: list[str] = []
        self.delivered = 0
        self.decoder: FrameDecoder | None = None
        if spec.cancel_token is not None:
            # Slot is released on cancel even before iteration; closing the response aborts a blocked read
            self._unwatch_cancellation = spec.cancel_token.add_callback(self._finish)

    @property
    def spec(self) -> RequestSpec:
        return self._spec

    @property
    def accumulated_text(self) -> str:
        return "".join(self._accumulated_parts)

    @property
    def closed(self) -> bool:
        return self._released

    def __enter__(self) -> MessageStream:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __iter__(self) -> Iterator[StreamEvent]:
        """
        Iterate decoded events from the streaming response.

        Yields DELTA events in arrival order, followed by one DONE event when
        the server sends the sentinel.

        Raises:
            RuntimeError: If iterated more than once.
            StreamInterruptedError: If the stream fails after delivering messages.
            MaxRetriesExceededError: If reconnecting keeps failing before any message.
            RequestCancelledError: If the request's token is cancelled.
        """
        if self._iterated:
            raise RuntimeError("MessageStream can only be iterated once.")
        self._iterated = True

        prefix = self._spec.log_prefix
        try:
            while True:
                try:
                    yield from self._read_events()
                    return
                except RequestCancelledError:
                    raise
                except Exception as e:
                    self._close_response()
                    if self._spec.cancel_token is not None and self._spec.cancel_token.is_cancelled:
                        raise RequestCancelledError("Request was cancelled while streaming") from e
                    if self.delivered > 0:
                        logger.error(f"{prefix} | ❌ Stream interrupted after {self.delivered} message(s): {e}")
                        raise StreamInterruptedError(
                            f"Stream interrupted after {self.delivered} message(s): {e}",
                            delivered=self.delivered,
                            cause=e,
                        ) from e
                    # Nothing delivered yet: indistinguishable from a failed request
                    self._retrying.handle_failure(e)
                    self._http_response = self._reopen()
        finally:
            self._finish()

    @property
    def text_stream(self) -> Iterator[str]:
        """
        Convenience iterator that yields only text chunks from DELTA events.

        Example:
            >>> with client.chat_stream(body) as stream:
            ...     for text in stream.text_stream:
            ...         print(text, end="", flush=True)
        """
        for event in self:
            if event.is_delta and event.text:
                yield event.text

    def until_done(self) -> str:
        """Consume the stream silently and return the accumulated text."""
        for _ in self:
            pass
        return self.accumulated_text

    def close(self) -> None:
        """Close the underlying HTTP connection and release the admission slot."""
        self._finish()

    def _read_events(self) -> Iterator[StreamEvent]:
        decoder = FrameDecoder()
        self.decoder = decoder

        for chunk in self._http_response.iter_content(chunk_size=None):
            self._raise_if_cancelled()
            if not chunk:
                continue
            for event in decoder.feed(chunk):
                yield from self._emit(event)
            if decoder.done:
                return

        self._raise_if_cancelled()
        for event in decoder.finish():
            yield from self._emit(event)
        logger.debug(f"{self._spec.log_prefix} | Stream ended without sentinel ({self.delivered} message(s))")

    def _emit(self, event: StreamEvent) -> Iterator[StreamEvent]:
        if event.is_done:
            logger.info(f"{self._spec.log_prefix} | ✅ Stream completed ({self.delivered} message(s))")
            # Sentinel seen: give the slot back before handing out the terminal marker
            self._finish()
            yield event
            return
        self.delivered += 1
        text = event.text
        if text:
            self._accumulated_parts.append(text)
        yield event

    def _raise_if_cancelled(self) -> None:
        if self._spec.cancel_token is not None:
            self._spec.cancel_token.raise_if_cancelled()

    def _close_response(self) -> None:
        try:
            self._http_response.close()
        except Exception as e:
            logger.debug(f"{self._spec.log_prefix} | Error closing stream response: {e}")

    def _finish(self) -> None:
        with self._release_lock:
            if self._released:
                return
            self._released = True

        if self._unwatch_cancellation is not None:
            self._unwatch_cancellation()
            self._unwatch_cancellation = None
        self._close_response()
        self._release()

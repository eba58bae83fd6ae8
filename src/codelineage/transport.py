"""Multiplex JSON-RPC requests over one duplex byte stream."""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Protocol

from codelineage.errors import ProtocolError, TransportClosedError
from codelineage.protocol import (
    FrameDecoder,
    Message,
    Notification,
    Request,
    Response,
    decode_body,
    encode_frame,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

Listener = Callable[[Any], None]


class ByteWriter(Protocol):
    """The subset of :class:`asyncio.StreamWriter` the endpoint writes through."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...


class JsonRpcEndpoint:
    """JSON-RPC 2.0 endpoint over an asyncio stream pair.

    Any number of requests may be in flight at once; each gets its own id
    and future, and responses resolve their futures in whatever order they
    arrive.  Notifications from the peer go to listeners registered with
    :meth:`on`.  Once the inbound stream ends, every pending request fails
    with :class:`TransportClosedError` and so does every later call.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: ByteWriter,
        *,
        request_timeout: float | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._request_timeout = request_timeout
        self._decoder = FrameDecoder()
        self._ids = itertools.count(1)
        self._pending: dict[int | str, asyncio.Future] = {}
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._reader_task: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        """Start the background reader; must be called from a running loop."""
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(
                self._read_loop(), name="codelineage-reader"
            )

    def on(self, method: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for peer messages named *method*.

        Returns a callable that unregisters it again.
        """
        self._listeners[method].append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners[method].remove(listener)

        return remove

    async def send(self, method: str, params: Any = None) -> Any:
        """Send a request and wait for the matching response's result.

        Raises :class:`~codelineage.errors.ResponseError` when the peer
        answers with an error object.
        """
        if self._closed:
            raise TransportClosedError(f"Cannot send {method}: stream is closed")

        request = Request(id=next(self._ids), method=method, params=params)
        future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await self._write(request)
        except TransportClosedError as e:
            self._pending.pop(request.id, None)
            self._mark_closed(str(e))
            raise
        except asyncio.CancelledError:
            self._pending.pop(request.id, None)
            raise
        logger.debug("-> request id=%s method=%s", request.id, method)

        try:
            if self._request_timeout is None:
                return await future
            return await asyncio.wait_for(future, self._request_timeout)
        finally:
            self._pending.pop(request.id, None)

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a notification; no response is expected."""
        if self._closed:
            raise TransportClosedError(f"Cannot notify {method}: stream is closed")
        try:
            await self._write(Notification(method=method, params=params))
        except TransportClosedError as e:
            self._mark_closed(str(e))
            raise
        logger.debug("-> notification method=%s", method)

    async def close(self) -> None:
        """Stop reading, fail pending requests and close the outbound stream."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._mark_closed("Endpoint closed")
        with contextlib.suppress(ConnectionError):
            self._writer.close()

    async def _write(self, message: Message) -> None:
        try:
            self._writer.write(encode_frame(message))
            await self._writer.drain()
        except ConnectionError as e:
            raise TransportClosedError(f"Write failed: {e}") from e

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self._decoder.feed(chunk)
                self._drain_frames()
        except ConnectionError as e:
            logger.warning("Language server stream failed: %s", e)
        finally:
            if self._decoder.has_partial_frame:
                logger.warning(
                    "Protocol error: stream closed before a frame was complete"
                )
            self._mark_closed("Language server stream closed")

    def _drain_frames(self) -> None:
        while True:
            try:
                body = self._decoder.next_frame()
                if body is None:
                    return
                message = decode_body(body)
            except ProtocolError as e:
                logger.warning("Dropping malformed frame: %s", e)
                continue
            self._dispatch(message)

    def _dispatch(self, message: Message) -> None:
        if isinstance(message, Response):
            future = self._pending.get(message.id)
            if future is None or future.done():
                logger.debug("<- response for unknown id=%r ignored", message.id)
                return
            logger.debug("<- response id=%r", message.id)
            if message.error is not None:
                future.set_exception(message.error)
            else:
                future.set_result(message.result)
        elif isinstance(message, Request):
            logger.debug("<- server request id=%r method=%s", message.id, message.method)
            self._emit(message.method, message.params)
            self._answer(message)
        else:
            logger.debug("<- notification method=%s", message.method)
            self._emit(message.method, message.params)

    def _emit(self, method: str, params: Any) -> None:
        for listener in list(self._listeners.get(method, ())):
            try:
                listener(params)
            except Exception:
                logger.exception("Listener for %s failed", method)

    def _answer(self, request: Request) -> None:
        """Reply to a server-initiated request so the server never stalls."""
        result: Any = None
        if request.method == "workspace/configuration":
            params = request.params if isinstance(request.params, dict) else {}
            items = params.get("items", [])
            result = [None] * len(items)
        try:
            self._writer.write(encode_frame(Response(id=request.id, result=result)))
        except ConnectionError as e:
            logger.warning("Could not answer %s: %s", request.method, e)

    def _mark_closed(self, reason: str) -> None:
        self._closed = True
        pending, self._pending = self._pending, {}
        for request_id, future in pending.items():
            if not future.done():
                logger.debug("Rejecting pending request id=%r: %s", request_id, reason)
                future.set_exception(TransportClosedError(reason))

"""JSON-RPC 2.0 message variants and Content-Length framing.

Every inbound payload is validated into exactly one of :class:`Request`,
:class:`Response` or :class:`Notification` before it reaches the transport's
dispatch logic.  Wire format::

    Content-Length: 52\\r\\n
    \\r\\n
    {"jsonrpc":"2.0","id":1,"method":"initialize","params":{}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from codelineage.errors import ProtocolError, ResponseError

JSONRPC_VERSION = "2.0"
HEADER_END = b"\r\n\r\n"
CONTENT_LENGTH_PREFIX = b"content-length:"


@dataclass(frozen=True)
class Request:
    id: int | str
    method: str
    params: Any = None

    def to_dict(self) -> dict:
        d: dict = {"jsonrpc": JSONRPC_VERSION, "id": self.id, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


@dataclass(frozen=True)
class Notification:
    method: str
    params: Any = None

    def to_dict(self) -> dict:
        d: dict = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            d["params"] = self.params
        return d


@dataclass(frozen=True)
class Response:
    id: int | str | None
    result: Any = None
    error: ResponseError | None = None

    def to_dict(self) -> dict:
        d: dict = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            d["error"] = {
                "code": self.error.code,
                "message": self.error.error_message,
            }
            if self.error.data is not None:
                d["error"]["data"] = self.error.data
        else:
            d["result"] = self.result
        return d


Message = Request | Response | Notification


def parse_message(payload: Any) -> Message:
    """Validate a decoded JSON payload into a message variant."""
    if not isinstance(payload, dict):
        raise ProtocolError(f"Expected a JSON object, got {type(payload).__name__}")

    msg_id = payload.get("id")
    if msg_id is not None and (
        isinstance(msg_id, bool) or not isinstance(msg_id, (int, str))
    ):
        raise ProtocolError(f"Invalid message id: {msg_id!r}")

    if "method" in payload:
        method = payload["method"]
        if not isinstance(method, str):
            raise ProtocolError(f"Invalid method name: {method!r}")
        params = payload.get("params")
        if "id" in payload and msg_id is not None:
            return Request(id=msg_id, method=method, params=params)
        return Notification(method=method, params=params)

    if "id" not in payload:
        raise ProtocolError("Message has neither an id nor a method")

    if "error" in payload:
        err = payload["error"]
        if not isinstance(err, dict) or not isinstance(err.get("code"), int):
            raise ProtocolError(f"Malformed error object: {err!r}")
        return Response(
            id=msg_id,
            error=ResponseError(err["code"], str(err.get("message", "")), err.get("data")),
        )

    if "result" not in payload:
        raise ProtocolError(f"Response {msg_id!r} has neither result nor error")
    return Response(id=msg_id, result=payload["result"])


def decode_body(body: bytes) -> Message:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Unparsable payload: {e}") from e
    return parse_message(payload)


def encode_frame(message: Message) -> bytes:
    """Serialize *message* and prefix it with its exact byte length."""
    body = json.dumps(message.to_dict(), separators=(",", ":")).encode("utf-8")
    header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
    return header + body


def _content_length(header: bytes) -> int:
    try:
        text = header.decode("ascii")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Non-ASCII frame header: {header!r}") from e

    for line in text.split("\r\n"):
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "content-length":
            try:
                length = int(value.strip())
            except ValueError as e:
                raise ProtocolError(f"Invalid Content-Length: {value.strip()!r}") from e
            if length < 0:
                raise ProtocolError(f"Negative Content-Length: {length}")
            return length

    raise ProtocolError(f"No Content-Length in header: {text!r}")


class FrameDecoder:
    """Incremental frame parser.

    Bytes arrive in arbitrary chunks via :meth:`feed`; :meth:`next_frame`
    returns one complete body at a time, or None until enough bytes have
    been buffered.  A bad header is consumed before :class:`ProtocolError`
    is raised, so the next call resumes at the following frame.  When a
    frame declared too short a length, its leftover bytes run into the next
    header; those are skipped up to the last `Content-Length:` in the block.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._body_length: int | None = None

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def next_frame(self) -> bytes | None:
        if self._body_length is None:
            end = self._buffer.find(HEADER_END)
            if end < 0:
                return None
            header = bytes(self._buffer[:end])
            try:
                length = _content_length(header)
            except ProtocolError:
                # Leftover bytes of a frame whose declared length was too
                # short sit in front of the next header; restart there.
                start = header.lower().rfind(CONTENT_LENGTH_PREFIX)
                if start > 0:
                    del self._buffer[:start]
                    raise ProtocolError(
                        f"Discarded {start} bytes before Content-Length header"
                    ) from None
                del self._buffer[: end + len(HEADER_END)]
                raise
            del self._buffer[: end + len(HEADER_END)]
            self._body_length = length

        if len(self._buffer) < self._body_length:
            return None

        body = bytes(self._buffer[: self._body_length])
        del self._buffer[: self._body_length]
        self._body_length = None
        return body

    @property
    def has_partial_frame(self) -> bool:
        """True when buffered bytes do not yet form a complete frame."""
        return self._body_length is not None or bool(self._buffer.strip())

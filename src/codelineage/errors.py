"""Exception hierarchy shared by the transport, client and session."""

from __future__ import annotations

from typing import Any


class LineageError(Exception):
    """Base class for codelineage errors."""


class ProtocolError(LineageError):
    """A frame or message from the peer could not be understood."""


class TransportClosedError(LineageError):
    """The stream to the language server is closed."""


class ServerStartError(LineageError):
    """The language server process could not be spawned."""


class ResponseError(LineageError):
    """The peer answered a request with a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"JSON-RPC error {code}: {message}")
        self.code = code
        self.error_message = message
        self.data = data

"""Typed language-server client for the few operations lineage needs."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

from codelineage.errors import LineageError, ServerStartError
from codelineage.model import (
    CallHierarchyIncomingCall,
    CallHierarchyItem,
    Position,
    Range,
    SymbolInformation,
)
from codelineage.transport import JsonRpcEndpoint

logger = logging.getLogger(__name__)

CLIENT_NAME = "codelineage"
CLIENT_VERSION = "0.1.0"


class LspClient:
    """Thin wrapper that turns LSP payloads into model dataclasses.

    Empty (``null``) results come back as empty lists: "no symbols" and
    "no callers" are valid answers, not errors.
    """

    def __init__(self, endpoint: JsonRpcEndpoint) -> None:
        self.endpoint = endpoint

    async def initialize(self, root_uri: str) -> dict:
        params = {
            "processId": os.getpid(),
            "rootUri": root_uri,
            "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
            "capabilities": {
                "textDocument": {
                    "documentSymbol": {"hierarchicalDocumentSymbolSupport": True},
                    "callHierarchy": {"dynamicRegistration": False},
                },
            },
            "workspaceFolders": [{"uri": root_uri, "name": Path(root_uri).name}],
        }
        return await self.endpoint.send("initialize", params) or {}

    async def initialized(self) -> None:
        await self.endpoint.notify("initialized", {})

    async def shutdown(self) -> None:
        await self.endpoint.send("shutdown")

    async def exit(self) -> None:
        await self.endpoint.notify("exit")

    async def did_open(self, uri: str, language_id: str, text: str) -> None:
        await self.endpoint.notify(
            "textDocument/didOpen",
            {
                "textDocument": {
                    "uri": uri,
                    "languageId": language_id,
                    "version": 1,
                    "text": text,
                }
            },
        )

    async def did_close(self, uri: str) -> None:
        await self.endpoint.notify(
            "textDocument/didClose", {"textDocument": {"uri": uri}}
        )

    async def document_symbols(self, uri: str) -> list[SymbolInformation]:
        result = await self.endpoint.send(
            "textDocument/documentSymbol", {"textDocument": {"uri": uri}}
        )
        return parse_document_symbols(uri, result)

    async def prepare_call_hierarchy(
        self, uri: str, position: Position
    ) -> list[CallHierarchyItem]:
        result = await self.endpoint.send(
            "textDocument/prepareCallHierarchy",
            {"textDocument": {"uri": uri}, "position": position.to_dict()},
        )
        return [CallHierarchyItem.from_dict(item) for item in result or []]

    async def incoming_calls(
        self, item: CallHierarchyItem
    ) -> list[CallHierarchyIncomingCall]:
        result = await self.endpoint.send(
            "callHierarchy/incomingCalls", {"item": item.raw}
        )
        return [CallHierarchyIncomingCall.from_dict(call) for call in result or []]


def parse_document_symbols(uri: str, result: Sequence[dict] | None) -> list[SymbolInformation]:
    """Flatten either ``SymbolInformation[]`` or ``DocumentSymbol[]`` into a list."""
    symbols: list[SymbolInformation] = []
    stack: list[dict] = list(reversed(result or []))
    while stack:
        entry = stack.pop()
        if "location" in entry:
            location = entry["location"]
            symbols.append(
                SymbolInformation(
                    name=entry["name"],
                    kind=int(entry["kind"]),
                    uri=location.get("uri", uri),
                    range=Range.from_dict(location["range"]),
                )
            )
            continue

        symbols.append(
            SymbolInformation(
                name=entry["name"],
                kind=int(entry["kind"]),
                uri=uri,
                range=Range.from_dict(entry["range"]),
                selection_range=Range.from_dict(entry["selectionRange"]),
            )
        )
        stack.extend(reversed(entry.get("children") or []))
    return symbols


async def start_server(
    command: Sequence[str],
    cwd: Path,
    *,
    request_timeout: float | None = None,
) -> tuple[asyncio.subprocess.Process, LspClient]:
    """Spawn the language server and connect a client to its stdio."""
    if not command:
        raise ServerStartError("No language server command configured")
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            cwd=str(cwd),
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ServerStartError(f"Could not start {command[0]}: {e}") from e

    logger.debug("Started %s (pid %s)", " ".join(command), process.pid)
    assert process.stdout is not None
    assert process.stdin is not None
    endpoint = JsonRpcEndpoint(
        process.stdout, process.stdin, request_timeout=request_timeout
    )
    endpoint.start()
    return process, LspClient(endpoint)


async def stop_server(process: asyncio.subprocess.Process, client: LspClient) -> None:
    """Shut the server down politely, killing it if it does not exit."""
    try:
        if not client.endpoint.closed:
            await client.shutdown()
            await client.exit()
    except (LineageError, asyncio.TimeoutError) as e:
        logger.debug("Shutdown handshake failed: %s", e)
    finally:
        await client.endpoint.close()

    try:
        await asyncio.wait_for(process.wait(), timeout=5)
    except asyncio.TimeoutError:
        logger.warning("Language server did not exit; killing pid %s", process.pid)
        process.kill()
        await process.wait()

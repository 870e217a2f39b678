"""WebSocket bridge between the connection controller and UI clients.

Upward events are broadcast to every client as JSON objects with an "event"
key. Clients send commands as JSON objects with a "command" key.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from time import time_ns

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosedError

from .errors import ContractViolation
from .events import (
    AdapterStateChanged,
    Command,
    Connect,
    ConnectionStateChanged,
    DeviceDisconnected,
    DeviceDiscovered,
    Disconnect,
    ErrorKind,
    ErrorOccurred,
    ReadingUpdated,
    SelectDevice,
    SelectionChanged,
    StartScan,
    StopScan,
    UpwardEvent,
)
from .state import Connected, Connecting, ConnectionState, Session

logger = logging.getLogger(__name__)

CommandHandler = Callable[[Command], None]
SnapshotProvider = Callable[[], list[UpwardEvent]]

_SIMPLE_COMMANDS = {
    "connect": Connect,
    "disconnect": Disconnect,
    "start_scan": StartScan,
    "stop_scan": StopScan,
}


def _connection_dict(state: ConnectionState) -> dict:
    if isinstance(state, Connected):
        return {"state": "connected", "address": state.address}
    if isinstance(state, Connecting):
        return {"state": "connecting"}
    return {"state": "not_connected"}


def event_to_dict(event: UpwardEvent) -> dict:
    """Serialize an upward event for clients."""
    if isinstance(event, DeviceDiscovered):
        record = event.record
        return {
            "event": "device_discovered",
            "address": record.address,
            "name": record.name,
            "address_type": record.address_type.value if record.address_type else None,
        }
    if isinstance(event, DeviceDisconnected):
        return {"event": "device_disconnected", "address": event.address}
    if isinstance(event, AdapterStateChanged):
        return {"event": "adapter_state", "state": event.state.value}
    if isinstance(event, SelectionChanged):
        return {"event": "selection", "address": event.address}
    if isinstance(event, ConnectionStateChanged):
        return {"event": "connection_state", **_connection_dict(event.state)}
    if isinstance(event, ReadingUpdated):
        reading = event.reading
        msg: dict[str, int | bool | None | str] = {
            "event": "reading",
            "heart_rate": reading.heart_rate,
            "sensor_contact": reading.sensor_contact,
            "energy_expended": reading.energy_expended,
            "timestamp": time_ns() // 1_000_000,
        }
        if reading.rr_interval is not None:
            msg["rr_interval"] = reading.rr_interval
            msg["rr_ms"] = reading.rr_interval_ms
        return msg
    if isinstance(event, ErrorOccurred):
        return {"event": "error", "kind": event.kind.value, "message": event.message}
    raise TypeError(f"Unknown event: {event!r}")


def parse_command(raw: str | bytes) -> Command:
    """Parse a client command.

    Raises:
        ValueError: If the message is not a known command
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Command must be a JSON object")

    name = data.get("command")
    if name == "select":
        address = data.get("address")
        if not isinstance(address, str) or not address:
            raise ValueError("select requires an address")
        return SelectDevice(address)
    if name in _SIMPLE_COMMANDS:
        return _SIMPLE_COMMANDS[name]()
    raise ValueError(f"Unknown command: {name!r}")


def session_events(session: Session) -> list[UpwardEvent]:
    """Events that bring a newly connected client up to date."""
    events: list[UpwardEvent] = [
        AdapterStateChanged(session.adapter_state),
        ConnectionStateChanged(session.connection),
    ]
    events += [DeviceDiscovered(record) for record in session.registry]
    if session.selected is not None:
        events.append(SelectionChanged(session.selected))
    if session.reading is not None:
        events.append(ReadingUpdated(session.reading))
    return events


class PulseServer:
    """WebSocket server that broadcasts controller events to all connected clients."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8765,
        broadcast_timeout: float = 0.5,
        on_command: CommandHandler | None = None,
        snapshot: SnapshotProvider | None = None,
    ):
        self.host = host
        self.port = port
        self._broadcast_timeout = broadcast_timeout
        self._on_command = on_command
        self._snapshot = snapshot
        self._clients: set[ServerConnection] = set()
        self._server = None

    def _client_info(self, websocket: ServerConnection) -> str:
        """Get client info string for logging."""
        addr = websocket.remote_address
        if addr:
            return f"{addr[0]}:{addr[1]}"
        return "unknown"

    async def _send_error(self, websocket: ServerConnection, kind: ErrorKind, message: str) -> None:
        await websocket.send(json.dumps(event_to_dict(ErrorOccurred(kind, message))))

    async def _handle_command(self, websocket: ServerConnection, raw: str | bytes) -> None:
        try:
            command = parse_command(raw)
        except ValueError as e:
            logger.debug("Bad command from %s: %s", self._client_info(websocket), e)
            await self._send_error(websocket, ErrorKind.CONTRACT_VIOLATION, str(e))
            return
        if self._on_command is None:
            return
        try:
            self._on_command(command)
        except ContractViolation as e:
            logger.info("Rejected %s from %s: %s", type(command).__name__, self._client_info(websocket), e)
            await self._send_error(websocket, ErrorKind.CONTRACT_VIOLATION, str(e))

    async def _handler(self, websocket: ServerConnection) -> None:
        """Handle a WebSocket connection."""
        self._clients.add(websocket)
        logger.info("Client connected: %s (%d total)", self._client_info(websocket), len(self._clients))
        try:
            if self._snapshot is not None:
                for event in self._snapshot():
                    await websocket.send(json.dumps(event_to_dict(event)))
            async for message in websocket:
                await self._handle_command(websocket, message)
        except ConnectionClosedError:
            pass  # Client disconnected abruptly, this is normal
        finally:
            self._clients.discard(websocket)
            logger.info("Client disconnected: %s (%d total)", self._client_info(websocket), len(self._clients))

    async def broadcast(self, message: dict) -> None:
        """Broadcast a message to all connected clients."""
        if not self._clients:
            return
        # Snapshot clients to avoid RuntimeError if set changes during iteration
        clients = list(self._clients)
        data = json.dumps(message)
        try:
            results = await asyncio.wait_for(
                asyncio.gather(
                    *[client.send(data) for client in clients],
                    return_exceptions=True,
                ),
                timeout=self._broadcast_timeout,
            )
            self._remove_failed_clients(clients, results)
        except TimeoutError:
            logger.warning("Broadcast timeout, slow client(s) skipped")

    def _remove_failed_clients(self, clients: list[ServerConnection], results: list) -> None:
        """Remove clients that failed to receive a message."""
        for client, result in zip(clients, results, strict=True):
            if isinstance(result, Exception):
                self._clients.discard(client)
                logger.debug("Removed failed client: %s", result)

    async def broadcast_event(self, event: UpwardEvent) -> None:
        """Broadcast a controller event."""
        await self.broadcast(event_to_dict(event))

    async def start(self) -> None:
        """Start the WebSocket server."""
        self._server = await serve(self._handler, self.host, self.port)
        logger.debug("Server started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop the WebSocket server."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.debug("Server stopped")

    @property
    def client_count(self) -> int:
        """Number of connected clients."""
        return len(self._clients)

"""Entry point for pulse-client."""

import argparse
import asyncio
import logging
import signal
import sys

from .adapter import AdapterFacade
from .config import Config, load_config
from .controller import ConnectionController
from .device import DeviceRecord
from .errors import AdapterUnavailable, ContractViolation
from .events import Connect, DeviceDiscovered, SelectDevice, SelectionChanged, UpwardEvent
from .log import setup_logging
from .server import PulseServer, session_events
from .state import NOT_CONNECTED

logger = logging.getLogger(__name__)

# Shutdown event for graceful termination
_shutdown_event: asyncio.Event | None = None


def _signal_handler() -> None:
    """Handle shutdown signals."""
    if _shutdown_event:
        logger.info("Shutdown requested...")
        _shutdown_event.set()


class AutoConnector:
    """Selects and connects the first discovered device matching a target.

    Used when the device address or a name filter is given on the command
    line, so the client can run without a UI attached.
    """

    def __init__(self, controller: ConnectionController, address: str | None, name_filter: str | None):
        self.controller = controller
        self.address = address.upper() if address else None
        self.name_filter = name_filter.lower() if name_filter else None

    def matches(self, record: DeviceRecord | None) -> bool:
        if record is None:
            return False
        if self.address:
            return record.address == self.address
        if self.name_filter:
            return self.name_filter in (record.name or "").lower()
        return False

    def _submit(self, command: SelectDevice | Connect) -> None:
        try:
            self.controller.submit(command)
        except ContractViolation as e:
            logger.debug("Auto-connect skipped: %s", e)

    def handle(self, event: UpwardEvent) -> None:
        if self.controller.state != NOT_CONNECTED:
            return
        if isinstance(event, DeviceDiscovered):
            if self.controller.selected is None and self.matches(event.record):
                logger.info("Found: %s (%s)", event.record, event.record.address)
                self._submit(SelectDevice(event.record.address))
        elif isinstance(event, SelectionChanged) and event.address:
            if self.matches(self.controller.devices.get(event.address)):
                self._submit(Connect())


async def run(
    config: Config,
    host: str,
    port: int,
    device: str | None,
    name_filter: str | None,
    adapter: str | None = None,
) -> int:
    """Run the Pulse client until a shutdown signal arrives.

    Returns:
        Process exit status
    """
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    facade = AdapterFacade(adapter=adapter, power_poll_interval=config.ble.power_poll_interval)
    try:
        await facade.open()
    except AdapterUnavailable as e:
        logger.error("%s", e)
        return 1

    auto_connector: AutoConnector | None = None

    async def on_event(event: UpwardEvent) -> None:
        await server.broadcast_event(event)
        if auto_connector is not None:
            auto_connector.handle(event)

    controller = ConnectionController(facade, on_event=on_event)
    if device or name_filter:
        auto_connector = AutoConnector(controller, device, name_filter)

    server = PulseServer(
        host=host,
        port=port,
        broadcast_timeout=config.server.broadcast_timeout,
        on_command=controller.submit,
        snapshot=lambda: session_events(controller.session),
    )
    await server.start()
    logger.info("WebSocket server running on ws://%s:%d", host, port)

    controller_task = asyncio.create_task(controller.run())
    shutdown_task = asyncio.create_task(_shutdown_event.wait())
    try:
        # Wait for either shutdown signal or controller to exit
        done, _ = await asyncio.wait(
            [controller_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if controller_task in done:
            controller_task.result()
    finally:
        await controller.shutdown()
        for task in (controller_task, shutdown_task):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await facade.close()
        await server.stop()
        logger.info("Shutdown complete")
    return 0


def main() -> None:
    """CLI entry point."""
    config = load_config()

    parser = argparse.ArgumentParser(description="BLE Heart Rate Service client")
    parser.add_argument("-H", "--host", default=config.server.host, help="Server host")
    parser.add_argument("-p", "--port", type=int, default=config.server.port, help="Server port")
    parser.add_argument(
        "-d",
        "--device",
        default=config.device.address or None,
        help="Connect to this device address once it is discovered",
    )
    parser.add_argument(
        "-n",
        "--name",
        default=config.device.name_filter or None,
        help="Connect to the first device whose name contains this (case-insensitive)",
    )
    parser.add_argument("-a", "--adapter", default=config.ble.adapter or None, help="Bluetooth adapter, e.g. hci0")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--ble-debug", action="store_true", help="Also log bleak backend debug output")
    args = parser.parse_args()

    # Setup logging before anything else
    log_level = "DEBUG" if args.verbose else config.server.log_level
    setup_logging(log_level, ble_debug=args.ble_debug)

    status = asyncio.run(run(config, args.host, args.port, args.device, args.name, args.adapter))
    if status:
        sys.exit(status)


if __name__ == "__main__":
    main()

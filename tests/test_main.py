"""Tests for pulse_client.__main__ module."""

import sys
from unittest.mock import ANY, AsyncMock, MagicMock, patch

import pytest

from pulse_client.__main__ import AutoConnector, main, run
from pulse_client.config import BLEConfig, Config, DeviceConfig, ServerConfig
from pulse_client.device import DeviceRegistry
from pulse_client.errors import AdapterUnavailable, ContractViolation
from pulse_client.events import (
    Connect,
    ConnectionStateChanged,
    DeviceDiscovered,
    SelectDevice,
    SelectionChanged,
)
from pulse_client.state import CONNECTING, NOT_CONNECTED
from tests.helpers import make_record


def run_main(argv: list[str], config: Config | None = None, status: int = 0):
    """Run main() with run() and asyncio.run patched out.

    Returns:
        The (setup_logging, run) mocks
    """
    with patch("pulse_client.__main__.load_config", return_value=config or Config()):
        with patch("pulse_client.__main__.setup_logging") as mock_setup:
            with patch("pulse_client.__main__.run", new=MagicMock()) as mock_run:
                with patch("pulse_client.__main__.asyncio.run", return_value=status):
                    with patch.object(sys, "argv", ["pulse-client", *argv]):
                        main()
    return mock_setup, mock_run


class TestMainArgumentParsing:
    """Tests for CLI argument parsing."""

    def test_default_arguments(self):
        """main() uses config defaults when no args provided."""
        config = Config()
        _, mock_run = run_main([], config)
        mock_run.assert_called_once_with(config, "127.0.0.1", 8765, None, None, None)

    def test_host_and_port_arguments(self):
        _, mock_run = run_main(["-H", "0.0.0.0", "-p", "9000"])
        args = mock_run.call_args[0]
        assert args[1:3] == ("0.0.0.0", 9000)

    def test_device_argument(self):
        _, mock_run = run_main(["-d", "AA:BB:CC:DD:EE:FF"])
        assert mock_run.call_args[0][3] == "AA:BB:CC:DD:EE:FF"

    def test_name_filter_argument(self):
        _, mock_run = run_main(["-n", "Polar"])
        assert mock_run.call_args[0][4] == "Polar"

    def test_adapter_argument(self):
        _, mock_run = run_main(["--adapter", "hci1"])
        assert mock_run.call_args[0][5] == "hci1"

    def test_config_supplies_device_and_adapter(self):
        config = Config(
            device=DeviceConfig(address="11:22:33:44:55:66", name_filter="Polar"),
            ble=BLEConfig(adapter="hci0"),
        )
        _, mock_run = run_main([], config)
        mock_run.assert_called_once_with(config, ANY, ANY, "11:22:33:44:55:66", "Polar", "hci0")

    def test_verbose_overrides_config_level(self):
        """--verbose overrides config log_level."""
        mock_setup, _ = run_main(["-v"], Config(server=ServerConfig(log_level="WARNING")))
        mock_setup.assert_called_once_with("DEBUG", ble_debug=False)

    def test_config_log_level_used_without_verbose(self):
        mock_setup, _ = run_main([], Config(server=ServerConfig(log_level="WARNING")))
        mock_setup.assert_called_once_with("WARNING", ble_debug=False)

    def test_ble_debug_flag(self):
        mock_setup, _ = run_main(["--ble-debug"])
        mock_setup.assert_called_once_with("INFO", ble_debug=True)

    def test_failure_status_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            run_main([], status=1)
        assert exc_info.value.code == 1


@pytest.fixture
def run_mocks():
    """Patch the adapter, controller and server used by run()."""
    with patch("pulse_client.__main__.AdapterFacade") as MockFacade:
        with patch("pulse_client.__main__.ConnectionController") as MockController:
            with patch("pulse_client.__main__.PulseServer") as MockServer:
                facade = MagicMock()
                facade.open = AsyncMock()
                facade.close = AsyncMock()
                MockFacade.return_value = facade

                controller = MagicMock()
                controller.run = AsyncMock(return_value=None)
                controller.shutdown = AsyncMock()
                MockController.return_value = controller

                server = AsyncMock()
                MockServer.return_value = server

                yield MockFacade, MockController, MockServer


class TestRunFunction:
    """Tests for run() async function."""

    @pytest.mark.asyncio
    async def test_run_opens_adapter(self, run_mocks):
        MockFacade, _, _ = run_mocks
        config = Config(ble=BLEConfig(power_poll_interval=2.0))

        assert await run(config, "localhost", 8765, None, None, "hci1") == 0

        MockFacade.assert_called_once_with(adapter="hci1", power_poll_interval=2.0)
        MockFacade.return_value.open.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_without_adapter(self, run_mocks):
        """A missing radio ends the run with a failure status."""
        MockFacade, MockController, MockServer = run_mocks
        MockFacade.return_value.open.side_effect = AdapterUnavailable("No Bluetooth adapter available")

        assert await run(Config(), "localhost", 8765, None, None) == 1

        MockController.assert_not_called()
        MockServer.assert_not_called()

    @pytest.mark.asyncio
    async def test_run_starts_server(self, run_mocks):
        _, MockController, MockServer = run_mocks
        config = Config()

        await run(config, "localhost", 8080, None, None)

        MockServer.assert_called_once_with(
            host="localhost",
            port=8080,
            broadcast_timeout=config.server.broadcast_timeout,
            on_command=MockController.return_value.submit,
            snapshot=ANY,
        )
        MockServer.return_value.start.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_run_events_broadcast(self, run_mocks):
        _, MockController, MockServer = run_mocks

        await run(Config(), "localhost", 8765, None, None)

        on_event = MockController.call_args[1]["on_event"]
        event = ConnectionStateChanged(CONNECTING)
        await on_event(event)
        MockServer.return_value.broadcast_event.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_run_cleanup_on_exit(self, run_mocks):
        """run() cleans up controller, adapter and server on exit."""
        MockFacade, MockController, MockServer = run_mocks

        await run(Config(), "localhost", 8765, None, None)

        MockController.return_value.run.assert_awaited_once()
        MockController.return_value.shutdown.assert_awaited_once()
        MockFacade.return_value.close.assert_awaited_once()
        MockServer.return_value.stop.assert_awaited_once()


class TestAutoConnector:
    """Tests for AutoConnector."""

    @pytest.fixture
    def controller(self):
        controller = MagicMock()
        controller.state = NOT_CONNECTED
        controller.selected = None
        controller.devices = DeviceRegistry()
        return controller

    def test_matches_address(self, controller):
        connector = AutoConnector(controller, "aa:bb:cc:dd:ee:ff", None)
        assert connector.matches(make_record()) is True
        assert connector.matches(make_record("11:22:33:44:55:66")) is False
        assert connector.matches(None) is False

    def test_matches_name_filter(self, controller):
        connector = AutoConnector(controller, None, "polar")
        assert connector.matches(make_record(name="Polar H10 ABC")) is True
        assert connector.matches(make_record(name="Wahoo TICKR")) is False
        assert connector.matches(make_record(name=None)) is False

    def test_address_takes_priority(self, controller):
        connector = AutoConnector(controller, "11:22:33:44:55:66", "Polar")
        assert connector.matches(make_record(name="Polar H10")) is False

    def test_selects_matching_device(self, controller):
        connector = AutoConnector(controller, None, "HR")
        record = make_record()
        connector.handle(DeviceDiscovered(record))
        controller.submit.assert_called_once_with(SelectDevice(record.address))

    def test_ignores_non_matching_device(self, controller):
        connector = AutoConnector(controller, None, "Polar")
        connector.handle(DeviceDiscovered(make_record()))
        controller.submit.assert_not_called()

    def test_keeps_existing_selection(self, controller):
        controller.selected = "11:22:33:44:55:66"
        connector = AutoConnector(controller, None, "HR")
        connector.handle(DeviceDiscovered(make_record()))
        controller.submit.assert_not_called()

    def test_connects_after_selection(self, controller):
        record = make_record()
        controller.devices = DeviceRegistry().add(record)
        connector = AutoConnector(controller, record.address, None)

        connector.handle(SelectionChanged(record.address))

        controller.submit.assert_called_once_with(Connect())

    def test_does_not_connect_user_selection(self, controller):
        """A device picked by a UI client that doesn't match is left alone."""
        other = make_record("11:22:33:44:55:66", "Other")
        controller.devices = DeviceRegistry().add(other)
        connector = AutoConnector(controller, None, "HR Monitor")

        connector.handle(SelectionChanged(other.address))
        connector.handle(SelectionChanged(None))

        controller.submit.assert_not_called()

    def test_idle_while_connecting(self, controller):
        controller.state = CONNECTING
        connector = AutoConnector(controller, None, "HR")
        connector.handle(DeviceDiscovered(make_record()))
        controller.submit.assert_not_called()

    def test_rejected_command_swallowed(self, controller):
        record = make_record()
        controller.devices = DeviceRegistry().add(record)
        controller.submit.side_effect = ContractViolation("Connect issued while connecting")
        connector = AutoConnector(controller, record.address, None)

        connector.handle(SelectionChanged(record.address))

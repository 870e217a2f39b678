"""Exceptions raised by pulse_client."""


class PulseClientError(Exception):
    """Base class for pulse_client errors."""


class AdapterUnavailable(PulseClientError):
    """No usable Bluetooth radio was found at startup."""


class ContractViolation(PulseClientError):
    """A command was issued in a state where it is not allowed."""


class SubscribeError(PulseClientError):
    """The peripheral does not expose a notifiable HR measurement characteristic."""

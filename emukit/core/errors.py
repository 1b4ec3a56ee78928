"""Error taxonomy shared by the emulator lifecycle layers."""

from __future__ import annotations


class EmulatorError(RuntimeError):
    pass


class PreconditionError(EmulatorError):
    """A required input is missing; raised before any network activity."""


class PortTakenError(EmulatorError):
    def __init__(self, name: str, host: str, port: int) -> None:
        super().__init__(f"Could not start {name} emulator, port taken.")
        self.name = name
        self.host = host
        self.port = port


class PortTimeoutError(EmulatorError, TimeoutError):
    def __init__(self, host: str, port: int, timeout_seconds: float) -> None:
        timeout_ms = int(timeout_seconds * 1000)
        super().__init__(f"TIMEOUT: Port {port} on {host} was not active within {timeout_ms}ms")
        self.host = host
        self.port = port
        self.timeout_seconds = timeout_seconds


class NoPortAvailableError(EmulatorError):
    def __init__(self, host: str, start_port: int, stop_port: int) -> None:
        super().__init__(f"No port available on {host} between {start_port} and {stop_port}")
        self.host = host
        self.start_port = start_port
        self.stop_port = stop_port


class DuplicateEmulatorError(EmulatorError):
    pass


class EmulatorStateError(EmulatorError):
    pass


class EmulatorStartError(EmulatorError):
    pass


class ExportError(EmulatorError):
    pass


class ExportMetadataError(EmulatorError):
    pass


class PluginError(EmulatorError):
    pass

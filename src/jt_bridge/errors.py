class BridgeError(Exception):
    """Base class for failures reported back to the client as Error responses."""

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


class ProtocolError(BridgeError):
    """Malformed request or missing command name."""

    def __init__(self, message: str = "Invalid command.", *, request_id: int = 0) -> None:
        super().__init__(message)
        self.request_id = request_id


class ValidationError(BridgeError):
    """Invalid or missing command arguments."""


class ExternalToolError(BridgeError):
    """The converter process wrote to standard error."""

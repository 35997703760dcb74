"""Exceptions for plantbridge: address/tag problems, rejected commands and PLC I/O failures."""


class PlantBridgeError(Exception):
    """Base exception for plantbridge."""

    pass


class InvalidAddressError(PlantBridgeError):
    """Raised when a physical address string is malformed for the selected protocol."""

    def __init__(self, address: str, message: str | None = None) -> None:
        self.address = address
        self._msg = message or f"Invalid address: {address!r}"
        super().__init__(self._msg)


class UnknownTagError(PlantBridgeError):
    """Raised when a logical tag is not in the address map."""

    def __init__(self, tag: str, message: str | None = None) -> None:
        self.tag = tag
        self._msg = message or f"Unknown tag: {tag!r}"
        super().__init__(self._msg)


class ValidationError(PlantBridgeError):
    """Raised when a command is malformed or out of range. Never reaches the PLC."""

    def __init__(self, message: str, *, tag: str | None = None) -> None:
        self.tag = tag
        super().__init__(message)


class ProtocolIOError(PlantBridgeError):
    """Raised by a driver when an S7 or Modbus request fails (wraps library errors)."""

    def __init__(
        self,
        message: str,
        *,
        tag: str | None = None,
        address: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.tag = tag
        self.address = address
        self.cause = cause
        super().__init__(message)


class SessionError(PlantBridgeError):
    """Base for errors surfaced by the PLC session to its callers."""

    def __init__(self, message: str, *, tag: str | None = None, cause: BaseException | None = None) -> None:
        self.tag = tag
        self.cause = cause
        super().__init__(message)


class ConnectError(SessionError):
    """The session could not be established, or is not ready for I/O."""


class ReadError(SessionError):
    """A batched read failed or timed out."""


class WriteError(SessionError):
    """The device rejected a write, or the write timed out."""

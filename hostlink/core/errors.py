"""Exception taxonomy shared by the connection façade and the transports."""
from __future__ import annotations

from typing import Optional


class HostlinkError(RuntimeError):
    """Base exception for hostlink failures."""


class NotConnectedError(HostlinkError):
    """Raised when an operation needs a live transport and none is available."""

    def __init__(self, message: str = "not connected"):
        super().__init__(message)


class CommandFailedError(HostlinkError):
    """Raised when the transport accepted a command but its execution failed."""


class UploadFailedError(HostlinkError):
    """Raised when a file transfer to the host fails."""


class SudoRequiredError(HostlinkError):
    """Raised when elevation is requested but no elevation strategy was found."""


class ValidationFailedError(HostlinkError):
    """Raised when connection configuration fails validation."""


class TransportError(HostlinkError):
    """Base exception for lower-level transport failures."""


class TransportConnectError(TransportError):
    """Raised when a transport cannot establish its session."""


class TransportAuthenticationError(TransportConnectError):
    """Raised when authentication to a host fails."""


class CommandExitError(TransportError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int, stderr: Optional[str] = None):
        detail = (stderr or "").strip()
        message = f"command exited with status {exit_code}"
        if detail:
            message = f"{message}: {detail[:500]}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr or ""


__all__ = [
    "HostlinkError",
    "NotConnectedError",
    "CommandFailedError",
    "UploadFailedError",
    "SudoRequiredError",
    "ValidationFailedError",
    "TransportError",
    "TransportConnectError",
    "TransportAuthenticationError",
    "CommandExitError",
]

"""Contract every concrete transport implements."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..core.exec_options import ExecOptions


class Transport(ABC):
    """A live channel to one host that can run commands and receive files."""

    @abstractmethod
    def connect(self) -> None:
        """Establish the session; raise ``TransportConnectError`` on failure."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the session. Safe to call when not connected."""

    @abstractmethod
    def exec(self, command: str, options: Optional[ExecOptions] = None) -> None:
        """Run ``command``; raise ``TransportError`` when it fails."""

    @abstractmethod
    def exec_interactive(self, command: str) -> None:
        """Run ``command`` attached to the local terminal."""

    @abstractmethod
    def upload(self, source: str, destination: str, options: Optional[ExecOptions] = None) -> None:
        """Copy the local file ``source`` to ``destination`` on the host."""

    @abstractmethod
    def is_windows(self) -> bool:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def protocol(self) -> str:
        ...

    @abstractmethod
    def ip_address(self) -> str:
        ...

    def __str__(self) -> str:
        return f"[{self.protocol()}] {self.ip_address()}"


__all__ = ["Transport"]

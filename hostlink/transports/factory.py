"""Instantiate the transport that matches a descriptor."""
from __future__ import annotations

from ..core.models import LocalhostConfig, SSHConfig, TransportDescriptor, WinRMConfig
from .base import Transport
from .localhost import LocalhostTransport
from .ssh import SSHTransport
from .winrm import WinRMTransport


def build_transport(descriptor: TransportDescriptor) -> Transport:
    if isinstance(descriptor, WinRMConfig):
        return WinRMTransport(descriptor)
    if isinstance(descriptor, LocalhostConfig):
        return LocalhostTransport(descriptor)
    if isinstance(descriptor, SSHConfig):
        return SSHTransport(descriptor)
    raise TypeError(f"unsupported transport descriptor: {type(descriptor).__name__}")


__all__ = ["build_transport"]

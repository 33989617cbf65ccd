"""Data models for connection descriptors and host identity."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field


class OSFamily(str, Enum):
    """Operating system family."""
    WINDOWS = "windows"
    LINUX = "linux"
    DARWIN = "darwin"


class OSVersion(BaseModel):
    """Operating system identity of a connected host.

    ``id`` is a short identifier such as ``windows``, ``darwin`` or a Linux
    distribution id, ``id_like`` hints at the lineage (``debian``), and
    ``name`` is the human readable product name.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = ""
    id_like: str = Field("", alias="idLike")
    version: str = ""
    name: str = ""

    @property
    def family(self) -> OSFamily:
        if self.id == OSFamily.WINDOWS.value:
            return OSFamily.WINDOWS
        if self.id == OSFamily.DARWIN.value:
            return OSFamily.DARWIN
        return OSFamily.LINUX

    def __str__(self) -> str:
        if self.name:
            return self.name
        return f"{self.id} {self.version}".strip()


class _Descriptor(BaseModel):
    """Common behaviour of transport descriptors."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    protocol_name: ClassVar[str] = ""

    def display_address(self) -> str:
        return getattr(self, "address", "") or ""


class SSHConfig(_Descriptor):
    """SSH transport descriptor."""

    protocol_name: ClassVar[str] = "SSH"

    address: str = Field(..., description="Hostname or IP address of the target")
    user: Optional[str] = Field(None, description="Login user")
    port: Optional[int] = Field(None, ge=1, le=65535, description="SSH port")
    key_path: Optional[str] = Field(None, alias="keyPath", description="Private key file")
    password: Optional[str] = Field(None, description="Password when key auth is not used")
    connect_timeout: Optional[float] = Field(None, alias="connectTimeout", gt=0)


class WinRMConfig(_Descriptor):
    """WinRM transport descriptor."""

    protocol_name: ClassVar[str] = "WinRM"

    address: str = Field(..., description="Hostname or IP address of the target")
    user: Optional[str] = Field(None, description="Login user")
    password: Optional[str] = Field(None, description="Login password")
    port: Optional[int] = Field(None, ge=1, le=65535, description="WinRM listener port")
    use_https: bool = Field(False, alias="useHTTPS")
    insecure: bool = Field(False, description="Skip TLS certificate validation")
    auth: Optional[str] = Field(None, description="pypsrp auth method (negotiate, ntlm, kerberos, ...)")
    use_ntlm: bool = Field(False, alias="useNTLM")
    ca_cert_path: Optional[str] = Field(None, alias="caCertPath")


class LocalhostConfig(_Descriptor):
    """Local execution descriptor."""

    protocol_name: ClassVar[str] = "Local"

    enabled: bool = True

    def display_address(self) -> str:
        return "127.0.0.1"


TransportDescriptor = Union[WinRMConfig, LocalhostConfig, SSHConfig]


class ConnectionConfig(BaseModel):
    """Set of configured transport descriptors for one host.

    The descriptors are mutually exclusive by convention; when several are
    present, ``configured()`` picks WinRM, then Local, then SSH.
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    winrm: Optional[WinRMConfig] = Field(None, alias="winRM")
    ssh: Optional[SSHConfig] = None
    localhost: Optional[LocalhostConfig] = None

    def configured(self) -> Optional[TransportDescriptor]:
        """Return the highest priority descriptor that is present."""

        for descriptor in (self.winrm, self.localhost, self.ssh):
            if descriptor is not None:
                return descriptor
        return None

    def descriptors(self) -> List[TransportDescriptor]:
        """Return every present descriptor in priority order."""

        return [d for d in (self.winrm, self.localhost, self.ssh) if d is not None]

    @classmethod
    def from_yaml(cls, text: str) -> "ConnectionConfig":
        """Build a descriptor set from a YAML ``connection`` mapping."""

        data = yaml.safe_load(text) or {}
        if not isinstance(data, dict):
            raise ValueError("connection YAML must be a mapping")
        return cls.model_validate(data)


def load_hosts(source: Union[str, Path]) -> List[ConnectionConfig]:
    """Load the ``hosts[].connection`` entries from a YAML inventory file."""

    path = Path(source)
    data: Any = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    hosts = data.get("hosts", []) if isinstance(data, dict) else data
    if not isinstance(hosts, list):
        raise ValueError(f"{path}: 'hosts' must be a list")

    configs: List[ConnectionConfig] = []
    for index, entry in enumerate(hosts):
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: host #{index} must be a mapping")
        connection: Dict[str, Any] = entry.get("connection", entry)
        configs.append(ConnectionConfig.model_validate(connection or {}))
    return configs


__all__ = [
    "OSFamily",
    "OSVersion",
    "SSHConfig",
    "WinRMConfig",
    "LocalhostConfig",
    "TransportDescriptor",
    "ConnectionConfig",
    "load_hosts",
]

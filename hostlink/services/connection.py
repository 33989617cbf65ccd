"""Connection façade: one handle for SSH, WinRM and local hosts.

A ``Connection`` is built from a ``ConnectionConfig``. Construction applies
defaults and picks the transport (WinRM, then Local, then SSH, falling back
to an enabled localhost); ``connect()`` then opens the transport, resolves
the host's OS identity and probes for a way to elevate commands::

    conn = Connection(ConnectionConfig(ssh=SSHConfig(address="10.0.0.1")))
    conn.connect()
    print(conn.exec_output("uname -a"))
    conn.exec(conn.sudo("systemctl restart nginx"))

The façade holds no locks; drive one ``Connection`` from one thread.
"""
from __future__ import annotations

import io
import logging
from typing import Any, Callable, Optional

from ..core.config import Settings
from ..core.config_validation import apply_defaults
from ..core.elevation import ElevationStrategy, probe_elevation
from ..core.errors import (
    CommandFailedError,
    HostlinkError,
    NotConnectedError,
    SudoRequiredError,
    TransportError,
    UploadFailedError,
)
from ..core.exec_options import ExecOption, ExecOptions, HideOutput, Output, group_params
from ..core.models import (
    ConnectionConfig,
    LocalhostConfig,
    OSFamily,
    OSVersion,
    TransportDescriptor,
)
from ..transports.base import Transport
from ..transports.factory import build_transport
from .os_resolver import ResolverProvider, resolve_os

logger = logging.getLogger(__name__)

TransportFactory = Callable[[TransportDescriptor], Transport]


def select_transport(config: ConnectionConfig) -> TransportDescriptor:
    """Return the descriptor to connect with: WinRM > Local > SSH > localhost."""

    descriptor = config.configured()
    if descriptor is None:
        return LocalhostConfig(enabled=True)
    return descriptor


class Connection:
    """Multi-protocol connection to a single host."""

    def __init__(
        self,
        config: Optional[ConnectionConfig] = None,
        settings: Optional[Settings] = None,
        transport_factory: TransportFactory = build_transport,
        resolver_provider: Optional[ResolverProvider] = None,
    ) -> None:
        self.config = apply_defaults(config, settings)
        self._descriptor = select_transport(self.config)
        self._transport_factory = transport_factory
        self._resolver_provider = resolver_provider
        self._transport: Optional[Transport] = None
        self._os_version: Optional[OSVersion] = None
        self._elevation: Optional[ElevationStrategy] = None

    def __enter__(self) -> "Connection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @property
    def os_version(self) -> Optional[OSVersion]:
        return self._os_version

    @property
    def elevation(self) -> Optional[ElevationStrategy]:
        return self._elevation

    def protocol(self) -> str:
        if self._transport is not None:
            return self._transport.protocol()
        return self._descriptor.protocol_name

    def address(self) -> str:
        if self._transport is not None:
            return self._transport.ip_address()
        return self._descriptor.display_address()

    def __str__(self) -> str:
        if self._transport is None:
            return f"[{self.protocol()}] {self.address()}"
        return str(self._transport)

    def __repr__(self) -> str:
        return f"<Connection {self} connected={self.is_connected()}>"

    def is_connected(self) -> bool:
        """Return True if the transport believes it is connected.

        This is the transport's own flag, not a round trip; a dropped session
        only surfaces on the next command.
        """

        if self._transport is None:
            return False
        return self._transport.is_connected()

    def _check_connected(self) -> Transport:
        if self._transport is None or not self._transport.is_connected():
            raise NotConnectedError()
        return self._transport

    def is_windows(self) -> bool:
        if self._transport is not None:
            return self._transport.is_windows()
        if self._os_version is not None:
            return self._os_version.family is OSFamily.WINDOWS
        return self._transport_factory(self._descriptor).is_windows()

    def connect(self) -> None:
        """Connect to the host and identify its OS and elevation capability."""

        if self._transport is None:
            self._transport = self._transport_factory(self._descriptor)

        try:
            self._transport.connect()
        except Exception as exc:
            self._transport = None
            logger.debug("%s: failed to connect: %s", self, exc)
            raise NotConnectedError(f"client connect: {exc}") from exc

        if self._os_version is None:
            self._os_version = resolve_os(self, self._resolver_provider)
            logger.info("%s: identified operating system %s", self, self._os_version)

        self._configure_elevation()

    def _probe(self, command: str) -> bool:
        try:
            self.exec(command, HideOutput())
        except HostlinkError:
            return False
        return True

    def _configure_elevation(self) -> None:
        windows = self._os_version is not None and self._os_version.family is OSFamily.WINDOWS
        self._elevation = probe_elevation(self._probe, windows=windows)
        if self._elevation is None:
            logger.info("%s: no passwordless elevation available", self)

    def disconnect(self) -> None:
        """Close the transport; the resolved OS identity is kept for reconnects."""

        transport = self._transport
        self._transport = None
        self._elevation = None
        if transport is not None:
            transport.disconnect()

    def sudo(self, command: str) -> str:
        """Format ``command`` to run with elevated privileges."""

        if self._elevation is None:
            raise SudoRequiredError(
                "user is not an administrator and passwordless access elevation has not been configured"
            )
        return self._elevation.wrap(command)

    def exec(self, command: str, *opts: ExecOption) -> None:
        """Run a command on the host."""

        transport = self._check_connected()
        options = ExecOptions.build(*opts)
        if options.sudo:
            command = self.sudo(command)

        try:
            transport.exec(command, options)
        except TransportError as exc:
            raise CommandFailedError(f"client exec: {exc}") from exc

    def exec_output(self, command: str, *opts: ExecOption) -> str:
        """Run a command and return its stdout with surrounding whitespace trimmed."""

        self._check_connected()
        buffer = io.StringIO()
        self.exec(command, *opts, Output(buffer))
        return buffer.getvalue().strip()

    def execf(self, template: str, *params: Any) -> None:
        """``exec`` with ``%``-style templating; exec options may be mixed in.

        Arguments are interpolated as-is, without shell escaping.
        """

        opts, args = group_params(*params)
        self.exec(_render(template, args), *opts)

    def exec_outputf(self, template: str, *params: Any) -> str:
        opts, args = group_params(*params)
        return self.exec_output(_render(template, args), *opts)

    def exec_interactive(self, command: str) -> None:
        """Run a command with the local terminal attached to it."""

        transport = self._check_connected()
        try:
            transport.exec_interactive(command)
        except TransportError as exc:
            raise CommandFailedError(f"client exec interactive: {exc}") from exc

    def upload(self, source: str, destination: str, *opts: ExecOption) -> None:
        """Copy a local file to ``destination`` on the host."""

        transport = self._check_connected()
        options = ExecOptions.build(*opts)
        try:
            transport.upload(source, destination, options)
        except TransportError as exc:
            raise UploadFailedError(f"upload {source} -> {destination}: {exc}") from exc


def _render(template: str, args: list) -> str:
    if not args:
        return template
    return template % tuple(args)


__all__ = ["Connection", "select_transport"]

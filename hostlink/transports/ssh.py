"""SSH transport built on paramiko."""
from __future__ import annotations

import logging
import os
import select
import sys
from time import perf_counter
from typing import Optional

import paramiko

from ..core.config import settings
from ..core.errors import (
    CommandExitError,
    TransportAuthenticationError,
    TransportConnectError,
    TransportError,
)
from ..core.exec_options import ExecOptions, truncate_command
from ..core.models import SSHConfig
from .base import Transport

logger = logging.getLogger(__name__)

BUFFER_SIZE = 32768


class SSHTransport(Transport):
    """Run commands on a host over SSH."""

    def __init__(self, config: SSHConfig) -> None:
        self.config = config
        self.client: Optional[paramiko.SSHClient] = None
        self._is_windows: Optional[bool] = None

    @property
    def port(self) -> int:
        return self.config.port or settings.ssh_port

    @property
    def user(self) -> str:
        return self.config.user or settings.ssh_user

    def protocol(self) -> str:
        return "SSH"

    def ip_address(self) -> str:
        return self.config.address

    def __str__(self) -> str:
        return f"[ssh] {self.config.address}:{self.port}"

    def is_connected(self) -> bool:
        if self.client is None:
            return False
        transport = self.client.get_transport()
        return bool(transport and transport.is_active())

    def is_windows(self) -> bool:
        """Report whether the remote end is a Windows host.

        Unknown before connect, in which case False is returned.
        """

        if self._is_windows is None:
            if not self.is_connected():
                return False
            self._is_windows = self._detect_windows()
        return self._is_windows

    def _detect_windows(self) -> bool:
        try:
            exit_code, stdout, _ = self._run("cmd.exe /c ver")
        except TransportError:
            return False
        detected = exit_code == 0 and "windows" in stdout.lower()
        logger.debug("SSH host %s windows detection: %s", self.config.address, detected)
        return detected

    def connect(self) -> None:
        self.disconnect()

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if settings.ssh_strict_host_key_checking:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        key_path = self.config.key_path
        if key_path:
            key_path = os.path.expanduser(key_path)

        logger.info(
            "Opening SSH session to %s@%s:%s (key=%s)",
            self.user,
            self.config.address,
            self.port,
            key_path or "<agent/default>",
        )

        try:
            client.connect(
                hostname=self.config.address,
                port=self.port,
                username=self.user,
                password=self.config.password,
                key_filename=key_path,
                timeout=self.config.connect_timeout or settings.ssh_connect_timeout,
                allow_agent=True,
                look_for_keys=key_path is None,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise TransportAuthenticationError(str(exc)) from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise TransportConnectError(str(exc)) from exc

        self.client = client
        self._is_windows = None

    def disconnect(self) -> None:
        client = self.client
        self.client = None
        if client is not None:
            client.close()

    def _run(self, command: str, stdin: Optional[str] = None) -> tuple[int, str, str]:
        """Run ``command`` and return its exit code with collected output."""

        if self.client is None:
            raise TransportError(f"SSH session to {self.config.address} is not open")

        try:
            chan_in, chan_out, chan_err = self.client.exec_command(command)
            if stdin is not None:
                chan_in.write(stdin)
                chan_in.flush()
            chan_in.channel.shutdown_write()
            stdout = chan_out.read().decode("utf-8", errors="replace")
            stderr = chan_err.read().decode("utf-8", errors="replace")
            exit_code = chan_out.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportError(str(exc)) from exc

        return exit_code, stdout, stderr

    def exec(self, command: str, options: Optional[ExecOptions] = None) -> None:
        options = options or ExecOptions()
        loggable = options.log_command(command)
        if loggable is not None:
            logger.info("Executing command on %s: %s", self.config.address, truncate_command(loggable))
            logger.debug("Full command on %s: %s", self.config.address, loggable)

        start_time = perf_counter()
        exit_code, stdout, stderr = self._run(command, options.stdin)
        options.write_output(stdout)

        if not options.hide_output:
            if stdout.strip():
                logger.debug("Command stdout on %s: %s", self.config.address, options.redact_text(stdout.strip()))
            if stderr.strip():
                logger.debug("Command stderr on %s: %s", self.config.address, options.redact_text(stderr.strip()))

        logger.debug(
            "Command on %s completed in %.2fs with exit code %s",
            self.config.address,
            perf_counter() - start_time,
            exit_code,
        )

        if exit_code != 0:
            raise CommandExitError(command, exit_code, options.redact_text(stderr))
        if stderr.strip() and self._is_windows and not options.allow_win_stderr:
            raise CommandExitError(command, 1, options.redact_text(stderr))

    def exec_interactive(self, command: str) -> None:
        """Run ``command`` on a remote PTY wired to the local terminal."""

        if self.client is None:
            raise TransportError(f"SSH session to {self.config.address} is not open")

        logger.info("Starting interactive command on %s: %s", self.config.address, truncate_command(command))
        try:
            transport = self.client.get_transport()
            if transport is None:
                raise TransportError("SSH transport is closed")
            channel = transport.open_session()
            width, height = os.get_terminal_size() if sys.stdout.isatty() else (80, 24)
            channel.get_pty(term=os.environ.get("TERM", "xterm"), width=width, height=height)
            channel.exec_command(command)
            self._pump(channel)
            exit_code = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportError(str(exc)) from exc

        if exit_code != 0:
            raise CommandExitError(command, exit_code)

    @staticmethod
    def _pump(channel: paramiko.Channel) -> None:
        """Shuttle bytes between the local terminal and ``channel`` until it closes."""

        stdin_fd = sys.stdin.fileno() if sys.stdin and sys.stdin.isatty() else None
        saved_attrs = None
        if stdin_fd is not None:
            import termios
            import tty

            saved_attrs = termios.tcgetattr(stdin_fd)
            tty.setraw(stdin_fd)

        try:
            watched = [channel] if stdin_fd is None else [channel, stdin_fd]
            while True:
                readable, _, _ = select.select(watched, [], [], 0.5)
                if channel in readable:
                    data = channel.recv(BUFFER_SIZE)
                    if not data:
                        break
                    sys.stdout.buffer.write(data)
                    sys.stdout.flush()
                if stdin_fd is not None and stdin_fd in readable:
                    data = os.read(stdin_fd, 1024)
                    if not data:
                        channel.shutdown_write()
                        watched = [channel]
                    else:
                        channel.send(data)
                if channel.exit_status_ready() and not channel.recv_ready():
                    break
        finally:
            if saved_attrs is not None:
                import termios

                termios.tcsetattr(stdin_fd, termios.TCSADRAIN, saved_attrs)

    def upload(self, source: str, destination: str, options: Optional[ExecOptions] = None) -> None:
        if self.client is None:
            raise TransportError(f"SSH session to {self.config.address} is not open")

        logger.info("Uploading %s to %s:%s", source, self.config.address, destination)
        try:
            sftp = self.client.open_sftp()
            try:
                sftp.put(source, destination)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportError(f"copy {source} -> {destination}: {exc}") from exc


__all__ = ["SSHTransport"]

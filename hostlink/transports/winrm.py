"""WinRM transport running PowerShell pipelines through PSRP."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import requests
from pypsrp.client import Client
from pypsrp.exceptions import (
    AuthenticationError,
    PSInvocationState,
    WinRMError,
    WinRMTransportError as PyWinRMTransportError,
)
from pypsrp.powershell import PowerShell, RunspacePool
from pypsrp.wsman import WSMan

from ..core.config import settings
from ..core.errors import (
    CommandExitError,
    TransportAuthenticationError,
    TransportConnectError,
    TransportError,
)
from ..core.exec_options import ExecOptions, truncate_command
from ..core.models import WinRMConfig
from .base import Transport

logger = logging.getLogger(__name__)

_EXIT_SENTINEL = "__HOSTLINK_EXIT_CODE__:"


@dataclass
class _PSRPStreamCursor:
    """Track consumption of PowerShell pipeline and error streams."""

    address: str
    on_chunk: Callable[[str, str], None]
    output_index: int = 0
    error_index: int = 0
    information_index: int = 0
    stdout_bytes: int = 0
    stderr_bytes: int = 0
    exit_code: Optional[int] = None

    def drain(self, ps: PowerShell) -> None:
        """Emit new output, information and error records as text chunks."""

        for item in ps.output[self.output_index:]:
            self._emit("stdout", self._stringify(item))
        self.output_index = len(ps.output)

        for record in ps.streams.information[self.information_index:]:
            self._emit("stdout", self._stringify_information(record))
        self.information_index = len(ps.streams.information)

        for item in ps.streams.error[self.error_index:]:
            self._emit("stderr", self._stringify(item))
        self.error_index = len(ps.streams.error)

    def _emit(self, stream: str, text: str) -> None:
        if not text:
            return
        if text.startswith(_EXIT_SENTINEL):
            parsed = text[len(_EXIT_SENTINEL):].strip()
            try:
                self.exit_code = int(parsed)
            except ValueError:
                logger.warning(
                    "Received malformed exit code sentinel '%s' from %s", parsed, self.address
                )
            return

        payload = text if text.endswith("\n") else text + "\n"
        size = len(payload.encode("utf-8", errors="ignore"))
        if stream == "stdout":
            self.stdout_bytes += size
        else:
            self.stderr_bytes += size
        self.on_chunk(stream, payload)

    @staticmethod
    def _stringify(item: Any, *, _seen: Optional[Set[int]] = None) -> str:
        """Best-effort string conversion for PSRP data."""

        if item is None:
            return ""

        if _seen is None:
            _seen = set()
        if id(item) in _seen:
            return ""
        _seen.add(id(item))

        try:
            formatter = getattr(item, "to_string", None)
            if isinstance(formatter, str) and formatter.strip():
                complex_text = _PSRPStreamCursor._stringify_complex(item, _seen)
                return complex_text or formatter
            if hasattr(item, "value") and isinstance(getattr(item, "value"), str):
                return getattr(item, "value")
            return str(item)
        finally:
            _seen.discard(id(item))

    @staticmethod
    def _stringify_information(record: Any) -> str:
        """Return friendly text from Write-Host/Write-Information records."""

        message_data = getattr(record, "message_data", None)
        if isinstance(message_data, bytes):
            message_data = message_data.decode("utf-8", errors="ignore")
        if isinstance(message_data, str):
            return message_data.rstrip("\r\n")
        if isinstance(message_data, dict):
            value = message_data.get("Message") or message_data.get("message")
            if isinstance(value, str):
                return value.rstrip("\r\n")

        adapted = getattr(message_data, "adapted_properties", None)
        if isinstance(adapted, dict):
            for key, value in adapted.items():
                if key.lower() == "message" and isinstance(value, str):
                    return value.rstrip("\r\n")

        if message_data is not None:
            return _PSRPStreamCursor._stringify(message_data)
        return str(record)

    @staticmethod
    def _stringify_complex(item: Any, seen: Set[int]) -> str:
        """Render pypsrp complex objects as ``Key: value`` lines."""

        properties: List[tuple] = []
        for attr in ("adapted_properties", "extended_properties"):
            data = getattr(item, attr, None)
            if isinstance(data, dict):
                properties.extend(data.items())

        lines = []
        for key, value in properties:
            if value is None:
                continue
            if isinstance(value, (str, int, float, bool)):
                text = str(value)
            elif isinstance(value, (list, tuple)):
                text = ", ".join(str(v) for v in value if v is not None)
            else:
                text = _PSRPStreamCursor._stringify(value, _seen=seen).strip()
            if text:
                lines.append(f"{key}: {text}")
        return "\n".join(lines)


class WinRMTransport(Transport):
    """Run commands on a Windows host over WinRM."""

    def __init__(self, config: WinRMConfig) -> None:
        self.config = config
        self._wsman: Optional[WSMan] = None
        self._pool: Optional[RunspacePool] = None

    @property
    def port(self) -> int:
        if self.config.port:
            return self.config.port
        return settings.winrm_https_port if self.config.use_https else settings.winrm_port

    def protocol(self) -> str:
        return "WinRM"

    def ip_address(self) -> str:
        return self.config.address

    def __str__(self) -> str:
        return f"[winrm] {self.config.address}:{self.port}"

    def is_windows(self) -> bool:
        return True

    def is_connected(self) -> bool:
        return self._pool is not None

    def _wsman_kwargs(self) -> Dict[str, Any]:
        cert_validation: Any = not self.config.insecure
        if self.config.ca_cert_path and not self.config.insecure:
            cert_validation = self.config.ca_cert_path

        return {
            "port": self.port,
            "username": self.config.user or settings.winrm_user,
            "password": self.config.password,
            "auth": self.config.auth or settings.winrm_auth,
            "ssl": self.config.use_https,
            "cert_validation": cert_validation,
            "connection_timeout": int(max(1.0, float(settings.winrm_connection_timeout))),
            "operation_timeout": int(max(1.0, float(settings.winrm_operation_timeout))),
            "read_timeout": int(max(1.0, float(settings.winrm_read_timeout))),
        }

    def connect(self) -> None:
        """Create the WSMan session and open a runspace pool on it."""

        self.disconnect()

        kwargs = self._wsman_kwargs()
        logger.info(
            "Creating WinRM (PSRP) session to %s (port=%s, auth=%s, username=%s)",
            self.config.address,
            kwargs["port"],
            kwargs["auth"],
            kwargs["username"] or "<unspecified>",
        )

        try:
            wsman = WSMan(self.config.address, **kwargs)
        except AuthenticationError as exc:
            raise TransportAuthenticationError(str(exc)) from exc
        except (PyWinRMTransportError, WinRMError, ValueError) as exc:
            raise TransportConnectError(str(exc)) from exc

        start_time = perf_counter()
        pool = RunspacePool(wsman)
        try:
            pool.open()
        except AuthenticationError as exc:
            logger.error("Authentication failure while opening runspace pool on %s: %s", self.config.address, exc)
            self._dispose_session(wsman)
            raise TransportAuthenticationError(str(exc)) from exc
        except (PyWinRMTransportError, WinRMError, requests.RequestException) as exc:
            logger.error("Transport error while opening runspace pool on %s: %s", self.config.address, exc)
            self._dispose_session(wsman)
            raise TransportConnectError(str(exc)) from exc

        logger.debug(
            "Runspace pool on %s opened in %.2fs", self.config.address, perf_counter() - start_time
        )
        self._wsman = wsman
        self._pool = pool

    def disconnect(self) -> None:
        pool, wsman = self._pool, self._wsman
        self._pool = None
        self._wsman = None
        if pool is not None:
            try:
                pool.close()
            except (PyWinRMTransportError, WinRMError, requests.RequestException):
                logger.debug("Failed to close runspace pool cleanly", exc_info=True)
        if wsman is not None:
            self._dispose_session(wsman)

    @staticmethod
    def _dispose_session(session: WSMan) -> None:
        """Attempt to close transport resources for a WSMan session."""

        closer = getattr(session, "close", None)
        if callable(closer):
            try:
                closer()
            except (PyWinRMTransportError, WinRMError, requests.RequestException):
                logger.debug("Failed to close WSMan session cleanly", exc_info=True)

    def exec(self, command: str, options: Optional[ExecOptions] = None) -> None:
        options = options or ExecOptions()
        loggable = options.log_command(command)
        if loggable is not None:
            logger.info("Executing command on %s: %s", self.config.address, truncate_command(loggable))
            logger.debug("Full command on %s: %s", self.config.address, loggable)

        stdout_chunks: List[str] = []
        stderr_chunks: List[str] = []

        def _collect(stream: str, payload: str) -> None:
            if stream == "stdout":
                stdout_chunks.append(payload)
            else:
                stderr_chunks.append(payload)

        script = command if options.stdin is None else f"$input | {command}"
        input_data = None if options.stdin is None else options.stdin.splitlines()
        exit_code = self._run(self._wrap_command(script), _collect, input_data)

        stdout = "".join(stdout_chunks)
        stderr = "".join(stderr_chunks)
        options.write_output(stdout)

        if not options.hide_output:
            if stdout.strip():
                logger.debug("Command stdout on %s: %s", self.config.address, options.redact_text(stdout.strip()))
            if stderr.strip():
                logger.debug("Command stderr on %s: %s", self.config.address, options.redact_text(stderr.strip()))

        if exit_code != 0:
            raise CommandExitError(command, exit_code, options.redact_text(stderr))
        if stderr.strip() and not options.allow_win_stderr:
            raise CommandExitError(command, 1, options.redact_text(stderr))

    def exec_interactive(self, command: str) -> None:
        """Run ``command`` streaming its output to the local terminal.

        PSRP offers no stdin channel for a running pipeline, so only output
        is attached.
        """

        logger.info("Streaming command on %s: %s", self.config.address, truncate_command(command))

        def _write(stream: str, payload: str) -> None:
            target = sys.stdout if stream == "stdout" else sys.stderr
            target.write(payload)
            target.flush()

        exit_code = self._run(self._wrap_command(command), _write)
        if exit_code != 0:
            raise CommandExitError(command, exit_code)

    def _run(
        self,
        script: str,
        on_chunk: Callable[[str, str], None],
        input_data: Optional[Iterable[str]] = None,
    ) -> int:
        """Run ``script`` in the session's runspace pool and return its exit code."""

        if self._pool is None:
            raise TransportError(f"WinRM session to {self.config.address} is not open")

        cursor = _PSRPStreamCursor(address=self.config.address, on_chunk=on_chunk)
        ps = PowerShell(self._pool)
        ps.add_script(script)

        poll_timeout = int(
            max(1.0, min(float(settings.winrm_poll_interval_seconds), float(settings.winrm_operation_timeout)))
        )
        start_time = perf_counter()
        completed = False
        try:
            ps.begin_invoke(input_data=list(input_data) if input_data is not None else None)
            while True:
                ps.poll_invoke(timeout=poll_timeout)
                cursor.drain(ps)
                if self._state_complete(getattr(ps, "state", None)):
                    break
            ps.end_invoke()
            completed = True
            cursor.drain(ps)
        except AuthenticationError as exc:
            raise TransportAuthenticationError(str(exc)) from exc
        except (PyWinRMTransportError, WinRMError, requests.RequestException) as exc:
            logger.error("WinRM execution failed on %s: %s", self.config.address, exc)
            raise TransportError(str(exc)) from exc
        finally:
            if not completed:
                try:
                    ps.end_invoke()
                except (PyWinRMTransportError, WinRMError, requests.RequestException):
                    logger.debug("Failed to end PowerShell invocation cleanly", exc_info=True)

        exit_code = cursor.exit_code
        if exit_code is None:
            exit_code = 1 if getattr(ps, "had_errors", False) else 0

        logger.debug(
            "PowerShell invocation on %s finished in %.2fs with exit code %s (stdout=%d bytes, stderr=%d bytes)",
            self.config.address,
            perf_counter() - start_time,
            exit_code,
            cursor.stdout_bytes,
            cursor.stderr_bytes,
        )
        return exit_code

    @staticmethod
    def _state_complete(state: object) -> bool:
        """Return True when the invocation state indicates completion."""

        terminal_states = {
            getattr(PSInvocationState, name, None)
            for name in ("COMPLETED", "FAILED", "STOPPED", "DISCONNECTED")
        }
        terminal_states.discard(None)
        if state in terminal_states:
            return True
        return str(state).lower() in {"completed", "failed", "stopped", "disconnected"}

    @staticmethod
    def _wrap_command(command: str) -> str:
        """Embed ``command`` in boilerplate that reports its exit code."""

        return "\n".join(
            [
                "$ErrorActionPreference = 'Continue'",
                "$ProgressPreference = 'SilentlyContinue'",
                "$global:LASTEXITCODE = 0",
                "$HostlinkExitCode = 0",
                "try {",
                "    & {",
                "        " + command.replace("\n", "\n        "),
                "    }",
                "    if ($?) {",
                "        $HostlinkExitCode = $LASTEXITCODE",
                "    } elseif ($LASTEXITCODE -ne $null -and $LASTEXITCODE -ne 0) {",
                "        $HostlinkExitCode = $LASTEXITCODE",
                "    } else {",
                "        $HostlinkExitCode = 1",
                "    }",
                "} catch {",
                "    $HostlinkExitCode = 1",
                "    Write-Error $_",
                "}",
                "if ($HostlinkExitCode -eq $null) { $HostlinkExitCode = 0 }",
                f'Write-Output "{_EXIT_SENTINEL}$HostlinkExitCode"',
            ]
        )

    def upload(self, source: str, destination: str, options: Optional[ExecOptions] = None) -> None:
        """Copy ``source`` to the host in base64 chunks over a separate WSMan session."""

        logger.info("Uploading %s to %s:%s", source, self.config.address, destination)
        kwargs = self._wsman_kwargs()
        try:
            client = Client(self.config.address, **kwargs)
            remote_path = client.copy(source, destination)
        except AuthenticationError as exc:
            raise TransportAuthenticationError(str(exc)) from exc
        except (PyWinRMTransportError, WinRMError, requests.RequestException, OSError) as exc:
            raise TransportError(f"copy {source} -> {destination}: {exc}") from exc
        logger.debug("Uploaded %s to %s", source, remote_path)


__all__ = ["WinRMTransport"]

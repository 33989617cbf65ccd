"""Transport that runs commands on the local machine."""
from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from time import perf_counter
from typing import List, Optional

from ..core.errors import CommandExitError, TransportConnectError, TransportError
from ..core.exec_options import ExecOptions, truncate_command
from ..core.models import LocalhostConfig
from .base import Transport

logger = logging.getLogger(__name__)


class LocalhostTransport(Transport):
    """Execute commands through the local shell."""

    def __init__(self, config: Optional[LocalhostConfig] = None) -> None:
        self.config = config or LocalhostConfig(enabled=True)
        self._connected = False

    def protocol(self) -> str:
        return "Local"

    def ip_address(self) -> str:
        return "127.0.0.1"

    def __str__(self) -> str:
        return "[local] localhost"

    def is_windows(self) -> bool:
        return sys.platform == "win32"

    def is_connected(self) -> bool:
        return self._connected

    def connect(self) -> None:
        if not self.config.enabled:
            raise TransportConnectError("localhost connection not enabled")
        self._connected = True
        logger.debug("Localhost transport ready")

    def disconnect(self) -> None:
        self._connected = False

    def _shell_args(self, command: str) -> List[str]:
        if self.is_windows():
            return ["cmd.exe", "/c", command]
        return ["/bin/sh", "-c", command]

    def exec(self, command: str, options: Optional[ExecOptions] = None) -> None:
        options = options or ExecOptions()
        loggable = options.log_command(command)
        if loggable is not None:
            logger.info("Executing local command: %s", truncate_command(loggable))
            logger.debug("Full local command: %s", loggable)

        start_time = perf_counter()
        try:
            result = subprocess.run(
                self._shell_args(command),
                input=options.stdin,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            raise TransportError(f"failed to start local command: {exc}") from exc

        duration = perf_counter() - start_time
        options.write_output(result.stdout)

        if not options.hide_output:
            if result.stdout.strip():
                logger.debug("Local stdout: %s", options.redact_text(result.stdout.strip()))
            if result.stderr.strip():
                logger.debug("Local stderr: %s", options.redact_text(result.stderr.strip()))

        logger.debug("Local command finished in %.2fs with exit code %s", duration, result.returncode)

        if result.returncode != 0:
            raise CommandExitError(command, result.returncode, options.redact_text(result.stderr))

    def exec_interactive(self, command: str) -> None:
        logger.info("Executing interactive local command: %s", truncate_command(command))
        try:
            result = subprocess.run(self._shell_args(command), check=False)
        except OSError as exc:
            raise TransportError(f"failed to start local command: {exc}") from exc
        if result.returncode != 0:
            raise CommandExitError(command, result.returncode)

    def upload(self, source: str, destination: str, options: Optional[ExecOptions] = None) -> None:
        src = Path(source)
        if not src.is_file():
            raise TransportError(f"upload source {src} is not a file")

        logger.info("Copying %s to %s", src, destination)
        try:
            dst = Path(destination)
            if dst.is_dir():
                dst = dst / src.name
            shutil.copyfile(src, dst)
        except OSError as exc:
            raise TransportError(f"copy {src} -> {destination}: {exc}") from exc


__all__ = ["LocalhostTransport"]

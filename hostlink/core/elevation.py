"""Privilege elevation strategies and the probes that select them."""
from __future__ import annotations

import logging
import shlex
from enum import Enum
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def format_noop(command: str) -> str:
    return command


def format_sudo(command: str) -> str:
    """Wrap ``command`` in ``sudo -s``, keeping leading VAR=value assignments.

    ``FOO=bar cmd arg`` becomes ``sudo -s FOO=bar -- cmd arg`` so the
    variables survive sudo's environment reset.
    """

    try:
        parts = shlex.split(command)
    except ValueError:
        return f"sudo -s -- {command}"

    idx = 0
    for i, part in enumerate(parts):
        if "=" in part:
            idx = i + 1
            continue
        break

    if idx == 0:
        return f"sudo -s -- {command}"

    quoted = [shlex.quote(part) for part in parts]
    assignments = " ".join(quoted[:idx])
    remainder = " ".join(quoted[idx:])
    return f"sudo -s {assignments} -- {remainder}"


def format_doas(command: str) -> str:
    return f"doas -s -- {command}"


def format_runas(command: str) -> str:
    return f"runas /user:Administrator {command}"


class ElevationStrategy(str, Enum):
    """How commands are elevated on a host."""
    NOOP = "noop"
    SUDO = "sudo"
    DOAS = "doas"
    RUNAS = "runas"

    def wrap(self, command: str) -> str:
        return _FORMATTERS[self](command)


_FORMATTERS: dict = {
    ElevationStrategy.NOOP: format_noop,
    ElevationStrategy.SUDO: format_sudo,
    ElevationStrategy.DOAS: format_doas,
    ElevationStrategy.RUNAS: format_runas,
}

POSIX_PROBES: List[Tuple[str, ElevationStrategy]] = [
    ('[ "$(id -u)" = 0 ]', ElevationStrategy.NOOP),
    ("sudo -n true", ElevationStrategy.SUDO),
    ("doas -n true", ElevationStrategy.DOAS),
]

WINDOWS_PROBE: Tuple[str, ElevationStrategy] = (
    'whoami | findstr /i "administrator"',
    ElevationStrategy.RUNAS,
)


def probe_elevation(
    probe: Callable[[str], bool], windows: bool
) -> Optional[ElevationStrategy]:
    """Return the strategy of the first probe that succeeds, if any.

    ``probe`` runs a command on the host and reports whether it exited zero.
    """

    probes = [WINDOWS_PROBE] if windows else POSIX_PROBES
    for check, strategy in probes:
        if probe(check):
            logger.debug("Elevation probe %r succeeded; using %s", check, strategy.value)
            return strategy
        logger.debug("Elevation probe %r failed", check)
    return None


__all__ = [
    "ElevationStrategy",
    "POSIX_PROBES",
    "WINDOWS_PROBE",
    "probe_elevation",
    "format_sudo",
    "format_doas",
    "format_runas",
    "format_noop",
]

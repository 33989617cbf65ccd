"""Command execution options understood by the transports."""
from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Pattern, Tuple


REDACTED = "[REDACTED]"


class ExecOption:
    """Base class for execution options; subclasses update ``ExecOptions``."""

    def apply(self, options: "ExecOptions") -> None:
        raise NotImplementedError


@dataclass
class ExecOptions:
    """Resolved settings for a single command execution."""

    stdin: Optional[str] = None
    output: Optional[io.StringIO] = None
    sudo: bool = False
    hide_command: bool = False
    hide_output: bool = False
    allow_win_stderr: bool = False
    redact: List[Pattern[str]] = field(default_factory=list)

    @classmethod
    def build(cls, *opts: ExecOption) -> "ExecOptions":
        options = cls()
        for opt in opts:
            opt.apply(options)
        return options

    def redact_text(self, text: str) -> str:
        """Mask every configured redaction pattern in ``text``."""

        for pattern in self.redact:
            text = pattern.sub(REDACTED, text)
        return text

    def log_command(self, command: str) -> Optional[str]:
        """Return the loggable form of ``command`` or None when it is hidden."""

        if self.hide_command:
            return None
        return self.redact_text(command)

    def write_output(self, text: str) -> None:
        if self.output is not None and text:
            self.output.write(text)


@dataclass(frozen=True)
class Stdin(ExecOption):
    """Feed ``data`` to the command's standard input."""

    data: str

    def apply(self, options: ExecOptions) -> None:
        options.stdin = self.data


@dataclass(frozen=True)
class Output(ExecOption):
    """Capture the command's standard output into ``buffer``."""

    buffer: io.StringIO

    def apply(self, options: ExecOptions) -> None:
        options.output = self.buffer


@dataclass(frozen=True)
class Sudo(ExecOption):
    """Run the command through the connection's elevation strategy."""

    def apply(self, options: ExecOptions) -> None:
        options.sudo = True


@dataclass(frozen=True)
class HideCommand(ExecOption):
    def apply(self, options: ExecOptions) -> None:
        options.hide_command = True


@dataclass(frozen=True)
class HideOutput(ExecOption):
    def apply(self, options: ExecOptions) -> None:
        options.hide_output = True


@dataclass(frozen=True)
class AllowWinStderr(ExecOption):
    """Do not treat stderr output from Windows commands as a failure."""

    def apply(self, options: ExecOptions) -> None:
        options.allow_win_stderr = True


@dataclass(frozen=True)
class Redact(ExecOption):
    """Mask text matching ``pattern`` in logged commands and output."""

    pattern: str

    def apply(self, options: ExecOptions) -> None:
        options.redact.append(re.compile(self.pattern))


def group_params(*params: Any) -> Tuple[List[ExecOption], List[Any]]:
    """Separate exec options from printf-style format arguments.

    Nested lists are flattened so that callers can forward a collected
    parameter list unchanged.
    """

    opts: List[ExecOption] = []
    args: List[Any] = []
    for value in params:
        if isinstance(value, list):
            nested_opts, nested_args = group_params(*value)
            opts.extend(nested_opts)
            args.extend(nested_args)
        elif isinstance(value, ExecOption):
            opts.append(value)
        else:
            args.append(value)
    return opts, args


def truncate_command(command: str, limit: int = 120) -> str:
    """Collapse a command onto one line and cap its length for INFO logs."""

    truncated = command.replace("\n", " ")
    if len(truncated) > limit:
        truncated = f"{truncated[:limit - 3]}..."
    return truncated


__all__ = [
    "ExecOption",
    "ExecOptions",
    "Stdin",
    "Output",
    "Sudo",
    "HideCommand",
    "HideOutput",
    "AllowWinStderr",
    "Redact",
    "group_params",
    "truncate_command",
]

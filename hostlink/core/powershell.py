"""Helpers for composing PowerShell command lines."""
from __future__ import annotations

POWERSHELL = "powershell.exe -NonInteractive -ExecutionPolicy Bypass -NoProfile"


def single_quote(value: str) -> str:
    """Return a single-quoted PowerShell literal."""

    escaped = (value or "").replace("'", "''")
    return f"'{escaped}'"


def cmd(script: str) -> str:
    """Wrap a PowerShell script so it can be run from any Windows shell."""

    escaped = script.replace('"', '\\"')
    return f'{POWERSHELL} -Command "{escaped}"'


__all__ = ["POWERSHELL", "single_quote", "cmd"]

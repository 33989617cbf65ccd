"""Connection configuration validation and defaulting."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .config import Settings, settings as default_settings
from .errors import ValidationFailedError
from .models import ConnectionConfig, LocalhostConfig, SSHConfig, WinRMConfig

logger = logging.getLogger(__name__)


@dataclass
class ConfigIssue:
    """Represents a single configuration issue."""

    message: str
    hint: Optional[str] = None


@dataclass
class ConfigValidationResult:
    """Outcome of running configuration checks."""

    checked_at: datetime
    errors: List[ConfigIssue] = field(default_factory=list)
    warnings: List[ConfigIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


def _warn(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.warnings.append(ConfigIssue(message=message, hint=hint))


def _error(result: ConfigValidationResult, message: str, hint: Optional[str] = None) -> None:
    result.errors.append(ConfigIssue(message=message, hint=hint))


def _check_ssh(result: ConfigValidationResult, ssh: SSHConfig) -> None:
    if not ssh.address.strip():
        _error(
            result,
            "SSH address is required.",
            "Set connection.ssh.address to the hostname or IP of the target.",
        )
    if ssh.password and ssh.key_path:
        _warn(
            result,
            "Both an SSH password and an SSH key path are configured.",
            "The key is tried first; drop the password if it is not needed.",
        )


def _check_winrm(result: ConfigValidationResult, winrm: WinRMConfig) -> None:
    if not winrm.address.strip():
        _error(
            result,
            "WinRM address is required.",
            "Set connection.winRM.address to the hostname or IP of the target.",
        )
    auth = (winrm.auth or "").strip().lower()
    if auth not in ("", "kerberos", "certificate") and not winrm.password:
        _warn(
            result,
            f"WinRM auth '{auth}' is configured without a password.",
            "Set connection.winRM.password or switch to kerberos authentication.",
        )
    if winrm.use_https and winrm.port == 5985:
        _warn(
            result,
            "WinRM HTTPS is enabled on the default HTTP port 5985.",
            "The HTTPS listener usually runs on port 5986.",
        )
    if winrm.insecure and not winrm.use_https:
        _warn(
            result,
            "WinRM 'insecure' has no effect without HTTPS.",
            "Enable useHTTPS or drop the insecure flag.",
        )


def run_config_checks(config: ConnectionConfig) -> ConfigValidationResult:
    """Validate a descriptor set."""

    result = ConfigValidationResult(checked_at=datetime.now(timezone.utc))
    descriptors = config.descriptors()

    if len(descriptors) > 1:
        ignored = ", ".join(d.protocol_name for d in descriptors[1:])
        _warn(
            result,
            f"Multiple transports configured; using {descriptors[0].protocol_name} and ignoring {ignored}.",
            "Configure only one of winRM, localhost or ssh per host.",
        )

    if config.ssh is not None:
        _check_ssh(result, config.ssh)
    if config.winrm is not None:
        _check_winrm(result, config.winrm)

    selected = config.configured()
    if isinstance(selected, LocalhostConfig) and not selected.enabled:
        _error(
            result,
            "Localhost transport is configured but not enabled.",
            "Set connection.localhost.enabled to true.",
        )

    return result


def apply_defaults(
    config: Optional[ConnectionConfig] = None,
    settings: Optional[Settings] = None,
) -> ConnectionConfig:
    """Return a copy of ``config`` with unset fields filled from settings.

    An empty descriptor set defaults to an enabled localhost transport.
    Raises ``ValidationFailedError`` when the result does not validate.
    """

    settings = settings or default_settings
    config = config or ConnectionConfig()
    updates = {}

    if config.ssh is not None:
        ssh = config.ssh
        updates["ssh"] = ssh.model_copy(
            update={
                "user": ssh.user or settings.ssh_user,
                "port": ssh.port or settings.ssh_port,
                "key_path": ssh.key_path or settings.ssh_key_path,
                "connect_timeout": ssh.connect_timeout or settings.ssh_connect_timeout,
            }
        )

    if config.winrm is not None:
        winrm = config.winrm
        auth = winrm.auth or ("ntlm" if winrm.use_ntlm else settings.winrm_auth)
        default_port = settings.winrm_https_port if winrm.use_https else settings.winrm_port
        updates["winrm"] = winrm.model_copy(
            update={
                "user": winrm.user or settings.winrm_user,
                "port": winrm.port or default_port,
                "auth": auth,
            }
        )

    if config.configured() is None:
        updates["localhost"] = LocalhostConfig(enabled=True)

    defaulted = config.model_copy(update=updates)

    result = run_config_checks(defaulted)
    for issue in result.warnings:
        logger.warning("Connection configuration: %s %s", issue.message, issue.hint or "")
    if result.has_errors:
        messages = "; ".join(issue.message for issue in result.errors)
        raise ValidationFailedError(f"invalid connection configuration: {messages}")

    return defaulted


__all__ = [
    "ConfigIssue",
    "ConfigValidationResult",
    "run_config_checks",
    "apply_defaults",
]

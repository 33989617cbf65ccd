"""Configuration management using Pydantic settings."""

import logging
from typing import Optional

from pydantic_settings import BaseSettings


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Process-wide connection defaults loaded from environment variables."""

    debug: bool = False

    # SSH defaults
    ssh_port: int = 22
    ssh_user: str = "root"
    ssh_key_path: Optional[str] = None  # Falls back to the agent and ~/.ssh keys
    ssh_connect_timeout: float = 10.0  # seconds
    ssh_strict_host_key_checking: bool = False

    # WinRM connection settings
    winrm_port: int = 5985
    winrm_https_port: int = 5986
    winrm_user: str = "Administrator"
    winrm_auth: str = "negotiate"  # basic, certificate, negotiate, ntlm, kerberos, credssp
    winrm_operation_timeout: float = 15.0  # seconds to wait for WinRM calls
    winrm_connection_timeout: float = 30.0  # network connect timeout in seconds
    winrm_read_timeout: float = 30.0  # HTTP read timeout in seconds
    winrm_poll_interval_seconds: float = 1.0  # how long to wait between poll cycles

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()


def configure_logging(debug: Optional[bool] = None) -> None:
    """Install a root handler for applications that embed hostlink."""

    enabled = settings.debug if debug is None else debug
    logging.basicConfig(
        level=logging.DEBUG if enabled else logging.INFO,
        format=LOG_FORMAT,
    )

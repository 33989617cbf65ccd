"""Tests for the connection façade."""

import pytest

from hostlink.core import powershell
from hostlink.core.elevation import ElevationStrategy
from hostlink.core.errors import (
    CommandExitError,
    CommandFailedError,
    NotConnectedError,
    SudoRequiredError,
    TransportError,
    UploadFailedError,
    ValidationFailedError,
)
from hostlink.core.exec_options import HideOutput, Redact, Sudo
from hostlink.core.models import (
    ConnectionConfig,
    LocalhostConfig,
    SSHConfig,
    WinRMConfig,
)
from hostlink.services.connection import Connection, select_transport
from hostlink.services.os_resolver import (
    DARWIN_PROBE,
    OS_RELEASE_COMMAND,
    WINDOWS_REGISTRY_KEY,
)
from hostlink.transports.factory import build_transport
from hostlink.transports.localhost import LocalhostTransport
from hostlink.transports.ssh import SSHTransport
from hostlink.transports.winrm import WinRMTransport


SSH = SSHConfig(address="10.0.0.1")
WINRM = WinRMConfig(address="10.0.0.2", password="secret")
LOCAL = LocalhostConfig(enabled=True)


@pytest.mark.unit
@pytest.mark.parametrize(
    "config, expected",
    [
        (ConnectionConfig(winrm=WINRM, localhost=LOCAL, ssh=SSH), WinRMConfig),
        (ConnectionConfig(winrm=WINRM, ssh=SSH), WinRMConfig),
        (ConnectionConfig(localhost=LOCAL, ssh=SSH), LocalhostConfig),
        (ConnectionConfig(ssh=SSH), SSHConfig),
        (ConnectionConfig(), LocalhostConfig),
    ],
)
def test_select_transport_priority(config, expected):
    assert isinstance(select_transport(config), expected)


def test_default_connection_targets_localhost(recorder):
    conn = Connection(transport_factory=recorder)

    assert conn.protocol() == "Local"
    assert str(conn) == "[Local] 127.0.0.1"
    assert conn.is_connected() is False
    assert recorder.created == []


def test_string_before_connect_uses_descriptor(recorder):
    conn = Connection(ConnectionConfig(ssh=SSH), transport_factory=recorder)

    assert str(conn) == "[SSH] 10.0.0.1"
    assert conn.address() == "10.0.0.1"


def test_construction_rejects_disabled_localhost(recorder):
    with pytest.raises(ValidationFailedError):
        Connection(ConnectionConfig(localhost=LocalhostConfig(enabled=False)), transport_factory=recorder)


def test_disconnect_is_idempotent(recorder):
    conn = Connection(transport_factory=recorder)

    conn.disconnect()
    conn.disconnect()
    assert conn.is_connected() is False

    conn.connect()
    conn.disconnect()
    conn.disconnect()

    assert conn.is_connected() is False
    assert recorder.created[0].disconnect_calls == 1


def test_exec_before_connect_fails_without_transport_call(recorder):
    conn = Connection(transport_factory=recorder)

    with pytest.raises(NotConnectedError):
        conn.exec("echo hi")
    with pytest.raises(NotConnectedError):
        conn.exec_output("echo hi")
    with pytest.raises(NotConnectedError):
        conn.upload("/tmp/a", "/tmp/b")
    with pytest.raises(NotConnectedError):
        conn.exec_interactive("bash")

    assert recorder.created == []


def test_connect_resolves_os_and_elevation(fake_transport, make_recorder):
    conn = Connection(transport_factory=make_recorder(fake_transport))

    conn.connect()

    assert conn.is_connected() is True
    assert conn.os_version.id == "ubuntu"
    assert conn.os_version.name == "Ubuntu 22.04.3 LTS"
    assert conn.elevation is ElevationStrategy.SUDO
    assert conn.sudo("echo hi") == "sudo -s -- echo hi"
    assert str(conn) == "[Fake] 192.0.2.10"


def test_root_probe_takes_priority(make_transport, make_recorder, linux_responses):
    responses = dict(linux_responses)
    responses['[ "$(id -u)" = 0 ]'] = (0, "")
    transport = make_transport(responses=responses)
    conn = Connection(transport_factory=make_recorder(transport))

    conn.connect()

    assert conn.elevation is ElevationStrategy.NOOP
    assert conn.sudo("apt update") == "apt update"
    assert "sudo -n true" not in transport.commands


def test_doas_used_when_sudo_unavailable(make_transport, make_recorder):
    transport = make_transport(
        responses={OS_RELEASE_COMMAND: (0, "ID=alpine\n"), "doas -n true": (0, "")}
    )
    conn = Connection(transport_factory=make_recorder(transport))

    conn.connect()

    assert conn.sudo("apk add curl") == "doas -s -- apk add curl"


def test_sudo_without_elevation_raises(make_transport, make_recorder):
    transport = make_transport(responses={OS_RELEASE_COMMAND: (0, "ID=debian\n")})
    conn = Connection(transport_factory=make_recorder(transport))

    with pytest.raises(SudoRequiredError):
        conn.sudo("id")

    conn.connect()

    assert conn.is_connected() is True
    assert conn.elevation is None
    with pytest.raises(SudoRequiredError):
        conn.sudo("id")
    with pytest.raises(SudoRequiredError):
        conn.exec("id", Sudo())


def test_failed_connect_drops_transport(broken_transport, make_recorder, linux_responses):
    recorder = make_recorder(broken_transport, responses=linux_responses)
    conn = Connection(transport_factory=recorder)

    with pytest.raises(NotConnectedError) as exc:
        conn.connect()

    assert isinstance(exc.value.__cause__, TransportError)
    assert conn.is_connected() is False

    conn.connect()

    assert len(recorder.created) == 2
    assert recorder.created[1] is not broken_transport
    assert conn.is_connected() is True


def test_reconnect_reuses_cached_os_identity(recorder):
    conn = Connection(transport_factory=recorder)

    conn.connect()
    first = conn.os_version
    conn.disconnect()

    assert conn.os_version is first
    assert conn.elevation is None

    conn.connect()

    assert conn.os_version is first
    assert conn.elevation is ElevationStrategy.SUDO
    assert recorder.created[0].commands.count(OS_RELEASE_COMMAND) == 1
    assert OS_RELEASE_COMMAND not in recorder.created[1].commands


def test_os_resolution_failure_fails_connect(make_transport, make_recorder):
    transport = make_transport(responses={})
    conn = Connection(transport_factory=make_recorder(transport))

    with pytest.raises(CommandFailedError):
        conn.connect()

    assert conn.os_version is None


def test_windows_host_skips_darwin_probe(make_transport, make_recorder):
    def registry_query(value):
        key = powershell.single_quote(WINDOWS_REGISTRY_KEY)
        return powershell.cmd(f"(Get-ItemProperty {key}).{value}")

    transport = make_transport(
        windows=True,
        responses={
            registry_query("ProductName"): (0, "Windows Server 2022 Standard\r\n"),
            registry_query("CurrentMajorVersionNumber"): (0, "10\r\n"),
            registry_query("CurrentMinorVersionNumber"): (0, "0\r\n"),
            registry_query("CurrentBuild"): (0, "20348\r\n"),
            'whoami | findstr /i "administrator"': (0, "win-host\\administrator\r\n"),
        },
    )
    conn = Connection(ConnectionConfig(winrm=WINRM), transport_factory=make_recorder(transport))

    conn.connect()

    assert DARWIN_PROBE not in transport.commands
    assert conn.os_version.id == "windows"
    assert conn.os_version.version == "10.0.20348"
    assert conn.os_version.name == "Windows Server 2022 Standard"
    assert conn.elevation is ElevationStrategy.RUNAS
    assert conn.sudo("net stop spooler") == "runas /user:Administrator net stop spooler"
    assert conn.is_windows() is True


def test_exec_wraps_transport_errors(recorder):
    conn = Connection(transport_factory=recorder)
    conn.connect()

    with pytest.raises(CommandFailedError) as exc:
        conn.exec("false")

    assert isinstance(exc.value.__cause__, CommandExitError)
    assert exc.value.__cause__.exit_code == 127


def test_exec_output_trims_whitespace(make_recorder, linux_responses):
    responses = dict(linux_responses)
    responses["hostname"] = (0, "  web-01\n\n")
    conn = Connection(transport_factory=make_recorder(responses=responses))
    conn.connect()

    assert conn.exec_output("hostname") == "web-01"


def test_execf_partitions_options_and_arguments(make_recorder, linux_responses):
    responses = dict(linux_responses)
    responses["echo alpha 3"] = (0, "alpha 3\n")
    recorder = make_recorder(responses=responses)
    conn = Connection(transport_factory=recorder)
    conn.connect()

    conn.execf("echo %s %d", "alpha", HideOutput(), 3)

    transport = recorder.created[0]
    assert transport.commands[-1] == "echo alpha 3"
    assert transport.options[-1].hide_output is True
    assert conn.exec_outputf("echo %s %d", ["alpha", 3, Redact("alpha")]) == "alpha 3"
    assert transport.options[-1].redact


def test_execf_does_not_escape_arguments(recorder):
    conn = Connection(transport_factory=recorder)
    conn.connect()

    with pytest.raises(CommandFailedError):
        conn.execf("echo %s", "$(id); rm -rf /tmp/x")

    assert recorder.created[0].commands[-1] == "echo $(id); rm -rf /tmp/x"


def test_exec_with_sudo_option_elevates(make_recorder, linux_responses):
    responses = dict(linux_responses)
    responses["sudo -s -- systemctl restart nginx"] = (0, "")
    recorder = make_recorder(responses=responses)
    conn = Connection(transport_factory=recorder)
    conn.connect()

    conn.exec("systemctl restart nginx", Sudo())

    assert recorder.created[0].commands[-1] == "sudo -s -- systemctl restart nginx"


def test_upload_delegates_and_wraps_errors(make_transport, make_recorder, linux_responses):
    transport = make_transport(responses=linux_responses)
    conn = Connection(transport_factory=make_recorder(transport))
    conn.connect()

    conn.upload("/tmp/source.txt", "/opt/dest.txt")
    assert transport.uploads == [("/tmp/source.txt", "/opt/dest.txt")]

    transport.upload_error = TransportError("disk full")
    with pytest.raises(UploadFailedError) as exc:
        conn.upload("/tmp/source.txt", "/opt/dest.txt")
    assert "disk full" in str(exc.value)


def test_exec_interactive_delegates(recorder):
    conn = Connection(transport_factory=recorder)
    conn.connect()

    conn.exec_interactive("bash -l")

    assert recorder.created[0].interactive == ["bash -l"]


def test_is_windows_before_connect_does_not_keep_transport(make_transport, make_recorder):
    recorder = make_recorder(make_transport(windows=True))
    conn = Connection(ConnectionConfig(winrm=WINRM), transport_factory=recorder)

    assert conn.is_windows() is True
    assert conn.is_connected() is False
    assert str(conn) == "[WinRM] 10.0.0.2"


def test_context_manager_connects_and_disconnects(recorder):
    with Connection(transport_factory=recorder) as conn:
        assert conn.is_connected() is True

    assert conn.is_connected() is False
    assert recorder.created[0].disconnect_calls == 1


def test_string_after_connect_uses_transport(recorder):
    conn = Connection(transport_factory=recorder)
    conn.connect()

    assert str(conn) == "[Fake] 192.0.2.10"
    assert conn.protocol() == "Fake"


@pytest.mark.unit
@pytest.mark.parametrize(
    "descriptor, expected",
    [
        (WINRM, WinRMTransport),
        (LOCAL, LocalhostTransport),
        (SSH, SSHTransport),
    ],
)
def test_build_transport_matches_descriptor(descriptor, expected):
    assert type(build_transport(descriptor)) is expected


@pytest.mark.unit
def test_build_transport_rejects_unknown_descriptor():
    with pytest.raises(TypeError):
        build_transport(ConnectionConfig())

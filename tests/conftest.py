"""Test configuration and shared fakes for the hostlink test suite."""

from typing import Dict, List, Optional, Tuple

import pytest

from hostlink.core.errors import CommandExitError, TransportError
from hostlink.core.exec_options import ExecOptions
from hostlink.services.os_resolver import OS_RELEASE_COMMAND
from hostlink.transports.base import Transport


UBUNTU_OS_RELEASE = "\n".join(
    [
        'NAME="Ubuntu"',
        "ID=ubuntu",
        'ID_LIKE="debian"',
        'VERSION_ID="22.04"',
        'PRETTY_NAME="Ubuntu 22.04.3 LTS"',
        "HOME_URL=https://www.ubuntu.com/",
    ]
)


class FakeTransport(Transport):
    """In-memory transport answering commands from a response table.

    Commands missing from ``responses`` exit with status 127.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Tuple[int, str]]] = None,
        windows: bool = False,
        connect_error: Optional[Exception] = None,
        upload_error: Optional[Exception] = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.windows = windows
        self.connect_error = connect_error
        self.upload_error = upload_error
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.commands: List[str] = []
        self.options: List[ExecOptions] = []
        self.interactive: List[str] = []
        self.uploads: List[Tuple[str, str]] = []

    def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def exec(self, command: str, options: Optional[ExecOptions] = None) -> None:
        options = options or ExecOptions()
        self.commands.append(command)
        self.options.append(options)
        exit_code, stdout = self.responses.get(command, (127, ""))
        options.write_output(stdout)
        if exit_code != 0:
            raise CommandExitError(command, exit_code, "fake failure")

    def exec_interactive(self, command: str) -> None:
        self.interactive.append(command)

    def upload(self, source: str, destination: str, options: Optional[ExecOptions] = None) -> None:
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append((source, destination))

    def is_windows(self) -> bool:
        return self.windows

    def is_connected(self) -> bool:
        return self.connected

    def protocol(self) -> str:
        return "Fake"

    def ip_address(self) -> str:
        return "192.0.2.10"


class TransportRecorder:
    """Transport factory handing out queued fakes and recording every build."""

    def __init__(self, *transports: FakeTransport, responses: Optional[Dict[str, Tuple[int, str]]] = None):
        self.pending = list(transports)
        self.responses = responses or {}
        self.created: List[FakeTransport] = []
        self.descriptors: list = []

    def __call__(self, descriptor) -> FakeTransport:
        self.descriptors.append(descriptor)
        if self.pending:
            transport = self.pending.pop(0)
        else:
            transport = FakeTransport(responses=self.responses)
        self.created.append(transport)
        return transport


@pytest.fixture
def linux_responses():
    """Responses of a passwordless-sudo Ubuntu host."""
    return {
        OS_RELEASE_COMMAND: (0, UBUNTU_OS_RELEASE + "\n"),
        "sudo -n true": (0, ""),
    }


@pytest.fixture
def fake_transport(linux_responses):
    return FakeTransport(responses=linux_responses)


@pytest.fixture
def recorder(linux_responses):
    return TransportRecorder(responses=linux_responses)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def make_recorder():
    return TransportRecorder


@pytest.fixture
def broken_transport():
    return FakeTransport(connect_error=TransportError("connection refused"))

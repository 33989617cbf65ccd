"""Identify the operating system of a connected host."""
from __future__ import annotations

import logging
import shlex
from typing import Callable, Dict, List, Optional, Protocol

from ..core import powershell
from ..core.errors import CommandFailedError, HostlinkError
from ..core.models import OSFamily, OSVersion

logger = logging.getLogger(__name__)

OS_RELEASE_COMMAND = "cat /etc/os-release || cat /usr/lib/os-release"
DARWIN_PROBE = "uname | grep -q Darwin"
WINDOWS_REGISTRY_KEY = r"HKLM:\SOFTWARE\Microsoft\Windows NT\CurrentVersion"
DARWIN_LICENSE_COMMAND = (
    'grep "SOFTWARE LICENSE AGREEMENT FOR " '
    '"/System/Library/CoreServices/Setup Assistant.app/Contents/Resources/en.lproj/OSXSoftwareLicense.rtf"'
    r' | sed -E "s/^.*SOFTWARE LICENSE AGREEMENT FOR (.+)\\\/\1/"'
)

_OS_RELEASE_FIELDS = {
    "ID": "id",
    "ID_LIKE": "id_like",
    "VERSION_ID": "version",
    "PRETTY_NAME": "name",
}


class Runner(Protocol):
    """What a resolver needs from a connection."""

    def is_windows(self) -> bool:
        ...

    def exec(self, command: str, *opts) -> None:
        ...

    def exec_output(self, command: str, *opts) -> str:
        ...


Resolver = Callable[[Runner], Optional[OSVersion]]


def _unquote(value: str) -> str:
    try:
        tokens = shlex.split(value)
    except ValueError:
        return value
    if len(tokens) != 1:
        return value if tokens else ""
    return tokens[0]


def parse_os_release(text: str) -> OSVersion:
    """Parse ``os-release`` KEY=VALUE content.

    Only ID, ID_LIKE, VERSION_ID and PRETTY_NAME are read; other keys and
    malformed lines are ignored.
    """

    fields: Dict[str, str] = {}
    for line in text.splitlines():
        key, _, value = line.partition("=")
        attr = _OS_RELEASE_FIELDS.get(key.strip())
        if attr is not None:
            fields[attr] = _unquote(value.strip())
    return OSVersion(**fields)


def resolve_linux(runner: Runner) -> Optional[OSVersion]:
    if runner.is_windows():
        return None

    output = runner.exec_output(OS_RELEASE_COMMAND)
    version = parse_os_release(output)
    logger.debug("Linux resolver: resolved %s", version.model_dump())
    return version


def resolve_windows(runner: Runner) -> Optional[OSVersion]:
    if not runner.is_windows():
        return None

    def query(value: str) -> str:
        script = f"(Get-ItemProperty {powershell.single_quote(WINDOWS_REGISTRY_KEY)}).{value}"
        return runner.exec_output(powershell.cmd(script))

    name = query("ProductName")
    major = query("CurrentMajorVersionNumber")
    minor = query("CurrentMinorVersionNumber")
    build = query("CurrentBuild")

    return OSVersion(
        id="windows",
        id_like="windows",
        version=f"{major}.{minor}.{build}",
        name=name,
    )


def resolve_darwin(runner: Runner) -> Optional[OSVersion]:
    if runner.is_windows():
        return None

    version = runner.exec_output("sw_vers -productVersion")

    name = version
    try:
        product = runner.exec_output(DARWIN_LICENSE_COMMAND)
    except HostlinkError as exc:
        logger.debug("Darwin resolver: product name lookup failed: %s", exc)
    else:
        if product:
            name = f"{product} {version}"

    return OSVersion(id="darwin", id_like="darwin", version=version, name=name)


RESOLVERS: Dict[OSFamily, Resolver] = {
    OSFamily.WINDOWS: resolve_windows,
    OSFamily.DARWIN: resolve_darwin,
    OSFamily.LINUX: resolve_linux,
}


def detect_family(runner: Runner) -> OSFamily:
    """Pick the OS family whose resolver applies to ``runner``.

    Anything that is neither Windows nor Darwin is treated as Linux.
    """

    if runner.is_windows():
        return OSFamily.WINDOWS
    try:
        runner.exec(DARWIN_PROBE)
    except CommandFailedError:
        return OSFamily.LINUX
    return OSFamily.DARWIN


def get_resolver(runner: Runner) -> Resolver:
    return RESOLVERS[detect_family(runner)]


class ResolverProvider:
    """Ordered set of resolvers tried before the built-in family dispatch."""

    def __init__(self) -> None:
        self._resolvers: List[Resolver] = []

    def register(self, resolver: Resolver) -> None:
        self._resolvers.append(resolver)

    def resolve(self, runner: Runner) -> OSVersion:
        for resolver in self._resolvers:
            version = resolver(runner)
            if version is not None:
                return version

        resolver = get_resolver(runner)
        version = resolver(runner)
        if version is None:
            raise HostlinkError(f"{resolver.__name__} could not identify the operating system")
        return version


default_provider = ResolverProvider()


def resolve_os(runner: Runner, provider: Optional[ResolverProvider] = None) -> OSVersion:
    """Return the OS identity of the host behind ``runner``."""

    return (provider or default_provider).resolve(runner)


__all__ = [
    "Runner",
    "parse_os_release",
    "resolve_linux",
    "resolve_windows",
    "resolve_darwin",
    "detect_family",
    "get_resolver",
    "ResolverProvider",
    "default_provider",
    "resolve_os",
]

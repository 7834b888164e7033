"""Agent runtime installation strategies.

The agent needs a Java runtime on the droplet. Images usually ship one; when
they do not, each package manager strategy is tried in order until one is
present on the droplet and installs an acceptable version.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from dropcloud.constants import RUNTIME_PROBE, RUNTIME_VERSIONS
from dropcloud.exceptions import RuntimeInstallError
from dropcloud.ssh import Session, Sink

log = logger.bind(component="installers")


class RuntimeInstaller(Protocol):
    name: str

    def detect(self, session: Session, sink: Sink | None = None) -> bool: ...

    def install(self, session: Session, version: str, sink: Sink | None = None) -> bool: ...


@dataclass(frozen=True, slots=True)
class PackageManagerInstaller:
    """Installs the runtime with a package manager found by ``probe``.

    ``command`` is formatted with ``version``.
    """

    name: str
    probe: str
    command: str

    def detect(self, session: Session, sink: Sink | None = None) -> bool:
        if sink:
            sink(f"Checking: {self.probe}")
        return session.exec(self.probe, sink) == 0

    def install(self, session: Session, version: str, sink: Sink | None = None) -> bool:
        return session.exec(self.command.format(version=version), sink) == 0


YUM = PackageManagerInstaller(
    name="yum",
    probe="which yum",
    command="yum install -y java-{version}-openjdk-headless",
)
APT = PackageManagerInstaller(
    name="apt-get",
    probe="which apt-get",
    command="apt-get update -q && apt-get install -y openjdk-{version}-jre-headless",
)
DNF = PackageManagerInstaller(
    name="dnf",
    probe="which dnf",
    command="dnf install -y java-{version}-openjdk-headless",
)

DEFAULT_INSTALLERS: tuple[RuntimeInstaller, ...] = (YUM, APT, DNF)


def has_runtime(session: Session, sink: Sink | None = None) -> bool:
    return session.exec(RUNTIME_PROBE, sink) == 0


def install_runtime(
    session: Session,
    installers: Sequence[RuntimeInstaller] = DEFAULT_INSTALLERS,
    versions: Sequence[str] = RUNTIME_VERSIONS,
    sink: Sink | None = None,
) -> tuple[str, str]:
    """Install the first acceptable runtime version with the first usable installer.

    Returns:
        ``(installer name, version)`` that succeeded.

    Raises:
        RuntimeInstallError: If no installer is present or none succeeded.
    """
    if sink:
        sink(f"Try to install one of these Java versions: {list(versions)}")
        sink("Trying to find a working package manager")
    for installer in installers:
        if not installer.detect(session, sink):
            continue
        for version in versions:
            if installer.install(session, version, sink):
                log.info("Installed runtime {v} with {name}", v=version, name=installer.name)
                return installer.name, version
        log.warning("{name} could not install any of {versions}", name=installer.name, versions=list(versions))
    raise RuntimeInstallError("Java could not be installed using any of the supported package managers")


__all__ = [
    "APT",
    "DEFAULT_INSTALLERS",
    "DNF",
    "PackageManagerInstaller",
    "RuntimeInstaller",
    "YUM",
    "has_runtime",
    "install_runtime",
]

"""SSH sessions to freshly created droplets.

Connection and authentication are separate steps: the launcher retries a
failed connect until its deadline but treats a rejected key as fatal.
"""

from __future__ import annotations

import io
import socket
from collections.abc import Callable
from typing import Protocol

import paramiko
from loguru import logger

from dropcloud.constants import SSH_CONNECT_TIMEOUT
from dropcloud.exceptions import AuthenticationError, ConfigurationError

log = logger.bind(component="ssh")

type Sink = Callable[[str], None]

_KEY_TYPES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.ECDSAKey,
    paramiko.Ed25519Key,
)


def load_private_key(pem: str) -> paramiko.PKey:
    """Parse PEM/OpenSSH private key text.

    Raises:
        ConfigurationError: If the text is not a supported private key.
    """
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(pem))
        except (paramiko.SSHException, ValueError):
            continue
    raise ConfigurationError("Private key is not a valid RSA, ECDSA or Ed25519 private key")


def is_private_key(pem: str) -> bool:
    try:
        load_private_key(pem)
    except ConfigurationError:
        return False
    return True


class ChannelStream:
    """Bidirectional byte stream over an exec channel.

    Handed to the orchestrator as the agent's control channel.
    """

    __slots__ = ("_channel",)

    MAX_IO_CHUNK = 8 * 1024 * 1024

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def read(self, count: int) -> bytes:
        """Read exactly count bytes."""
        data = b""
        while len(data) < count:
            chunk = self._channel.recv(count - len(data))
            if not chunk:
                raise EOFError("Channel closed")
            data += chunk
        return data

    def write(self, data: bytes) -> None:
        while data:
            sent = self._channel.send(data)
            if sent == 0:
                raise EOFError("Channel closed")
            data = data[sent:]

    def close(self) -> None:
        self._channel.close()

    @property
    def closed(self) -> bool:
        return self._channel.closed

    def fileno(self) -> int:
        return self._channel.fileno()

    def poll(self, timeout: float) -> bool:
        return self._channel.recv_ready()


class Session(Protocol):
    """What the launcher needs from an SSH connection."""

    def authenticate(self, username: str, private_key: str) -> None: ...

    def exec(self, command: str, sink: Sink | None = None) -> int: ...

    def exec_pty(self, command: str, sink: Sink | None = None) -> int: ...

    def put(self, data: bytes, remote_path: str, mode: int | None = None) -> None: ...

    def start(self, command: str) -> ChannelStream: ...

    def close(self) -> None: ...


type Connector = Callable[[str, int, float], Session]


def _drain(channel: paramiko.Channel, sink: Sink | None) -> int:
    buf = b""
    while True:
        chunk = channel.recv(4096)
        if not chunk:
            break
        buf += chunk
        *lines, buf = buf.split(b"\n")
        if sink is not None:
            for line in lines:
                sink(line.decode(errors="replace").rstrip("\r"))
    if buf and sink is not None:
        sink(buf.decode(errors="replace").rstrip("\r"))
    return channel.recv_exit_status()


class SSHConnection:
    """One paramiko transport to a droplet."""

    __slots__ = ("_host", "_transport")

    def __init__(self, host: str, port: int = 22, timeout: float = SSH_CONNECT_TIMEOUT) -> None:
        log.debug("Connecting to {host}:{port}", host=host, port=port)
        self._host = host
        sock = socket.create_connection((host, port), timeout=timeout)
        try:
            self._transport = paramiko.Transport(sock)
            self._transport.start_client(timeout=timeout)
        except BaseException:
            sock.close()
            raise
        log.debug("Connected to {host}", host=host)

    def authenticate(self, username: str, private_key: str) -> None:
        key = load_private_key(private_key)
        try:
            self._transport.auth_publickey(username, key)
        except paramiko.AuthenticationException as e:
            raise AuthenticationError(f"Authentication failed for {username}@{self._host}") from e
        if not self._transport.is_authenticated():
            raise AuthenticationError(f"Authentication failed for {username}@{self._host}")

    def exec(self, command: str, sink: Sink | None = None) -> int:
        """Run a command, stream its combined output to ``sink``, return its exit code."""
        log.debug("exec: {cmd}", cmd=command[:80])
        channel = self._transport.open_session()
        try:
            channel.set_combined_stderr(True)
            channel.exec_command(command)
            code = _drain(channel, sink)
        finally:
            channel.close()
        log.debug("exec: exit_code={code}", code=code)
        return code

    def exec_pty(self, command: str, sink: Sink | None = None) -> int:
        """Like ``exec`` but under a dumb pseudo-terminal."""
        log.debug("exec_pty: {cmd}", cmd=command[:80])
        channel = self._transport.open_session()
        try:
            channel.get_pty(term="dumb")
            channel.exec_command(command)
            code = _drain(channel, sink)
        finally:
            channel.close()
        return code

    def put(self, data: bytes, remote_path: str, mode: int | None = None) -> None:
        sftp = paramiko.SFTPClient.from_transport(self._transport)
        if sftp is None:
            raise paramiko.SSHException("Could not open SFTP session")
        try:
            with sftp.open(remote_path, "wb") as f:
                f.write(data)
            if mode is not None:
                sftp.chmod(remote_path, mode)
        finally:
            sftp.close()

    def start(self, command: str) -> ChannelStream:
        """Start a long-running command and return its channel as a stream."""
        channel = self._transport.open_session()
        channel.exec_command(command)
        return ChannelStream(channel)

    def is_alive(self) -> bool:
        return self._transport.is_active()

    def close(self) -> None:
        self._transport.close()


def connect(host: str, port: int, timeout: float) -> SSHConnection:
    return SSHConnection(host, port, timeout)


__all__ = [
    "ChannelStream",
    "Connector",
    "SSHConnection",
    "Session",
    "Sink",
    "connect",
    "is_private_key",
    "load_private_key",
]

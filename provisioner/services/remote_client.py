import io
import logging
import os
import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Optional, Tuple

import paramiko

from provisioner.exceptions import (
    AuthConfigError,
    AuthenticationError,
    CommandFailedError,
    CommandTimeoutError,
    ConnectionClosedError,
    KeyParseError,
    LocalFileError,
    RemoteError,
    RemoteFileError,
    SFTPChannelError,
    SSHConnectionError,
)

logger = logging.getLogger(__name__)

DEFAULT_SSH_PORT = 22
DEFAULT_DIAL_TIMEOUT = 30
DEFAULT_COMMAND_TIMEOUT = 300
DOWNLOAD_FILE_MODE = 0o644
PROBE_COMMAND = "echo ok"

_CHUNK_SIZE = 32768
_POLL_INTERVAL = 0.1
_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)

OutputCallback = Callable[[str], None]


@dataclass
class SSHConfig:
    """Connection settings for one host. A private key wins over a password."""

    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    password: str = ""
    private_key: str = ""
    passphrase: str = ""

    @property
    def address(self) -> str:
        return f"{self.username}@{self.host}:{int(self.port or DEFAULT_SSH_PORT)}"

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        for secret in ("password", "private_key", "passphrase"):
            if data[secret]:
                data[secret] = "***"
        return data


def parse_private_key(text: str, passphrase: str = "") -> paramiko.PKey:
    last_error: Optional[Exception] = None
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text), password=passphrase or None)
        except paramiko.PasswordRequiredException as exc:
            raise KeyParseError(f"private key is encrypted and no passphrase was given: {exc}") from exc
        except (paramiko.SSHException, ValueError) as exc:
            last_error = exc
    raise KeyParseError(f"failed to parse private key: {last_error}")


class _LineEmitter:
    """Splits a byte stream into lines for an output callback."""

    def __init__(self, callback: Optional[OutputCallback]):
        self._callback = callback
        self._pending = b""

    def feed(self, chunk: bytes) -> None:
        if self._callback is None:
            return
        *lines, self._pending = (self._pending + chunk).split(b"\n")
        for line in lines:
            self._callback(_decode(line).rstrip("\r"))

    def flush(self) -> None:
        if self._callback is not None and self._pending:
            self._callback(_decode(self._pending).rstrip("\r"))
        self._pending = b""


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class RemoteClient:
    """
    One authenticated SSH connection to a single host.

    Build it with ``RemoteClient.connect``. Each ``run_command`` opens its own
    session on the shared connection. Not safe for concurrent use from several
    threads.
    """

    def __init__(self, ssh_client: paramiko.SSHClient, config: SSHConfig,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self._client = ssh_client
        self.config = config
        self.command_timeout = command_timeout
        self._closed = False

    @classmethod
    def connect(
        cls,
        config: SSHConfig,
        dial_timeout: float = DEFAULT_DIAL_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        host_key_policy: Optional[paramiko.MissingHostKeyPolicy] = None,
    ) -> "RemoteClient":
        if not config.private_key and not config.password:
            raise AuthConfigError(
                f"either password or private key must be provided for {config.host}:{config.port}"
            )
        pkey = parse_private_key(config.private_key, config.passphrase) if config.private_key else None

        client = paramiko.SSHClient()
        # Provisioning targets are short-lived; unknown host keys are accepted.
        client.set_missing_host_key_policy(host_key_policy or paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=config.host,
                port=int(config.port or DEFAULT_SSH_PORT),
                username=config.username,
                pkey=pkey,
                password=None if pkey is not None else config.password,
                timeout=dial_timeout,
                banner_timeout=dial_timeout,
                auth_timeout=dial_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthenticationError(f"authentication failed for {config.address}: {exc}") from exc
        except (paramiko.SSHException, OSError, EOFError) as exc:
            client.close()
            raise SSHConnectionError(f"failed to connect to {config.address}: {exc}") from exc

        logger.info("Connected to %s", config.address)
        return cls(client, config, command_timeout=command_timeout)

    def __enter__(self) -> "RemoteClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.close()
        logger.info("Closed connection to %s", self.config.address)

    def _active_transport(self) -> paramiko.Transport:
        if self._closed:
            raise ConnectionClosedError(f"connection to {self.config.address} is closed")
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise ConnectionClosedError(f"connection to {self.config.address} is no longer active")
        return transport

    # -------------------------
    # command execution
    # -------------------------
    def run_command(self, command: str, on_output: Optional[OutputCallback] = None) -> str:
        """
        Run *command* and return its stdout. Stderr is only reported when the
        command fails. *on_output* receives each output line as it arrives.
        """
        transport = self._active_transport()
        try:
            channel = transport.open_session()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise CommandFailedError(f"failed to create session: {exc}", command=command) from exc

        stdout, stderr = bytearray(), bytearray()
        emitters = (_LineEmitter(on_output), _LineEmitter(on_output))
        deadline = time.monotonic() + self.command_timeout
        logger.debug("Running command on %s", self.config.address)
        try:
            channel.exec_command(command)
            while True:
                if channel.exit_status_ready():
                    # output sent before the exit status is already buffered
                    while self._drain(channel, stdout, stderr, emitters):
                        pass
                    break
                received = self._drain(channel, stdout, stderr, emitters)
                if time.monotonic() >= deadline:
                    raise CommandTimeoutError(
                        f"command timed out after {self.command_timeout}s: {command}\n"
                        f"Stdout: {_decode(stdout)}\nStderr: {_decode(stderr)}",
                        command=command,
                        stdout=_decode(stdout),
                        stderr=_decode(stderr),
                    )
                if not received:
                    time.sleep(_POLL_INTERVAL)
            exit_status = channel.recv_exit_status()
            for emitter in emitters:
                emitter.flush()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise CommandFailedError(
                f"command failed: {exc}\nStdout: {_decode(stdout)}\nStderr: {_decode(stderr)}",
                command=command,
                stdout=_decode(stdout),
                stderr=_decode(stderr),
            ) from exc
        finally:
            channel.close()

        out, err = _decode(stdout), _decode(stderr)
        if exit_status != 0:
            reason = f"exit status {exit_status}" if exit_status >= 0 else "no exit status"
            raise CommandFailedError(
                f"command failed with {reason}: {command}\nStdout: {out}\nStderr: {err}",
                command=command,
                stdout=out,
                stderr=err,
                exit_status=exit_status,
            )
        return out

    @staticmethod
    def _drain(channel, stdout: bytearray, stderr: bytearray, emitters) -> bool:
        received = False
        while channel.recv_ready():
            chunk = channel.recv(_CHUNK_SIZE)
            if not chunk:
                break
            stdout.extend(chunk)
            emitters[0].feed(chunk)
            received = True
        while channel.recv_stderr_ready():
            chunk = channel.recv_stderr(_CHUNK_SIZE)
            if not chunk:
                break
            stderr.extend(chunk)
            emitters[1].feed(chunk)
            received = True
        return received

    # -------------------------
    # file transfer
    # -------------------------
    def _open_sftp(self) -> paramiko.SFTPClient:
        self._active_transport()
        try:
            sftp = self._client.open_sftp()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise SFTPChannelError(f"failed to create SFTP client: {exc}", stage="sftp") from exc
        if sftp is None:
            raise SFTPChannelError("failed to create SFTP client: channel refused", stage="sftp")
        return sftp

    def upload_file(self, local_path: str, remote_path: str) -> None:
        sftp = self._open_sftp()
        try:
            try:
                with open(local_path, "rb") as fh:
                    data = fh.read()
            except OSError as exc:
                raise LocalFileError(f"failed to read local file {local_path}: {exc}", stage="local_read") from exc

            try:
                remote_file = sftp.open(remote_path, "wb")
            except (OSError, paramiko.SSHException) as exc:
                raise RemoteFileError(
                    f"failed to create remote file {remote_path}: {exc}", stage="remote_create"
                ) from exc
            with remote_file:
                try:
                    remote_file.write(data)
                except (OSError, paramiko.SSHException) as exc:
                    raise RemoteFileError(
                        f"failed to write remote file {remote_path}: {exc}", stage="remote_write"
                    ) from exc
        finally:
            sftp.close()
        logger.debug("Uploaded %s to %s:%s (%d bytes)", local_path, self.config.host, remote_path, len(data))

    def download_file(self, remote_path: str, local_path: str) -> None:
        sftp = self._open_sftp()
        try:
            try:
                remote_file = sftp.open(remote_path, "rb")
            except (OSError, paramiko.SSHException) as exc:
                raise RemoteFileError(
                    f"failed to open remote file {remote_path}: {exc}", stage="remote_open"
                ) from exc
            with remote_file:
                try:
                    data = remote_file.read()
                except (OSError, paramiko.SSHException) as exc:
                    raise RemoteFileError(
                        f"failed to read remote file {remote_path}: {exc}", stage="remote_read"
                    ) from exc
        finally:
            sftp.close()

        try:
            with open(local_path, "wb") as fh:
                fh.write(data)
            os.chmod(local_path, DOWNLOAD_FILE_MODE)
        except OSError as exc:
            raise LocalFileError(f"failed to write local file {local_path}: {exc}", stage="local_write") from exc
        logger.debug("Downloaded %s:%s to %s (%d bytes)", self.config.host, remote_path, local_path, len(data))


def connect(config: SSHConfig, **kwargs) -> RemoteClient:
    return RemoteClient.connect(config, **kwargs)


def test_connection(config: SSHConfig, **kwargs) -> Tuple[bool, Optional[RemoteError]]:
    """Connect, run a no-op and disconnect. Returns (ok, error)."""
    try:
        client = RemoteClient.connect(config, **kwargs)
    except RemoteError as exc:
        return False, exc
    try:
        client.run_command(PROBE_COMMAND)
    except RemoteError as exc:
        return False, exc
    finally:
        client.close()
    return True, None


test_connection.__test__ = False

"""
Exception hierarchy for the provisioner core.
Everything raised on purpose derives from ProvisionerError.
"""

from typing import Optional

__all__ = [
    "ProvisionerError",
    "ConfigError",
    "CatalogError",
    "CatalogInitError",
    "PersistenceError",
    "RemoteError",
    "AuthConfigError",
    "KeyParseError",
    "SSHConnectionError",
    "AuthenticationError",
    "ConnectionClosedError",
    "CommandError",
    "CommandTimeoutError",
    "CommandFailedError",
    "TransferError",
    "SFTPChannelError",
    "LocalFileError",
    "RemoteFileError",
]


class ProvisionerError(Exception):
    """Root exception for all provisioner errors."""


class ConfigError(ProvisionerError):
    """Raised when settings cannot be read or hold invalid values."""


# ── Script catalog ────────────────────────────────────────────────────────────

class CatalogError(ProvisionerError):
    """Base class for script catalog errors."""


class CatalogInitError(CatalogError):
    """Raised when the catalog working directory cannot be created."""


class PersistenceError(CatalogError):
    """Raised when the backing store cannot be read or written."""


# ── Remote execution ──────────────────────────────────────────────────────────

class RemoteError(ProvisionerError):
    """Base class for remote shell errors."""


class AuthConfigError(RemoteError):
    """Raised when neither a private key nor a password was supplied."""


class KeyParseError(RemoteError):
    """Raised when the private key text cannot be parsed."""


class SSHConnectionError(RemoteError):
    """Raised when the TCP dial or SSH handshake fails."""


class AuthenticationError(RemoteError):
    """Raised when the server rejects the supplied credentials."""


class ConnectionClosedError(RemoteError):
    """Raised when an operation is attempted on a closed client."""


class CommandError(RemoteError):
    """Base class for command execution failures.

    Carries whatever output was captured before the failure.
    """

    def __init__(self, message: str, command: str = "", stdout: str = "",
                 stderr: str = "", exit_status: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.stdout = stdout
        self.stderr = stderr
        self.exit_status = exit_status


class CommandTimeoutError(CommandError):
    """Raised when a command runs past its deadline."""


class CommandFailedError(CommandError):
    """Raised when a command exits non-zero or the session breaks."""


class TransferError(RemoteError):
    """Base class for SFTP transfer errors; ``stage`` names the failing step."""

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage


class SFTPChannelError(TransferError):
    """Raised when the SFTP sub-channel cannot be opened."""


class LocalFileError(TransferError):
    """Raised when the local side of a transfer fails."""


class RemoteFileError(TransferError):
    """Raised when the remote side of a transfer fails."""

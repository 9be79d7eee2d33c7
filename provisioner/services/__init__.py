"""
Script catalog, remote execution and the caller-side services built on them.
"""

from .default_scripts import DEFAULT_SCRIPT_NAMES, default_scripts, load_default_scripts
from .script_store import ScriptBackend, SQLScriptStore
from .script_catalog import ScriptCatalog, ReadWriteLock
from .remote_client import RemoteClient, SSHConfig, connect
from .connectivity import SSHConnectivityService, ConnectivityResult
from .runner import ProvisioningRunner, RunRequest, RunResult, StepResult

__all__ = [
    "DEFAULT_SCRIPT_NAMES",
    "default_scripts",
    "load_default_scripts",
    "ScriptBackend",
    "SQLScriptStore",
    "ScriptCatalog",
    "ReadWriteLock",
    "RemoteClient",
    "SSHConfig",
    "connect",
    "SSHConnectivityService",
    "ConnectivityResult",
    "ProvisioningRunner",
    "RunRequest",
    "RunResult",
    "StepResult",
]

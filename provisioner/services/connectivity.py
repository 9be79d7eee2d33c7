import time
from dataclasses import asdict, dataclass
from typing import Optional

from provisioner.services import remote_client
from provisioner.services.remote_client import DEFAULT_DIAL_TIMEOUT, DEFAULT_SSH_PORT, SSHConfig

DEFAULT_PROBE_TIMEOUT = 10


@dataclass
class ConnectivityResult:
    host: str
    port: int
    ok: bool
    latency_ms: Optional[float]
    message: str
    checked_at: float

    def to_dict(self):
        return asdict(self)


class SSHConnectivityService:
    """SSH health checks: connect, run a no-op, disconnect."""

    def __init__(self, dial_timeout: float = DEFAULT_DIAL_TIMEOUT, command_timeout: float = DEFAULT_PROBE_TIMEOUT):
        self.dial_timeout = dial_timeout
        self.command_timeout = command_timeout

    def check_host(self, config: SSHConfig) -> ConnectivityResult:
        start = time.monotonic()
        ok, error = remote_client.test_connection(
            config,
            dial_timeout=self.dial_timeout,
            command_timeout=self.command_timeout,
        )
        latency = (time.monotonic() - start) * 1000

        return ConnectivityResult(
            host=config.host,
            port=int(config.port or DEFAULT_SSH_PORT),
            ok=ok,
            latency_ms=round(latency, 2) if ok else None,
            message="OK" if ok else (str(error) or type(error).__name__),
            checked_at=time.time(),
        )

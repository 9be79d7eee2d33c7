import logging
import re
import shlex
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from provisioner.exceptions import CommandError, RemoteError
from provisioner.services.remote_client import RemoteClient, SSHConfig
from provisioner.services.script_catalog import ScriptCatalog

logger = logging.getLogger(__name__)

_SHELL_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class RunRequest:
    host: SSHConfig
    scripts: List[str]
    extra_vars: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        for key in self.extra_vars:
            if not _SHELL_NAME.match(key):
                raise ValueError(f"invalid shell variable name: {key!r}")


@dataclass
class StepResult:
    script: str
    success: bool
    output: str
    message: str


@dataclass
class RunResult:
    run_id: str
    success: bool
    message: str
    steps: List[StepResult] = field(default_factory=list)


class ProvisioningRunner:
    """
    Runs catalog scripts one after another on a single host and reports
    output lines and the final status through callbacks.
    """

    def __init__(
        self,
        catalog: ScriptCatalog,
        connect: Callable[[SSHConfig], RemoteClient] = RemoteClient.connect,
        log_callback: Optional[Callable[[str, str], None]] = None,
        status_callback: Optional[Callable[[str, bool, str], None]] = None,
    ):
        self.catalog = catalog
        self.connect = connect
        self.log_callback = log_callback or (lambda run_id, line: None)
        self.status_callback = status_callback or (lambda run_id, success, message: None)

    def run(self, request: RunRequest, run_id: Optional[str] = None) -> RunResult:
        run_id = run_id or uuid.uuid4().hex
        result = self._execute(run_id, request)
        self.status_callback(run_id, result.success, result.message)
        return result

    def _execute(self, run_id: str, request: RunRequest) -> RunResult:
        scripts = []
        for name in request.scripts:
            content = self.catalog.get(name)
            if content is None:
                self.log_callback(run_id, f"[ERROR] unknown script {name}")
                return RunResult(run_id=run_id, success=False, message=f"unknown script {name}")
            scripts.append((name, self._build_command(content, request.extra_vars)))

        try:
            client = self.connect(request.host)
        except RemoteError as exc:
            self.log_callback(run_id, f"[ERROR] {exc}")
            return RunResult(run_id=run_id, success=False, message=str(exc))

        steps: List[StepResult] = []
        with client:
            for name, command in scripts:
                self.log_callback(run_id, f"=== {name} on {request.host.address} ===")
                try:
                    output = client.run_command(command, on_output=lambda line: self.log_callback(run_id, line))
                except CommandError as exc:
                    self.log_callback(run_id, f"[ERROR] {name} failed")
                    steps.append(StepResult(script=name, success=False, output=exc.stdout, message=str(exc)))
                    logger.warning("Run %s: script %s failed on %s", run_id, name, request.host.address)
                    return RunResult(run_id=run_id, success=False, message=f"{name} failed", steps=steps)
                except RemoteError as exc:
                    self.log_callback(run_id, f"[ERROR] {exc}")
                    steps.append(StepResult(script=name, success=False, output="", message=str(exc)))
                    return RunResult(run_id=run_id, success=False, message=str(exc), steps=steps)
                steps.append(StepResult(script=name, success=True, output=output, message="completed"))

        return RunResult(run_id=run_id, success=True, message="completed", steps=steps)

    def _build_command(self, content: str, extra_vars: Dict[str, str]) -> str:
        if not extra_vars:
            return content
        exports = [f"export {key}={shlex.quote(str(value))}" for key, value in extra_vars.items()]
        return "\n".join(exports) + "\n" + content

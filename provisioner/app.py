"""
Wiring for applications embedding the provisioner core: settings, logging,
the persisted script catalog and the caller-side services built on it.
"""
import logging
import os
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

from sqlalchemy.engine import make_url

from provisioner.config import Settings, configure_logging
from provisioner.services import (
    ProvisioningRunner,
    RemoteClient,
    ScriptCatalog,
    SQLScriptStore,
    SSHConnectivityService,
)

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    catalog: ScriptCatalog
    connectivity: SSHConnectivityService
    runner: ProvisioningRunner


def create_services(
    settings: Optional[Settings] = None,
    log_callback: Optional[Callable[[str, str], None]] = None,
    status_callback: Optional[Callable[[str, bool, str], None]] = None,
) -> Services:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    url = make_url(settings.database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)

    store = SQLScriptStore(settings.database_url)
    catalog = ScriptCatalog(settings.scripts_dir, backend=store)
    logger.info("Script catalog ready with %d scripts", len(catalog.names()))

    connect = partial(
        RemoteClient.connect,
        dial_timeout=settings.dial_timeout,
        command_timeout=settings.command_timeout,
    )
    runner = ProvisioningRunner(
        catalog,
        connect=connect,
        log_callback=log_callback,
        status_callback=status_callback,
    )
    connectivity = SSHConnectivityService(dial_timeout=settings.dial_timeout)
    return Services(settings=settings, catalog=catalog, connectivity=connectivity, runner=runner)

import logging
import os
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Mapping, Optional

from provisioner.exceptions import CatalogInitError, PersistenceError
from provisioner.services.default_scripts import default_scripts
from provisioner.services.script_store import ScriptBackend

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o755


class ReadWriteLock:
    """
    Non-reentrant shared/exclusive lock. Waiting writers block new readers so
    a steady stream of reads cannot starve a reload.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ScriptCatalog:
    """
    Name -> shell script mapping reconciled from the shipped defaults, the
    persisted copy and in-memory edits.

    Edits made with ``set``/``update`` stay in memory until ``save`` is called.
    Methods never call each other while holding the lock; composed work goes
    through the ``_locked`` helpers.
    """

    def __init__(
        self,
        directory: str,
        backend: Optional[ScriptBackend] = None,
        defaults: Optional[Mapping[str, str]] = None,
    ):
        self.directory = directory
        try:
            os.makedirs(directory, mode=DIRECTORY_MODE, exist_ok=True)
        except OSError as exc:
            raise CatalogInitError(f"failed to create script directory {directory}: {exc}") from exc

        self._backend = backend
        self._defaults: Mapping[str, str] = defaults if defaults is not None else default_scripts()
        self._lock = ReadWriteLock()
        self._scripts: Dict[str, str] = dict(self._defaults)

        try:
            self.load()
        except PersistenceError as exc:
            logger.warning("Loading scripts failed, persisting defaults: %s", exc)
            try:
                self.save()
            except PersistenceError as save_exc:
                logger.warning("Persisting default scripts failed: %s", save_exc)

        with self._lock.write():
            self._reconcile_locked()

    # ------------------------------------------------------------------ reads

    def get_all(self) -> Dict[str, str]:
        with self._lock.read():
            return dict(self._scripts)

    def get(self, name: str) -> Optional[str]:
        """Script content, or None when no script has that name."""
        with self._lock.read():
            return self._scripts.get(name)

    def get_defaults(self) -> Dict[str, str]:
        """
        The live catalog with canonical content laid over it: for any name
        present in both, the shipped default wins over the customization.
        """
        with self._lock.read():
            merged = dict(self._scripts)
        merged.update(self._defaults)
        return merged

    def get_default(self, name: str) -> Optional[str]:
        return self._defaults.get(name)

    def names(self) -> List[str]:
        with self._lock.read():
            return sorted(self._scripts)

    # ----------------------------------------------------------------- writes

    def set(self, name: str, content: str) -> None:
        with self._lock.write():
            self._scripts[name] = content

    def update(self, scripts: Mapping[str, str]) -> None:
        """Upsert every entry of *scripts*; names not mentioned are kept."""
        with self._lock.write():
            self._scripts.update(scripts)

    def reset_to_defaults(self) -> int:
        """Overwrite every default script with its canonical content and persist."""
        with self._lock.write():
            self._scripts.update(self._defaults)
            self._save_locked()
            return len(self._defaults)

    # ------------------------------------------------------------ persistence

    def save(self) -> None:
        """Replace the persisted scripts with the current catalog."""
        with self._lock.read():
            self._save_locked()

    def load(self) -> None:
        """
        Replace the catalog with the persisted scripts. An absent or empty
        store falls back to the defaults, which are then persisted.
        """
        with self._lock.write():
            self._scripts = {}
            if self._backend is not None:
                try:
                    records = self._backend.query_all()
                except PersistenceError:
                    self._scripts = dict(self._defaults)
                    raise
                for name, content in records:
                    self._scripts[name] = content

            if self._scripts:
                logger.info("Loaded %d scripts from store", len(self._scripts))
                return

            logger.info("No stored scripts, using %d defaults", len(self._defaults))
            self._scripts = dict(self._defaults)
            try:
                self._save_locked()
            except PersistenceError as exc:
                logger.warning("Persisting default scripts failed: %s", exc)

    def _save_locked(self) -> None:
        if self._backend is None:
            return
        try:
            self._backend.replace_all(list(self._scripts.items()))
        except PersistenceError as exc:
            logger.warning("Saving %d scripts failed: %s", len(self._scripts), exc)
            raise
        logger.debug("Saved %d scripts", len(self._scripts))

    def _reconcile_locked(self) -> None:
        # Customizations always survive; only missing names are backfilled.
        missing = [name for name in self._defaults if name not in self._scripts]
        for name in missing:
            self._scripts[name] = self._defaults[name]
        if missing:
            logger.info("Backfilled default scripts: %s", ", ".join(sorted(missing)))
        try:
            self._save_locked()
        except PersistenceError as exc:
            logger.warning("Persisting reconciled scripts failed: %s", exc)

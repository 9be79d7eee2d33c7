import os
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Mapping

DEFAULT_SCRIPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "scripts")

DEFAULT_SCRIPT_NAMES = (
    "system_prep",
    "containerd_install",
    "containerd_config",
    "k8s_components",
    "k8s_init",
    "k8s_join",
)

SCRIPT_SUFFIX = ".sh"


def load_default_scripts(root: str) -> Mapping[str, str]:
    """
    Read every ``*.sh`` file under *root* into a read-only name -> content
    mapping. The script name is the file name without its suffix.
    """
    scripts: Dict[str, str] = {}
    for filename in sorted(os.listdir(root)):
        if not filename.endswith(SCRIPT_SUFFIX):
            continue
        path = os.path.join(root, filename)
        if not os.path.isfile(path):
            continue
        with open(path, "r", encoding="utf-8") as fh:
            scripts[filename[: -len(SCRIPT_SUFFIX)]] = fh.read()
    return MappingProxyType(scripts)


@lru_cache(maxsize=None)
def default_scripts() -> Mapping[str, str]:
    """The canonical script bodies shipped with this build."""
    return load_default_scripts(DEFAULT_SCRIPTS_DIR)

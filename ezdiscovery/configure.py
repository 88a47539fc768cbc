import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ezdiscovery.common import get_logger
from ezdiscovery.db import DB, TestDiscoveryIndexException
from ezdiscovery.net_index import create_net_index_from_env
from ezdiscovery.change_ranges import MAX_DIFF_LINES

DB_FILENAME = ".testdiscovery"

logger = get_logger(__name__)


@dataclass
class DiscoveryConf:
    rootdir: str
    datafile: str = DB_FILENAME
    max_diff_lines: int = MAX_DIFF_LINES
    workers: int = 1

    @property
    def datafile_path(self) -> str:
        return os.path.join(self.rootdir, self.datafile)


def _int_env(name, default):
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring {name}={value!r}, not an integer")
        return default


def load_config(rootdir, datafile=None, max_diff_lines=None, workers=None) -> DiscoveryConf:
    """
    Configuration for ``rootdir``: explicit arguments, then environment
    variables (a ``.env`` file in rootdir is loaded first), then defaults.
    """
    rootdir = str(Path(rootdir).resolve())
    env_path = Path(rootdir) / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return DiscoveryConf(
        rootdir=rootdir,
        datafile=datafile or os.environ.get("DISCOVERY_DATAFILE", DB_FILENAME),
        max_diff_lines=max_diff_lines or _int_env("DISCOVERY_MAX_DIFF_LINES", MAX_DIFF_LINES),
        workers=max(workers or _int_env("DISCOVERY_WORKERS", 1), 1),
    )


def create_index(conf: DiscoveryConf):
    """
    The remote index when DISCOVERY_NET_ENABLED is configured, otherwise the
    process wide local index of the data file. None when there is no local data.
    """
    net_index = create_net_index_from_env()
    if net_index is not None:
        logger.info("Using remote test discovery index")
        return net_index

    try:
        return DB.get_instance(conf.datafile_path, readonly=True)
    except TestDiscoveryIndexException as exc:
        logger.warning(f"Test discovery index unavailable: {exc}")
        return None

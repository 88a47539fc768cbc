import logging
import os
import subprocess
from pathlib import Path
from typing import List, NamedTuple, Optional


FileHandle = str  # project relative path, "/" separated

TestPattern = str


class MethodIdentifier(NamedTuple):
    qualified_class_name: str
    method_name: str


class ChangeRegion(NamedTuple):
    file: FileHandle
    start_offset: int
    end_offset: int


LOG_FORMAT = "%(levelname)s: %(message)s"


def get_logger(name):
    """Package logger writing ``LEVEL: message`` lines to stderr."""
    package_logger = logging.getLogger(name)
    if not package_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
    package_logger.setLevel(os.environ.get("DISCOVERY_LOG_LEVEL", "INFO").upper())
    return package_logger


def set_log_level(level):
    for name, package_logger in logging.root.manager.loggerDict.items():
        if name.startswith("ezdiscovery") and isinstance(package_logger, logging.Logger):
            package_logger.setLevel(level)


def to_posix(path: str) -> FileHandle:
    return path.replace(os.sep, "/")


#
# git
#
def git_path(start_path=None) -> Optional[str]:
    """The ``.git`` entry of the repository containing ``start_path``."""
    start = Path(start_path or os.getcwd()).resolve()
    for directory in (start, *start.parents):
        candidate = directory / ".git"
        if candidate.exists():
            return str(candidate)
    return None


def git_current_branch(path=None) -> Optional[str]:
    dot_git = git_path(path)
    if not dot_git or not os.path.isdir(dot_git):
        return None
    try:
        head = Path(dot_git, "HEAD").read_text(encoding="utf8").strip()
    except OSError:
        return None
    _, found, branch = head.partition("refs/heads/")
    return branch if found else None  # detached HEAD holds a sha


def run_git(args: List[str], cwd, check=True) -> str:
    """
    Run a git command in ``cwd`` and return its stdout.

    Raises subprocess.CalledProcessError when ``check`` is set and git exits
    non-zero, and OSError when git is not installed.
    """
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=check,
    )
    return result.stdout

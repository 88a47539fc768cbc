"""
Shared fixtures for ezdiscovery tests.

Git based tests build a throwaway repository under tmp_path; index based
tests use either a seeded .testdiscovery file or an in-memory FakeIndex.
"""
import subprocess
from pathlib import Path

import pytest

from ezdiscovery.change_ranges import ChangedRanges
from ezdiscovery.common import ChangeRegion
from ezdiscovery.configure import DiscoveryConf
from ezdiscovery.db import DB, TestDiscoveryIndexException

# Enable pytester fixture for unit tests that may need it
pytest_plugins = ["pytester"]


def run_git(cwd, *args):
    return subprocess.run(
        [
            "git",
            "-c", "user.name=ezdiscovery",
            "-c", "user.email=ezdiscovery@example.com",
            "-c", "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout


class GitRepo:
    def __init__(self, path: Path):
        self.path = path
        self.path.mkdir(parents=True, exist_ok=True)
        run_git(self.path, "init", "-q")

    @property
    def rootdir(self) -> str:
        return str(self.path)

    def write(self, relpath, text):
        target = self.path / relpath
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        return target

    def git(self, *args):
        return run_git(self.path, *args)

    def commit(self, message="commit"):
        self.git("add", "-A")
        self.git("commit", "-q", "-m", message)


class FakeIndex:
    """In-memory reverse index; keys in ``failing`` raise like a broken data file."""

    def __init__(self, entries=None, failing=()):
        self.entries = dict(entries or {})
        self.failing = set(failing)
        self.queries = []
        self.closed = False

    def query(self, key):
        self.queries.append(key)
        if key in self.failing:
            raise TestDiscoveryIndexException(f"cannot read {key}")
        patterns = self.entries.get(key)
        return tuple(patterns) if patterns is not None else None

    def has_data(self):
        return bool(self.entries)

    def close(self):
        self.closed = True


class FakeCollector:
    def __init__(self, files=(), change_lists=None):
        self.files = list(files)
        self.change_lists = change_lists or {}

    def affected_files(self, change_list_name=None):
        if change_list_name is None:
            return list(self.files)
        return list(self.change_lists.get(change_list_name, []))

    def base_revision(self, change_list_name=None):  # pylint: disable=unused-argument
        return "HEAD"


class FakeRangeResolver:
    """Changed ranges given as ``{filename: [(start text, end text), ...]}``."""

    def __init__(self, ranges=None, too_large=()):
        self.ranges = ranges or {}
        self.too_large = set(too_large)

    def changed_ranges(self, filename, text=None):
        if filename in self.too_large:
            return ChangedRanges(too_large=True)
        regions = []
        for start, end in self.ranges.get(filename, []):
            if isinstance(start, int):
                regions.append(ChangeRegion(filename, start, end))
            else:
                regions.append(
                    ChangeRegion(filename, text.index(start), text.index(end) + len(end) - 1)
                )
        return ChangedRanges(tuple(regions))


@pytest.fixture(autouse=True)
def clean_discovery_env(monkeypatch):
    for name in (
        "DISCOVERY_NET_ENABLED",
        "DISCOVERY_SERVER",
        "DISCOVERY_AUTH_TOKEN",
        "DISCOVERY_DATAFILE",
        "DISCOVERY_WORKERS",
        "DISCOVERY_MAX_DIFF_LINES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def git_repo(tmp_path):
    return GitRepo(tmp_path / "project")


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "src_project"
    path.mkdir()
    return path


@pytest.fixture
def conf(project):
    return DiscoveryConf(rootdir=str(project))


@pytest.fixture
def seeded_db(tmp_path):
    database = DB(str(tmp_path / ".testdiscovery"))
    yield database
    database.close()

"""
Files touched by pending changes, grouped in change lists.

git has no named change lists, so a few names are predefined:

- ``default``: everything pending in the work tree (staged, unstaged, untracked)
- ``staged``: the index against ``HEAD``
- ``unstaged``: the work tree against the index

Any other name is resolved as a git revision and means "changes between that
revision and the work tree".
"""
import os
import subprocess
from typing import List, NamedTuple, Optional

from ezdiscovery.common import FileHandle, get_logger, run_git, to_posix

logger = get_logger(__name__)

DEFAULT_CHANGE_LIST = "default"
STAGED_CHANGE_LIST = "staged"
UNSTAGED_CHANGE_LIST = "unstaged"


class Change(NamedTuple):
    before_path: Optional[FileHandle]
    after_path: Optional[FileHandle]  # None for deletions


class ChangeList(NamedTuple):
    name: str
    changes: List[Change]
    base: str = "HEAD"


def parse_name_status(output: str) -> List[Change]:
    """Parse ``git diff --name-status -z`` output."""
    changes = []
    fields = output.split("\0")
    i = 0
    while i < len(fields) and fields[i]:
        status = fields[i][0]
        if status in ("R", "C"):
            before, after = fields[i + 1], fields[i + 2]
            i += 3
        else:
            before = after = fields[i + 1]
            i += 2
        if status == "D":
            changes.append(Change(before, None))
        elif status == "A":
            changes.append(Change(None, after))
        else:
            changes.append(Change(before, after))
    return changes


class GitChangeListProvider:
    def __init__(self, rootdir):
        self.rootdir = rootdir

    def _diff(self, *args) -> List[Change]:
        output = run_git(["diff", "--name-status", "-z", "--relative", *args], self.rootdir)
        return parse_name_status(output)

    def _untracked(self) -> List[Change]:
        output = run_git(["ls-files", "--others", "--exclude-standard", "-z"], self.rootdir)
        return [Change(None, to_posix(path)) for path in output.split("\0") if path]

    def _is_revision(self, name) -> bool:
        try:
            run_git(["rev-parse", "--verify", "--quiet", f"{name}^{{commit}}"], self.rootdir)
        except subprocess.CalledProcessError:
            return False
        return True

    def _pending_changes(self) -> List[Change]:
        return self._diff("HEAD") + self._untracked()

    def all_affected_files(self) -> List[FileHandle]:
        try:
            changes = self._pending_changes()
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.warning(f"Cannot list pending changes: {exc}")
            return []

        files = []
        for change in changes:
            if change.after_path and change.after_path not in files:
                if os.path.exists(os.path.join(self.rootdir, change.after_path)):
                    files.append(change.after_path)
        return files

    def find_by_name(self, name: str) -> Optional[ChangeList]:
        try:
            if name == DEFAULT_CHANGE_LIST:
                return ChangeList(name, self._pending_changes())
            if name == STAGED_CHANGE_LIST:
                return ChangeList(name, self._diff("--cached", "HEAD"))
            if name == UNSTAGED_CHANGE_LIST:
                return ChangeList(name, self._diff())
            if self._is_revision(name):
                return ChangeList(name, self._diff(name), base=name)
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.warning(f"Cannot read change list {name!r}: {exc}")
        return None


class ChangeSetCollector:
    def __init__(self, provider, rootdir):
        self.provider = provider
        self.rootdir = rootdir

    def affected_files(self, change_list_name: Optional[str] = None) -> List[FileHandle]:
        if change_list_name is None:
            return self.provider.all_affected_files()

        change_list = self.provider.find_by_name(change_list_name)
        if change_list is None:
            logger.info(f"Change list {change_list_name!r} not found, nothing changed")
            return []

        files = []
        for change in change_list.changes:
            if change.after_path is None:
                continue
            if not os.path.exists(os.path.join(self.rootdir, change.after_path)):
                continue
            files.append(change.after_path)
        return files

    def base_revision(self, change_list_name: Optional[str] = None) -> str:
        if change_list_name is None:
            return "HEAD"
        change_list = self.provider.find_by_name(change_list_name)
        return change_list.base if change_list else "HEAD"

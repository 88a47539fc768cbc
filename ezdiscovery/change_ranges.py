"""
Changed text ranges of a file, computed from ``git diff --unified=0`` hunks.

Hunks are reported in lines of the new file; each hunk becomes one
``ChangeRegion`` whose offsets point at the first and the last non blank
character of the changed lines in the current file text.
"""
import os
import re
import subprocess
from typing import List, NamedTuple, Optional, Tuple

from ezdiscovery.common import ChangeRegion, FileHandle, get_logger, run_git
from ezdiscovery.source_model import split_lines

logger = get_logger(__name__)

MAX_DIFF_LINES = 20000

HUNK_RE = re.compile(r"^@@ -\d+(?:,\d+)? \+(?P<start>\d+)(?:,(?P<count>\d+))? @@")


class ChangedRanges(NamedTuple):
    regions: Tuple[ChangeRegion, ...] = ()
    too_large: bool = False


def parse_hunks(diff_text: str) -> List[Tuple[int, int]]:
    """(first line, line count) in the new file for every hunk of a single file diff."""
    hunks = []
    for line in diff_text.splitlines():
        match = HUNK_RE.match(line)
        if match:
            hunks.append((int(match.group("start")), int(match.group("count") or "1")))
    return hunks


def _stripped_span(line: str, line_offset: int) -> Tuple[int, int]:
    content = line.rstrip("\r\n")
    stripped = content.strip()
    if not stripped:
        return line_offset, line_offset
    first = line_offset + len(content) - len(content.lstrip())
    last = line_offset + len(content.rstrip()) - 1
    return first, last


def hunks_to_regions(filename: FileHandle, text: str, hunks) -> List[ChangeRegion]:
    lines = split_lines(text)
    if not lines:
        return []
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    regions = []
    for start, count in hunks:
        if count == 0:
            # pure deletion, git reports the line before the removed block
            first = last = max(start, 1)
        else:
            first, last = start, start + count - 1
        first = min(first, len(lines))
        last = min(max(last, first), len(lines))
        start_offset, _ = _stripped_span(lines[first - 1], offsets[first - 1])
        _, end_offset = _stripped_span(lines[last - 1], offsets[last - 1])
        regions.append(ChangeRegion(filename, start_offset, max(start_offset, end_offset)))
    return regions


def read_text(rootdir, filename) -> Optional[str]:
    try:
        with open(os.path.join(rootdir, filename), "r", encoding="utf-8") as source:
            return source.read()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning(f"Cannot read {filename}: {exc}")
        return None


class GitChangeRangeResolver:
    """Changed ranges of work tree files against ``base`` (``HEAD`` by default)."""

    def __init__(self, rootdir, base: str = "HEAD", max_diff_lines: int = MAX_DIFF_LINES):
        self.rootdir = rootdir
        self.base = base
        self.max_diff_lines = max_diff_lines

    def is_untracked(self, filename: FileHandle) -> bool:
        output = run_git(["ls-files", "--others", "--exclude-standard", "--", filename], self.rootdir)
        return bool(output.strip())

    def diff(self, filename: FileHandle) -> str:
        return run_git(["diff", "--unified=0", "--no-color", self.base, "--", filename], self.rootdir)

    def changed_ranges(self, filename: FileHandle, text: str = None) -> ChangedRanges:
        if text is None:
            text = read_text(self.rootdir, filename)
            if text is None:
                return ChangedRanges()

        if len(split_lines(text)) > self.max_diff_lines:
            return ChangedRanges(too_large=True)

        try:
            if self.is_untracked(filename):
                end = max(len(text) - 1, 0)
                return ChangedRanges((ChangeRegion(filename, 0, end),) if text else ())
            hunks = parse_hunks(self.diff(filename))
        except (subprocess.CalledProcessError, OSError) as exc:
            logger.warning(f"git diff failed for {filename}: {exc}")
            return ChangedRanges()

        return ChangedRanges(tuple(hunks_to_regions(filename, text, hunks)))

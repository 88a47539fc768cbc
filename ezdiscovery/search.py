#!/usr/bin/env python3
"""
Test discovery search for ezdiscovery.

Lists the test patterns covering local code changes, using the reverse
index (.testdiscovery or a remote discovery server).

Usage:
    python -m ezdiscovery.search [--position ID] [--changelist NAME] [path]

Examples:
    # Tests covering every pending change in the current directory
    python -m ezdiscovery.search

    # Tests covering the staged changes only
    python -m ezdiscovery.search --changelist staged

    # Tests covering the changes since a branch
    python -m ezdiscovery.search --changelist origin/main

    # Tests known to exercise one method
    python -m ezdiscovery.search --position pkg.mod,Cls,method

    # Write the patterns to a file for the test runner
    python -m ezdiscovery.search --output tests_to_run.txt /path/to/repo
"""

import argparse
import sys

from ezdiscovery.common import get_logger, git_current_branch, set_log_level
from ezdiscovery.configure import load_config
from ezdiscovery.search_task import (
    FileSearchTask,
    PrintingSearchTask,
    TestDiscoveryException,
)

logger = get_logger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Find the tests affected by local code changes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path to the project (default: current directory)",
    )
    parser.add_argument(
        "--position",
        help="Test or method identifier with ',' separated fields; skips change scanning",
    )
    parser.add_argument(
        "--changelist",
        dest="change_list",
        help="Change list to scan: default, staged, unstaged or a git revision (default: all pending changes)",
    )
    parser.add_argument(
        "--datafile",
        help="Index file relative to path (default: DISCOVERY_DATAFILE or .testdiscovery)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Number of files resolved in parallel (default: DISCOVERY_WORKERS or 1)",
    )
    parser.add_argument(
        "--output",
        help="Write the patterns to this file instead of stdout",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output the patterns as a JSON list",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """CLI entry point."""
    args = parse_args(argv)
    if args.verbose:
        set_log_level("DEBUG")

    conf = load_config(args.path, datafile=args.datafile, workers=args.workers)
    logger.debug(f"Searching {conf.rootdir} (branch {git_current_branch(conf.rootdir)})")

    options = {"position": args.position, "change_list": args.change_list, "conf": conf}
    if args.output:
        task = FileSearchTask(conf.rootdir, args.output, **options)
    else:
        task = PrintingSearchTask(conf.rootdir, json_output=args.json_output, **options)

    try:
        patterns = task.run()
    except TestDiscoveryException as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.output:
        logger.info(f"{len(patterns)} test patterns written to {args.output}")


if __name__ == "__main__":
    main()

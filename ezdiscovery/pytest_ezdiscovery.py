# -*- coding: utf-8 -*-
"""
pytest plugin: run only the tests known to exercise changed methods.
"""
import pytest
from _pytest.config import Config, ExitCode

from ezdiscovery.common import get_logger
from ezdiscovery.configure import load_config
from ezdiscovery.db import TestDiscoveryIndexException
from ezdiscovery.patterns import decode, encode
from ezdiscovery.search_task import CollectingSearchTask
from ezdiscovery.source_model import module_name

logger = get_logger(__name__)


def pytest_addoption(parser):
    group = parser.getgroup(
        "select tests covering changed methods (pytest-ezdiscovery)"
    )

    group.addoption(
        "--ezdiscovery",
        action="store_true",
        dest="ezdiscovery",
        help=(
            "Select tests which exercise methods changed in the work tree "
            "(based on the .testdiscovery index)."
        ),
    )

    group.addoption(
        "--ezdiscovery-changelist",
        action="store",
        dest="ezdiscovery_changelist",
        default=None,
        help=(
            "Only consider the changes of this change list: default, staged, "
            "unstaged or a git revision. Implies --ezdiscovery."
        ),
    )

    group.addoption(
        "--ezdiscovery-position",
        action="store",
        dest="ezdiscovery_position",
        default=None,
        help=(
            "Select the tests covering this method (',' separated identifier) "
            "instead of scanning changes. Implies --ezdiscovery."
        ),
    )

    group.addoption(
        "--ezdiscovery-noselect",
        action="store_true",
        dest="ezdiscovery_noselect",
        help="Run the affected tests first, but don't deselect anything.",
    )

    parser.addini("ezdiscovery_datafile", "test discovery index file", default="")


def item_pattern(item) -> str:
    """Consumer form of the pattern the index uses for ``item``."""
    parts = item.nodeid.split("::")
    owner = ".".join([module_name(parts[0]), *parts[1:-1]])
    name = getattr(item, "originalname", None) or parts[-1].split("[", 1)[0]
    return decode(encode(owner, name))


def is_active(config: Config) -> bool:
    return bool(
        config.getoption("ezdiscovery")
        or config.getoption("ezdiscovery_changelist")
        or config.getoption("ezdiscovery_position")
    )


def pytest_configure(config):
    if not is_active(config):
        return

    rootdir = str(config.rootpath)
    conf = load_config(rootdir, datafile=config.getini("ezdiscovery_datafile") or None)
    task = CollectingSearchTask(
        conf.rootdir,
        position=config.getoption("ezdiscovery_position"),
        change_list=config.getoption("ezdiscovery_changelist"),
        conf=conf,
    )
    try:
        has_data = task.index is not None and task.index.has_data()
    except TestDiscoveryIndexException as exc:
        logger.warning(f"Cannot read test discovery index: {exc}")
        has_data = False

    found = task.run()
    config.pluginmanager.register(
        DiscoverySelect(
            config,
            found if has_data else None,
            select=not config.getoption("ezdiscovery_noselect"),
        ),
        "DiscoverySelect",
    )


class DiscoverySelect:
    def __init__(self, config, patterns, select=True):
        self.config = config
        self.patterns = patterns
        self.select = select
        self.deselected_count = 0

    def pytest_report_header(self, config):  # pylint: disable=unused-argument
        if self.patterns is None:
            return "ezdiscovery: no index data, running all tests"
        return f"ezdiscovery: {len(self.patterns)} affected test patterns"

    @pytest.hookimpl(trylast=True)
    def pytest_collection_modifyitems(
        self, session, config, items
    ):  # pylint: disable=unused-argument
        if self.patterns is None:
            return

        selected = []
        deselected = []
        for item in items:
            if item_pattern(item) in self.patterns:
                selected.append(item)
            else:
                deselected.append(item)

        if self.select:
            items[:] = selected
            self.deselected_count = len(deselected)
            if deselected:
                config.hook.pytest_deselected(items=deselected)
        else:
            items[:] = selected + deselected

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session, exitstatus):
        if self.deselected_count and exitstatus == ExitCode.NO_TESTS_COLLECTED:
            session.exitstatus = ExitCode.OK

"""
Search for the tests affected by changes.

A search runs in one of two modes, picked when the task is created:

- position mode: a test or method identifier was given, its covering
  patterns are looked up in the index directly
- scan mode: changed files are collected from git, their changed ranges are
  mapped to methods and every method is looked up in the index

The patterns found are handed to ``deliver`` exactly once.
"""
import json
import sys
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple

from ezdiscovery.change_ranges import GitChangeRangeResolver
from ezdiscovery.changelists import ChangeSetCollector, GitChangeListProvider
from ezdiscovery.common import FileHandle, MethodIdentifier, TestPattern, get_logger
from ezdiscovery.configure import DiscoveryConf, create_index, load_config
from ezdiscovery.db import DB
from ezdiscovery.index_gateway import IndexGateway
from ezdiscovery.method_resolver import find_enclosing_methods
from ezdiscovery.patterns import PatternSet, decode, normalize_position, qualify
from ezdiscovery.source_model import SourceModel

logger = get_logger(__name__)


class TestDiscoveryException(Exception):
    __test__ = False


class TestDiscoverySearchTask(ABC):
    __test__ = False

    def __init__(  # pylint: disable=too-many-arguments
        self,
        rootdir,
        position: Optional[str] = None,
        change_list: Optional[str] = None,
        conf: Optional[DiscoveryConf] = None,
        index=None,
        collector=None,
        change_range_resolver=None,
        source_model=None,
    ):
        self.conf = conf or load_config(rootdir)
        self.rootdir = self.conf.rootdir
        self.position = position
        self.change_list = change_list

        self._owns_index = index is None
        self.index = create_index(self.conf) if index is None else index
        self.gateway = IndexGateway(self.index)

        self.collector = collector or ChangeSetCollector(
            GitChangeListProvider(self.rootdir), self.rootdir
        )
        self._change_range_resolver = change_range_resolver
        self.source_model = source_model or SourceModel(self.rootdir)

        self._cancelled = threading.Event()
        self._delivered = False
        self._method_cache: Dict[str, Tuple[TestPattern, ...]] = {}
        self._cache_lock = threading.Lock()

    @property
    def mode(self) -> str:
        return "position" if self.position is not None else "scan"

    @property
    def change_range_resolver(self):
        if self._change_range_resolver is None:
            self._change_range_resolver = GitChangeRangeResolver(
                self.rootdir,
                base=self.collector.base_revision(self.change_list),
                max_diff_lines=self.conf.max_diff_lines,
            )
        return self._change_range_resolver

    @abstractmethod
    def deliver(self, patterns: PatternSet) -> None:
        """Hand the found patterns to the consumer."""

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self) -> PatternSet:
        if self._delivered:
            raise TestDiscoveryException("A search task can only run once")
        try:
            patterns = self.resolve()
        finally:
            self.close()
        self._delivered = True
        try:
            self.deliver(patterns)
        except TestDiscoveryException:
            raise
        except (OSError, ValueError, TypeError) as exc:
            raise TestDiscoveryException(f"Delivering test patterns failed: {exc}") from exc
        return patterns

    def resolve(self) -> PatternSet:
        if self.position is not None:
            return self._resolve_position()
        return self._resolve_changes()

    def _resolve_position(self) -> PatternSet:
        patterns = PatternSet()
        key = normalize_position(self.position)
        result = self.gateway.lookup(key)
        if result.failed:
            logger.warning(f"No tests found for {self.position}: {result.error}")
            return patterns
        patterns.update(decode(raw) for raw in result.patterns)
        logger.info(f"{len(patterns)} tests found for {self.position}")
        return patterns

    def _resolve_changes(self) -> PatternSet:
        patterns = PatternSet()
        files = self.collector.affected_files(self.change_list)
        logger.info(f"Scanning {len(files)} changed files")

        if self.conf.workers <= 1 or len(files) <= 1:
            for filename in files:
                patterns.update(self.file_patterns(filename))
                if self.cancelled:
                    logger.info("Search cancelled")
                    break
            return patterns

        with ThreadPoolExecutor(max_workers=self.conf.workers) as executor:
            futures = [executor.submit(self.file_patterns, filename) for filename in files]
            for future in futures:
                patterns.update(future.result())
                if self.cancelled:
                    logger.info("Search cancelled")
                    for pending in futures:
                        pending.cancel()
                    break
        return patterns

    def file_patterns(self, filename: FileHandle) -> List[TestPattern]:
        if self.cancelled:
            return []
        found = []
        for method in self.changed_methods(filename):
            found.extend(self.method_patterns(method))
        return found

    def changed_methods(self, filename: FileHandle) -> List[MethodIdentifier]:
        with self.source_model.read_session() as session:
            source_file = session.file(filename)
            if source_file is None:
                logger.debug(f"Skipping {filename}: not a python source file")
                return []

            changed = self.change_range_resolver.changed_ranges(filename, source_file.text)
            if changed.too_large:
                logger.info(f"Skipping {filename}: too large to diff")
                return []

            methods = []
            for region in changed.regions:
                for method in find_enclosing_methods(source_file, region):
                    if method not in methods:
                        methods.append(method)
        logger.debug(f"{filename}: changed methods {methods}")
        return methods

    def method_patterns(self, method: MethodIdentifier) -> Tuple[TestPattern, ...]:
        key = qualify(method.qualified_class_name, method.method_name)
        with self._cache_lock:
            if key in self._method_cache:
                return self._method_cache[key]

        patterns = self.gateway.lookup_patterns(key)
        if patterns is None:
            # lookup failed, this method contributes nothing
            return ()
        with self._cache_lock:
            self._method_cache[key] = patterns
        return patterns

    def close(self) -> None:
        if not self._owns_index or self.index is None:
            return
        if isinstance(self.index, DB):
            DB.release_instance(self.index.datafile)
        else:
            self.index.close()
        self.index = None


class PrintingSearchTask(TestDiscoverySearchTask):
    """Writes the patterns to a stream, one per line or as a JSON list."""

    def __init__(self, rootdir, stream=None, json_output=False, **kwargs):
        super().__init__(rootdir, **kwargs)
        self.stream = stream
        self.json_output = json_output

    def deliver(self, patterns: PatternSet) -> None:
        stream = self.stream or sys.stdout
        if self.json_output:
            stream.write(json.dumps(patterns.as_list(), indent=2) + "\n")
        else:
            for pattern in patterns:
                stream.write(pattern + "\n")
        stream.flush()


class FileSearchTask(TestDiscoverySearchTask):
    """Writes the patterns to ``output_path``, one per line."""

    def __init__(self, rootdir, output_path, **kwargs):
        super().__init__(rootdir, **kwargs)
        self.output_path = output_path

    def deliver(self, patterns: PatternSet) -> None:
        with open(self.output_path, "w", encoding="utf8") as output:
            output.writelines(pattern + "\n" for pattern in patterns)


class CollectingSearchTask(TestDiscoverySearchTask):
    def __init__(self, rootdir, **kwargs):
        super().__init__(rootdir, **kwargs)
        self.found: Optional[PatternSet] = None

    def deliver(self, patterns: PatternSet) -> None:
        self.found = patterns

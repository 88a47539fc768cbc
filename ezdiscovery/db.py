"""
Local reverse index: which test patterns exercise a method.

Stored in a SQLite file (``.testdiscovery`` by default). Keys are qualified
method names (``pkg.mod.Cls.method``), values are index side test patterns
(``pkg.tests.test_mod.TestCls-test_method``) in the order they were stored.
"""
import os
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from ezdiscovery.common import get_logger

logger = get_logger(__name__)


class TestDiscoveryIndexException(Exception):
    __test__ = False


class DB:
    __test__ = False

    DATA_VERSION = 1

    _instances: Dict[str, "DB"] = {}
    _instances_lock = threading.Lock()

    def __init__(self, datafile, readonly=False):
        self.datafile = os.path.abspath(datafile)
        self.readonly = readonly
        self._lock = threading.Lock()
        self.con = None
        self.file_created = not os.path.exists(self.datafile)
        if readonly and self.file_created:
            raise TestDiscoveryIndexException(f"No test discovery data at {self.datafile}")

        try:
            if readonly:
                self.con = sqlite3.connect(
                    f"{Path(self.datafile).as_uri()}?mode=ro", uri=True, check_same_thread=False
                )
            else:
                self.con = sqlite3.connect(self.datafile, check_same_thread=False)
            if self.file_created:
                self._create_schema()
            self._check_version()
        except TestDiscoveryIndexException:
            self.close()
            raise
        except sqlite3.Error as exc:
            self.close()
            raise TestDiscoveryIndexException(f"Cannot open {self.datafile}: {exc}") from exc

    @classmethod
    def get_instance(cls, datafile, readonly=True) -> "DB":
        """One open index per data file for the whole process."""
        key = os.path.abspath(datafile)
        with cls._instances_lock:
            instance = cls._instances.get(key)
            if instance is None or instance.con is None:
                instance = cls(key, readonly=readonly)
                cls._instances[key] = instance
            return instance

    @classmethod
    def release_instance(cls, datafile) -> None:
        with cls._instances_lock:
            instance = cls._instances.pop(os.path.abspath(datafile), None)
        if instance is not None:
            instance.close()

    def _create_schema(self):
        self.con.executescript(
            """
            CREATE TABLE IF NOT EXISTS metadata (dataid TEXT PRIMARY KEY, data TEXT);
            CREATE TABLE IF NOT EXISTS method_test (
                method TEXT,
                pattern TEXT,
                seq INTEGER,
                PRIMARY KEY (method, pattern)
            );
            """
        )
        self.con.execute(
            "INSERT OR REPLACE INTO metadata VALUES ('data_version', ?)",
            (str(self.DATA_VERSION),),
        )
        self.con.commit()

    def _check_version(self):
        row = self.con.execute(
            "SELECT data FROM metadata WHERE dataid = 'data_version'"
        ).fetchone()
        version = int(row[0]) if row else None
        if version != self.DATA_VERSION:
            raise TestDiscoveryIndexException(
                f"{self.datafile} has data version {version}, expected {self.DATA_VERSION}"
            )

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.con.commit()
            else:
                self.con.rollback()
        finally:
            self._lock.release()

    def query(self, key: str) -> Optional[Tuple[str, ...]]:
        """Patterns stored for ``key``, None when the index has no entry."""
        if self.con is None:
            raise TestDiscoveryIndexException(f"{self.datafile} is closed")
        try:
            with self._lock:
                rows = self.con.execute(
                    "SELECT pattern FROM method_test WHERE method = ? ORDER BY seq",
                    (key,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise TestDiscoveryIndexException(f"Query for {key} failed: {exc}") from exc
        if not rows:
            return None
        return tuple(row[0] for row in rows)

    def store_patterns(self, key: str, patterns: Iterable[str]) -> None:
        try:
            with self as database:
                start = database.con.execute(
                    "SELECT COALESCE(MAX(seq), -1) + 1 FROM method_test WHERE method = ?",
                    (key,),
                ).fetchone()[0]
                database.con.executemany(
                    "INSERT OR IGNORE INTO method_test VALUES (?, ?, ?)",
                    [(key, pattern, start + i) for i, pattern in enumerate(patterns)],
                )
        except sqlite3.Error as exc:
            raise TestDiscoveryIndexException(f"Storing patterns for {key} failed: {exc}") from exc

    def has_data(self) -> bool:
        with self._lock:
            return self.con.execute("SELECT 1 FROM method_test LIMIT 1").fetchone() is not None

    def close(self):
        if self.con is not None:
            self.con.close()
            self.con = None

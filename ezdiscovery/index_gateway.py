import sqlite3
from enum import Enum
from typing import NamedTuple, Optional, Tuple

from ezdiscovery.common import TestPattern, get_logger
from ezdiscovery.db import TestDiscoveryIndexException
from ezdiscovery.patterns import decode

logger = get_logger(__name__)


class QueryStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    IO_ERROR = "io_error"


class IndexQueryResult(NamedTuple):
    status: QueryStatus
    patterns: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is QueryStatus.IO_ERROR


NOT_FOUND = IndexQueryResult(QueryStatus.NOT_FOUND)


class IndexGateway:
    """
    Read only access to a reverse index (db.DB or NetIndex).

    Failures are returned as IO_ERROR results, never raised. The index is
    owned and closed by whoever opened it.
    """

    def __init__(self, index):
        self.index = index

    def lookup(self, key: str) -> IndexQueryResult:
        if self.index is None:
            return NOT_FOUND
        try:
            patterns = self.index.query(key)
        except (TestDiscoveryIndexException, sqlite3.Error, OSError) as exc:
            logger.warning(f"Test discovery index lookup failed for {key}: {exc}")
            return IndexQueryResult(QueryStatus.IO_ERROR, error=str(exc))
        if patterns is None:
            return NOT_FOUND
        return IndexQueryResult(QueryStatus.FOUND, tuple(patterns))

    def lookup_patterns(self, key: str) -> Optional[Tuple[TestPattern, ...]]:
        """Decoded patterns for ``key``; empty when unknown, None on failure."""
        result = self.lookup(key)
        if result.failed:
            return None
        return tuple(decode(raw) for raw in result.patterns)

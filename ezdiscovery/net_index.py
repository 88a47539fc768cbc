"""
Reverse index served by a remote discovery server.

``NetIndex`` answers the same ``query`` / ``store_patterns`` / ``has_data``
calls as db.DB, so CI jobs can select tests without a local .testdiscovery
file. Transport problems surface as NetIndexException.
"""
import os
from typing import Any, Dict, Iterable, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ezdiscovery.common import get_logger
from ezdiscovery.db import TestDiscoveryIndexException

logger = get_logger(__name__)

TESTS_ENDPOINT = "/api/rpc/discovery/tests"
STORE_ENDPOINT = "/api/rpc/discovery/store"
STATUS_ENDPOINT = "/api/rpc/discovery/status"


class NetIndexException(TestDiscoveryIndexException):
    pass


def build_session(retries: int = 3, pool_size: int = 10) -> requests.Session:
    """Pooled session retrying throttled and failed server responses."""
    adapter = HTTPAdapter(
        max_retries=Retry(
            total=retries,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "POST"),
        ),
        pool_connections=pool_size,
        pool_maxsize=pool_size,
    )
    session = requests.Session()
    for scheme in ("http://", "https://"):
        session.mount(scheme, adapter)
    return session


class NetIndex:
    """
    Remote reverse index.

    ``GET /api/rpc/discovery/tests?method=<key>`` returns
    ``{"patterns": [...]}``, or 404 when the server has no entry for the key.
    """

    def __init__(self, server_url: str, repo_id: str, auth_token: Optional[str] = None, timeout: int = 30):
        self.server_url = server_url.rstrip("/")
        self.repo_id = repo_id
        self.auth_token = auth_token
        self.timeout = timeout
        self._http_session = build_session()

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "X-Repo-ID": self.repo_id}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    def _call(self, endpoint: str, params: Optional[Dict] = None, payload: Optional[Dict] = None) -> Optional[Any]:
        """GET with ``params`` or POST ``payload``; None when the server answers 404."""
        url = self.server_url + endpoint
        try:
            if payload is None:
                response = self._http_session.get(url, headers=self.headers, params=params, timeout=self.timeout)
            else:
                response = self._http_session.post(url, headers=self.headers, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            logger.error(f"Discovery server timed out on {endpoint}")
            raise NetIndexException(f"Request timeout: {exc}") from exc
        except requests.exceptions.ConnectionError as exc:
            logger.error(f"Cannot reach discovery server for {endpoint}")
            raise NetIndexException(f"Connection error: {exc}") from exc

        if response.status_code == 404:
            return None
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            logger.error(f"Discovery server answered {response.status_code} on {endpoint}")
            raise NetIndexException(f"HTTP error: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            logger.error(f"Discovery server sent invalid JSON on {endpoint}")
            raise NetIndexException(f"Invalid JSON response: {exc}") from exc

    def _object(self, endpoint: str, params: Dict) -> Optional[Dict]:
        body = self._call(endpoint, params=params)
        if body is not None and not isinstance(body, dict):
            logger.error(f"Discovery server sent a malformed response on {endpoint}")
            raise NetIndexException(f"Malformed response from {endpoint}: expected an object")
        return body

    def query(self, key: str) -> Optional[Tuple[str, ...]]:
        body = self._object(TESTS_ENDPOINT, {"repo_id": self.repo_id, "method": key})
        if not body or body.get("patterns") is None:
            return None
        patterns = body["patterns"]
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise NetIndexException(f"Malformed patterns for {key}: expected a list of strings")
        return tuple(patterns)

    def store_patterns(self, key: str, patterns: Iterable[str]) -> None:
        self._call(STORE_ENDPOINT, payload={"repo_id": self.repo_id, "method": key, "patterns": list(patterns)})

    def has_data(self) -> bool:
        body = self._object(STATUS_ENDPOINT, {"repo_id": self.repo_id})
        return bool(body and body.get("methods"))

    def close(self):
        if self._http_session is not None:
            self._http_session.close()
            self._http_session = None


def create_net_index_from_env() -> Optional[NetIndex]:
    """
    NetIndex configured from the environment, None unless enabled.

        DISCOVERY_NET_ENABLED   'true' to use the server
        DISCOVERY_SERVER        server url
        REPO_ID                 repository id, falls back to GITHUB_REPOSITORY
        DISCOVERY_AUTH_TOKEN    optional bearer token
    """
    if os.environ.get("DISCOVERY_NET_ENABLED", "").lower() != "true":
        return None

    server = os.environ.get("DISCOVERY_SERVER")
    repo = os.environ.get("REPO_ID") or os.environ.get("GITHUB_REPOSITORY")
    if not server or not repo:
        logger.warning(
            "DISCOVERY_NET_ENABLED is set but DISCOVERY_SERVER or REPO_ID/GITHUB_REPOSITORY is missing"
        )
        return None
    return NetIndex(server, repo, auth_token=os.environ.get("DISCOVERY_AUTH_TOKEN"))

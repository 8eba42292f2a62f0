"""
HiveOS API Client
HiveOS API客户端

Read-only access to the HiveOS v2 REST API:
- GET /farms/{farm_id}/workers               -> FarmSnapshot
- GET /farms/{farm_id}/workers/{worker_id}   -> WorkerDetail

Usage:
    from hive_monitor.hive_client import HiveApiClient

    client = HiveApiClient(token)
    snapshot = client.fetch_farm_snapshot("123456")
"""

import logging
from typing import Any, Optional

import requests

from . import __version__
from .config import DEFAULT_HIVE_API_URL
from .errors import FetchError
from .models import FarmSnapshot, WorkerDetail, WorkerSummary

logger = logging.getLogger(__name__)


class HiveApiClient:
    """HiveOS API client with bearer token authentication"""

    DEFAULT_TIMEOUT = 30

    def __init__(self, access_token: str, base_url: str = DEFAULT_HIVE_API_URL,
                 timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Accept': 'application/json',
            'User-Agent': f'HiveMiningMonitor/{__version__}'
        })

    def _get(self, endpoint: str) -> Any:
        """
        GET an endpoint and decode its JSON body

        Raises:
            FetchError: On timeout, connection failure, non-2xx or bad JSON
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise FetchError(f"Request timeout ({self.timeout}s)", url, "timeout")
        except requests.exceptions.ConnectionError as e:
            raise FetchError(f"Connection error: {e}", url, "connection")
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Request failed: {e}", url, "http")

        if response.status_code == 401:
            raise FetchError("Authentication failed - invalid or expired token", url, "http", 401)
        if response.status_code == 429:
            raise FetchError("Rate limit exceeded", url, "http", 429)
        if not 200 <= response.status_code < 300:
            raise FetchError(
                f"API request failed with status {response.status_code}: {response.text[:200]}",
                url, "http", response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON response: {str(e)[:50]}", url, "parse", response.status_code)

    def fetch_farm_snapshot(self, farm_id: str) -> FarmSnapshot:
        """List all workers of a farm in API order"""
        body = self._get(f"/farms/{farm_id}/workers")
        rows = body.get('data') if isinstance(body, dict) else body
        if not isinstance(rows, list):
            raise FetchError("Unexpected farm workers payload", f"/farms/{farm_id}/workers", "parse")

        try:
            workers = tuple(
                WorkerSummary.from_record(row) for row in rows
                if isinstance(row, dict) and row.get('id') is not None
            )
        except (AttributeError, TypeError) as e:
            raise FetchError(f"Malformed worker row: {e}", f"/farms/{farm_id}/workers", "parse")

        logger.debug(f"Fetched {len(workers)} workers for farm {farm_id}")
        return FarmSnapshot(workers)

    def fetch_worker_detail(self, farm_id: str, worker_id: str) -> WorkerDetail:
        endpoint = f"/farms/{farm_id}/workers/{worker_id}"
        body = self._get(endpoint)
        if not isinstance(body, dict):
            raise FetchError("Unexpected worker payload", endpoint, "parse")
        try:
            return WorkerDetail.from_record(body)
        except (AttributeError, TypeError) as e:
            raise FetchError(f"Malformed worker record: {e}", endpoint, "parse")

    def is_reachable(self) -> bool:
        """Cheap connectivity check used by the health probe"""
        try:
            self.session.head(self.base_url, timeout=min(self.timeout, 5))
            return True
        except requests.exceptions.RequestException:
            return False

"""
HTTP client for the upstream CAPTCHA-solving service.

Contract:
- GET  {base}/balance?apiKey=...        -> {status, balance, plan, error?}
- POST {base}/createTask {apiKey, task} -> {code, msg, answers?, meta?}

Each call is a single attempt with a fixed timeout; nothing here retries.
"""

import requests

from .config import UPSTREAM_BASE_URL, UPSTREAM_TIMEOUT
from .utils.logger import get_logger

log = get_logger("upstream")


class UpstreamError(Exception):
    """Transport failure, non-2xx response, or an unparseable body."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class SolverClient:
    def __init__(self, base_url=UPSTREAM_BASE_URL, timeout=UPSTREAM_TIMEOUT, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, path, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            log.error(f"Timeout calling {method} {path}: {e}")
            raise UpstreamError(f"timeout: {e}") from e
        except requests.exceptions.RequestException as e:
            log.error(f"Connection error calling {method} {path}: {e}")
            raise UpstreamError(f"connection_failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            log.warning(f"{method} {path} returned HTTP {resp.status_code}")
            raise UpstreamError(f"HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("invalid_json", status_code=resp.status_code) from e
        if not isinstance(data, dict):
            raise UpstreamError("unexpected response shape", status_code=resp.status_code)
        return data

    def get_balance(self, api_key):
        return self._request("GET", "/balance", params={"apiKey": api_key})

    def create_task(self, api_key, task):
        return self._request("POST", "/createTask", json={"apiKey": api_key, "task": task})

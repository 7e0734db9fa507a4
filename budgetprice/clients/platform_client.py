"""
Rate-limited, call-tracked REST client shared by all platform adapters.
"""

import time
from typing import Any, Dict, Optional

import requests

from budgetprice.adapters.base import UpstreamError
from budgetprice.integrations.rate_limiter import RateLimiter
from budgetprice.services.analytics import ApiCallRecorder
from budgetprice.utils.logger import get_logger

logger = get_logger(__name__)


class PlatformClient:
    """
    REST client for one store on one platform.

    Every call passes through the platform rate limiter and is reported to
    the call recorder, whatever its outcome.
    """

    def __init__(
        self,
        platform: str,
        base_url: str,
        rate_limiter: RateLimiter,
        headers: Dict[str, str] = None,
        recorder: Optional[ApiCallRecorder] = None,
        session: Optional[requests.Session] = None,
        timeout: int = 10
    ):
        """
        Initialize platform client.

        Args:
            platform: Platform name used for throttling and errors
            base_url: REST API root, e.g. https://shop.example/admin/api/2024-01
            rate_limiter: Outbound throttle shared by the adapter
            headers: Default headers (auth, content type)
            recorder: Sink for (endpoint, success, elapsed_ms)
            session: Preconfigured session (a new one is created if omitted)
            timeout: HTTP request timeout in seconds
        """
        self.platform = platform
        self.base_url = base_url.rstrip('/')
        self.rate_limiter = rate_limiter
        self.recorder = recorder
        self.timeout = timeout

        # Session reuses TCP connections across calls to the same store
        self.session = session if session is not None else requests.Session()
        self.session.headers.update({
            'User-Agent': 'BudgetPrice-Integrations/1.0',
            'Accept': 'application/json',
        })
        if headers:
            self.session.headers.update(headers)

    def set_header(self, name: str, value: str) -> None:
        self.session.headers[name] = value

    def request(
        self,
        method: str,
        path: str = '',
        endpoint: Optional[str] = None,
        params: Any = None,
        json: Any = None,
        url: Optional[str] = None,
        headers: Dict[str, str] = None,
        allow_not_found: bool = False
    ) -> Optional[requests.Response]:
        """
        Issue a throttled request.

        Args:
            method: HTTP method
            path: Path relative to base_url
            endpoint: Name reported to the recorder and in errors (defaults to path)
            params: Query parameters
            json: JSON body
            url: Absolute URL overriding base_url + path
            headers: Per-request headers
            allow_not_found: Return None instead of raising on 404

        Returns:
            Response for 2xx, None for an allowed 404

        Raises:
            UpstreamError: On any other status or transport failure
        """
        endpoint = endpoint or path.strip('/') or url or self.base_url
        target = url or f"{self.base_url}/{path.lstrip('/')}"

        self.rate_limiter.acquire(self.platform)
        start = time.monotonic()
        success = False

        try:
            response = self.session.request(
                method,
                target,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            self._record(endpoint, success, start)
            raise UpstreamError(self.platform, endpoint, None, str(e)) from e

        success = 200 <= response.status_code < 300
        self._record(endpoint, success, start)

        if success:
            return response

        if response.status_code == 404 and allow_not_found:
            return None

        raise UpstreamError(self.platform, endpoint, response.status_code, response.text)

    def get(self, path: str, **kwargs) -> Optional[requests.Response]:
        return self.request('GET', path, **kwargs)

    def post(self, path: str, **kwargs) -> Optional[requests.Response]:
        return self.request('POST', path, **kwargs)

    def put(self, path: str, **kwargs) -> Optional[requests.Response]:
        return self.request('PUT', path, **kwargs)

    def delete(self, path: str, **kwargs) -> Optional[requests.Response]:
        return self.request('DELETE', path, **kwargs)

    def close(self) -> None:
        self.session.close()

    def _record(self, endpoint: str, success: bool, start: float) -> None:
        if self.recorder is None:
            return

        elapsed_ms = (time.monotonic() - start) * 1000
        try:
            self.recorder.record(endpoint, success, elapsed_ms)
        except Exception:
            logger.exception("Failed to record API call")

"""
HTTP client for calendar feed retrieval with connection pooling and retry logic.
"""

import logging
from typing import Dict, List, Optional, Any
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


class HTTPClient:
    """
    HTTP client with connection pooling and automatic retry logic.

    Feed fetches run from a thread pool, so the pool is sized for a full
    sync batch and blocks rather than opening extra connections.
    """

    def __init__(
        self,
        pool_connections: int = 10,
        pool_maxsize: int = 20,
        total_retries: int = 0,
        backoff_factor: float = 1.0,
        status_forcelist: Optional[List[int]] = None,
        allowed_methods: Optional[List[str]] = None,
        default_timeout: int = 30,
        user_agent: Optional[str] = None
    ):
        """
        Initialize HTTP client with connection pooling and retry logic.

        Args:
            pool_connections: Number of connection pools to cache
            pool_maxsize: Maximum number of connections per pool
            total_retries: Total number of retry attempts (feeds default to none)
            backoff_factor: Backoff factor for retries (delay = backoff_factor * (2 ** retry_count))
            status_forcelist: HTTP status codes to retry on
            allowed_methods: HTTP methods to retry
            default_timeout: Default timeout in seconds
            user_agent: Optional User-Agent header sent with every request
        """
        self.default_timeout = default_timeout
        self.session = self._create_session(
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
            total_retries=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=status_forcelist or [429, 500, 502, 503, 504],
            allowed_methods=allowed_methods or ["GET", "HEAD", "POST"]
        )
        if user_agent:
            self.session.headers['User-Agent'] = user_agent

    def _create_session(
        self,
        pool_connections: int,
        pool_maxsize: int,
        total_retries: int,
        backoff_factor: float,
        status_forcelist: List[int],
        allowed_methods: List[str]
    ) -> requests.Session:
        """Create requests session with connection pooling and retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=status_forcelist,
            allowed_methods=allowed_methods,
            raise_on_status=False  # Don't raise exception, let caller handle
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
            pool_block=True
        )

        session.mount("https://", adapter)
        session.mount("http://", adapter)

        logger.info(
            f"HTTP client initialized: pool_connections={pool_connections}, "
            f"pool_maxsize={pool_maxsize}, retries={total_retries}, timeout={self.default_timeout}s"
        )

        return session

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        timeout: Optional[int] = None,
        **kwargs
    ) -> requests.Response:
        """
        Make HTTP request with retry logic.

        Raises:
            requests.exceptions.RequestException: On request failure or 4xx/5xx status
        """
        timeout = timeout or self.default_timeout

        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                headers=headers or {},
                params=params,
                json=json,
                timeout=timeout,
                **kwargs
            )

            logger.debug(
                f"{method.upper()} {url} -> {response.status_code} "
                f"(size: {len(response.content)} bytes)"
            )

            response.raise_for_status()
            return response

        except requests.exceptions.Timeout:
            logger.error(f"Request timeout after {timeout}s: {method.upper()} {url}")
            raise

        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {method.upper()} {url} - {e}")
            raise

    def get(self, url: str, **kwargs) -> requests.Response:
        """Make GET request."""
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> requests.Response:
        """Make POST request."""
        return self.request("POST", url, **kwargs)

    def close(self):
        """Close the HTTP session and release connections"""
        if self.session:
            self.session.close()
            logger.info("HTTP client session closed")

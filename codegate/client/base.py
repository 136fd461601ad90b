"""
Base client class providing common HTTP request functionality.
"""
import logging
from typing import Any, Dict, Optional

import requests
from requests import RequestException

from codegate.exceptions import ApiError

logger = logging.getLogger(__name__)


class BaseClient:
    """
    Base client class that provides common HTTP request methods.

    Every outbound call the gateway makes goes through a subclass of this
    class, so transport failures and non-2xx statuses surface uniformly as
    ApiError.
    """

    def __init__(self, base_url: str, timeout: float = 20.0, error_excerpt_chars: int = 500):
        """
        Initialize the base client.

        Args:
            base_url: URL every endpoint is relative to.
            timeout: Per-request timeout in seconds.
            error_excerpt_chars: How much of an error body to keep in ApiError.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.error_excerpt_chars = error_excerpt_chars

    def _send(
        self,
        method: str,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """
        Send a request and return the raw response, whatever its status.

        Raises:
            ApiError: With status_code 0 if the request never got a response.
        """
        url = f"{self.base_url}{endpoint}"
        try:
            return requests.request(
                method,
                url,
                headers=headers,
                json=json,
                data=data,
                timeout=self.timeout,
            )
        except RequestException as e:
            logger.error(f"{method} {endpoint} failed: {type(e).__name__}")
            raise ApiError(0, endpoint, f"Request failed: {type(e).__name__}: {e}") from e

    def _raise_for_status(self, response: requests.Response, endpoint: str) -> None:
        if 200 <= response.status_code < 300:
            return
        excerpt = (response.text or "")[: self.error_excerpt_chars]
        logger.error(f"API {response.status_code} on {endpoint}: {excerpt}")
        raise ApiError(response.status_code, endpoint, excerpt or f"HTTP {response.status_code}")

    def _decode(self, response: requests.Response, endpoint: str) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(response.status_code, endpoint, f"Response is not JSON: {e}") from e

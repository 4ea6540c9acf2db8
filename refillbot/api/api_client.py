import asyncio
import time
from typing import Any, Dict, Optional

import requests
from loguru import logger

from refillbot.errors import TransientError


class ApiClientError(TransientError):
    """Base exception for API client errors."""
    pass


class ApiTimeoutError(ApiClientError):
    """Exception raised when an API request times out."""
    pass


class ApiBadResponseError(ApiClientError):
    """Exception raised when the API returns an unexpected status code."""

    def __init__(self, status_code: int, text: str):
        self.status_code = status_code
        self.text = text
        super().__init__(f"API returned {status_code}: {text}")


class ApiDecodeError(ApiClientError):
    """Exception raised when the response body is not valid JSON."""
    pass


class ApiClient:
    """Blocking HTTP client with an awaitable front end."""

    def __init__(self, timeout: float = 30, session: Optional[requests.Session] = None):
        """
        Initialize the API client.

        Args:
            timeout: Request timeout in seconds
            session: Optional session, mainly for tests
        """
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _make_request(self, method: str, url: str, **kwargs) -> Any:
        """
        Make an HTTP request.

        Args:
            method: HTTP method (get, post, etc.)
            url: Absolute URL
            **kwargs: Additional arguments to pass to requests

        Returns:
            The JSON response data

        Raises:
            ApiTimeoutError: If the request times out
            ApiBadResponseError: If the API returns a non-success status code
            ApiDecodeError: If the body is not JSON
            ApiClientError: For any other transport failure
        """
        if 'timeout' not in kwargs:
            kwargs['timeout'] = self.timeout

        start_time = time.time()

        try:
            logger.bind(method=method, url=url, params=kwargs.get('params')).debug(
                f"Making {method.upper()} request to {url}"
            )

            response = getattr(self.session, method)(url, **kwargs)
            elapsed = time.time() - start_time

            logger.bind(
                status_code=response.status_code,
                elapsed_time=elapsed,
                payload_size=len(response.content),
            ).debug(f"Received response from {url} in {elapsed:.2f}s")

            valid_status_codes = [200]
            if method.lower() == 'post':
                valid_status_codes.append(201)

            if response.status_code not in valid_status_codes:
                logger.bind(status_code=response.status_code, url=url).error(
                    f"API error: {response.status_code} {response.text}"
                )
                raise ApiBadResponseError(response.status_code, response.text)

            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Failed to parse JSON response from {url}: {str(e)}")
                raise ApiDecodeError(f"Failed to parse JSON response: {str(e)}") from e

        except requests.exceptions.Timeout as e:
            logger.bind(url=url, timeout=kwargs['timeout']).error(
                f"Request to {url} timed out after {kwargs['timeout']}s"
            )
            raise ApiTimeoutError(f"Request to {url} timed out") from e

        except requests.exceptions.RequestException as e:
            logger.bind(url=url, error=str(e)).error(f"Request to {url} failed: {str(e)}")
            raise ApiClientError(f"Request failed: {str(e)}") from e

    async def request(self, method: str, url: str, **kwargs) -> Any:
        """
        Run a request on a worker thread.

        The caller can be cancelled while waiting. The worker finishes on its
        own, bounded by the request timeout.
        """
        return await asyncio.to_thread(self._make_request, method, url, **kwargs)

    async def get(self, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("get", url, params=params, **kwargs)

    async def post(self, url: str, json: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("post", url, json=json, **kwargs)

    def close(self):
        self.session.close()

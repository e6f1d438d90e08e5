"""
HTTP client for the portal REST API.
Raises ApiError on any transport or HTTP failure; never returns error payloads.
"""
import logging
from typing import Any, Dict, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

logger = logging.getLogger("api_client")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0


class ApiError(Exception):
    """A failed API call."""

    def __init__(
        self,
        message: str,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.payload = payload


class ApiConnectionError(ApiError):
    """The request never produced an HTTP response (connection failure, timeout)."""


class ApiClient:
    """
    Thin wrapper over a requests session.

    ``config`` arguments are extra keyword arguments for
    ``requests.Session.request`` (``params``, ``headers``, ``timeout``...).
    ``json``, ``files`` and ``data`` may also come from ``config``; a body
    passed to the method itself takes precedence.

    GETs are retried on connection failures and timeouts; mutations are
    sent once.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _build_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.base_url}/{url.lstrip('/')}"

    def _request(
        self,
        method: str,
        url: str,
        config: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make an API request.

        Args:
            method: HTTP method
            url: Path relative to the base URL, or an absolute URL
            config: Extra request options; ``headers`` are merged

        Returns:
            Decoded JSON body, or None for an empty body

        Raises:
            ApiError: On connection errors, timeouts and non-2xx responses
        """
        options = dict(config or {})
        headers = self._get_headers()
        headers.update(options.pop("headers", None) or {})
        options.setdefault("timeout", self.timeout)
        for name, value in kwargs.items():
            if value is not None or name not in options:
                options[name] = value

        full_url = self._build_url(url)
        try:
            response = self._session.request(
                method,
                full_url,
                headers=headers,
                **options,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            payload = _safe_json(e.response) if e.response is not None else None
            logger.warning(f"API {method} {url} failed with status {status}")
            raise ApiError(
                f"{method} {url} failed with status {status}",
                method=method,
                url=url,
                status_code=status,
                payload=payload,
            ) from e
        except requests.RequestException as e:
            logger.error(f"API {method} {url} error: {e}")
            raise ApiConnectionError(f"{method} {url} failed: {e}", method=method, url=url) from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"{method} {url} returned a non-JSON body",
                method=method,
                url=url,
                status_code=response.status_code,
            ) from e

    def get(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(ApiConnectionError),
            reraise=True,
        )
        return retrying(self._request, "GET", url, config)

    def post(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("POST", url, config, json=body)

    def put(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("PUT", url, config, json=body)

    def patch(self, url: str, body: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("PATCH", url, config, json=body)

    def delete(self, url: str, config: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("DELETE", url, config)

    def upload(
        self,
        url: str,
        files: Any,
        data: Optional[Dict[str, Any]] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """POST a multipart form. ``files`` uses the requests ``files`` format."""
        return self._request("POST", url, config, files=files, data=data)

    def close(self) -> None:
        self._session.close()


def _safe_json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None

"""
HTTP blob API object store client.

Endpoints (relative to base_url):
- PUT    /objects/{key}          store bytes
- GET    /objects/{key}          fetch bytes (404 if missing)
- HEAD   /objects/{key}          existence check
- DELETE /objects/{key}          delete (404 tolerated)
- GET    /objects?prefix=...     {"keys": [...]}
"""

import logging
from typing import Optional
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import ObjectNotFound, ObjectStore, ObjectStoreError

logger = logging.getLogger(__name__)


class ObjectStoreAPIError(ObjectStoreError):
    """API returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Object store API error {status_code}: {message}")


class ObjectStoreConnectionError(ObjectStoreError):
    """Failed to connect to the object store."""

    pass


class HttpObjectStore(ObjectStore):
    """
    Client for a bearer-token blob API.

    Features:
    - Session-scoped keys mapped onto /objects/{key}
    - Automatic retry with backoff on transient failures
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize object store client.

        Args:
            base_url: Blob API URL (e.g., "http://storage.internal:9000")
            token: Bearer token (optional for unauthenticated stores)
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "HEAD", "PUT", "DELETE"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _url(self, key: str) -> str:
        return f"{self.base_url}/objects/{quote(key, safe='/')}"

    def _request(
        self,
        method: str,
        url: str,
        allow_404: bool = False,
        **kwargs,
    ) -> requests.Response:
        """Make an API request with error handling."""
        try:
            response = self.session.request(method=method, url=url, timeout=self.timeout, **kwargs)
        except requests.exceptions.ConnectionError as e:
            raise ObjectStoreConnectionError(
                f"Failed to connect to object store at {self.base_url}: {e}"
            ) from e
        except requests.exceptions.Timeout as e:
            raise ObjectStoreConnectionError(f"Request to object store timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise ObjectStoreError(f"Request failed: {e}") from e

        if response.status_code == 404 and allow_404:
            return response

        if not response.ok:
            raise ObjectStoreAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )

        return response

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self._request("PUT", self._url(key), data=data, headers={"Content-Type": content_type})
        logger.debug(f"Stored {len(data)} bytes at {key}")

    def get(self, key: str) -> bytes:
        response = self._request("GET", self._url(key), allow_404=True)
        if response.status_code == 404:
            raise ObjectNotFound(key)
        return response.content

    def exists(self, key: str) -> bool:
        response = self._request("HEAD", self._url(key), allow_404=True)
        return response.status_code != 404

    def list(self, prefix: str) -> list[str]:
        response = self._request("GET", f"{self.base_url}/objects", params={"prefix": prefix})
        return sorted(response.json().get("keys", []))

    def delete(self, key: str) -> None:
        self._request("DELETE", self._url(key), allow_404=True)

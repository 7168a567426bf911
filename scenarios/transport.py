"""HTTP transport used by scenario steps."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from engine.errors import MalformedResponse, NetworkError

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """Transport-neutral view of one HTTP response."""
    method: str
    url: str
    status: int
    text: str = ""
    duration_ms: float = 0.0
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Parse the body as JSON.

        Raises:
            MalformedResponse: If the body is not valid JSON
        """
        try:
            return json.loads(self.text)
        except (TypeError, ValueError) as e:
            raise MalformedResponse(
                f"Invalid JSON from {self.method} {self.url}: {e}"
            ) from e


class HttpTransport:
    """Thin wrapper around a requests session.

    Every VU owns one transport, so connection pooling happens per VU.
    Retries are disabled at the adapter level: a failed call is reported
    to the caller, never repeated.
    """

    DEFAULT_TIMEOUT = 10

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """Initialize the transport.

        Args:
            base_url: Target root URL, e.g. http://localhost:8080
            timeout: Per-request timeout in seconds
            session: Existing session to reuse (e.g. a Locust HttpSession)
            headers: Headers added to every request
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=0)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

        if headers:
            self.session.headers.update(headers)

    def url_for(self, path: str) -> str:
        """Absolute URL for a path relative to the base URL."""
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> HttpResponse:
        """Send one request and time it.

        Args:
            method: HTTP method
            path: Path relative to base_url, or an absolute URL
            json_body: Body serialized as JSON (POST/PUT)
            params: Query string parameters

        Returns:
            HttpResponse for any status code

        Raises:
            NetworkError: On connection errors and timeouts
        """
        url = self.url_for(path)
        kwargs: Dict[str, Any] = {'timeout': self.timeout}
        if params:
            kwargs['params'] = params
        if json_body is not None:
            kwargs['json'] = json_body

        start = time.perf_counter()
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.debug(f"{method} {url} failed: {e}")
            raise NetworkError(f"{method} {url}: {e}") from e
        duration_ms = (time.perf_counter() - start) * 1000.0

        return HttpResponse(
            method=method,
            url=response.url or url,
            status=response.status_code,
            text=response.text,
            duration_ms=duration_ms,
            headers=dict(response.headers),
        )

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> HttpResponse:
        return self.request('GET', path, params=params)

    def post(
        self,
        path: str,
        json_body: Any = None,
        params: Optional[Dict[str, Any]] = None
    ) -> HttpResponse:
        return self.request('POST', path, json_body=json_body, params=params)

    def close(self):
        """Release pooled connections."""
        self.session.close()

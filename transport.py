"""Thin HTTP transport over ``requests``.

Adapters talk to their backend only through this object. It knows nothing about
torrents: it sends GET/POST, enforces a timeout and turns failures into
``backend_errors`` types. Deciding what a status code *means* is left to the
adapters.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests
from loguru import logger

from backend_errors import HTTPStatusError, TransportError

DEFAULT_TIMEOUT = 10.0
USER_AGENT = "unitorrent/1.0"


class HttpTransport:
    def __init__(
        self,
        base_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.verify = verify
        self.session = session or requests.Session()
        if session is None:
            self.session.headers["User-Agent"] = USER_AGENT
            if username:
                self.session.auth = (username, password or "")

    @property
    def headers(self) -> Dict[str, str]:
        """Persistent headers sent with every request (e.g. a session token)."""
        return self.session.headers

    def url_for(self, path: str) -> str:
        if not path:
            return self.base_url.rstrip("/")
        if path.startswith(("http://", "https://")):
            return path
        return urljoin(self.base_url, path.lstrip("/"))

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        files: Any = None,
    ) -> Any:
        return self.request("POST", path, params=params, data=data, json=json, files=files)

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self.url_for(path)
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        try:
            response = self.session.request(method, url, timeout=self.timeout, verify=self.verify, **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"Timed out after {self.timeout}s: {url}", url=url) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Network error while contacting {url}: {exc}", url=url) from exc

        if not 200 <= response.status_code < 300:
            logger.debug("{} {} -> {}", method, url, response.status_code)
            raise HTTPStatusError(response.status_code, url=url, headers=response.headers, body=response.text[:500])
        return self._decode(response)

    @staticmethod
    def _decode(response: requests.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("Content-Type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError as exc:
                raise TransportError(f"Malformed JSON from {response.url}: {exc}", url=response.url) from exc
        # qBittorrent answers some endpoints with text/plain JSON; fall back to text.
        try:
            return response.json()
        except ValueError:
            return response.text

    def close(self) -> None:
        self.session.close()

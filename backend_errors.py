"""Error taxonomy shared by the transport, the adapters and the polling driver.

Only AuthError is fatal for polling. Everything derived from TransportError is
retryable. NotFoundError and ValidationError go straight back to the caller.
Partial degradation is never an exception: it travels as ``partial=True`` on the
composed result.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

UNAVAILABLE_STATUSES = (403, 404, 405)


class BackendError(Exception):
    """Base class for every error raised by this package."""


class TransportError(BackendError):
    """Network failure, timeout or an unusable HTTP exchange. Retryable."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class HTTPStatusError(TransportError):
    def __init__(
        self,
        status: int,
        url: Optional[str] = None,
        headers: Optional[Mapping[str, Any]] = None,
        body: str = "",
    ) -> None:
        super().__init__(f"HTTP {status} for {url or '<unknown>'}", url=url)
        self.status = status
        self.headers = dict(headers or {})
        self.body = body


class AuthError(BackendError):
    """The backend rejected our credentials/session. Polling stops on this."""


class NotFoundError(BackendError):
    pass


class TorrentNotFoundError(NotFoundError):
    def __init__(self, torrent_id: str) -> None:
        super().__init__(f"Torrent not found: {torrent_id}")
        self.torrent_id = torrent_id


class ValidationError(BackendError):
    """A payload is structurally unusable (wrong container type)."""


def is_fatal_error(exc: BaseException) -> bool:
    return isinstance(exc, AuthError)


def is_endpoint_unavailable(exc: BaseException) -> bool:
    """True when a single source is blocked or missing on this deployment.

    403/404/405 and any 5xx count; callers degrade that one source instead of
    failing the whole operation.
    """
    if not isinstance(exc, HTTPStatusError):
        return False
    return exc.status in UNAVAILABLE_STATUSES or exc.status >= 500

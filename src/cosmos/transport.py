"""Byte-fetch-by-URL transports.

Plain HTTP is the only scheme allowed by default. HTTPS and FTP are
explicit opt-in capabilities; anything not covered by an enabled
transport is rejected with UnsupportedUrlError.
"""

from __future__ import annotations

import ftplib
import io
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlsplit

import httpx

from cosmos import __version__
from cosmos.errors import TransportError, UnsupportedUrlError

logger = logging.getLogger(__name__)

USER_AGENT = f"Cosmos/{__version__}"
DEFAULT_TIMEOUT = 60.0


def url_scheme(url: str) -> str:
    """Return the lowercased scheme of a URL, or '' if it has none."""
    if "://" not in url:
        return ""
    return url.split("://", 1)[0].lower()


@runtime_checkable
class Transport(Protocol):
    """Fetches raw bytes for a URL."""

    def supports_url(self, url: str) -> bool:
        """True if this transport is allowed to fetch url."""
        ...

    def fetch_bytes(self, url: str) -> bytes:
        """Fetch url, raising TransportError on failure."""
        ...


class HttpTransport:
    """HTTP(S) transport backed by httpx."""

    def __init__(
        self,
        allow_https: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        mock_transport: httpx.BaseTransport | None = None,
    ):
        """Initialize transport.

        Args:
            allow_https: Opt in to https:// URLs
            timeout: Request timeout in seconds
            mock_transport: Optional httpx transport (used by tests)
        """
        self.schemes = {"http", "https"} if allow_https else {"http"}
        self.timeout = timeout
        self._mock_transport = mock_transport

    def supports_url(self, url: str) -> bool:
        return url_scheme(url) in self.schemes

    def fetch_bytes(self, url: str) -> bytes:
        if not self.supports_url(url):
            raise UnsupportedUrlError(f"Scheme not allowed: {url}")

        logger.debug(f"GET {url}")
        try:
            with httpx.Client(
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                transport=self._mock_transport,
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to fetch {url}: {e}") from e

        # A redirect must not escape the scheme allow-list
        final_url = str(response.url)
        if not self.supports_url(final_url):
            raise UnsupportedUrlError(f"Redirected to disallowed URL: {final_url}")

        if response.status_code != 200:
            raise TransportError(
                f"Failed to fetch {url} (status: {response.status_code})"
            )
        return response.content


@dataclass
class FtpUrl:
    host: str
    path: str
    port: int = 21
    username: str | None = None
    password: str | None = None


def parse_ftp_url(url: str) -> FtpUrl:
    """Parse ftp://[user[:password]@]host[:port]/path.

    Raises:
        UnsupportedUrlError: If the URL has no host, no path, or a password
            without a username
    """
    parts = urlsplit(url)
    if parts.scheme.lower() != "ftp" or not parts.hostname:
        raise UnsupportedUrlError(f"Malformed FTP URL: {url}")

    path = unquote(parts.path.lstrip("/"))
    if not path:
        raise UnsupportedUrlError(f"FTP URL has no path: {url}")

    if parts.password is not None and not parts.username:
        raise UnsupportedUrlError(f"FTP URL has a password but no user: {url}")

    try:
        port = parts.port or 21
    except ValueError:
        port = 21

    return FtpUrl(
        host=parts.hostname,
        path=path,
        port=port,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
    )


class FtpTransport:
    """FTP transport backed by ftplib (opt-in)."""

    schemes = {"ftp"}

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def supports_url(self, url: str) -> bool:
        return url_scheme(url) in self.schemes

    def fetch_bytes(self, url: str) -> bytes:
        target = parse_ftp_url(url)
        buffer = io.BytesIO()

        logger.debug(f"RETR {target.path} from {target.host}:{target.port}")
        try:
            with ftplib.FTP(timeout=self.timeout) as ftp:
                ftp.connect(target.host, target.port)
                ftp.login(target.username or "anonymous", target.password or "")
                ftp.retrbinary(f"RETR {target.path}", buffer.write)
        except ftplib.all_errors as e:
            raise TransportError(f"Failed to fetch {url}: {e}") from e

        return buffer.getvalue()


class CompositeTransport:
    """Dispatches each URL to the first transport that supports it."""

    def __init__(self, *transports: Transport):
        self.transports = list(transports)

    def supports_url(self, url: str) -> bool:
        return any(t.supports_url(url) for t in self.transports)

    def fetch_bytes(self, url: str) -> bytes:
        for transport in self.transports:
            if transport.supports_url(url):
                return transport.fetch_bytes(url)
        raise UnsupportedUrlError(f"No transport enabled for URL: {url}")


def build_transport(
    allow_https: bool = False,
    allow_ftp: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
) -> CompositeTransport:
    """Build the transport allow-list.

    Args:
        allow_https: Opt in to https:// URLs
        allow_ftp: Opt in to ftp:// URLs
        timeout: Per-request timeout in seconds
    """
    transports: list[Transport] = [HttpTransport(allow_https=allow_https, timeout=timeout)]
    if allow_ftp:
        transports.append(FtpTransport(timeout=timeout))
    return CompositeTransport(*transports)

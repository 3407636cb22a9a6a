"""Error types shared by the fetch client, parsers and state manager."""
from typing import Optional


class IPTVHubError(Exception):
    """Base class for all iptv_hub errors."""


class FetchError(IPTVHubError):
    """Raised by the fetch client."""


class InvalidURLError(FetchError):
    """The URL could not be used for a request."""


class ServerError(FetchError):
    """The server answered with a status outside 200-299."""

    def __init__(self, status_code: int, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Server returned error {status_code}" + (f" for {url}" if url else ""))


class TransportError(FetchError):
    """Network-level failure (timeout, connection lost, host unreachable).

    ``retryable`` is False for failures that would not go away on retry,
    such as DNS resolution errors.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class DecodeError(FetchError):
    """Payload did not match the expected shape."""


class FormatError(IPTVHubError):
    """A source document is malformed (e.g. missing #EXTM3U header)."""


class InvalidEndpointError(IPTVHubError):
    """Portal base URL or credentials are unusable."""


class AuthenticationError(IPTVHubError):
    """Portal rejected the account."""


class NoCatalogsError(IPTVHubError):
    """Add-on manifest declares no catalogs."""


class NoStreamsAvailableError(IPTVHubError):
    """Add-on returned no playable streams for an item."""

"""Failure types raised while discovering and resolving live events."""


class DiscoveryError(Exception):
    """Raised when the live-now landmark or the events container is missing."""


class NavigationTimeout(Exception):
    """Raised by a rendering session when a navigation exceeds its bound."""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"Navigation to {url} exceeded {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class ResolutionFailure(Exception):
    """A single candidate could not be resolved; the batch carries on."""

    def __init__(self, title: str, cause: BaseException):
        super().__init__(f"{title}: {cause}")
        self.title = title
        self.cause = cause

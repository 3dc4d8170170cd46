"""Relay failure types, mapped to HTTP statuses by the relay server."""

from http import HTTPStatus


class InvalidToken(Exception):
    """The path segment is not a canonical relay token."""


class ProxyUpstreamError(Exception):
    """The origin could not be reached or answered with an error."""

    def __init__(self, message: str, *, status: int = HTTPStatus.BAD_GATEWAY):
        super().__init__(message)
        self.status = int(status)


class ProxyUpstreamTimeout(ProxyUpstreamError):
    """The origin did not answer before the relay's upstream timeout."""

    def __init__(self, message: str):
        super().__init__(message, status=HTTPStatus.GATEWAY_TIMEOUT)


class ProxyValidationError(Exception):
    """The upstream manifest is malformed and is never forwarded."""

    status = int(HTTPStatus.BAD_GATEWAY)

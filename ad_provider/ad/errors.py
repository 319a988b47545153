"""Exceptions raised by the directory client.

Only `ServerUnavailable` and `InvalidArgument` reach callers of `ADClient`;
`TransientServerDown` is consumed by the retry loop and `MaterializationFault`
by the search engine. LDAP errors from ldap3 are propagated unchanged.
"""

from __future__ import annotations

from typing import Optional


class DirectoryError(Exception):
    pass


class TransientServerDown(DirectoryError):
    """Endpoint could not be reached or reported itself unavailable."""

    def __init__(self, endpoint: str, message: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message or f"Directory server {endpoint} is not reachable")


class ServerUnavailable(DirectoryError):
    """Every attempt against the logical server failed with a transient error."""

    def __init__(self, server: str, attempts: int, last_error: Optional[BaseException] = None) -> None:
        self.server = server
        self.attempts = attempts
        self.last_error = last_error
        msg = f"Directory server '{server}' is unavailable after {attempts} attempt(s)"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg)


class InvalidArgument(DirectoryError, ValueError):
    pass


class MaterializationFault(DirectoryError):
    """A single directory entry could not be turned into a principal."""

    def __init__(self, dn: str, reason: str) -> None:
        self.dn = dn
        self.reason = reason
        super().__init__(f"Invalid directory entry {dn or '<no dn>'}: {reason}")

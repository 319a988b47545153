"""Bounded failover loop around a single directory operation.

Every public operation of `ADClient` is a callable taking an open
`DirectorySession`. `RetryOrchestrator.execute` walks the ranked endpoints
of the configured server, one endpoint per attempt:

* success returns at once;
* a transient failure (session open or the operation itself) is recorded
  against the endpoint that was contacted and the next endpoint is tried;
* anything else propagates unchanged.

When `max_attempts` transient failures happened in a row the call ends with
`ServerUnavailable`. A configuration without a server name means a local
lookup: one session, no failover.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from ldap3.core.exceptions import LDAPException

from .connection import AttemptResult, DirectorySession, Outcome, SessionFactory
from .dns import EndpointResolver
from .errors import DirectoryError, ServerUnavailable
from .models import ADConfig

log = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[DirectorySession], T]


class RetryOrchestrator:
    def __init__(self, cfg: ADConfig, resolver: EndpointResolver, sessions: SessionFactory) -> None:
        self.cfg = cfg
        self.resolver = resolver
        self.sessions = sessions

    def _run(self, endpoint: str, operation: Operation[T]) -> AttemptResult[T]:
        opened = self.sessions.open(endpoint)
        if opened.outcome is not Outcome.OK:
            return AttemptResult(opened.outcome, endpoint, error=opened.error)

        with opened.value as session:
            try:
                value = operation(session)
            except (LDAPException, DirectoryError, OSError) as e:
                return AttemptResult.failed(e, session.endpoint)
        return AttemptResult.ok(value, session.endpoint)

    def execute(self, operation: Operation[T], name: str = "operation") -> T:
        server = self.cfg.server
        if not server:
            with self.sessions.open_local() as session:
                return operation(session)

        # Ranking is taken once per call; the attempt index walks it so each
        # attempt contacts a different endpoint while there are any left.
        candidates = self.resolver.candidates(server)
        last_error: Optional[BaseException] = None

        for attempt in range(self.cfg.max_attempts):
            endpoint = candidates[attempt % len(candidates)]
            result = self._run(endpoint, operation)

            if result.outcome is Outcome.OK:
                if attempt:
                    log.info("%s succeeded on %s after %d failed attempt(s)", name, endpoint, attempt)
                return result.value  # type: ignore[return-value]

            if result.outcome is Outcome.FATAL and result.error is not None:
                raise result.error

            last_error = result.error
            self.resolver.record_failure(server, result.endpoint)
            log.warning(
                "%s: attempt %d/%d on %s failed: %s",
                name, attempt + 1, self.cfg.max_attempts, result.endpoint, result.error,
            )

        err = ServerUnavailable(server, self.cfg.max_attempts, last_error)
        log.error("%s: %s", name, err)
        raise err

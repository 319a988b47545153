"""Server name resolution with failure bookkeeping.

`FailureCache` keeps, per logical server name, the last resolved address set
and a failure record per address. `EndpointResolver` turns a logical name
into an ordered candidate list: addresses without failures first (in DNS
order), then failed ones by (failure count, time of last failure).

One cache is shared by every thread using a client, so all access goes
through a single lock.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..utils.net import looks_like_ip, resolve_host_addresses

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureRecord:
    count: int
    last_failure: float  # time.monotonic() of the latest failure
    last_failure_wall: float  # time.time() of the latest failure


@dataclass
class _ServerEntry:
    addresses: tuple[str, ...] = ()
    resolved_at: float = 0.0


class FailureCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.RLock()
        self.clock = clock
        self._servers: dict[str, _ServerEntry] = {}
        self._failures: dict[tuple[str, str], FailureRecord] = {}

    @staticmethod
    def _key(server: str) -> str:
        return (server or "").strip().lower()

    def addresses(self, server: str) -> tuple[tuple[str, ...], float]:
        """Return (cached addresses, monotonic time they were stored)."""
        with self._lock:
            entry = self._servers.get(self._key(server))
            if entry is None:
                return (), 0.0
            return entry.addresses, entry.resolved_at

    def store_addresses(self, server: str, addresses: list[str] | tuple[str, ...]) -> None:
        key = self._key(server)
        new = tuple(addresses)
        with self._lock:
            self._servers[key] = _ServerEntry(addresses=new, resolved_at=self.clock())
            # Drop records of addresses that left the candidate set.
            stale = [k for k in self._failures if k[0] == key and k[1] not in new]
            for k in stale:
                del self._failures[k]
        if stale:
            log.info("Server %s: dropped failure records of %d stale address(es)", server, len(stale))

    def record_failure(self, server: str, endpoint: str) -> Optional[FailureRecord]:
        key = self._key(server)
        with self._lock:
            entry = self._servers.get(key)
            if entry is not None and endpoint not in entry.addresses:
                log.debug("Server %s: ignoring failure of unknown endpoint %s", server, endpoint)
                return None
            prev = self._failures.get((key, endpoint))
            rec = FailureRecord(
                count=(prev.count if prev else 0) + 1,
                last_failure=self.clock(),
                last_failure_wall=time.time(),
            )
            self._failures[(key, endpoint)] = rec
        log.warning("Server %s: endpoint %s failed (%d failure(s) so far)", server, endpoint, rec.count)
        return rec

    def failure(self, server: str, endpoint: str) -> Optional[FailureRecord]:
        with self._lock:
            return self._failures.get((self._key(server), endpoint))

    def failures(self, server: str) -> dict[str, FailureRecord]:
        key = self._key(server)
        with self._lock:
            return {ep: rec for (srv, ep), rec in self._failures.items() if srv == key}

    def rank(self, server: str, addresses: tuple[str, ...]) -> list[str]:
        """Order addresses by (failure count, last failure), keeping DNS order for ties."""
        key = self._key(server)
        with self._lock:
            records = {ep: self._failures.get((key, ep)) for ep in addresses}

        def sort_key(ep: str) -> tuple[int, float]:
            rec = records[ep]
            if rec is None:
                return 0, 0.0
            return rec.count, rec.last_failure

        return sorted(addresses, key=sort_key)


class EndpointResolver:
    def __init__(
        self,
        cache: FailureCache,
        dns_server: str = "",
        address_ttl_s: Optional[float] = None,
        timeout_s: float = 5.0,
        lookup: Callable[[str, str, float], list[str]] = resolve_host_addresses,
    ) -> None:
        self.cache = cache
        self.dns_server = dns_server
        self.address_ttl_s = address_ttl_s
        self.timeout_s = timeout_s
        self._lookup = lookup
        self._locks_guard = threading.Lock()
        self._name_locks: dict[str, threading.Lock] = {}

    def _name_lock(self, name: str) -> threading.Lock:
        key = name.lower()
        with self._locks_guard:
            lock = self._name_locks.get(key)
            if lock is None:
                lock = self._name_locks[key] = threading.Lock()
            return lock

    def _fresh(self, resolved_at: float) -> bool:
        if self.address_ttl_s is None:
            return True
        return (self.cache.clock() - resolved_at) < float(self.address_ttl_s)

    def addresses(self, server: str) -> tuple[str, ...]:
        """Candidate set of a logical name in DNS order (cached)."""
        name = (server or "").strip()
        if not name:
            raise ValueError("server name is empty")
        if looks_like_ip(name):
            return (name,)

        cached, resolved_at = self.cache.addresses(name)
        if cached and self._fresh(resolved_at):
            return cached

        # One DNS round trip per name at a time; other threads reuse its answer.
        with self._name_lock(name):
            cached, resolved_at = self.cache.addresses(name)
            if cached and self._fresh(resolved_at):
                return cached

            found = self._lookup(name, self.dns_server, self.timeout_s)
            if found:
                self.cache.store_addresses(name, found)
                log.debug("Server %s resolved to %s", name, ", ".join(found))
                return tuple(found)

            if cached:
                # Stale set stays valid for another interval.
                self.cache.store_addresses(name, cached)
                log.warning("Server %s: DNS lookup failed, reusing %d cached address(es)", name, len(cached))
                return cached

        log.warning("Server %s: DNS lookup returned nothing, connecting by name", name)
        return (name,)

    def candidates(self, server: str) -> list[str]:
        """Candidate endpoints, best first."""
        return self.cache.rank(server, self.addresses(server))

    def resolve(self, server: str, offset: int = 0) -> str:
        ordered = self.candidates(server)
        return ordered[offset % len(ordered)]

    def record_failure(self, server: str, endpoint: str) -> Optional[FailureRecord]:
        return self.cache.record_failure(server, endpoint)

"""Shared fakes and fixtures.

Directory traffic is replaced by `FakeSession`, which answers searches from
in-memory response dicts shaped like ldap3's (`type`, `dn`, `attributes`,
`raw_attributes`). DNS goes through `FakeLookup`.
"""

from __future__ import annotations

import uuid
from typing import Callable, Iterable, Optional

import pytest

from ad_provider.ad.connection import AttemptResult
from ad_provider.ad.dns import EndpointResolver, FailureCache
from ad_provider.ad.models import ADConfig

DOMAIN_SID = "S-1-5-21-1111-2222-3333"


def sid_bytes(sid: str) -> bytes:
    parts = sid.split("-")
    revision, authority = int(parts[1]), int(parts[2])
    subs = [int(p) for p in parts[3:]]
    out = bytes([revision, len(subs)]) + authority.to_bytes(6, "big")
    for s in subs:
        out += s.to_bytes(4, "little")
    return out


def entry(
    dn: str,
    sam: str = "",
    rid: Optional[int] = None,
    classes: Iterable[str] = ("top", "person", "organizationalPerson", "user"),
    raw_sid: Optional[bytes] = None,
    **attrs,
) -> dict:
    """An ldap3 searchResEntry; `raw_sid` overrides the SID built from `rid`."""
    attributes = {"objectClass": list(classes), "distinguishedName": dn}
    if sam:
        attributes["sAMAccountName"] = sam
        attributes["name"] = sam
    attributes.update(attrs)
    raw: dict = {}
    if raw_sid is not None:
        raw["objectSid"] = [raw_sid]
    elif rid is not None:
        raw["objectSid"] = [sid_bytes(f"{DOMAIN_SID}-{rid}")]
    return {"type": "searchResEntry", "dn": dn, "attributes": attributes, "raw_attributes": raw}


def user_entry(sam: str, rid: Optional[int] = None, **attrs) -> dict:
    return entry(f"CN={sam},OU=Users,DC=corp,DC=example,DC=com", sam, rid, **attrs)


def group_entry(name: str, rid: Optional[int] = None, **attrs) -> dict:
    return entry(f"CN={name},OU=Groups,DC=corp,DC=example,DC=com", name, rid, classes=("top", "group"), **attrs)


def broken_entry(name: str) -> dict:
    """An entry whose objectSid is truncated."""
    return entry(f"CN={name},OU=Users,DC=corp,DC=example,DC=com", name, raw_sid=b"\x01\x05\x00")


class FakeSession:
    """Stands in for `DirectorySession`.

    `handler(search_filter)` returns the entries of a search; when absent,
    every search returns `entries`. `objects` answers `read_entry` by DN.
    """

    def __init__(
        self,
        endpoint: str = "10.0.0.1",
        entries: Optional[list] = None,
        handler: Optional[Callable[[str], list]] = None,
        objects: Optional[dict] = None,
        passwords: Optional[dict] = None,
    ) -> None:
        self.endpoint = endpoint
        self.base_dn = "DC=corp,DC=example,DC=com"
        self.entries = entries or []
        self.handler = handler
        self.objects = objects or {}
        self.passwords = passwords or {}
        self.searches: list[dict] = []
        self.binds: list[str] = []
        self.pulled = 0
        self.closed = False

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.closed = True

    def paged_search(self, search_filter, attributes, controls=None, search_base=None, paged_size=None):
        self.searches.append({"filter": search_filter, "attributes": attributes, "controls": controls})
        found = self.handler(search_filter) if self.handler else self.entries

        def gen():
            for e in found:
                self.pulled += 1
                yield e

        return gen()

    def read_entry(self, dn, attributes):
        return self.objects.get(dn)

    def validate_credentials(self, user, password):
        self.binds.append(user)
        return self.passwords.get(user) == password


class FakeSessionFactory:
    """Stands in for `SessionFactory`; `down` maps endpoints to the error their open raises."""

    def __init__(self, session_builder: Optional[Callable[[str], FakeSession]] = None, down: Optional[dict] = None) -> None:
        self.session_builder = session_builder or (lambda ep: FakeSession(ep))
        self.down = down or {}
        self.opened: list[str] = []
        self.sessions: list[FakeSession] = []
        self.local_opens = 0

    def open(self, endpoint: str) -> AttemptResult:
        self.opened.append(endpoint)
        error = self.down.get(endpoint)
        if error is not None:
            return AttemptResult.failed(error, endpoint)
        session = self.session_builder(endpoint)
        self.sessions.append(session)
        return AttemptResult.ok(session, endpoint)

    def open_local(self) -> FakeSession:
        self.local_opens += 1
        session = self.session_builder("localhost")
        self.sessions.append(session)
        return session


class FakeLookup:
    def __init__(self, answers: Optional[dict] = None) -> None:
        self.answers = answers or {}
        self.calls: list[str] = []

    def __call__(self, hostname: str, dns_server: str = "", timeout_s: float = 5.0) -> list[str]:
        self.calls.append(hostname)
        return list(self.answers.get(hostname, []))


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


ENDPOINTS = ["10.0.0.1", "10.0.0.2", "10.0.0.3"]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def failure_cache(clock) -> FailureCache:
    return FailureCache(clock=clock)


@pytest.fixture
def lookup() -> FakeLookup:
    return FakeLookup({"corp.example.com": list(ENDPOINTS)})


@pytest.fixture
def resolver(failure_cache, lookup) -> EndpointResolver:
    return EndpointResolver(failure_cache, lookup=lookup)


@pytest.fixture
def cfg() -> ADConfig:
    return ADConfig(server="corp.example.com", username="svc_lookup", password="Secret1!")


@pytest.fixture
def guid() -> str:
    return str(uuid.UUID("6f9619ff-8b86-d011-b42d-00c04fc964ff"))

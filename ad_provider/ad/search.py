"""Defensive enumeration of directory search results.

Searches run as paged LDAP searches (a fixed transport batch per round trip)
with a server-side sort control. Each returned entry is materialized on its
own: an entry that cannot be turned into a principal (truncated SID, broken
GUID, missing DN) is logged and skipped, the rest of the stream is kept.

The caller's page window is applied after materialization, so skipped
entries never take up a position in a page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from pyasn1.codec.ber import encoder
from pyasn1.type.namedtype import DefaultedNamedType, NamedType, NamedTypes, OptionalNamedType
from pyasn1.type.tag import Tag, tagClassContext, tagFormatSimple
from pyasn1.type.univ import Boolean, OctetString, Sequence, SequenceOf

from .connection import DirectorySession
from .errors import MaterializationFault
from .models import (
    ADConfig,
    GroupPrincipal,
    IdentityType,
    PageWindow,
    Principal,
    PrincipalKind,
    SortSpec,
    UserPrincipal,
)
from .utils import (
    escape_ldap_filter_value,
    guid_to_filter_value,
    guid_to_str,
    sid_to_str,
    wildcard_pattern,
)

log = logging.getLogger(__name__)

SORT_CONTROL_OID = "1.2.840.113556.1.4.473"

# Attributes every principal is built from.
PRINCIPAL_ATTRIBUTES = [
    "objectClass",
    "distinguishedName",
    "sAMAccountName",
    "name",
    "cn",
    "displayName",
    "description",
    "objectSid",
    "objectGUID",
    "userPrincipalName",
    "mail",
    "givenName",
    "sn",
]

KIND_FILTERS = {
    PrincipalKind.USER: "(&(objectCategory=person)(objectClass=user))",
    PrincipalKind.GROUP: "(objectClass=group)",
    PrincipalKind.PRINCIPAL: "(objectSid=*)",
}


class _SortKey(Sequence):
    # RFC 2891 SortKey
    componentType = NamedTypes(
        NamedType("attributeType", OctetString()),
        OptionalNamedType(
            "orderingRule",
            OctetString().subtype(implicitTag=Tag(tagClassContext, tagFormatSimple, 0)),
        ),
        DefaultedNamedType(
            "reverseOrder",
            Boolean(False).subtype(implicitTag=Tag(tagClassContext, tagFormatSimple, 1)),
        ),
    )


class _SortKeyList(SequenceOf):
    componentType = _SortKey()


def sort_control(attribute: str, ascending: bool = True, criticality: bool = False) -> tuple[str, bool, bytes]:
    """Server side sort request control as an ldap3 (oid, criticality, value) tuple."""
    key = _SortKey()
    key.setComponentByName("attributeType", attribute)
    if not ascending:
        key.setComponentByName("reverseOrder", True)
    keys = _SortKeyList()
    keys.setComponentByPosition(0, key)
    return SORT_CONTROL_OID, criticality, encoder.encode(keys)


@dataclass
class SearchCriteria:
    """Template search: principal kind plus attribute -> substring patterns."""

    kind: PrincipalKind = PrincipalKind.PRINCIPAL
    patterns: dict[str, str] = field(default_factory=dict)
    filters: tuple[str, ...] = ()

    def to_filter(self) -> str:
        parts = [KIND_FILTERS[self.kind]]
        for attr, value in self.patterns.items():
            parts.append(f"({attr}={wildcard_pattern(value)})")
        parts.extend(self.filters)
        if len(parts) == 1:
            return parts[0]
        return "(&" + "".join(parts) + ")"


def identity_filter(identity_type: IdentityType, key: str) -> str:
    if identity_type is IdentityType.GUID:
        return f"(objectGUID={guid_to_filter_value(key)})"
    # AD accepts the string form of a SID in filters.
    return f"({identity_type.attribute}={escape_ldap_filter_value(key)})"


@dataclass
class EntryResult:
    """One enumerated record: either a principal or the reason it was skipped."""

    dn: str
    principal: Optional[Principal] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.principal is not None


def attribute_values(attrs: Any, name: str) -> list:
    if not attrs:
        return []
    if name in attrs:
        v = attrs[name]
    else:
        lname = name.lower()
        v = next((attrs[k] for k in attrs if k.lower() == lname), None)
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return list(v)
    return [v]


def _text(attrs: Any, name: str) -> str:
    vals = attribute_values(attrs, name)
    if not vals:
        return ""
    v = vals[0]
    if isinstance(v, (bytes, bytearray)):
        return bytes(v).decode("utf-8", errors="replace").strip()
    return str(v).strip()


def _binary_identifier(entry: dict, name: str, convert) -> str:
    vals = attribute_values(entry.get("raw_attributes"), name) or attribute_values(entry.get("attributes"), name)
    if not vals:
        return ""
    v = vals[0]
    if isinstance(v, (bytes, bytearray)):
        return convert(bytes(v))
    # Already formatted by ldap3 when the schema is loaded.
    return str(v).strip().strip("{}")


def materialize(entry: dict, default_kind: PrincipalKind = PrincipalKind.PRINCIPAL) -> Principal:
    """Build a principal from an ldap3 response entry; MaterializationFault when it is unusable."""
    attrs = entry.get("attributes") or {}
    dn = str(entry.get("dn") or _text(attrs, "distinguishedName") or "")
    if not dn:
        raise MaterializationFault("", "entry without distinguished name")

    try:
        sid = _binary_identifier(entry, "objectSid", sid_to_str)
    except ValueError as e:
        raise MaterializationFault(dn, f"invalid objectSid: {e}") from e
    try:
        guid = _binary_identifier(entry, "objectGUID", guid_to_str)
    except ValueError as e:
        raise MaterializationFault(dn, f"invalid objectGUID: {e}") from e

    classes = [str(c).lower() for c in attribute_values(attrs, "objectClass")]
    if classes:
        if "group" in classes:
            kind = PrincipalKind.GROUP
        elif "user" in classes and "computer" not in classes:
            kind = PrincipalKind.USER
        else:
            kind = PrincipalKind.PRINCIPAL
    else:
        kind = default_kind

    common = {
        "dn": dn,
        "sam_account_name": _text(attrs, "sAMAccountName"),
        "name": _text(attrs, "name") or _text(attrs, "cn"),
        "display_name": _text(attrs, "displayName"),
        "sid": sid,
        "guid": guid,
        "description": _text(attrs, "description"),
        "object_classes": classes,
    }
    if kind is PrincipalKind.USER:
        return UserPrincipal(
            user_principal_name=_text(attrs, "userPrincipalName"),
            email=_text(attrs, "mail"),
            given_name=_text(attrs, "givenName"),
            surname=_text(attrs, "sn"),
            **common,
        )
    if kind is PrincipalKind.GROUP:
        return GroupPrincipal(**common)
    return Principal(**common)


def iter_entries(responses: Iterable[dict], default_kind: PrincipalKind = PrincipalKind.PRINCIPAL) -> Iterator[EntryResult]:
    for entry in responses:
        if entry.get("type", "searchResEntry") != "searchResEntry":
            continue
        try:
            principal = materialize(entry, default_kind)
        except MaterializationFault as e:
            yield EntryResult(dn=e.dn, reason=e.reason)
            continue
        yield EntryResult(dn=principal.dn, principal=principal)


def apply_window(results: Iterable[EntryResult], window: Optional[PageWindow] = None) -> list[Principal]:
    """Keep positions [start, end) of the successfully materialized entries; log skips."""
    out: list[Principal] = []
    index = 0
    for res in results:
        if not res.ok:
            log.warning("Skipping directory entry %s: %s", res.dn or "<no dn>", res.reason)
            continue
        if window is None or window.start <= index:
            out.append(res.principal)  # type: ignore[arg-type]
        index += 1
        if window is not None and index >= window.end:
            break
    return out


class SearchEngine:
    def __init__(self, cfg: ADConfig) -> None:
        self.cfg = cfg

    def attributes(self, sort_attribute: Optional[str] = None) -> list[str]:
        attrs = list(PRINCIPAL_ATTRIBUTES)
        for extra in (self.cfg.identity_type.attribute, sort_attribute):
            if extra and extra not in attrs:
                attrs.append(extra)
        return attrs

    def run(
        self,
        session: DirectorySession,
        search_filter: str,
        default_kind: PrincipalKind = PrincipalKind.PRINCIPAL,
        window: Optional[PageWindow] = None,
        sort: Optional[SortSpec] = None,
        sorted_results: bool = True,
    ) -> list[Principal]:
        controls = None
        sort_attribute = None
        if sorted_results:
            sort_attribute = sort.attribute if sort else self.cfg.identity_type.attribute
            controls = [sort_control(sort_attribute, ascending=sort.ascending if sort else True)]

        log.debug("Search %s (window=%s, sort=%s) on %s", search_filter, window, sort_attribute, session.endpoint)
        responses = session.paged_search(
            search_filter=search_filter,
            attributes=self.attributes(sort_attribute),
            controls=controls,
        )
        try:
            return apply_window(iter_entries(responses, default_kind), window)
        finally:
            close = getattr(responses, "close", None)
            if close is not None:
                close()

    def search(
        self,
        criteria: SearchCriteria,
        session: DirectorySession,
        window: Optional[PageWindow] = None,
        sort: Optional[SortSpec] = None,
    ) -> list[Principal]:
        return self.run(session, criteria.to_filter(), criteria.kind, window, sort)

    def find_one(
        self,
        session: DirectorySession,
        kind: PrincipalKind,
        key: str,
        identity_type: Optional[IdentityType] = None,
    ) -> Optional[Principal]:
        """Exact identity lookup; None when missing or ambiguous."""
        key = (key or "").strip()
        if not key:
            return None
        identity_type = identity_type or self.cfg.identity_type
        try:
            flt = SearchCriteria(kind, filters=(identity_filter(identity_type, key),)).to_filter()
        except ValueError:
            log.debug("Malformed %s key %r", identity_type.value, key)
            return None

        found = self.run(session, flt, kind, window=PageWindow(0, 2), sorted_results=False)
        if not found:
            return None
        if len(found) > 1:
            log.warning("Identity %s=%r matches more than one %s", identity_type.value, key, kind.value)
            return None
        return found[0]

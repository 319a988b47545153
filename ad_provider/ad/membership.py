from __future__ import annotations

import logging
from typing import Optional

from .connection import DirectorySession
from .models import ADConfig, IdentityType, Principal, PrincipalKind
from .search import SearchCriteria, SearchEngine, attribute_values
from .utils import escape_ldap_filter_value, sid_domain, sid_to_str

log = logging.getLogger(__name__)

IN_CHAIN_RULE = "1.2.840.113556.1.4.1941"
SID_BATCH = 64

# Only domain groups (S-1-5-21-<domain>-<rid>) can be a primary group.
_DOMAIN_SID_PREFIX = "S-1-5-21-"


def primary_group_rid(sid: str) -> Optional[int]:
    s = (sid or "").strip().upper()
    if not s.startswith(_DOMAIN_SID_PREFIX) or not sid_domain(s):
        return None
    try:
        return int(s.rsplit("-", 1)[1])
    except ValueError:
        return None


class GroupMembershipResolver:
    """Group closures of users and member lists of groups.

    Membership tests go through the user's closure (tokenGroups is computed
    by the DC from an index) instead of walking the members of a group, which
    is slow for large groups.
    """

    def __init__(self, cfg: ADConfig, engine: SearchEngine) -> None:
        self.cfg = cfg
        self.engine = engine

    def user_groups(self, session: DirectorySession, user: Principal, recursive: bool = True) -> list[Principal]:
        if recursive:
            return self._authorization_groups(session, user)
        return self._direct_groups(session, user)

    def _token_group_sids(self, session: DirectorySession, user: Principal) -> list[str]:
        entry = session.read_entry(user.dn, ["tokenGroups"])
        if entry is None:
            return []
        raw = attribute_values(entry.get("raw_attributes"), "tokenGroups") or attribute_values(entry.get("attributes"), "tokenGroups")
        sids: list[str] = []
        for value in raw:
            if not isinstance(value, (bytes, bytearray)):
                sids.append(str(value))
                continue
            try:
                sids.append(sid_to_str(bytes(value)))
            except ValueError as e:
                log.warning("Skipping group SID of %s: %s", user.dn, e)
        return sids

    def _authorization_groups(self, session: DirectorySession, user: Principal) -> list[Principal]:
        sids = self._token_group_sids(session, user)
        groups: list[Principal] = []
        for i in range(0, len(sids), SID_BATCH):
            chunk = sids[i:i + SID_BATCH]
            any_sid = "(|" + "".join(f"(objectSid={escape_ldap_filter_value(s)})" for s in chunk) + ")"
            flt = SearchCriteria(PrincipalKind.GROUP, filters=(any_sid,)).to_filter()
            groups.extend(self.engine.run(session, flt, PrincipalKind.GROUP, sorted_results=False))

        # tokenGroups order, not the order the batches came back in.
        position = {sid: n for n, sid in enumerate(sids)}
        groups.sort(key=lambda g: position.get(g.sid, len(position)))
        return groups

    def _primary_group(self, session: DirectorySession, user: Principal) -> Optional[Principal]:
        domain = sid_domain(user.sid)
        if not domain:
            return None
        entry = session.read_entry(user.dn, ["primaryGroupID"])
        rid = attribute_values((entry or {}).get("attributes"), "primaryGroupID")
        if not rid:
            return None
        try:
            group_sid = f"{domain}-{int(rid[0])}"
        except (TypeError, ValueError):
            log.warning("Ignoring primaryGroupID %r of %s", rid[0], user.dn)
            return None
        return self.engine.find_one(session, PrincipalKind.GROUP, group_sid, IdentityType.SID)

    def _direct_groups(self, session: DirectorySession, user: Principal) -> list[Principal]:
        member = f"(member={escape_ldap_filter_value(user.dn)})"
        flt = SearchCriteria(PrincipalKind.GROUP, filters=(member,)).to_filter()
        groups = self.engine.run(session, flt, PrincipalKind.GROUP)

        # The primary group is not listed in `member`.
        primary = self._primary_group(session, user)
        if primary is not None and primary not in groups:
            groups.append(primary)
        return groups

    def group_members(self, session: DirectorySession, group: Principal, recursive: bool = True) -> list[Principal]:
        dn = escape_ldap_filter_value(group.dn)
        member_of = f"(memberOf:{IN_CHAIN_RULE}:={dn})" if recursive else f"(memberOf={dn})"
        rid = primary_group_rid(group.sid)
        if rid is not None:
            # Primary group membership is only stored on the member (primaryGroupID).
            member_of = f"(|{member_of}(primaryGroupID={rid}))"
        if recursive:
            # Nested groups are expanded, only leaf principals are returned.
            filters = (member_of, "(!(objectClass=group))")
        else:
            filters = (member_of,)
        flt = SearchCriteria(PrincipalKind.PRINCIPAL, filters=filters).to_filter()
        return self.engine.run(session, flt, PrincipalKind.PRINCIPAL)

from __future__ import annotations

import uuid


def escape_ldap_filter_value(value: str) -> str:
    """RFC 4515 escaping for LDAP filter values."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\5c")
        elif ch == "*":
            out.append("\\2a")
        elif ch == "(":
            out.append("\\28")
        elif ch == ")":
            out.append("\\29")
        elif ch == "\x00":
            out.append("\\00")
        else:
            out.append(ch)
    return "".join(out)


def escape_ldap_filter_bytes(raw: bytes) -> str:
    """Escape every octet of a binary attribute value (e.g. objectGUID) for a filter."""
    return "".join(f"\\{b:02x}" for b in raw)


def wildcard_pattern(value: str) -> str:
    """Substring match: escape the value and pad it with wildcards on both sides."""
    return f"*{escape_ldap_filter_value(value)}*"


def sid_to_str(raw: bytes) -> str:
    """Convert a binary security identifier to ``S-1-5-21-...`` form.

    Raises ValueError for truncated or otherwise malformed values, which AD
    does return now and then (legacy or foreign-domain SIDs).
    """
    data = bytes(raw or b"")
    if len(data) < 8:
        raise ValueError(f"SID too short ({len(data)} bytes)")
    revision = data[0]
    count = data[1]
    if revision != 1:
        raise ValueError(f"unsupported SID revision {revision}")
    if count > 15:
        raise ValueError(f"too many SID sub-authorities ({count})")
    if len(data) != 8 + 4 * count:
        raise ValueError(f"SID length {len(data)} does not match {count} sub-authorities")

    authority = int.from_bytes(data[2:8], "big")
    subs = [int.from_bytes(data[8 + 4 * i:12 + 4 * i], "little") for i in range(count)]
    return "-".join(["S", str(revision), str(authority)] + [str(s) for s in subs])


def sid_domain(sid: str) -> str:
    """Strip the relative identifier: ``S-1-5-21-a-b-c-1105`` -> ``S-1-5-21-a-b-c``."""
    s = (sid or "").strip()
    if s.count("-") < 3:
        return ""
    return s.rsplit("-", 1)[0]


def guid_to_str(raw: bytes) -> str:
    data = bytes(raw or b"")
    if len(data) != 16:
        raise ValueError(f"GUID must be 16 bytes, got {len(data)}")
    return str(uuid.UUID(bytes_le=data))


def guid_to_filter_value(guid: str) -> str:
    """Textual GUID -> escaped little-endian octets usable in an objectGUID filter."""
    return escape_ldap_filter_bytes(uuid.UUID((guid or "").strip().strip("{}")).bytes_le)

from __future__ import annotations

import socket


def domain_to_base_dn(domain: str) -> str:
    domain = (domain or "").strip().strip(".")
    # Одиночное имя (без точки) не даёт base DN
    if not domain or "." not in domain:
        return ""
    parts = [p for p in domain.split(".") if p]
    return ",".join([f"DC={p}" for p in parts])


def local_domain_name() -> str:
    """DNS-домен этой машины (``host.corp.example.com`` -> ``corp.example.com``)."""
    fqdn = (socket.getfqdn() or "").strip().strip(".")
    if "." not in fqdn:
        return ""
    return fqdn.split(".", 1)[1]


def split_account_name(login: str) -> tuple[str, str]:
    """Разбивает ``DOMAIN\\user`` / ``user@domain`` на (account, domain)."""
    s = (login or "").strip()
    if "\\" in s:
        domain, account = s.split("\\", 1)
        return account, domain
    if "@" in s:
        account, domain = s.split("@", 1)
        return account, domain
    return s, ""


def looks_like_dn(value: str) -> bool:
    s = (value or "").strip()
    if "=" not in s:
        return False
    head = s.split(",", 1)[0]
    return head.split("=", 1)[0].strip().upper() in ("CN", "OU", "DC", "UID", "O")

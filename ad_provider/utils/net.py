from __future__ import annotations

import ipaddress
import logging

import dns.exception
import dns.resolver

log = logging.getLogger(__name__)


def looks_like_ip(s: str) -> bool:
    try:
        ipaddress.ip_address((s or "").strip())
        return True
    except ValueError:
        return False


def _resolver(dns_server: str, timeout_s: float) -> dns.resolver.Resolver:
    # Если задан DNS сервер, используем только его
    if dns_server:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [dns_server]
    else:
        resolver = dns.resolver.Resolver()
    # Устанавливаем таймаут для запроса
    resolver.timeout = timeout_s
    resolver.lifetime = timeout_s
    return resolver


def resolve_host_addresses(hostname: str, dns_server: str = "", timeout_s: float = 5.0) -> list[str]:
    """Resolve every A and AAAA record of a hostname, in answer order.

    Uses the system resolver configuration unless `dns_server` is given.
    Returns an empty list when nothing could be resolved.
    """
    name = (hostname or "").strip()
    if not name:
        return []

    resolver = _resolver(dns_server, timeout_s)
    addresses: list[str] = []
    for rdtype in ("A", "AAAA"):
        try:
            answers = resolver.resolve(name, rdtype)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            # Имя не найдено или нет записи этого типа
            continue
        except dns.resolver.NoNameservers:
            log.warning("DNS: all nameservers failed for %s %s (server=%s)", name, rdtype, dns_server or "system")
            continue
        except dns.exception.Timeout:
            log.warning("DNS: timeout resolving %s %s (server=%s)", name, rdtype, dns_server or "system")
            continue
        except dns.exception.DNSException as e:
            log.warning("DNS: failed to resolve %s %s: %s", name, rdtype, e)
            continue
        for rdata in answers:
            addr = str(rdata)
            if addr not in addresses:
                addresses.append(addr)
    return addresses

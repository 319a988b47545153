"""Network helpers shared by the directory modules (no ldap3 imports here)."""

from .net import looks_like_ip  # noqa: F401

"""Active Directory (LDAP) lookup client with DNS failover.

Public API:
    - ADConfig, ContextType, IdentityType
    - ADClient
    - FailureCache (shareable between clients)
    - Principal, UserPrincipal, GroupPrincipal
    - errors: DirectoryError, ServerUnavailable, InvalidArgument
"""

from .models import (
    ADConfig,
    ContextType,
    GroupPrincipal,
    IdentityType,
    Principal,
    PrincipalKind,
    UserPrincipal,
)
from .errors import DirectoryError, InvalidArgument, ServerUnavailable
from .dns import FailureCache
from .client import ADClient

__all__ = [
    "ADConfig",
    "ContextType",
    "IdentityType",
    "PrincipalKind",
    "Principal",
    "UserPrincipal",
    "GroupPrincipal",
    "DirectoryError",
    "InvalidArgument",
    "ServerUnavailable",
    "FailureCache",
    "ADClient",
]

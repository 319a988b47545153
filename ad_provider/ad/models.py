from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..ad_utils import domain_to_base_dn
from ..utils.net import looks_like_ip
from .errors import InvalidArgument


class ContextType(str, Enum):
    MACHINE = "machine"
    DOMAIN = "domain"
    APPLICATION_DIRECTORY = "application_directory"


class IdentityType(str, Enum):
    """Identity key kinds and the LDAP attribute each one is stored in."""

    SAM_ACCOUNT_NAME = "sam_account_name"
    NAME = "name"
    USER_PRINCIPAL_NAME = "user_principal_name"
    DISTINGUISHED_NAME = "distinguished_name"
    SID = "sid"
    GUID = "guid"

    @property
    def attribute(self) -> str:
        return _IDENTITY_ATTRIBUTES[self]


_IDENTITY_ATTRIBUTES = {
    IdentityType.SAM_ACCOUNT_NAME: "sAMAccountName",
    IdentityType.NAME: "name",
    IdentityType.USER_PRINCIPAL_NAME: "userPrincipalName",
    IdentityType.DISTINGUISHED_NAME: "distinguishedName",
    IdentityType.SID: "objectSid",
    IdentityType.GUID: "objectGUID",
}


class PrincipalKind(str, Enum):
    PRINCIPAL = "principal"
    USER = "user"
    GROUP = "group"


@dataclass
class ADConfig:
    server: str = ""
    username: str = ""
    password: str = ""
    container: str = ""
    context_type: ContextType = ContextType.DOMAIN
    identity_type: IdentityType = IdentityType.SAM_ACCOUNT_NAME
    max_attempts: int = 3
    port: int = 389
    use_ssl: bool = False
    starttls: bool = False
    tls_validate: bool = False
    ca_pem: str = ""
    dns_server: str = ""
    connect_timeout_s: float = 5.0
    receive_timeout_s: float = 30.0
    page_size: int = 0x200
    address_ttl_s: Optional[float] = None

    def __post_init__(self) -> None:
        self.server = (self.server or "").strip()
        self.container = (self.container or "").strip()
        self.context_type = ContextType(self.context_type)
        self.identity_type = IdentityType(self.identity_type)
        if int(self.max_attempts) < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = int(self.max_attempts)
        if int(self.page_size) < 1:
            raise ValueError("page_size must be at least 1")

    @property
    def is_local(self) -> bool:
        return not self.server

    @property
    def has_credentials(self) -> bool:
        return bool((self.username or "").strip()) and bool((self.password or "").strip())

    @property
    def domain(self) -> str:
        """DNS domain implied by the server name (empty for IP literals)."""
        if self.server and not looks_like_ip(self.server) and "." in self.server:
            return self.server.strip(".")
        return ""

    @property
    def bind_principal(self) -> str:
        u = (self.username or "").strip()
        if not u:
            return ""
        if "@" in u or "\\" in u or "=" in u:
            return u
        return f"{u}@{self.domain}" if self.domain else u

    @property
    def base_dn(self) -> str:
        """Search base: explicit container, else derived from a domain-style server name."""
        if self.container:
            return self.container
        return domain_to_base_dn(self.domain)


@dataclass(frozen=True)
class PageWindow:
    page_index: int
    page_size: int

    def __post_init__(self) -> None:
        if self.page_index < 0:
            raise InvalidArgument("page_index must not be negative")
        if self.page_size < 1:
            raise InvalidArgument("page_size must be at least 1")

    @property
    def start(self) -> int:
        return self.page_index * self.page_size

    @property
    def end(self) -> int:
        return (self.page_index + 1) * self.page_size

    @classmethod
    def build(cls, page_index: Optional[int], page_size: Optional[int]) -> Optional["PageWindow"]:
        # Окно задаётся только если указаны оба параметра.
        if page_index is None or page_size is None:
            return None
        try:
            index, size = int(page_index), int(page_size)
        except (TypeError, ValueError) as e:
            raise InvalidArgument(f"Invalid page window ({page_index!r}, {page_size!r})") from e
        return cls(index, size)


@dataclass(frozen=True)
class SortSpec:
    key: IdentityType
    ascending: bool = True

    @property
    def attribute(self) -> str:
        return self.key.attribute


@dataclass(eq=False)
class Principal:
    dn: str
    sam_account_name: str = ""
    name: str = ""
    display_name: str = ""
    sid: str = ""
    guid: str = ""
    description: str = ""
    object_classes: list[str] = field(default_factory=list)

    kind = PrincipalKind.PRINCIPAL

    @property
    def identity_key(self) -> str:
        # SID не меняется при переименовании и переносе; DN только для объектов без SID.
        return self.sid.upper() if self.sid else self.dn.lower()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Principal):
            return NotImplemented
        return self.identity_key == other.identity_key

    def __hash__(self) -> int:
        return hash(self.identity_key)


@dataclass(eq=False)
class UserPrincipal(Principal):
    user_principal_name: str = ""
    email: str = ""
    given_name: str = ""
    surname: str = ""

    kind = PrincipalKind.USER


@dataclass(eq=False)
class GroupPrincipal(Principal):
    kind = PrincipalKind.GROUP

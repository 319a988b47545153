from __future__ import annotations

from typing import Optional

from ..ad_utils import looks_like_dn, split_account_name
from .connection import DirectorySession, SessionFactory
from .dns import EndpointResolver, FailureCache
from .errors import InvalidArgument
from .membership import GroupMembershipResolver
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
from .retry import RetryOrchestrator
from .search import SearchCriteria, SearchEngine


def _sort_spec(sort_by: Optional[IdentityType]) -> Optional[SortSpec]:
    return SortSpec(IdentityType(sort_by)) if sort_by is not None else None


def _require_pattern(value: str, what: str) -> str:
    s = (value or "").strip()
    if not s:
        raise InvalidArgument(f"Invalid search criteria specified: empty {what} pattern.")
    return s


class ADClient:
    """Active Directory lookups with DNS failover.

    Every method runs its directory work through `RetryOrchestrator`, so a
    dead domain controller costs one attempt and the next address of the
    server name is tried. The failure cache can be shared between clients
    pointing at the same directory; by default each client owns one.
    """

    def __init__(
        self,
        cfg: ADConfig,
        failure_cache: Optional[FailureCache] = None,
        resolver: Optional[EndpointResolver] = None,
        sessions: Optional[SessionFactory] = None,
    ) -> None:
        if cfg is None:
            raise ValueError("A valid configuration was not specified.")
        self.cfg = cfg
        self.failure_cache = failure_cache or (resolver.cache if resolver else FailureCache())
        self.resolver = resolver or EndpointResolver(
            self.failure_cache,
            dns_server=cfg.dns_server,
            address_ttl_s=cfg.address_ttl_s,
            timeout_s=cfg.connect_timeout_s,
        )
        self.sessions = sessions or SessionFactory(cfg)
        self.retry = RetryOrchestrator(cfg, self.resolver, self.sessions)
        self.engine = SearchEngine(cfg)
        self.membership = GroupMembershipResolver(cfg, self.engine)

    # ---------------------------
    # Users
    # ---------------------------

    def validate_credentials(self, username: str, password: str) -> bool:
        """True when `username` / `password` bind successfully."""
        user = (username or "").strip()
        # Пустой пароль = анонимный bind, AD его принимает.
        if not user or not password:
            return False

        def op(session: DirectorySession) -> bool:
            bind_name = user
            _, domain = split_account_name(user)
            if not domain and not looks_like_dn(user):
                found = self.engine.find_one(session, PrincipalKind.USER, user, IdentityType.SAM_ACCOUNT_NAME)
                if found is None:
                    return False
                bind_name = found.dn
            return session.validate_credentials(bind_name, password)

        return self.retry.execute(op, "validate_credentials")

    def find_user(self, key: str) -> Optional[UserPrincipal]:
        """Look up a user by the configured identity type."""
        return self.retry.execute(
            lambda session: self.engine.find_one(session, PrincipalKind.USER, key),
            "find_user",
        )

    def find_user_by_sid(self, sid: str) -> Optional[UserPrincipal]:
        return self.retry.execute(
            lambda session: self.engine.find_one(session, PrincipalKind.USER, sid, IdentityType.SID),
            "find_user_by_sid",
        )

    def search_users_by_name(
        self,
        username: str,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[IdentityType] = None,
    ) -> list[Principal]:
        """Users whose account name contains `username`."""
        pattern = _require_pattern(username, "user name")
        criteria = SearchCriteria(PrincipalKind.USER, patterns={"sAMAccountName": pattern})
        return self._search(criteria, page_index, page_size, sort_by, "search_users_by_name")

    def search_users_by_email(
        self,
        email: str,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[IdentityType] = None,
    ) -> list[Principal]:
        """Users whose e-mail address contains `email`."""
        pattern = _require_pattern(email, "e-mail")
        criteria = SearchCriteria(PrincipalKind.USER, patterns={"mail": pattern})
        return self._search(criteria, page_index, page_size, sort_by, "search_users_by_email")

    def list_users(
        self,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[IdentityType] = None,
    ) -> list[Principal]:
        return self._search(SearchCriteria(PrincipalKind.USER), page_index, page_size, sort_by, "list_users")

    # ---------------------------
    # Groups
    # ---------------------------

    def find_group(self, key: str) -> Optional[GroupPrincipal]:
        return self.retry.execute(
            lambda session: self.engine.find_one(session, PrincipalKind.GROUP, key),
            "find_group",
        )

    def list_groups(
        self,
        page_index: Optional[int] = None,
        page_size: Optional[int] = None,
        sort_by: Optional[IdentityType] = None,
    ) -> list[Principal]:
        return self._search(SearchCriteria(PrincipalKind.GROUP), page_index, page_size, sort_by, "list_groups")

    # ---------------------------
    # User-group relationships
    # ---------------------------

    def group_members(self, group: str, recursive: bool = True) -> list[Principal]:
        """Members of a group; empty when the group does not exist."""

        def op(session: DirectorySession) -> list[Principal]:
            found = self.engine.find_one(session, PrincipalKind.GROUP, group)
            if found is None:
                return []
            return self.membership.group_members(session, found, recursive)

        return self.retry.execute(op, "group_members")

    def user_groups(self, username: str, recursive: bool = True) -> list[Principal]:
        """Groups of a user (authorization closure when recursive); empty for unknown users."""

        def op(session: DirectorySession) -> list[Principal]:
            user = self.engine.find_one(session, PrincipalKind.USER, username)
            if user is None:
                return []
            return self.membership.user_groups(session, user, recursive)

        return self.retry.execute(op, "user_groups")

    def is_member_of(self, group: str, username: str, recursive: bool = True) -> bool:
        # Проверяем со стороны пользователя: его группы DC отдаёт быстро,
        # перебор большой группы медленный.
        user_groups = self.user_groups(username, recursive)
        if not user_groups:
            return False
        group_principal = self.find_group(group)
        if group_principal is None:
            return False
        return group_principal in user_groups

    # ---------------------------
    # Internals
    # ---------------------------

    def _search(
        self,
        criteria: SearchCriteria,
        page_index: Optional[int],
        page_size: Optional[int],
        sort_by: Optional[IdentityType],
        name: str,
    ) -> list[Principal]:
        window = PageWindow.build(page_index, page_size)
        sort = _sort_spec(sort_by)
        return self.retry.execute(
            lambda session: self.engine.search(criteria, session, window, sort),
            name,
        )

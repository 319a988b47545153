import pytest
from ldap3.core.exceptions import LDAPSocketOpenError

from ad_provider.ad import ADClient, FailureCache, InvalidArgument, ServerUnavailable
from ad_provider.ad.dns import EndpointResolver
from ad_provider.ad.models import ADConfig, IdentityType

from conftest import DOMAIN_SID, ENDPOINTS, FakeSession, FakeSessionFactory, group_entry, sid_bytes, user_entry

SERVER = "corp.example.com"
JDOE = user_entry("jdoe", 1105, mail="john.doe@corp.example.com")
SALES = group_entry("Sales", 1200)
HELPDESK = group_entry("Helpdesk", 1300)


def directory(search_filter: str) -> list:
    """A tiny directory: jdoe is in Sales only."""
    found = []
    for e in (JDOE, SALES, HELPDESK):
        attrs = e["attributes"]
        name = attrs["sAMAccountName"]
        is_group = "group" in attrs["objectClass"]
        if is_group and "(objectClass=user)" in search_filter:
            continue
        if not is_group and "(objectClass=group)" in search_filter:
            continue
        if f"(sAMAccountName={name})" in search_filter:
            found.append(e)
        elif "(sAMAccountName=*" in search_filter and f"*{name[:2]}*" in search_filter:
            found.append(e)
        elif "(objectSid=" in search_filter and f"{DOMAIN_SID}-1200)" in search_filter and name == "Sales":
            found.append(e)
        elif "(mail=*" in search_filter and "mail" in attrs and "john" in search_filter:
            found.append(e)
        elif search_filter in ("(&(objectCategory=person)(objectClass=user))", "(objectClass=group)"):
            found.append(e)
    return found


def make_session(endpoint: str) -> FakeSession:
    objects = {
        JDOE["dn"]: {
            "type": "searchResEntry",
            "dn": JDOE["dn"],
            "attributes": {},
            "raw_attributes": {"tokenGroups": [sid_bytes(f"{DOMAIN_SID}-1200")]},
        }
    }
    return FakeSession(endpoint, handler=directory, objects=objects, passwords={JDOE["dn"]: "Passw0rd!"})


@pytest.fixture
def sessions() -> FakeSessionFactory:
    return FakeSessionFactory(make_session)


@pytest.fixture
def client(cfg, resolver, sessions) -> ADClient:
    return ADClient(cfg, resolver=resolver, sessions=sessions)


class TestConstruction:
    def test_default_cache_per_client(self, cfg):
        a, b = ADClient(cfg), ADClient(cfg)
        assert a.failure_cache is not b.failure_cache

    def test_shared_cache(self, cfg):
        cache = FailureCache()
        assert ADClient(cfg, failure_cache=cache).resolver.cache is cache

    def test_resolver_cache_is_used(self, cfg, resolver):
        assert ADClient(cfg, resolver=resolver).failure_cache is resolver.cache

    def test_config_required(self):
        with pytest.raises(ValueError):
            ADClient(None)


class TestUsers:
    def test_find_user(self, client):
        user = client.find_user("jdoe")
        assert user.dn == JDOE["dn"]
        assert user.email == "john.doe@corp.example.com"

    def test_find_missing_user(self, client):
        assert client.find_user("nobody") is None

    def test_find_user_by_sid(self, client, sessions):
        client.find_user_by_sid(f"{DOMAIN_SID}-1105")
        assert f"(objectSid={DOMAIN_SID}-1105)" in sessions.sessions[0].searches[0]["filter"]

    def test_search_by_name(self, client, sessions):
        found = client.search_users_by_name("jd", page_index=0, page_size=10)
        assert [u.sam_account_name for u in found] == ["jdoe"]
        assert "(sAMAccountName=*jd*)" in sessions.sessions[0].searches[0]["filter"]

    def test_search_by_email(self, client, sessions):
        found = client.search_users_by_email("john", sort_by=IdentityType.USER_PRINCIPAL_NAME)
        assert [u.sam_account_name for u in found] == ["jdoe"]
        assert b"userPrincipalName" in sessions.sessions[0].searches[0]["controls"][0][2]

    @pytest.mark.parametrize("pattern", ["", "   ", None])
    def test_blank_pattern_rejected_before_any_call(self, client, sessions, lookup, pattern):
        with pytest.raises(InvalidArgument):
            client.search_users_by_name(pattern)
        with pytest.raises(ValueError):
            client.search_users_by_email(pattern)
        assert sessions.opened == []
        assert lookup.calls == []

    @pytest.mark.parametrize("page_index,page_size", [(0, 0), (-1, 10), (2, -1)])
    def test_bad_page_window_rejected_before_any_call(self, client, sessions, lookup, page_index, page_size):
        with pytest.raises(InvalidArgument):
            client.list_users(page_index=page_index, page_size=page_size)
        with pytest.raises(InvalidArgument):
            client.search_users_by_name("jd", page_index=page_index, page_size=page_size)
        assert sessions.opened == []
        assert lookup.calls == []

    def test_list_users_and_groups(self, client):
        assert [u.sam_account_name for u in client.list_users()] == ["jdoe"]
        assert [g.name for g in client.list_groups(page_index=0, page_size=1)] == ["Sales"]


class TestValidateCredentials:
    def test_bare_name_resolved_to_dn(self, client, sessions):
        assert client.validate_credentials("jdoe", "Passw0rd!") is True
        assert sessions.sessions[0].binds == [JDOE["dn"]]

    def test_repeated_validation_is_stable(self, client, failure_cache):
        results = [client.validate_credentials("jdoe", "wrong") for _ in range(2)]
        assert results == [False, False]
        assert failure_cache.failures(SERVER) == {}

    def test_unknown_user(self, client, sessions):
        assert client.validate_credentials("nobody", "Passw0rd!") is False
        assert sessions.sessions[0].binds == []

    def test_qualified_name_bound_as_is(self, client, sessions):
        assert client.validate_credentials("CORP\\jdoe", "Passw0rd!") is False
        assert sessions.sessions[0].binds == ["CORP\\jdoe"]

    @pytest.mark.parametrize("user,password", [("", "x"), ("jdoe", ""), ("  ", "x"), ("jdoe", None)])
    def test_blank_input_never_reaches_server(self, client, sessions, user, password):
        assert client.validate_credentials(user, password) is False
        assert sessions.opened == []


class TestGroups:
    def test_find_group(self, client):
        assert client.find_group("Sales").name == "Sales"
        assert client.find_group("nope") is None

    def test_user_groups(self, client):
        assert [g.name for g in client.user_groups("jdoe")] == ["Sales"]
        assert client.user_groups("nobody") == []

    def test_group_members_of_missing_group(self, client):
        assert client.group_members("nope") == []

    def test_is_member_of(self, client):
        assert client.is_member_of("Sales", "jdoe") is True
        assert client.is_member_of("Helpdesk", "jdoe") is False

    def test_is_member_of_unknown_user_or_group(self, client):
        assert client.is_member_of("Sales", "nobody") is False
        assert client.is_member_of("nope", "jdoe") is False


class TestFailover:
    def test_dead_controller_is_skipped(self, cfg, resolver, failure_cache):
        sessions = FakeSessionFactory(make_session, down={ENDPOINTS[0]: LDAPSocketOpenError("refused")})
        client = ADClient(cfg, resolver=resolver, sessions=sessions)
        assert client.find_user("jdoe").sam_account_name == "jdoe"
        assert set(failure_cache.failures(SERVER)) == {ENDPOINTS[0]}

    def test_all_controllers_down(self, resolver):
        cfg = ADConfig(server=SERVER, username="svc", password="x", max_attempts=2)
        down = {ep: LDAPSocketOpenError("refused") for ep in ENDPOINTS}
        client = ADClient(cfg, resolver=resolver, sessions=FakeSessionFactory(make_session, down=down))
        with pytest.raises(ServerUnavailable):
            client.list_users()

    def test_shared_cache_steers_second_client(self, cfg, lookup):
        cache = FailureCache()
        down = {ENDPOINTS[0]: LDAPSocketOpenError("refused")}
        first = ADClient(cfg, resolver=EndpointResolver(cache, lookup=lookup), sessions=FakeSessionFactory(make_session, down=down))
        first.find_user("jdoe")

        sessions = FakeSessionFactory(make_session)
        second = ADClient(cfg, resolver=EndpointResolver(cache, lookup=lookup), sessions=sessions)
        second.find_user("jdoe")
        assert sessions.opened == [ENDPOINTS[1]]

from __future__ import annotations

import hashlib
import logging
import os
import ssl
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Iterator, Optional, TypeVar

from ldap3 import (
    BASE,
    DSA,
    KERBEROS,
    SASL,
    SIMPLE,
    SUBTREE,
    Connection,
    Server,
    Tls,
)
from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPBusyResult,
    LDAPCommunicationError,
    LDAPException,
    LDAPInvalidCredentialsResult,
    LDAPUnavailableResult,
)

from ..ad_utils import local_domain_name
from .errors import DirectoryError, TransientServerDown
from .models import ADConfig, ContextType

log = logging.getLogger(__name__)

T = TypeVar("T")

# Failures that say "this server, right now" rather than "this request".
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    LDAPCommunicationError,
    LDAPUnavailableResult,
    LDAPBusyResult,
    TransientServerDown,
    ConnectionError,
    TimeoutError,
)


class Outcome(str, Enum):
    OK = "ok"
    TRANSIENT = "transient"
    FATAL = "fatal"


def classify_failure(exc: BaseException) -> Outcome:
    if isinstance(exc, TRANSIENT_ERRORS):
        return Outcome.TRANSIENT
    return Outcome.FATAL


@dataclass
class AttemptResult(Generic[T]):
    """Tagged result of one attempt against one endpoint."""

    outcome: Outcome
    endpoint: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, value: T, endpoint: str) -> "AttemptResult[T]":
        return cls(Outcome.OK, endpoint, value=value)

    @classmethod
    def failed(cls, error: BaseException, endpoint: str) -> "AttemptResult[T]":
        return cls(classify_failure(error), endpoint, error=error)


def _normalize_pem(pem: str) -> str:
    data = (pem or "").strip()
    # Normalize Windows newlines to \n to avoid hash mismatches.
    return data.replace("\r\n", "\n").replace("\r", "\n")


def _ensure_ca_file(pem: str) -> str:
    """Materialize CA PEM into a stable file path.

    ldap3.Tls takes a ca_certs_file; the file name carries a content hash so
    every process using the same CA reuses it.
    """
    data = _normalize_pem(pem)
    if not data:
        return ""
    if "-----BEGIN CERTIFICATE-----" not in data or "-----END CERTIFICATE-----" not in data:
        raise ValueError("CA PEM does not look like a certificate (BEGIN/END CERTIFICATE block expected)")

    h = hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
    path = os.path.join(tempfile.gettempdir(), f"ad_provider_ca_{h}.pem")
    if os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            if f.read().strip() == data:
                return path

    with open(path, "w", encoding="utf-8") as f:
        f.write(data + "\n")
    os.chmod(path, 0o600)
    return path


def build_tls(cfg: ADConfig) -> Tls:
    tls_kwargs: dict[str, Any] = {
        "validate": ssl.CERT_REQUIRED if cfg.tls_validate else ssl.CERT_NONE,
    }
    # Свой CA применяем только при включённой проверке сертификата.
    if cfg.tls_validate and _normalize_pem(cfg.ca_pem):
        tls_kwargs["ca_certs_file"] = _ensure_ca_file(cfg.ca_pem)
    return Tls(**tls_kwargs)


def local_directory_host(context_type: ContextType) -> str:
    """Host used when no server is configured."""
    if context_type is ContextType.MACHINE:
        return "localhost"
    return local_domain_name() or "localhost"


class DirectorySession:
    """One bound connection to one endpoint.

    Sessions are single-use: the orchestrator opens one per attempt and closes
    it when the attempt ends, whatever the outcome.
    """

    def __init__(self, conn: Connection, endpoint: str, cfg: ADConfig) -> None:
        self.conn = conn
        self.endpoint = endpoint
        self.cfg = cfg

    def __enter__(self) -> "DirectorySession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        try:
            self.conn.unbind()
        except (LDAPException, OSError):
            log.debug("unbind from %s failed", self.endpoint, exc_info=True)

    @property
    def base_dn(self) -> str:
        if self.cfg.container:
            return self.cfg.container
        info = getattr(self.conn.server, "info", None)
        other = getattr(info, "other", None) or {}
        naming = other.get("defaultNamingContext") or []
        if naming:
            return str(naming[0])
        if self.cfg.base_dn:
            return self.cfg.base_dn
        raise DirectoryError("Search base is unknown: set a container or use a domain name as server")

    def paged_search(
        self,
        search_filter: str,
        attributes: list[str],
        controls: Optional[list[tuple]] = None,
        search_base: Optional[str] = None,
        paged_size: Optional[int] = None,
    ) -> Iterator[dict]:
        """Lazily yield raw response dicts, fetching `paged_size` entries per round trip."""
        return self.conn.extend.standard.paged_search(
            search_base=search_base or self.base_dn,
            search_filter=search_filter,
            search_scope=SUBTREE,
            attributes=attributes,
            controls=controls,
            paged_size=paged_size or self.cfg.page_size,
            generator=True,
        )

    def read_entry(self, dn: str, attributes: list[str]) -> Optional[dict]:
        """Read attributes of a single object (BASE scope); constructed attributes need this."""
        self.conn.search(
            search_base=dn,
            search_filter="(objectClass=*)",
            search_scope=BASE,
            attributes=attributes,
        )
        for entry in self.conn.response or []:
            if entry.get("type") == "searchResEntry":
                return entry
        return None

    def validate_credentials(self, user: str, password: str) -> bool:
        """Simple-bind a second connection on the same endpoint with the given credentials."""
        conn = Connection(
            self.conn.server,
            user=user,
            password=password,
            authentication=SIMPLE,
            raise_exceptions=True,
            receive_timeout=self.cfg.receive_timeout_s,
        )
        try:
            conn.open()
            if self.cfg.starttls:
                conn.start_tls()
            return bool(conn.bind())
        except LDAPInvalidCredentialsResult:
            return False
        finally:
            try:
                conn.unbind()
            except (LDAPException, OSError):
                pass


class SessionFactory:
    def __init__(self, cfg: ADConfig) -> None:
        self.cfg = cfg
        self.tls = build_tls(cfg)

    def _server(self, host: str) -> Server:
        return Server(
            host=host,
            port=self.cfg.port,
            use_ssl=self.cfg.use_ssl,
            get_info=DSA,
            tls=self.tls,
            connect_timeout=self.cfg.connect_timeout_s,
        )

    def _connection(self, server: Server, service_host: str) -> Connection:
        common: dict[str, Any] = {
            "raise_exceptions": True,
            "read_only": True,
            "receive_timeout": self.cfg.receive_timeout_s,
        }
        if self.cfg.has_credentials:
            return Connection(
                server,
                user=self.cfg.bind_principal,
                password=self.cfg.password,
                authentication=SIMPLE,
                **common,
            )
        # Integrated bind: Kerberos ticket of the running process. The SPN is
        # built from the logical name because `server` points at an address.
        return Connection(
            server,
            authentication=SASL,
            sasl_mechanism=KERBEROS,
            sasl_credentials=(service_host,),
            **common,
        )

    def _bind(self, conn: Connection) -> None:
        conn.open()
        if self.cfg.starttls:
            conn.start_tls()
        if not conn.bind():
            raise LDAPBindError(f"bind failed: {dict(conn.result or {}).get('description', 'unknown error')}")

    def connect(self, host: str, service_host: str) -> DirectorySession:
        conn = self._connection(self._server(host), service_host)
        try:
            self._bind(conn)
        except BaseException:
            try:
                conn.unbind()
            except (LDAPException, OSError):
                pass
            raise
        return DirectorySession(conn, host, self.cfg)

    def open(self, endpoint: str) -> AttemptResult[DirectorySession]:
        """Open a session bound to `endpoint` (an address, never re-resolved by ldap3)."""
        try:
            session = self.connect(endpoint, self.cfg.server)
        except (LDAPException, DirectoryError, OSError) as e:
            result: AttemptResult[DirectorySession] = AttemptResult.failed(e, endpoint)
            log.debug("Open %s -> %s: %s", endpoint, result.outcome.value, e)
            return result
        log.debug("Session opened to %s (server %s)", endpoint, self.cfg.server)
        return AttemptResult.ok(session, endpoint)

    def open_local(self) -> DirectorySession:
        host = local_directory_host(self.cfg.context_type)
        log.debug("Opening local %s session to %s", self.cfg.context_type.value, host)
        return self.connect(host, host)

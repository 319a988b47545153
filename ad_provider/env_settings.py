from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .ad.models import ADConfig, ContextType, IdentityType


class DirectorySettings(BaseSettings):
    """Directory connection settings taken from `AD_*` environment variables."""

    model_config = SettingsConfigDict(env_prefix="AD_", populate_by_name=True)

    server: str = Field("")
    username: str = Field("")
    password: str = Field("")
    container: str = Field("")
    context_type: ContextType = Field(ContextType.DOMAIN)
    identity_type: IdentityType = Field(IdentityType.SAM_ACCOUNT_NAME)
    max_attempts: int = Field(3, ge=1, le=20)

    port: Optional[int] = Field(None, ge=1, le=65535)
    use_ssl: bool = Field(False)
    starttls: bool = Field(False)
    tls_validate: bool = Field(False)
    ca_pem: str = Field("")

    dns_server: str = Field("")
    address_ttl_s: Optional[float] = Field(None, gt=0)
    connect_timeout_s: float = Field(5.0, gt=0)
    receive_timeout_s: float = Field(30.0, gt=0)
    page_size: int = Field(0x200, ge=1, le=10000)

    log_level: str = Field("INFO")
    log_file: str = Field("")
    log_retention_days: int = Field(30)

    @field_validator("server", "username", "container", "dns_server")
    @classmethod
    def _strip(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("server")
    @classmethod
    def _validate_server(cls, v: str) -> str:
        s = (v or "").strip().strip(".").lower()
        if any(ch in s for ch in " /,;"):
            raise ValueError("Server must be a host name, a domain name or an IP address.")
        return s

    @field_validator("context_type", "identity_type", mode="before")
    @classmethod
    def _enum_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    def to_config(self) -> ADConfig:
        # LDAPS defaults to 636, plain and StartTLS to 389.
        port = self.port or (636 if self.use_ssl else 389)
        return ADConfig(
            server=self.server,
            username=self.username,
            password=self.password,
            container=self.container,
            context_type=self.context_type,
            identity_type=self.identity_type,
            max_attempts=self.max_attempts,
            port=port,
            use_ssl=self.use_ssl,
            starttls=self.starttls,
            tls_validate=self.tls_validate,
            ca_pem=self.ca_pem,
            dns_server=self.dns_server,
            connect_timeout_s=self.connect_timeout_s,
            receive_timeout_s=self.receive_timeout_s,
            page_size=self.page_size,
            address_ttl_s=self.address_ttl_s,
        )


@lru_cache(maxsize=1)
def get_settings() -> DirectorySettings:
    return DirectorySettings()

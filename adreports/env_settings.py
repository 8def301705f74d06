from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class EnvSettings(BaseSettings):
    secret_key: str = Field(..., alias="APP_SECRET_KEY")
    sqlite_path: str = Field("data/app.db", alias="SQLITE_PATH")
    redis_url: str = Field("redis://redis:6379/0", alias="REDIS_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_retention_days: int = Field(30, alias="LOG_RETENTION_DAYS")
    # "" = LC_COLLATE from the environment
    sort_locale: str = Field("", alias="SORT_LOCALE")

    # Directory (system credentials)
    ad_url: str = Field("", alias="AD_URL")
    ad_server: str = Field("", alias="AD_SERVER")
    ad_use_ldaps: bool = Field(False, alias="AD_USE_LDAPS")
    ad_starttls: bool = Field(False, alias="AD_STARTTLS")
    ad_tls_validate: bool = Field(False, alias="AD_TLS_VALIDATE")
    ad_base_dn: str = Field("DC=domain,DC=local", alias="AD_BASE_DN")
    ad_domain: str = Field("", alias="AD_DOMAIN")
    ad_username: str = Field("", alias="AD_USERNAME")
    ad_password: str = Field("", alias="AD_PASSWORD")
    ad_timeout_s: float = Field(30.0, alias="AD_TIMEOUT")
    ad_connect_timeout_s: float = Field(10.0, alias="AD_CONNECT_TIMEOUT")

    ad_cache_ttl_s: int = Field(300, alias="AD_CACHE_TTL")
    ad_pool_cleanup_interval_s: float = Field(300.0, alias="AD_POOL_CLEANUP_INTERVAL")
    ad_pool_max_idle_s: float = Field(1800.0, alias="AD_POOL_MAX_IDLE")
    ad_max_password_age_days: int = Field(90, alias="AD_MAX_PASSWORD_AGE_DAYS")

    # Azure AD / O365 app registration
    azure_tenant_id: str = Field("", alias="AZURE_TENANT_ID")
    azure_client_id: str = Field("", alias="AZURE_CLIENT_ID")
    azure_client_secret: str = Field("", alias="AZURE_CLIENT_SECRET")

    class Config:
        populate_by_name = True

    @property
    def ldap_url(self) -> str:
        if self.ad_url:
            return self.ad_url
        host = (self.ad_server or "").strip()
        if not host:
            return ""
        scheme = "ldaps" if self.ad_use_ldaps else "ldap"
        return f"{scheme}://{host}:{636 if self.ad_use_ldaps else 389}"


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()

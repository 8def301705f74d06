"""Application bootstrap: builds the service graph from the environment."""
from __future__ import annotations

from .ad.pool import ConnectionPool
from .ad.service import ADService
from .ad.transform import configure_collation
from .cache import RedisQueryCache
from .credentials import CredentialContextManager
from .db import create_session_factory
from .env_settings import EnvSettings, get_env
from .log_config import setup_logging


def build_ad_service(env: EnvSettings | None = None) -> ADService:
    env = env or get_env()

    session_factory = create_session_factory(env.sqlite_path)
    credentials = CredentialContextManager(env, session_factory)
    pool = ConnectionPool(
        env.ldap_url,
        credentials,
        timeout=env.ad_timeout_s,
        connect_timeout=env.ad_connect_timeout_s,
        use_tls=env.ad_starttls,
        tls_validate=env.ad_tls_validate,
        cleanup_interval_s=env.ad_pool_cleanup_interval_s,
        max_idle_s=env.ad_pool_max_idle_s,
    )
    cache = RedisQueryCache(env.redis_url) if env.redis_url else None
    service = ADService(
        pool,
        cache,
        base_dn=env.ad_base_dn,
        domain=env.ad_domain,
        cache_ttl_s=env.ad_cache_ttl_s,
        max_password_age_days=env.ad_max_password_age_days,
    )
    return service


def initialize_application(env: EnvSettings | None = None) -> ADService:
    env = env or get_env()
    setup_logging(level=env.log_level, retention_days=env.log_retention_days)
    configure_collation(env.sort_locale)
    return build_ad_service(env)

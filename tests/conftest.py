"""Общие фикстуры: поддельный каталог, провайдер учётных данных и кэш."""
from __future__ import annotations

import fnmatch
import time
from typing import Any, Optional

import pytest
import pytest_asyncio

from adreports.ad.errors import DirectoryConnectionError
from adreports.ad.models import CredentialContext, Credentials
from adreports.ad.pool import ConnectionPool
from adreports.ad.service import ADService


BASE_DN = "DC=corp,DC=local"


def make_entry(sam: str, display: str, **attrs: Any) -> dict:
    dn = attrs.pop("dn", f"CN={display},OU=Staff,{BASE_DN}")
    a = {
        "sAMAccountName": sam,
        "displayName": display,
        "mail": f"{sam}@corp.local",
        "userAccountControl": 512,
        "distinguishedName": dn,
    }
    a.update(attrs)
    return {"dn": dn, "attributes": a}


class FakeSession:
    """Stands in for DirectorySession (blocking API)."""

    def __init__(self, options, directory: "FakeDirectory") -> None:
        self.options = options
        self.directory = directory
        self.alive = True
        self.unbound = False
        self.searches: list[tuple[str, str, dict]] = []

    def is_alive(self, time_limit: int = 5) -> bool:
        return self.alive and not self.unbound

    def search(self, base_dn: str, search_filter: str, **kwargs: Any) -> list[dict]:
        if self.directory.search_error is not None:
            raise self.directory.search_error
        self.searches.append((base_dn, search_filter, kwargs))
        return [dict(e) for e in self.directory.entries]

    def unbind(self) -> None:
        self.unbound = True


class FakeDirectory:
    """Session factory: every call is one bind."""

    def __init__(self, entries: Optional[list[dict]] = None) -> None:
        self.entries = list(entries or [])
        self.sessions: list[FakeSession] = []
        self.bind_error: Optional[Exception] = None
        self.search_error: Optional[Exception] = None
        self.bind_delay = 0.0
        # bind DN -> password the directory accepts
        self.passwords: dict[str, str] = {}

    def __call__(self, options) -> FakeSession:
        if self.bind_delay:
            time.sleep(self.bind_delay)
        if self.bind_error is not None:
            raise self.bind_error
        expected = self.passwords.get(options.bind_dn)
        if expected is not None and options.bind_password != expected:
            raise DirectoryConnectionError("LDAP bind failed", cause=ValueError("invalidCredentials"))
        s = FakeSession(options, self)
        self.sessions.append(s)
        return s

    @property
    def binds(self) -> int:
        return len(self.sessions)

    @property
    def searches(self) -> list[tuple[str, str, dict]]:
        return [x for s in self.sessions for x in s.searches]


class FakeCredentials:
    def __init__(self, username: str = "svc_reports", password: str = "secret", domain: str = "corp.local") -> None:
        self.creds = Credentials(username=username, password=password, domain=domain)
        self.calls: list[tuple[str, Optional[CredentialContext]]] = []

    async def get_credentials(self, service: str, context: Optional[CredentialContext] = None) -> Credentials:
        self.calls.append((service, context))
        if context is not None and context.credentials is not None:
            return context.credentials
        return self.creds


class MemoryCache:
    """QueryCache in a dict; records every call."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.gets: list[str] = []
        self.sets: list[tuple[str, str, int]] = []

    async def get(self, key: str) -> Optional[str]:
        self.gets.append(key)
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        self.sets.append((key, value, ttl))
        self.data[key] = value

    async def delete(self, *keys: str) -> int:
        n = 0
        for k in keys:
            if self.data.pop(k, None) is not None:
                n += 1
        return n

    async def keys_matching(self, pattern: str) -> list[str]:
        return [k for k in self.data if fnmatch.fnmatchcase(k, pattern)]

    async def ping(self) -> bool:
        return True


class BrokenCache(MemoryCache):
    async def get(self, key: str) -> Optional[str]:
        raise ConnectionError("redis is down")

    async def set(self, key: str, value: str, ttl: int) -> None:
        raise ConnectionError("redis is down")


@pytest.fixture
def entries() -> list[dict]:
    return [
        make_entry("bob", "bob Baker", department="IT"),
        make_entry("alice", "Alice Adams", department="HR"),
        make_entry("carol", "Carol Clark", userAccountControl=514),
        make_entry("dave", "Dave Davis"),
        make_entry("erin", "Erin Evans"),
    ]


@pytest.fixture
def directory(entries) -> FakeDirectory:
    return FakeDirectory(entries)


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest_asyncio.fixture
async def pool(directory, credentials):
    p = ConnectionPool(
        "ldap://dc1.corp.local:389",
        credentials,
        session_factory=directory,
        cleanup_interval_s=0,
    )
    yield p
    await p.close()


@pytest.fixture
def service(pool, cache) -> ADService:
    return ADService(pool, cache, base_dn=BASE_DN, domain="corp.local")

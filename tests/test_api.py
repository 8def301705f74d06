import pytest
from fastapi.testclient import TestClient

from adreports.ad.errors import DataSourceError, DirectoryConnectionError
from adreports.ad.pool import ConnectionPool
from adreports.ad.service import ADService
from adreports.main import create_app

from conftest import BASE_DN, FakeCredentials, MemoryCache


@pytest.fixture
def api(directory):
    # built outside any event loop: the app's own loop owns the pool locks
    pool = ConnectionPool("ldap://dc1.corp.local", FakeCredentials(), session_factory=directory, cleanup_interval_s=0)
    svc = ADService(pool, MemoryCache(), base_dn=BASE_DN, domain="corp.local")
    with TestClient(create_app(service=svc)) as client:
        client.service = svc
        yield client


def test_health(api):
    assert api.get("/health").json() == {"status": "ok"}


def test_query_endpoint(api):
    r = api.post("/api/query", json={"type": "users", "orderBy": {"field": "displayName"}, "limit": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert body["cached"] is False
    assert [u["username"] for u in body["data"]] == ["alice", "bob"]
    assert body["metadata"]["baseDN"] == BASE_DN

    again = api.post("/api/query", json={"type": "users", "orderBy": {"field": "displayName"}, "limit": 2})
    assert again.json()["cached"] is True


def test_invalid_query_is_400(api, directory):
    r = api.post("/api/query", json={"type": "users", "scope": "subtree"})
    assert r.status_code == 400
    assert r.json()["code"] == "INVALID_QUERY"
    assert directory.binds == 0


def test_connection_failure_is_502(api, directory):
    directory.bind_error = DirectoryConnectionError("LDAP bind failed")
    r = api.post("/api/query", json={"type": "users"})
    assert r.status_code == 502
    assert r.json() == {"error": "LDAP bind failed", "code": "CONNECTION_FAILED"}


def test_missing_credentials_is_503(api, directory):
    api.service.pool.credentials = FakeCredentials(username="", password="")
    r = api.post("/api/query", json={"type": "users"})
    assert r.status_code == 503
    assert r.json()["code"] == "NO_CREDENTIALS"


def test_custom_report(api, directory):
    r = api.post(
        "/api/reports/custom",
        json={
            "query": {
                "filter": "(&(objectClass=user)(department={{dept}}))",
                "fields": [{"name": "username", "displayName": "Login"}, {"name": "email"}],
                "orderBy": {"field": "username"},
            },
            "parameters": {"dept": "IT"},
        },
    )
    assert r.status_code == 200
    assert directory.searches[0][1] == "(&(objectClass=user)(department=IT))"
    assert r.json()["data"][0] == {"Login": "alice", "email": "alice@corp.local"}


def test_reports(api, directory):
    for path in (
        "/api/reports/inactive-users?days=30",
        "/api/reports/disabled-users",
        "/api/reports/locked-users",
        "/api/reports/password-expiry",
        "/api/reports/never-expiring-passwords",
    ):
        r = api.get(path)
        assert r.status_code == 200, path
        assert set(r.json()) == {"data", "count"}

    assert api.get("/api/reports/inactive-users?days=0").status_code == 422


def test_user_search(api):
    assert api.get("/api/users/search?q=a").status_code == 400
    r = api.get("/api/users/search", params={"q": "ali", "by": "displayName"})
    assert r.status_code == 200
    assert r.json()["count"] == 5
    assert api.get("/api/users/search", params={"q": "ali", "by": "phone"}).status_code == 400


def test_user_details(api, directory):
    assert api.get("/api/users/bob").json()["username"] == "bob"
    directory.entries = []
    assert api.get("/api/users/ghost").status_code == 404


def test_ad_health_and_auth(api, directory):
    r = api.get("/api/health/ad")
    assert r.json()["connected"] is True

    assert api.post("/api/auth/ad", json={"username": "jdoe", "password": "pw"}).json() == {"authenticated": True}
    directory.bind_error = DataSourceError("nope")
    assert api.post("/api/auth/ad", json={"username": "jdoe", "password": "pw"}).json() == {"authenticated": False}


def test_cache_delete_and_metrics(api):
    api.post("/api/query", json={"type": "users"})
    assert api.delete("/api/cache").json() == {"deleted": 1}

    m = api.get("/api/metrics").json()
    assert m["queries"]["queries"] == 1
    assert m["connectionPoolSize"] == 1


def test_user_header_selects_user_connection(api):
    api.get("/api/reports/disabled-users", headers={"X-User-Id": "7"})
    keys = [c["key"] for c in api.service.get_metrics()["pool"]["connections"]]
    assert any(k.endswith(":user-7") for k in keys)

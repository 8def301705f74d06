import pytest_asyncio
from fakeredis import aioredis

from adreports.ad.models import CredentialContext, Credentials, OrderBy, Query
from adreports.cache import RedisQueryCache, build_cache_key


@pytest_asyncio.fixture
async def redis_cache():
    c = RedisQueryCache(client=aioredis.FakeRedis(decode_responses=True))
    yield c
    await c.close()


async def test_set_get_and_ttl(redis_cache):
    await redis_cache.set("ad:system:users:abc", '{"data": []}', 300)
    assert await redis_cache.get("ad:system:users:abc") == '{"data": []}'
    ttl = await redis_cache._client().ttl("ad:system:users:abc")
    assert 0 < ttl <= 300
    assert await redis_cache.get("ad:system:users:missing") is None


async def test_keys_matching_and_delete(redis_cache):
    for k in ("ad:system:users:1", "ad:system:groups:2", "ad:user:7:users:3", "other:users:4"):
        await redis_cache.set(k, "x", 60)

    keys = sorted(await redis_cache.keys_matching("ad:*:users:*"))
    assert keys == ["ad:system:users:1", "ad:user:7:users:3"]

    assert await redis_cache.delete(*keys) == 2
    assert await redis_cache.delete() == 0
    assert sorted(await redis_cache.keys_matching("*")) == ["ad:system:groups:2", "other:users:4"]


async def test_ping(redis_cache):
    assert await redis_cache.ping() is True


def test_cache_key_layout():
    q = Query(type="users", filter="(objectClass=user)")
    key = build_cache_key(q, CredentialContext(use_system_credentials=True))
    prefix, scope, qtype, digest = key.split(":")
    assert (prefix, scope, qtype) == ("ad", "system", "users")
    assert len(digest) == 64


def test_cache_key_is_deterministic_and_shape_sensitive():
    ctx = CredentialContext(user_id=3)
    a = Query(type="users", attributes=("mail",), order_by=OrderBy("mail"))
    b = Query(type="users", attributes=("mail",), order_by=OrderBy("mail"))
    assert build_cache_key(a, ctx) == build_cache_key(b, ctx)
    assert build_cache_key(a, ctx).startswith("ad:user:3:users:")

    assert build_cache_key(a, ctx) != build_cache_key(Query(type="users", attributes=("mail",), order_by=OrderBy("mail", "desc")), ctx)
    assert build_cache_key(a, ctx) != build_cache_key(Query(type="users", attributes=("mail",), order_by=OrderBy("mail"), limit=5), ctx)
    # use_cache does not change what is fetched
    assert build_cache_key(a, ctx) == build_cache_key(Query(type="users", attributes=("mail",), order_by=OrderBy("mail"), use_cache=False), ctx)


def test_explicit_credentials_scope_hides_username():
    ctx = CredentialContext(credentials=Credentials(username="jdoe", password="pw"))
    key = build_cache_key(Query(type="users"), ctx)
    assert key.startswith("ad:explicit:")
    assert "jdoe" not in key


def test_explicit_credentials_scope_depends_on_secret():
    q = Query(type="users")
    right = CredentialContext(credentials=Credentials(username="alice", password="right"))
    same = CredentialContext(credentials=Credentials(username="alice", password="right"))
    wrong = CredentialContext(credentials=Credentials(username="alice", password="WRONG"))

    assert build_cache_key(q, right) == build_cache_key(q, same)
    assert build_cache_key(q, right) != build_cache_key(q, wrong)
    assert "right" not in build_cache_key(q, right)
    # explicit credentials take precedence over the user id
    assert build_cache_key(q, CredentialContext(user_id=1, credentials=right.credentials)) == build_cache_key(q, right)

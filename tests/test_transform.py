import uuid
from datetime import datetime, timezone

from adreports.ad.models import CustomField, OrderBy
from adreports.ad.transform import (
    apply_limit,
    configure_collation,
    convert_entry_to_user,
    normalize_value,
    post_process,
    project_custom_fields,
    raw_attribute_bag,
    sort_results,
)
from adreports.ad.utils import dt_to_filetime


def test_sort_is_case_insensitive_and_missing_values_first():
    records = [{"displayName": "bob"}, {"displayName": "Alice"}, {"displayName": None}, {"other": 1}]
    out = sort_results(records, OrderBy("displayName"))
    assert out == [{"displayName": None}, {"other": 1}, {"displayName": "Alice"}, {"displayName": "bob"}]


def test_sort_descending_is_stable():
    records = [{"n": "a", "i": 1}, {"n": "b", "i": 2}, {"n": "a", "i": 3}]
    out = sort_results(records, OrderBy("n", "desc"))
    assert [r["i"] for r in out] == [2, 1, 3]


def test_sort_numbers():
    records = [{"c": 10}, {"c": 2}, {"c": 33}]
    assert [r["c"] for r in sort_results(records, OrderBy("c"))] == [2, 10, 33]


def test_sort_raw_bag_through_alias():
    records = [{"sn": "Zed"}, {"sn": "adams"}, {"sn": "Miller"}]
    out = sort_results(records, OrderBy("lastName"))
    assert [r["sn"] for r in out] == ["adams", "Miller", "Zed"]


def test_no_order_keeps_input_order():
    records = [{"a": 2}, {"a": 1}]
    assert sort_results(records, None) == records


def test_limit_truncates_after_sort():
    records = [{"displayName": n} for n in ["e", "d", "c", "b", "a"]]
    out = post_process(records, OrderBy("displayName"), 3)
    assert [r["displayName"] for r in out] == ["a", "b", "c"]
    assert len(apply_limit(records, 3)) == 3
    assert len(apply_limit(records, None)) == 5
    assert len(apply_limit(records, 0)) == 5


def test_projection_uses_aliases_and_display_names():
    raw = [
        {"sAMAccountName": "alice", "mail": "alice@corp.local", "memberOf": ["CN=HR,DC=corp"], "dn": "CN=Alice"},
        {"sAMAccountName": "bob", "proxyAddresses": ["smtp:a", "smtp:b"], "dn": "CN=Bob"},
    ]
    fields = [
        CustomField("username"),
        CustomField("email", "E-mail"),
        CustomField("groups"),
        CustomField("proxyAddresses"),
    ]
    out = project_custom_fields(raw, fields)
    assert out[0] == {"username": "alice", "E-mail": "alice@corp.local", "groups": "CN=HR,DC=corp", "proxyAddresses": None}
    assert out[1] == {"username": "bob", "E-mail": None, "groups": None, "proxyAddresses": ["smtp:a", "smtp:b"]}


def test_projection_without_fields_returns_records():
    raw = [{"mail": "x"}]
    assert project_custom_fields(raw, []) == raw


def test_convert_entry_to_user():
    guid = uuid.UUID("12345678-1234-5678-1234-567812345678")
    pwd_set = datetime(2024, 5, 1, 8, 30, tzinfo=timezone.utc)
    entry = {
        "dn": "CN=Alice Adams,OU=Staff,DC=corp,DC=local",
        "attributes": {
            "sAMAccountName": "alice",
            "displayName": "Alice Adams",
            "givenName": "Alice",
            "sn": "Adams",
            "mail": "alice@corp.local",
            "manager": "CN=Bob Boss,OU=Staff,DC=corp,DC=local",
            "memberOf": ["CN=Domain Users,CN=Users,DC=corp,DC=local", "CN=IT,OU=Groups,DC=corp,DC=local"],
            "userAccountControl": 514,
            "lockoutTime": 0,
            "pwdLastSet": dt_to_filetime(pwd_set),
            "lastLogonTimestamp": 0,
            "accountExpires": 0x7FFFFFFFFFFFFFFF,
            "whenCreated": "20240101120000.0Z",
            "objectGUID": guid.bytes_le,
        },
    }
    u = convert_entry_to_user(entry)
    assert u["username"] == "alice"
    assert u["displayName"] == "Alice Adams"
    assert u["firstName"] == "Alice"
    assert u["lastName"] == "Adams"
    assert u["manager"] == "Bob Boss"
    assert u["groups"] == ["Domain Users", "IT"]
    assert u["enabled"] is False
    assert u["locked"] is False
    assert u["passwordNeverExpires"] is False
    assert u["passwordLastSet"] == "2024-05-01T08:30:00+00:00"
    assert u["lastLogon"] is None
    assert u["accountExpires"] is None
    assert u["whenCreated"] == "2024-01-01T12:00:00+00:00"
    assert u["distinguishedName"] == entry["dn"]
    assert u["organizationalUnit"] == "Staff"
    assert u["objectGUID"] == str(guid)


def test_convert_entry_accepts_ldap3_formatted_values():
    # with the schema loaded ldap3 returns datetimes and single values
    entry = {
        "dn": "CN=Bob,DC=corp,DC=local",
        "attributes": {
            "sAMAccountName": "bob",
            "userAccountControl": 66048,
            "lockoutTime": datetime(2025, 3, 1, tzinfo=timezone.utc),
            "pwdLastSet": datetime(1601, 1, 1, tzinfo=timezone.utc),
            "whenChanged": datetime(2025, 3, 2, 10, 0, tzinfo=timezone.utc),
            "objectGUID": "{12345678-1234-5678-1234-567812345678}",
        },
    }
    u = convert_entry_to_user(entry)
    assert u["displayName"] == "bob"
    assert u["passwordNeverExpires"] is True
    assert u["enabled"] is True
    assert u["locked"] is True
    assert u["passwordLastSet"] is None
    assert u["whenChanged"] == "2025-03-02T10:00:00+00:00"
    assert u["objectGUID"] == "12345678-1234-5678-1234-567812345678"
    assert u["organizationalUnit"] is None


def test_raw_attribute_bag_is_json_native():
    entry = {
        "dn": "CN=X,DC=corp",
        "attributes": {
            "cn": "X",
            "objectSid": b"\x01\x05\x00\x00\xff",
            "whenCreated": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "description": [],
            "info": "  ",
        },
    }
    bag = raw_attribute_bag(entry)
    assert bag["dn"] == "CN=X,DC=corp"
    assert bag["cn"] == "X"
    assert bag["whenCreated"] == "2024-01-01T00:00:00+00:00"
    assert isinstance(bag["objectSid"], str)
    assert "description" not in bag
    assert "info" not in bag


def test_normalize_value():
    assert normalize_value("cn", ["a", " ", None, "b"]) == ["a", "b"]
    assert normalize_value("cn", b"plain") == "plain"
    assert normalize_value("pwdLastSet", "0") is None
    assert normalize_value("logonCount", 7) == 7


def test_sort_places_accented_names_with_their_base_letter():
    records = [{"displayName": n} for n in ["Zoe", "Émile", "Adam", "emma"]]
    out = sort_results(records, OrderBy("displayName"))
    assert [r["displayName"] for r in out] == ["Adam", "Émile", "emma", "Zoe"]


def test_sort_cyrillic_yo_with_ye():
    records = [{"sn": n} for n in ["Жуков", "Ёлкин", "Егоров"]]
    out = sort_results(records, OrderBy("sn"))
    assert [r["sn"] for r in out] == ["Егоров", "Ёлкин", "Жуков"]


def test_configure_collation_falls_back_to_c(caplog):
    assert configure_collation("xx_NOWHERE.UTF-8") == "C"
    assert "not available" in caplog.text
    assert configure_collation("C") == "C"

"""Search results -> records for the reporting UI, plus sort / limit / projection."""
from __future__ import annotations

import base64
import locale
import logging
import unicodedata
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence

from .aliases import resolve_directory_to_alias, resolve_field_alias
from .models import CustomField, OrderBy
from .utils import (
    dn_first_component_value,
    dn_organizational_unit,
    filetime_to_dt_str,
    generalized_time_to_dt_str,
    is_account_disabled,
    is_account_locked,
    is_password_never_expires,
)


logger = logging.getLogger(__name__)

FILETIME_FIELDS = {
    "lastlogontimestamp",
    "lastlogon",
    "lastlogoff",
    "pwdlastset",
    "accountexpires",
    "badpasswordtime",
    "lockouttime",
}

GENERALIZED_TIME_FIELDS = {"whencreated", "whenchanged"}

_GUID_FIELDS = {"objectguid"}


def _first(v: Any) -> Any:
    if isinstance(v, (list, tuple)):
        return v[0] if v else None
    return v


def _guid_str(v: Any) -> Optional[str]:
    if v is None:
        return None
    if isinstance(v, (bytes, bytearray)) and len(v) == 16:
        return str(uuid.UUID(bytes_le=bytes(v)))
    if isinstance(v, uuid.UUID):
        return str(v)
    s = str(v).strip().strip("{}")
    return s or None


def _scalar(name: str, v: Any) -> Any:
    if v is None:
        return None
    key = name.lower()

    if key in _GUID_FIELDS:
        return _guid_str(v)
    if key in FILETIME_FIELDS and not isinstance(v, bool):
        if isinstance(v, (int, str, datetime)):
            return filetime_to_dt_str(v)
    if key in GENERALIZED_TIME_FIELDS:
        return generalized_time_to_dt_str(v) or (str(v).strip() or None)

    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).isoformat(timespec="seconds")
    if isinstance(v, (bytes, bytearray)):
        try:
            return bytes(v).decode("utf-8")
        except UnicodeDecodeError:
            # SIDs, photos and other binary blobs
            return base64.b64encode(bytes(v)).decode("ascii")
    if isinstance(v, uuid.UUID):
        return str(v)
    if isinstance(v, str):
        return v.strip() or None
    if isinstance(v, (bool, int, float)):
        return v
    return str(v)


def normalize_value(name: str, value: Any) -> Any:
    """Attribute value -> JSON-native value (None when empty)."""
    if isinstance(value, (list, tuple)):
        out = [x for x in (_scalar(name, it) for it in value) if x is not None]
        return out or None
    return _scalar(name, value)


def normalize_attributes(attributes: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in (attributes or {}).items():
        nv = normalize_value(k, v)
        if nv is None:
            continue
        out[k] = nv
    return out


def raw_attribute_bag(entry: Mapping[str, Any]) -> dict[str, Any]:
    """Custom queries get every returned attribute as is, plus `dn`."""
    bag = normalize_attributes(entry.get("attributes") or {})
    bag["dn"] = entry.get("dn") or bag.get("distinguishedName") or ""
    return bag


def convert_entry_to_user(entry: Mapping[str, Any]) -> dict[str, Any]:
    a = entry.get("attributes") or {}

    def s(name: str) -> Optional[str]:
        v = _first(a.get(name))
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    dn = s("distinguishedName") or entry.get("dn") or ""
    uac = _first(a.get("userAccountControl"))
    lockout = _first(a.get("lockoutTime"))
    manager = s("manager")

    groups_raw = a.get("memberOf") or []
    if not isinstance(groups_raw, (list, tuple)):
        groups_raw = [groups_raw]

    last_logon = _first(a.get("lastLogonTimestamp"))
    if last_logon is None:
        last_logon = _first(a.get("lastLogon"))

    return {
        "username": s("sAMAccountName") or "",
        "displayName": s("displayName") or s("cn") or s("sAMAccountName") or "",
        "email": s("mail"),
        "firstName": s("givenName"),
        "lastName": s("sn"),
        "department": s("department"),
        "title": s("title"),
        "company": s("company"),
        "manager": dn_first_component_value(manager) if manager else None,
        "phone": s("telephoneNumber"),
        "mobile": s("mobile"),
        "office": s("physicalDeliveryOfficeName"),
        "lastLogon": filetime_to_dt_str(last_logon) if last_logon is not None else None,
        "passwordLastSet": filetime_to_dt_str(_first(a.get("pwdLastSet"))),
        "accountExpires": filetime_to_dt_str(_first(a.get("accountExpires"))),
        "whenCreated": generalized_time_to_dt_str(_first(a.get("whenCreated"))),
        "whenChanged": generalized_time_to_dt_str(_first(a.get("whenChanged"))),
        "distinguishedName": dn,
        "organizationalUnit": dn_organizational_unit(dn) or None,
        "enabled": not is_account_disabled(uac),
        "locked": is_account_locked(lockout) if lockout is not None else False,
        "passwordNeverExpires": is_password_never_expires(uac),
        "groups": [dn_first_component_value(str(g)) for g in groups_raw if g],
        "objectGUID": _guid_str(_first(a.get("objectGUID"))),
    }


def _lookup(record: Mapping[str, Any], name: str) -> Any:
    if name in record:
        return record[name]
    attr = resolve_field_alias(name)
    if attr in record:
        return record[attr]
    alias = resolve_directory_to_alias(attr)
    if alias in record:
        return record[alias]
    low = name.lower()
    for k, v in record.items():
        if k.lower() == low or k.lower() == attr.lower():
            return v
    return None


def _strip_accents(text: str) -> str:
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in nfkd if not unicodedata.combining(ch))


def configure_collation(name: str = "") -> str:
    """Set LC_COLLATE for string sorting ("" = from the environment).

    Falls back to the C locale when the requested one is not installed.
    Returns the locale in effect.
    """
    try:
        return locale.setlocale(locale.LC_COLLATE, name)
    except locale.Error as e:
        logger.warning("Collation locale %r is not available (%s), using C", name, e)
        return locale.setlocale(locale.LC_COLLATE, "C")


def _sort_key(value: Any) -> tuple:
    value = _first(value)
    if value is None:
        value = ""
    if isinstance(value, bool):
        return (0, int(value))
    if isinstance(value, (int, float)):
        return (0, value)
    text = str(value).replace("\x00", "").casefold()
    # accents are secondary: "émile" sorts with "emile", before "zoe"
    return (1, locale.strxfrm(_strip_accents(text)), locale.strxfrm(text))


def sort_results(records: Sequence[dict[str, Any]], order_by: Optional[OrderBy]) -> list[dict[str, Any]]:
    """Stable sort on one field. Missing values sort as the empty string."""
    if not order_by or not order_by.field:
        return list(records)
    return sorted(
        records,
        key=lambda r: _sort_key(_lookup(r, order_by.field)),
        reverse=order_by.direction == "desc",
    )


def apply_limit(records: Sequence[dict[str, Any]], limit: Optional[int]) -> list[dict[str, Any]]:
    if limit is None or limit <= 0:
        return list(records)
    return list(records[:limit])


def post_process(
    records: Sequence[dict[str, Any]],
    order_by: Optional[OrderBy] = None,
    limit: Optional[int] = None,
) -> list[dict[str, Any]]:
    return apply_limit(sort_results(records, order_by), limit)


def _unwrap(v: Any) -> Any:
    if isinstance(v, list):
        if not v:
            return None
        if len(v) == 1:
            return v[0]
    return v


def project_custom_fields(records: Iterable[Mapping[str, Any]], fields: Sequence[CustomField]) -> list[dict[str, Any]]:
    """Keep only the requested fields, keyed by their display names."""
    if not fields:
        return [dict(r) for r in records]

    out: list[dict[str, Any]] = []
    for raw in records:
        # first attribute to claim an alias wins
        by_alias: dict[str, Any] = {}
        for k, v in raw.items():
            by_alias.setdefault(resolve_directory_to_alias(k), v)

        row: dict[str, Any] = {}
        for f in fields:
            if f.name in by_alias:
                v = by_alias[f.name]
            else:
                v = _lookup(raw, f.name)
            row[f.output_name] = _unwrap(v)
        out.append(row)
    return out

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any


USER_FILTER = "(&(objectClass=user)(objectCategory=person))"

LDAP_FILTERS = {
    "ALL_USERS": USER_FILTER,
    "USER": USER_FILTER,
    "DISABLED_USERS": "(&(objectClass=user)(userAccountControl:1.2.840.113556.1.4.803:=2))",
    "LOCKED_USERS": "(&(objectClass=user)(lockoutTime>=1))",
    "COMPUTERS": "(objectClass=computer)",
    "GROUPS": "(objectClass=group)",
}

USER_ATTRIBUTES = [
    "sAMAccountName", "userPrincipalName", "displayName", "givenName", "sn", "mail",
    "department", "title", "company", "manager", "memberOf", "telephoneNumber", "mobile",
    "description", "userAccountControl", "lastLogonTimestamp", "pwdLastSet", "accountExpires",
    "lockoutTime", "whenCreated", "whenChanged", "objectGUID", "employeeID",
    "physicalDeliveryOfficeName", "distinguishedName",
]

# userAccountControl flags
UAC_ACCOUNT_DISABLED = 0x0002
UAC_LOCKOUT = 0x0010
UAC_NORMAL_ACCOUNT = 0x0200
UAC_DONT_EXPIRE_PASSWORD = 0x10000
UAC_PASSWORD_EXPIRED = 0x800000

MATCHING_RULE_BIT_AND = "1.2.840.113556.1.4.803"

_FILETIME_EPOCH_DIFF = 11_644_473_600
# accountExpires uses this value for "never"
_FILETIME_NEVER = 0x7FFFFFFFFFFFFFFF

_DN_START_RE = re.compile(r"^[A-Za-z]+\s*=")


def escape_ldap_filter_value(value: str) -> str:
    """RFC 4515 escaping for LDAP filter values."""
    out: list[str] = []
    for ch in value:
        if ch == "\\":
            out.append("\\5c")
        elif ch == "*":
            out.append("\\2a")
        elif ch == "(":
            out.append("\\28")
        elif ch == ")":
            out.append("\\29")
        elif ch == "\x00":
            out.append("\\00")
        else:
            out.append(ch)
    return "".join(out)


def looks_like_dn(value: str) -> bool:
    """Cheap syntactic check: DN must start with `attr=` (DC=, OU=, CN=...)."""
    return bool(_DN_START_RE.match(value or ""))


def dt_to_filetime(dt: datetime) -> int:
    """Convert datetime to Windows FILETIME (100ns since 1601-01-01 UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    seconds = dt.timestamp() + _FILETIME_EPOCH_DIFF
    return int(seconds * 10_000_000)


def days_to_filetime(days: int, now: datetime | None = None) -> int:
    """FILETIME of the moment `days` days before now."""
    now = now or datetime.now(timezone.utc)
    return dt_to_filetime(now - timedelta(days=int(days)))


def filetime_to_dt(v: Any) -> datetime | None:
    """Convert Windows FILETIME to an aware UTC datetime.

    ldap3 already formats well-known AD timestamps as datetimes when the
    schema is loaded, so datetimes are accepted as is.
    """
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        # 1601-01-01 is how ldap3 renders "never set"
        if v.year <= 1601:
            return None
        return v
    try:
        n = int(v)
    except Exception:
        return None
    if n <= 0 or n >= _FILETIME_NEVER:
        return None
    seconds = (n / 10_000_000) - _FILETIME_EPOCH_DIFF
    if seconds <= 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def filetime_to_dt_str(v: Any) -> str | None:
    """Convert Windows FILETIME (100ns since 1601-01-01) to ISO datetime string (UTC)."""
    dt = filetime_to_dt(v)
    if dt is None:
        return None
    return dt.isoformat(timespec="seconds")


def generalized_time_to_dt_str(v: Any) -> str | None:
    """AD GeneralizedTime (20260126042000.0Z) -> ISO string (UTC)."""
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc).isoformat(timespec="seconds")
    s = str(v or "").strip()
    m = re.match(r"^(\d{14})(?:\.\d+)?Z?$", s)
    if not m:
        return None
    try:
        dt = datetime.strptime(m.group(1), "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return dt.isoformat(timespec="seconds")


def _as_int(v: Any) -> int:
    if isinstance(v, list):
        v = v[0] if v else 0
    try:
        return int(v)
    except Exception:
        return 0


def is_account_disabled(uac: Any) -> bool:
    return bool(_as_int(uac) & UAC_ACCOUNT_DISABLED)


def is_password_never_expires(uac: Any) -> bool:
    return bool(_as_int(uac) & UAC_DONT_EXPIRE_PASSWORD)


def is_account_locked(lockout_time: Any) -> bool:
    if isinstance(lockout_time, datetime):
        return filetime_to_dt(lockout_time) is not None
    return _as_int(lockout_time) > 0


def dn_first_component_value(dn: str) -> str:
    """Return first RDN value from a DN (e.g. CN=USB-Deny,OU=... -> USB-Deny)."""
    s = (dn or "").strip()
    if not s:
        return ""

    # Extract first RDN (handle escaped commas)
    first: list[str] = []
    esc = False
    for ch in s:
        if esc:
            first.append(ch)
            esc = False
            continue
        if ch == "\\":
            esc = True
            continue
        if ch == ",":
            break
        first.append(ch)
    rdn = "".join(first).strip()

    if "=" in rdn:
        _, val = rdn.split("=", 1)
        val = val.strip()
    else:
        val = rdn
    return val.strip()


def dn_organizational_unit(dn: str) -> str:
    """First OU= component of a DN, or empty string."""
    m = re.search(r"OU=([^,]+)", dn or "", flags=re.IGNORECASE)
    return m.group(1) if m else ""


def mask_dn(dn: str | None) -> str | None:
    """Mask a bind identity for logs, keeping the last 10 characters."""
    if not dn:
        return None
    return "***" + dn[-10:]

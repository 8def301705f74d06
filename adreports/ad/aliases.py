"""Field aliases: UI field names <-> AD attribute names.

The reporting UI lets users type friendly names ("email", "lastName",
"dept") in filters and column lists. They are mapped onto LDAP attributes
before a search and mapped back when results are returned.

Lookups are case-insensitive and total: unknown names come back unchanged.
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldAlias:
    attribute: str
    aliases: frozenset[str]


# attribute -> aliases. The first alias listed is the fallback output name
# for attributes without an entry in _PREFERRED.
_ALIAS_GROUPS: dict[str, tuple[str, ...]] = {
    "givenName": ("firstName", "fname", "given", "first"),
    "sn": ("lastName", "surname", "lname", "familyName", "last"),
    "sAMAccountName": ("username", "samaccountname", "accountName", "loginName", "login", "samaccount", "sam"),
    "displayName": ("fullName", "name", "displayname"),
    "cn": ("commonName",),
    "userPrincipalName": ("upn", "userprincipal", "principalName"),
    "mail": ("email", "emailAddress", "mailAddress", "primaryEmail"),
    "telephoneNumber": ("phone", "phoneNumber", "telephone", "officePhone", "workPhone", "businessPhone"),
    "mobile": ("mobilePhone", "cellPhone", "cell", "mobileNumber"),
    "facsimileTelephoneNumber": ("fax", "faxNumber", "facsimile"),
    "homePhone": ("homephone", "home", "personalPhone"),
    "title": ("jobTitle", "position", "role"),
    "company": ("org", "organization", "companyName", "employer"),
    "department": ("department", "dept", "departmentName", "deptName", "division"),
    "manager": ("manager", "managerDN", "supervisor", "reportsTo"),
    "directReports": ("directReports", "reports", "subordinates"),
    "physicalDeliveryOfficeName": ("office", "officeLocation", "officeName", "location", "workLocation"),
    "streetAddress": ("street", "address"),
    "l": ("city", "locality", "town"),
    "st": ("state", "province", "stateOrProvince"),
    "postalCode": ("zip", "zipCode", "postal", "postcode"),
    "co": ("country", "countryName"),
    "c": ("countryCode",),
    "employeeID": ("employeeId", "empId", "staffId"),
    "employeeNumber": ("personnelNumber", "employeeNum", "staffNumber"),
    "employeeType": ("employeeType", "empType", "userType", "accountType"),
    "description": ("description", "desc", "comment", "groupDescription"),
    "info": ("notes", "additionalInfo"),
    "wWWHomePage": ("homepage", "webpage", "website", "url"),
    "distinguishedName": ("dn",),
    "whenCreated": ("created", "createdDate", "createDate", "creationDate"),
    "whenChanged": ("modified", "changed", "modifiedDate", "lastModified", "updateDate"),
    "lastLogonTimestamp": ("lastLogon", "lastLogin", "lastLogonDate", "lastActive"),
    "pwdLastSet": ("passwordLastChanged", "passwordLastSet", "passwordChanged", "passwordAge"),
    "accountExpires": ("accountExpiry", "expirationDate", "expiryDate"),
    "userAccountControl": ("accountStatus", "accountDisabled", "accountEnabled", "disabled", "enabled"),
    "lockoutTime": ("accountLocked", "isLocked", "locked", "lockedOut"),
    "badPwdCount": ("badPasswordCount", "failedLogins", "failedAttempts"),
    "badPasswordTime": ("lastBadPassword", "lastFailedLogin"),
    "logonCount": ("logonCount", "loginCount", "successfulLogons"),
    "memberOf": ("groups", "memberOfGroups", "groupMembership", "groupMemberships", "securityGroups"),
    "primaryGroupID": ("primaryGroup", "primaryGroupId"),
    "adminCount": ("adminCount", "isAdmin", "privileged"),
    "objectGUID": ("guid", "objectGuid", "uniqueId"),
    "objectSid": ("sid", "objectSid", "securityId", "securityIdentifier"),
    "uSNCreated": ("usnCreated", "createdUSN"),
    "uSNChanged": ("usnChanged", "changedUSN", "updateSequenceNumber"),
    "name": ("computerName", "groupName"),
    "dNSHostName": ("hostname", "dnsHostname", "fqdn"),
    "operatingSystem": ("os", "operatingSystem"),
    "operatingSystemVersion": ("osVersion", "operatingSystemVersion"),
    "operatingSystemServicePack": ("osServicePack", "servicePack"),
    "member": ("members", "groupMembers", "memberList"),
    "managedBy": ("managedBy", "groupManager", "owner"),
    "groupType": ("groupType", "groupCategory", "groupScope"),
    "sAMAccountType": ("samAccountType",),
    "servicePrincipalName": ("spn", "servicePrincipalName"),
    "thumbnailPhoto": ("photo", "thumbnailPhoto"),
    "jpegPhoto": ("picture", "jpegPhoto"),
    "proxyAddresses": ("emailAddresses", "proxyAddress", "proxyAddresses"),
    "msDS-SupportedEncryptionTypes": ("msdsSupportedEncryptionTypes",),
    "msDS-UserPasswordExpiryTimeComputed": ("msdsUserPasswordExpiryTimeComputed", "passwordExpires"),
    "msDS-UserAccountControlComputed": ("msdsUserAccountControlComputed",),
    "msExchHideFromAddressLists": ("hideFromAddressLists", "exchangeHideFromAddressLists"),
}

# extensionAttribute1..15, customAttribute1..5
for _n in range(1, 16):
    _ALIAS_GROUPS[f"extensionAttribute{_n}"] = (f"extensionAttribute{_n}",) + (
        (f"customAttribute{_n}",) if _n <= 5 else ()
    )

# Preferred output names when mapping attributes back to aliases.
_PREFERRED: dict[str, str] = {
    "givenName": "firstName",
    "sn": "lastName",
    "sAMAccountName": "username",
    "mail": "email",
    "telephoneNumber": "phone",
    "mobile": "mobilePhone",
    "title": "jobTitle",
    "department": "department",
    "company": "company",
    "physicalDeliveryOfficeName": "office",
    "streetAddress": "street",
    "l": "city",
    "st": "state",
    "postalCode": "zip",
    "co": "country",
    "employeeID": "employeeId",
    "whenCreated": "created",
    "whenChanged": "modified",
    "lastLogonTimestamp": "lastLogon",
    "pwdLastSet": "passwordLastChanged",
    "lockoutTime": "accountLocked",
    "memberOf": "groups",
    "objectGUID": "guid",
    "objectSid": "sid",
    "dNSHostName": "hostname",
    "operatingSystem": "os",
    "operatingSystemVersion": "osVersion",
    "servicePrincipalName": "spn",
    "thumbnailPhoto": "photo",
    "jpegPhoto": "picture",
    "proxyAddresses": "emailAddresses",
}

FIELD_ALIASES: tuple[FieldAlias, ...] = tuple(
    FieldAlias(attribute=attr, aliases=frozenset(names)) for attr, names in _ALIAS_GROUPS.items()
)


def _build_forward() -> dict[str, str]:
    m: dict[str, str] = {}
    for attr, names in _ALIAS_GROUPS.items():
        for n in names:
            # first registration wins ("name" belongs to displayName, not to computers)
            m.setdefault(n.lower(), attr)
    for attr in _ALIAS_GROUPS:
        m.setdefault(attr.lower(), attr)
    return m


def _build_reverse() -> dict[str, str]:
    m: dict[str, str] = {}
    for attr, names in _ALIAS_GROUPS.items():
        m[attr.lower()] = _PREFERRED.get(attr) or names[0]
    return m


_ALIAS_TO_ATTR = _build_forward()
_ATTR_TO_ALIAS = _build_reverse()


def resolve_field_alias(name: str) -> str:
    """UI field name -> LDAP attribute (identity for unknown names)."""
    if not name:
        return name
    return _ALIAS_TO_ATTR.get(name.lower(), name)


def resolve_directory_to_alias(attribute: str) -> str:
    """LDAP attribute -> preferred output name (identity for unknown attributes)."""
    if not attribute:
        return attribute
    return _ATTR_TO_ALIAS.get(attribute.lower(), attribute)


def aliases_for(attribute: str) -> frozenset[str]:
    names = _ALIAS_GROUPS.get(attribute) or _ALIAS_GROUPS.get(resolve_field_alias(attribute), ())
    return frozenset(names)

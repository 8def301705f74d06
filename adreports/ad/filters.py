"""LDAP filter construction.

Filters are built as a small tree of nodes and rendered to the RFC 4515
string only at the boundary. Values are escaped once, when a leaf renders.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .aliases import resolve_field_alias
from .errors import QueryValidationError
from .models import FilterCondition
from .utils import MATCHING_RULE_BIT_AND, days_to_filetime, escape_ldap_filter_value


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return escape_ldap_filter_value(str(value))


class Filter:
    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Raw(Filter):
    """Pre-rendered filter text (constants, templates)."""

    text: str

    def render(self) -> str:
        t = self.text.strip()
        if t.startswith("(") and t.endswith(")"):
            return t
        return f"({t})"


@dataclass(frozen=True)
class Equals(Filter):
    attribute: str
    value: Any

    def render(self) -> str:
        return f"({self.attribute}={_fmt(self.value)})"


@dataclass(frozen=True)
class Substring(Filter):
    attribute: str
    value: Any
    kind: str = "contains"  # contains | starts | ends

    def render(self) -> str:
        v = _fmt(self.value)
        if self.kind == "starts":
            return f"({self.attribute}={v}*)"
        if self.kind == "ends":
            return f"({self.attribute}=*{v})"
        return f"({self.attribute}=*{v}*)"


@dataclass(frozen=True)
class Present(Filter):
    attribute: str

    def render(self) -> str:
        return f"({self.attribute}=*)"


@dataclass(frozen=True)
class GreaterOrEqual(Filter):
    attribute: str
    value: Any

    def render(self) -> str:
        return f"({self.attribute}>={_fmt(self.value)})"


@dataclass(frozen=True)
class LessOrEqual(Filter):
    attribute: str
    value: Any

    def render(self) -> str:
        return f"({self.attribute}<={_fmt(self.value)})"


@dataclass(frozen=True)
class BitAnd(Filter):
    """AD bitwise AND extensible match (e.g. userAccountControl flags)."""

    attribute: str
    value: int

    def render(self) -> str:
        return f"({self.attribute}:{MATCHING_RULE_BIT_AND}:={int(self.value)})"


@dataclass(frozen=True)
class Not(Filter):
    child: Filter

    def render(self) -> str:
        return f"(!{self.child.render()})"


@dataclass(frozen=True)
class And(Filter):
    children: tuple[Filter, ...]

    def render(self) -> str:
        return "(&" + "".join(c.render() for c in self.children) + ")"


@dataclass(frozen=True)
class Or(Filter):
    children: tuple[Filter, ...]

    def render(self) -> str:
        return "(|" + "".join(c.render() for c in self.children) + ")"


_OPERATOR_SYNONYMS = {
    "eq": "equals",
    "notequals": "not_equals",
    "ne": "not_equals",
    "notcontains": "not_contains",
    "startswith": "starts_with",
    "endswith": "ends_with",
    "greaterthan": "greater_than",
    "gt": "greater_than",
    "lessthan": "less_than",
    "lt": "less_than",
    "greaterthanorequal": "greater_or_equal",
    "gte": "greater_or_equal",
    "lessthanorequal": "less_or_equal",
    "lte": "less_or_equal",
    "isempty": "is_empty",
    "isnotempty": "is_not_empty",
    "notexists": "not_exists",
    "olderthan": "older_than",
    "newerthan": "newer_than",
    "bitand": "bit_and",
    "notbitand": "not_bit_and",
}


OPERATORS = frozenset({
    "equals", "not_equals", "contains", "not_contains", "starts_with", "ends_with",
    "greater_than", "less_than", "greater_or_equal", "less_or_equal",
    "exists", "not_exists", "is_empty", "is_not_empty",
    "older_than", "newer_than", "bit_and", "not_bit_and",
})


def normalize_operator(op: str) -> str:
    s = (op or "").strip()
    key = s.replace("_", "").lower()
    if key in _OPERATOR_SYNONYMS:
        return _OPERATOR_SYNONYMS[key]
    return s.lower()


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _days(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Expected number of days, got {value!r}") from None


def _bits(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise QueryValidationError(f"Expected integer flag value, got {value!r}") from None


def condition_to_filter(cond: FilterCondition) -> Filter:
    attr = resolve_field_alias(cond.field)
    op = normalize_operator(cond.operator)
    value = cond.value
    if op not in OPERATORS:
        raise QueryValidationError(f"Unknown filter operator: {cond.operator}")

    if _is_empty(value):
        # "(attr=)" is not a valid assertion; empty comparisons become presence checks
        if op in ("equals", "is_empty", "not_exists"):
            return Not(Present(attr))
        return Present(attr)

    if op == "equals":
        return Equals(attr, value)
    if op == "not_equals":
        return Not(Equals(attr, value))
    if op == "contains":
        return Substring(attr, value, "contains")
    if op == "not_contains":
        return Not(Substring(attr, value, "contains"))
    if op == "starts_with":
        return Substring(attr, value, "starts")
    if op == "ends_with":
        return Substring(attr, value, "ends")
    if op == "greater_or_equal":
        return GreaterOrEqual(attr, value)
    if op == "less_or_equal":
        return LessOrEqual(attr, value)
    # LDAP only has >= and <=
    if op == "greater_than":
        return And((GreaterOrEqual(attr, value), Not(Equals(attr, value))))
    if op == "less_than":
        return And((LessOrEqual(attr, value), Not(Equals(attr, value))))
    if op == "exists":
        return Present(attr)
    if op == "not_exists":
        return Not(Present(attr))
    if op == "is_empty":
        return Not(Present(attr))
    if op == "is_not_empty":
        return Present(attr)
    if op == "older_than":
        return LessOrEqual(attr, days_to_filetime(_days(value)))
    if op == "newer_than":
        return GreaterOrEqual(attr, days_to_filetime(_days(value)))
    if op == "bit_and":
        return BitAnd(attr, _bits(value))
    return Not(BitAnd(attr, _bits(value)))


def build_filter_component(field: str, operator: str, value: Any) -> str:
    return condition_to_filter(FilterCondition(field=field, operator=operator, value=value)).render()


def _as_condition(c: FilterCondition | Mapping[str, Any]) -> FilterCondition:
    if isinstance(c, FilterCondition):
        return c
    return FilterCondition.from_dict(c)


def combine(base: str | Filter, conditions: Iterable[FilterCondition | Mapping[str, Any]]) -> Filter:
    """Base filter AND-ed with one node per valid condition, in input order."""
    base_node = base if isinstance(base, Filter) else Raw(base)
    valid = [c for c in (_as_condition(x) for x in (conditions or []) if x) if c.field and c.operator]
    if not valid:
        return base_node
    return And((base_node, *(condition_to_filter(c) for c in valid)))


def build_complex_filter(base: str, conditions: Iterable[FilterCondition | Mapping[str, Any]]) -> str:
    node = combine(base, conditions)
    if isinstance(node, Raw) and not isinstance(base, Filter):
        # no usable conditions: hand back the caller's string untouched
        return base
    return node.render()


_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")


def substitute_parameters(template: str, parameters: Mapping[str, Any] | None = None) -> str:
    """Fill `{{name}}` placeholders of a raw filter.

    Missing, None and empty values become the `*` wildcard, so the filter
    never ends up with an empty assertion or a dangling placeholder.
    """
    params = dict(parameters or {})

    def repl(m: re.Match) -> str:
        value = params.get(m.group(1))
        if _is_empty(value):
            return "*"
        return _fmt(value)

    return _PLACEHOLDER_RE.sub(repl, template)

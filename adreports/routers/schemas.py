"""Request bodies of the JSON API."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..ad.models import CustomField, CustomQuery, FilterCondition, OrderBy, Query


class OrderByIn(BaseModel):
    field: str
    direction: str = Field(default="asc")

    @field_validator("direction")
    @classmethod
    def _lower(cls, v: str) -> str:
        return (v or "asc").strip().lower()

    def to_model(self) -> OrderBy:
        return OrderBy(field=self.field, direction=self.direction)


class QueryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(min_length=1)
    filter: Optional[str] = None
    attributes: list[str] = Field(default_factory=list)
    base_dn: Optional[str] = Field(default=None, alias="baseDN")
    scope: str = Field(default="sub")
    size_limit: Optional[int] = Field(default=None, alias="sizeLimit")
    limit: Optional[int] = None
    order_by: Optional[OrderByIn] = Field(default=None, alias="orderBy")
    use_cache: bool = Field(default=True, alias="useCache")
    paged: bool = Field(default=True)

    def to_query(self) -> Query:
        return Query(
            type=self.type,
            filter=self.filter,
            attributes=tuple(self.attributes),
            base_dn=self.base_dn,
            scope=self.scope,
            size_limit=self.size_limit,
            limit=self.limit,
            order_by=self.order_by.to_model() if self.order_by else None,
            use_cache=self.use_cache,
            paged=self.paged,
        )


class ConditionIn(BaseModel):
    field: str = ""
    operator: str = ""
    value: Any = None


class FieldIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    display_name: Optional[str] = Field(default=None, alias="displayName")


class CustomQueryIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filter: Optional[str] = None
    filters: list[ConditionIn] = Field(default_factory=list)
    fields: list[FieldIn] = Field(default_factory=list)
    base_dn: Optional[str] = Field(default=None, alias="baseDN")
    scope: str = Field(default="sub")
    order_by: Optional[OrderByIn] = Field(default=None, alias="orderBy")
    limit: Optional[int] = None

    def to_model(self) -> CustomQuery:
        return CustomQuery(
            filter=self.filter,
            filters=tuple(FilterCondition(c.field, c.operator, c.value) for c in self.filters),
            fields=tuple(CustomField(f.name, f.display_name) for f in self.fields if f.name),
            base_dn=self.base_dn,
            scope=self.scope,
            order_by=self.order_by.to_model() if self.order_by else None,
            limit=self.limit,
        )


class CustomReportIn(BaseModel):
    query: CustomQueryIn
    parameters: dict[str, Any] = Field(default_factory=dict)


class AuthIn(BaseModel):
    username: str
    password: str

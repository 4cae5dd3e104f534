"""
Query-string to listing query translation.

``parse_listing_query`` turns the request's query parameters into a small typed
filter expression (``Equals``, ``Compare``, ``In``, ``And``) plus projection,
sort and pagination settings. The expression renders into each store's native
form: ``matches`` evaluates it against an in-memory record and ``to_sql``
builds a SQLAlchemy ``where`` clause against the listings table.

Query syntax::

    ?category=dairy&expiryDate[gte]=2024-01-01&status[in]=available,reserved
    &select=title,category&sort=-expiryDate,title&page=2&limit=20
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from sqlalchemy import and_

from foodshare.errors import ValidationFailedError
from foodshare.timeutils import parse_datetime
from foodshare.types import FoodCategory, ListingStatus

RESERVED_PARAMS = ("select", "sort", "page", "limit")
DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
DEFAULT_SORT = "-createdAt"

_KEY_PATTERN = re.compile(r"^(?P<field>[A-Za-z][A-Za-z0-9_.]*)(?:\[(?P<op>[A-Za-z]+)\])?$")

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


@dataclass(frozen=True)
class ListingField:
    """A filterable/sortable listing field."""

    name: str
    attr: str
    column: str
    coerce: Callable[[str], Any] = str

    def value_of(self, record: Any) -> Any:
        value = record
        for part in self.attr.split("."):
            if value is None:
                return None
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = getattr(value, part, None)
        return value

    def parse(self, raw: str) -> Any:
        try:
            return self.coerce(raw)
        except ValueError:
            raise ValidationFailedError(f"Invalid value '{raw}' for field '{self.name}'")


def _enum_coercer(enum_cls: type[Enum]) -> Callable[[str], Any]:
    def coerce(raw: str) -> Any:
        return enum_cls(raw)

    return coerce


LISTING_FIELDS: dict[str, ListingField] = {
    entry.name: entry
    for entry in (
        ListingField("title", "title", "title"),
        ListingField("description", "description", "description"),
        ListingField("category", "category", "category", _enum_coercer(FoodCategory)),
        ListingField("quantity", "quantity", "quantity"),
        ListingField("status", "status", "status", _enum_coercer(ListingStatus)),
        ListingField("donor", "donor", "donor_id"),
        ListingField("reservedBy", "reserved_by", "reserved_by"),
        ListingField("claimedBy", "claimed_by", "claimed_by"),
        ListingField("expiryDate", "expiry_date", "expiry_date", parse_datetime),
        ListingField("availableFrom", "available_from", "available_from", parse_datetime),
        ListingField("availableUntil", "available_until", "available_until", parse_datetime),
        ListingField("createdAt", "created_at", "created_at", parse_datetime),
        ListingField("pickupAddress.street", "pickup_address.street", "pickup_street"),
        ListingField("pickupAddress.city", "pickup_address.city", "pickup_city"),
        ListingField("pickupAddress.state", "pickup_address.state", "pickup_state"),
        ListingField("pickupAddress.zipCode", "pickup_address.zipCode", "pickup_zip_code"),
    )
}

SELECTABLE_FIELDS = (
    "title",
    "description",
    "donor",
    "category",
    "quantity",
    "expiryDate",
    "images",
    "pickupAddress",
    "availableFrom",
    "availableUntil",
    "status",
    "reservedBy",
    "claimedBy",
    "specialInstructions",
    "allergens",
    "createdAt",
)


def _sql_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


@dataclass(frozen=True)
class Equals:
    field: ListingField
    value: Any

    def matches(self, record: Any) -> bool:
        return self.field.value_of(record) == self.value

    def to_sql(self, model: Any):
        return getattr(model, self.field.column) == _sql_value(self.value)


@dataclass(frozen=True)
class Compare:
    field: ListingField
    op: str
    value: Any

    def matches(self, record: Any) -> bool:
        current = self.field.value_of(record)
        if current is None:
            return False
        return _COMPARATORS[self.op](current, self.value)

    def to_sql(self, model: Any):
        return _COMPARATORS[self.op](
            getattr(model, self.field.column), _sql_value(self.value)
        )


@dataclass(frozen=True)
class In:
    field: ListingField
    values: tuple

    def matches(self, record: Any) -> bool:
        return self.field.value_of(record) in self.values

    def to_sql(self, model: Any):
        return getattr(model, self.field.column).in_(
            [_sql_value(v) for v in self.values]
        )


@dataclass(frozen=True)
class And:
    terms: tuple = ()

    def matches(self, record: Any) -> bool:
        return all(term.matches(record) for term in self.terms)

    def to_sql(self, model: Any):
        if not self.terms:
            return None
        return and_(*(term.to_sql(model) for term in self.terms))


FilterExpr = Union[Equals, Compare, In, And]


@dataclass(frozen=True)
class SortKey:
    field: ListingField
    descending: bool = False


@dataclass
class ListingQuery:
    filter: And = field(default_factory=And)
    select: Optional[list[str]] = None
    sort: list[SortKey] = field(default_factory=list)
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def project(self, doc: dict) -> dict:
        if not self.select:
            return doc
        return {k: v for k, v in doc.items() if k == "_id" or k in self.select}


def _resolve_field(name: str) -> ListingField:
    entry = LISTING_FIELDS.get(name)
    if entry is None:
        raise ValidationFailedError(f"Unknown field '{name}'")
    return entry


def _split_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def _parse_positive_int(raw: Optional[str], default: int) -> int:
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    return value if value >= 1 else default


def parse_filter(params: Iterable[tuple[str, str]]) -> And:
    equals: dict[str, list[Any]] = {}
    memberships: dict[str, list[Any]] = {}
    terms: list[FilterExpr] = []

    for key, raw in params:
        if key in RESERVED_PARAMS:
            continue
        match = _KEY_PATTERN.match(key)
        if not match:
            raise ValidationFailedError(f"Invalid query parameter '{key}'")
        entry = _resolve_field(match.group("field"))
        op = match.group("op")
        if op is None:
            equals.setdefault(entry.name, []).append(entry.parse(raw))
        elif op == "in":
            memberships.setdefault(entry.name, []).extend(
                entry.parse(item) for item in _split_list(raw)
            )
        elif op in _COMPARATORS:
            terms.append(Compare(entry, op, entry.parse(raw)))
        else:
            raise ValidationFailedError(f"Unsupported operator '{op}' on '{entry.name}'")

    leading: list[FilterExpr] = []
    for name, values in equals.items():
        # A repeated key matches any of its values.
        if len(values) == 1:
            leading.append(Equals(LISTING_FIELDS[name], values[0]))
        else:
            leading.append(In(LISTING_FIELDS[name], tuple(values)))
    for name, values in memberships.items():
        terms.append(In(LISTING_FIELDS[name], tuple(values)))
    return And(tuple(leading + terms))


def parse_sort(raw: Optional[str]) -> list[SortKey]:
    keys = []
    for token in _split_list(raw or DEFAULT_SORT):
        descending = token.startswith("-")
        keys.append(SortKey(_resolve_field(token.lstrip("-")), descending))
    return keys


def parse_select(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    fields = _split_list(raw)
    unknown = [name for name in fields if name not in SELECTABLE_FIELDS and name != "_id"]
    if unknown:
        raise ValidationFailedError(f"Unknown field '{unknown[0]}' in select")
    return fields


def parse_listing_query(params: Sequence[tuple[str, str]]) -> ListingQuery:
    """Build a ``ListingQuery`` from raw query-string pairs."""
    single = {key: value for key, value in params if key in RESERVED_PARAMS}
    return ListingQuery(
        filter=parse_filter(params),
        select=parse_select(single.get("select")),
        sort=parse_sort(single.get("sort")),
        page=_parse_positive_int(single.get("page"), DEFAULT_PAGE),
        limit=_parse_positive_int(single.get("limit"), DEFAULT_LIMIT),
    )


def sort_records(records: list, keys: Sequence[SortKey]) -> list:
    """Multi-key sort for in-memory records; missing values order first."""
    ordered = list(records)
    for key in reversed(keys):
        ordered.sort(
            key=lambda r, entry=key.field: _sort_value(entry.value_of(r)),
            reverse=key.descending,
        )
    return ordered


def _sort_value(value: Any) -> tuple:
    if value is None:
        return (0, "")
    return (1, _sql_value(value))


def build_pagination(page: int, limit: int, total: int) -> dict:
    pagination: dict = {}
    if page * limit < total:
        pagination["next"] = {"page": page + 1, "limit": limit}
    if page > 1:
        pagination["prev"] = {"page": page - 1, "limit": limit}
    return pagination

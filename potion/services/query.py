"""
Filter and sort evaluation for database views.

Everything here is pure and synchronous: callers load rows and their detail-page
titles first, then ask for the visible, ordered list. Row values are dynamic, so
each one is resolved against its property definition into a TypedValue before
any comparison. When the stored value does not have the shape its property
declares, the value is classified by what it actually is (text as a last
resort) instead of raising.
"""
import math
from enum import Enum
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence

from ..schemas import TITLE_PROPERTY_ID, Filter, PropertyDefinition, Row, Sort
from ..utils import parse_timestamp

RELATIONAL_OPERATORS = {"gt", "gte", "lt", "lte"}


class ValueKind(str, Enum):
    EMPTY = "empty"
    CHECKBOX = "checkbox"
    NUMBER = "number"
    MULTI_SELECT = "multi_select"
    DATE = "date"
    TEXT = "text"


class TypedValue(NamedTuple):
    kind: ValueKind
    value: Any


def is_empty(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, list) and len(value) == 0)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not (
        isinstance(value, float) and math.isnan(value)
    )


def _shape_kind(value: Any) -> ValueKind:
    if is_empty(value):
        return ValueKind.EMPTY
    if isinstance(value, bool):
        return ValueKind.CHECKBOX
    if _is_number(value):
        return ValueKind.NUMBER
    if isinstance(value, (list, tuple)):
        return ValueKind.MULTI_SELECT
    return ValueKind.TEXT


_DECLARED_KINDS = {
    "checkbox": ValueKind.CHECKBOX,
    "number": ValueKind.NUMBER,
    "multiSelect": ValueKind.MULTI_SELECT,
    "date": ValueKind.DATE,
    "text": ValueKind.TEXT,
    "url": ValueKind.TEXT,
    "select": ValueKind.TEXT,
}


def resolve_value(prop_type: Optional[str], value: Any) -> TypedValue:
    """
    Tags a raw value with its kind. The declared property type wins when the
    value matches it; otherwise the runtime shape decides.
    """
    shape = _shape_kind(value)
    if shape is ValueKind.EMPTY:
        return TypedValue(ValueKind.EMPTY, value)
    declared = _DECLARED_KINDS.get(prop_type)
    if declared is ValueKind.DATE:
        if isinstance(value, str) and parse_timestamp(value) is not None:
            return TypedValue(ValueKind.DATE, value)
        return TypedValue(shape, value)
    if declared is ValueKind.TEXT and shape is ValueKind.TEXT:
        return TypedValue(ValueKind.TEXT, value)
    if declared is not None and declared is shape:
        return TypedValue(declared, value)
    return TypedValue(shape, value)


def coerce_filter_value(prop_type: Optional[str], value: Any) -> Any:
    """
    Filter values typed into a UI often arrive as strings. For number
    properties a numeric string becomes a number; anything else is left alone.
    """
    if prop_type == "number" and isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return value
        if math.isnan(number) or math.isinf(number):
            return value
        return int(number) if number.is_integer() else number
    return value


def _row_value(row: Row, property_id: str, titles: Mapping[str, str]) -> Any:
    if property_id == TITLE_PROPERTY_ID:
        return titles.get(row.id, "")
    return row.values.get(property_id)


def _property_type(property_id: str, properties: Mapping[str, PropertyDefinition]) -> Optional[str]:
    if property_id == TITLE_PROPERTY_ID:
        return "text"
    prop = properties.get(property_id)
    return prop.type if prop else None


def _compare_dates(operator: str, left: Any, right: Any) -> bool:
    left_date = parse_timestamp(left)
    right_date = parse_timestamp(right)
    if left_date is None or right_date is None:
        return False
    return _relational(operator, left_date, right_date)


def _relational(operator: str, left: Any, right: Any) -> bool:
    if operator == "gt":
        return left > right
    if operator == "gte":
        return left >= right
    if operator == "lt":
        return left < right
    return left <= right


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def matches_filter(value: Any, flt: Filter, prop_type: Optional[str] = None) -> bool:
    """
    Evaluates one filter against one value. Never raises for odd data: a value
    that cannot be compared the way the operator needs simply does not match.
    """
    operator = flt.operator
    if operator == "isEmpty":
        return is_empty(value)
    if operator == "isNotEmpty":
        return not is_empty(value)

    typed = resolve_value(prop_type, value)
    target = coerce_filter_value(prop_type, flt.value)

    if typed.kind is ValueKind.CHECKBOX or isinstance(target, bool):
        if operator == "equals":
            return type(value) is type(target) and value == target
        if operator == "notEquals":
            return not (type(value) is type(target) and value == target)
        return True

    if typed.kind is ValueKind.MULTI_SELECT:
        if operator == "contains":
            return target in typed.value
        if operator == "notContains":
            return target not in typed.value
        return True

    if typed.kind is ValueKind.NUMBER and _is_number(target):
        if operator == "equals":
            return typed.value == target
        if operator == "notEquals":
            return typed.value != target
        if operator in RELATIONAL_OPERATORS:
            return _relational(operator, typed.value, target)

    if operator in RELATIONAL_OPERATORS:
        return _compare_dates(operator, typed.value, target)

    left = _as_text(typed.value).lower()
    right = _as_text(target).lower()
    if operator == "equals":
        return left == right
    if operator == "notEquals":
        return left != right
    if operator == "contains":
        return right in left
    if operator == "notContains":
        return right not in left
    return True


def filter_rows(
    rows: Iterable[Row],
    filters: Sequence[Filter],
    properties: Sequence[PropertyDefinition] = (),
    titles: Optional[Mapping[str, str]] = None,
) -> List[Row]:
    titles = titles or {}
    by_id = {prop.id: prop for prop in properties}
    result = []
    for row in rows:
        if all(
            matches_filter(
                _row_value(row, flt.property_id, titles),
                flt,
                _property_type(flt.property_id, by_id),
            )
            for flt in filters
        ):
            result.append(row)
    return result


def _sign(number: float) -> int:
    return (number > 0) - (number < 0)


def compare_values(left: Any, right: Any) -> int:
    """Three-way comparison used by view sorts (ascending)."""
    if left is None and right is None:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    if isinstance(left, bool) and isinstance(right, bool):
        return int(left) - int(right)
    if _is_number(left) and _is_number(right):
        return _sign(left - right)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        if len(left) != len(right):
            return _sign(len(left) - len(right))
        if not left:
            return 0
        return compare_values(left[0], right[0])

    left_date = parse_timestamp(left) if isinstance(left, str) else None
    right_date = parse_timestamp(right) if isinstance(right, str) else None
    if left_date is not None and right_date is not None:
        return _sign((left_date - right_date).total_seconds())

    left_text, right_text = _as_text(left), _as_text(right)
    left_key, right_key = left_text.casefold(), right_text.casefold()
    if left_key != right_key:
        return -1 if left_key < right_key else 1
    return (left_text > right_text) - (left_text < right_text)


def sort_rows(
    rows: Iterable[Row],
    sorts: Sequence[Sort],
    titles: Optional[Mapping[str, str]] = None,
) -> List[Row]:
    rows = list(rows)
    if not sorts:
        return rows
    titles = titles or {}

    def compare(a: Row, b: Row) -> int:
        for sort in sorts:
            result = compare_values(
                _row_value(a, sort.property_id, titles),
                _row_value(b, sort.property_id, titles),
            )
            if result:
                return -result if sort.direction == "desc" else result
        return 0

    # sorted() is stable, so unresolved ties keep input order
    return sorted(rows, key=cmp_to_key(compare))


def apply_view(
    rows: Iterable[Row],
    properties: Sequence[PropertyDefinition],
    filters: Sequence[Filter] = (),
    sorts: Sequence[Sort] = (),
    titles: Optional[Dict[str, str]] = None,
) -> List[Row]:
    return sort_rows(filter_rows(rows, filters, properties, titles), sorts, titles)

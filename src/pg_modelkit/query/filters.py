"""Filter translation: field-request filter values into predicate trees.

A predicate is a nested dict whose keys are column names (str) or Op
members. Op is a plain Enum, so a column literally named "$gt" is never
confused with the operator.

Example:
    to_where_options({"age": ">=18", "name": "%ann%", "tags": []})
    # {"where": {"age": {Op.GTE: 18}, "name": {Op.ILIKE: "%ann%"}}}
"""

import re
from datetime import date, datetime
from enum import Enum
from typing import Any

from pg_modelkit.errors import FilterError


class Op(Enum):
    """Predicate operators."""

    AND = "and"
    OR = "or"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    NE = "ne"
    EQ = "eq"
    IS = "is"
    NOT = "not"
    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"
    IN = "in"
    NOT_IN = "notIn"
    LIKE = "like"
    NOT_LIKE = "notLike"
    ILIKE = "iLike"
    NOT_ILIKE = "notILike"
    REGEXP = "regexp"
    NOT_REGEXP = "notRegexp"
    IREGEXP = "iRegexp"
    NOT_IREGEXP = "notIRegexp"
    OVERLAP = "overlap"
    CONTAINS = "contains"
    CONTAINED = "contained"
    ANY = "any"
    ADJACENT = "adjacent"
    STRICT_LEFT = "strictLeft"
    STRICT_RIGHT = "strictRight"
    NO_EXTEND_RIGHT = "noExtendRight"
    NO_EXTEND_LEFT = "noExtendLeft"


# "$gt" -> Op.GT, ...
FILTER_OPS: dict[str, Op] = {f"${op.value}": op for op in Op}

RX_LIKE = re.compile(r"%")
RX_GTE = re.compile(r"^>=")
RX_GT = re.compile(r"^>")
RX_LTE = re.compile(r"^<=")
RX_LT = re.compile(r"^<")
RX_EQ = re.compile(r"^=")
RX_RANGE = re.compile(r"Range$")
RX_NUMBER = re.compile(r"^-?(0|[1-9]\d*)(\.\d*[1-9])?$")
RX_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$")

# Inline operators, checked in this order
INLINE_OPS: tuple[tuple[re.Pattern[str], Op], ...] = (
    (RX_GTE, Op.GTE),
    (RX_GT, Op.GT),
    (RX_LTE, Op.LTE),
    (RX_LT, Op.LT),
    (RX_EQ, Op.EQ),
)


def is_operator_key(key: Any) -> bool:
    return isinstance(key, Op) or (isinstance(key, str) and key.startswith("$"))


def parse_value(text: str) -> Any:
    """Type a filter value given as text.

    ISO-8601 strings become date/datetime, canonical numbers become int or
    float, anything else stays a string.
    """
    if RX_ISO_DATE.match(text):
        try:
            if "T" not in text:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return text

    match = RX_NUMBER.match(text)
    if match:
        return float(text) if match.group(2) else int(text)

    return text


def parse_filter_value(prop: str, value: Any) -> dict[Any, Any]:
    """Translate an inline-operator string ("%x%", ">=5", ...) for a field."""
    if not isinstance(value, str):
        return {prop: value}

    if RX_LIKE.search(value):
        return {prop: {Op.ILIKE: value}}

    for rx, op in INLINE_OPS:
        if rx.match(value):
            return {prop: {op: parse_value(rx.sub("", value, count=1))}}

    return {prop: value}


def parse_filter(value: Any) -> Any:
    """Recursively replace "$op" keys with Op members.

    Unknown keys are kept unchanged and become literal nested names.
    """
    if isinstance(value, dict):
        return {FILTER_OPS.get(key, key): parse_filter(item) for key, item in value.items()}
    if isinstance(value, list):
        return [parse_filter(item) for item in value]
    return value


def copy_tree(value: Any) -> Any:
    """Copy nested dicts and lists, sharing leaf values."""
    if isinstance(value, dict):
        return {key: copy_tree(item) for key, item in value.items()}
    if isinstance(value, list):
        return [copy_tree(item) for item in value]
    return value


def _is_range(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("start") is not None
        and value.get("end") is not None
    )


def to_where_options(filter: dict[str, Any] | None) -> dict[str, Any]:
    """Build the where part of query options from a filter mapping.

    Args:
        filter: Field name to filter value mapping. A None value filters on
            NULL; "<column>Range" entries are folded first.

    Returns:
        {"where": predicate} or an empty dict when nothing constrains.

    Raises:
        FilterError: If both "<column>" and "<column>Range" are given.
    """
    if not filter:
        return {}

    filter = with_range_filters(copy_tree(dict(filter)))
    where: dict[Any, Any] = {}

    for prop, data in filter.items():
        if isinstance(data, list):
            if not data:
                continue
            if len(data) == 1:
                data = data[0]

        if is_operator_key(prop):
            where.update(parse_filter({prop: data}))
        elif _is_range(data):
            where[prop] = {Op.BETWEEN: [data["start"], data["end"]]}
        elif isinstance(data, dict):
            where[prop] = parse_filter(data)
        elif isinstance(data, list):
            where[prop] = {Op.IN: data}
        else:
            where.update(parse_filter_value(prop, data))

    return {"where": where} if where else {}


def with_range_filters(filter: dict[str, Any] | None) -> dict[str, Any] | None:
    """Fold "<column>Range": {start, end} entries into "<column>" filters.

    Works in place, recursing into nested mappings.

    Raises:
        FilterError: If both "<column>" and "<column>Range" are given.
    """
    if not filter:
        return filter

    for prop in list(filter):
        value = filter[prop]
        col = RX_RANGE.sub("", prop) if isinstance(prop, str) else prop

        if col == prop:
            if isinstance(value, dict):
                with_range_filters(value)
            continue

        if not isinstance(value, dict) or set(value) != {"start", "end"}:
            continue

        if filter.get(col) is not None:
            raise FilterError(
                f'Only one of filtering options "{col}" or "{prop}" '
                "can be passed as filtering option!"
            )

        filter[col] = filter.pop(prop)

    return filter


def or_null(value: Any) -> dict[Op, list[Any]]:
    """Match the given value(s) or NULL."""
    if isinstance(value, list):
        return {Op.OR: [None, *value]}
    return {Op.OR: [None, value]}

"""Query auto-builder: query options from sparse field-request trees.

A field-request tree maps attribute and association names to:
    False           excluded (still selectable for ORDER BY)
    True or {}      included, no filter
    filter value    included and filtered (scalar, list, operator dict)
    nested tree     association included, recursing into its target

Query options are plain dicts:
    {"attributes": [...], "where": {...}, "include": [{"model", "as", ...}],
     "order": [[field, "ASC"]], "offset": 0, "limit": 10}
"""

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from pg_modelkit.errors import MergeError
from pg_modelkit.models.descriptors import AssociationKind, ModelDescriptor
from pg_modelkit.query.filters import copy_tree, to_where_options, with_range_filters

QueryOptions = dict[str, Any]


def primary_keys(model: ModelDescriptor) -> list[str]:
    return model.primary_keys


def filtered(
    attributes: Iterable[str],
    fields: Iterable[str],
    model: ModelDescriptor | None = None,
) -> list[str]:
    """Keep the attributes present in fields, in attribute order.

    Falls back to the model's primary keys when nothing matches.
    """
    wanted = set(fields)
    result = [attr for attr in attributes if attr in wanted]
    if not result and model is not None:
        result = primary_keys(model)
    return result


def foreign_keys(model: ModelDescriptor, relations: Iterable[str]) -> list[str]:
    """Foreign key columns the model must select to join the given relations.

    Only belongs-to associations keep their key on the model itself.
    """
    keys = []
    for name in relations:
        association = model.associations.get(name)
        if association is not None and association.kind == AssociationKind.BELONGS_TO:
            keys.append(association.foreign_key)
    return keys


def foreign_keys_map(parent: ModelDescriptor, model: ModelDescriptor) -> dict[str, str] | None:
    """Map model columns referencing the parent to the referenced parent keys."""
    result = {
        col.name: col.references.key
        for col in model.columns
        if col.references is not None and col.references.model == parent.name
    }
    return result or None


def merge_unique(*lists: Iterable[Any]) -> list[Any]:
    result: list[Any] = []
    for items in lists:
        for item in items:
            if item not in result:
                result.append(item)
    return result


def pure_data(model: ModelDescriptor, data: Any, attributes: list[str] | None = None) -> Any:
    """Drop keys that are not attributes of the model (recursing into lists)."""
    attributes = attributes if attributes is not None else model.attribute_names

    if isinstance(data, list):
        return [pure_data(model, item, attributes) for item in data]

    return {key: value for key, value in data.items() if key in attributes}


def pure_fields(model: ModelDescriptor, fields: Mapping[str, Any] | None) -> list[str] | bool:
    """Attribute names requested by a fields map, primary keys always included.

    Returns True (everything) when no fields are given.
    """
    if not fields:
        return True

    attributes = set(model.attribute_names)
    return merge_unique([name for name in fields if name in attributes], primary_keys(model))


def need_nesting(model: ModelDescriptor, fields: Mapping[str, Any] | None) -> bool:
    """Whether a fields map requests any association of the model."""
    if not fields or not model.associations:
        return False
    return any(name in fields for name in model.associations)


def skip(obj: dict[str, Any] | None, *props: str) -> dict[str, Any] | None:
    """Remove the given keys from obj in place."""
    if not obj:
        return obj
    for prop in props:
        obj.pop(prop, None)
    return obj


def _is_filter(value: Any) -> bool:
    if value is False or value is True:
        return False
    return not (isinstance(value, Mapping) and not value)


def merge_query(target: QueryOptions | None = None, *overrides: Mapping[str, Any] | None) -> QueryOptions:
    """Merge override option dicts into target, in order.

    Missing properties are copied; lists are unioned keeping target order;
    dicts are shallow-updated; scalars are replaced.

    Raises:
        MergeError: If a list or dict option meets an override of another shape.
    """
    if target is None:
        target = {}

    for item in overrides:
        if not item:
            continue

        for prop, value in item.items():
            if value is None:
                continue

            if prop not in target or target[prop] is None:
                target[prop] = copy.copy(value)
                continue

            current = target[prop]
            error = f"Given {prop} option is invalid!"

            if isinstance(current, list):
                if not isinstance(value, list):
                    raise MergeError(error)
                for element in value:
                    if element not in current:
                        current.append(element)
                continue

            if isinstance(current, dict):
                if not isinstance(value, Mapping):
                    raise MergeError(error)
                current.update(value)
                continue

            target[prop] = value

    return target


def auto_query(
    model: ModelDescriptor,
    fields: Any = None,
    *merge: Mapping[str, Any] | None,
) -> QueryOptions:
    """Build query options for a model from a field-request tree.

    Args:
        model: Model to query.
        fields: Field-request tree, or a list of attribute names for the root
            model only.
        *merge: Option dicts merged into the result (pagination, order, ...).

    Returns:
        Query options with primary keys always projected.
    """
    options: QueryOptions = {}
    order = next((item["order"] for item in merge if item and item.get("order")), None)

    if isinstance(fields, Mapping) and isinstance(order, list):
        # Ordered fields must stay selectable without being filtered
        fields = dict(fields)
        for entry in order:
            field = entry[0] if isinstance(entry, (list, tuple)) else entry
            if isinstance(field, str) and field not in fields:
                fields[field] = False

    if isinstance(fields, (list, tuple)):
        options["attributes"] = merge_unique(
            filtered(model.attribute_names, fields, model),
            primary_keys(model),
        )
    elif isinstance(fields, Mapping):
        fields = with_range_filters(copy_tree(dict(fields)))
        names = list(fields)
        relations = [
            name for name in filtered(model.associations, names) if fields[name] is not False
        ]
        attributes = merge_unique(
            filtered(model.attribute_names, names, model),
            foreign_keys(model, relations),
            primary_keys(model),
        )
        options["attributes"] = attributes

        options.update(
            to_where_options(
                {attr: fields[attr] for attr in attributes if attr in fields and _is_filter(fields[attr])}
            )
        )

        if relations:
            options["include"] = []
            for relation in relations:
                target = model.registry.get(model.associations[relation].target)
                sub_fields = fields[relation]
                options["include"].append(
                    {
                        "model": target,
                        "as": relation,
                        **auto_query(target, None if sub_fields is True else sub_fields),
                    }
                )

    if merge:
        merge_query(options, *merge)

    return options


def auto_count_query(
    model: ModelDescriptor,
    fields: Any = None,
    *merge: Mapping[str, Any] | None,
) -> QueryOptions:
    """Build count options: no projection, distinct on the first primary key."""
    options = auto_query(model, fields, *merge)
    options.pop("attributes", None)
    options["distinct"] = True
    keys = primary_keys(model)
    options["col"] = keys[0] if keys else None
    return options


def to_order_options(order_by: Mapping[str, Any] | None) -> QueryOptions:
    """Build order options; any direction other than "desc" sorts ascending."""
    if not order_by:
        return {}
    return {
        "order": [
            [field, "DESC" if str(direction).lower() == "desc" else "ASC"]
            for field, direction in order_by.items()
        ]
    }


def to_limit_options(page: Mapping[str, Any] | None) -> QueryOptions:
    """Build offset/limit options from pagination input.

    A negative limit pages from the end; it needs the total "count".
    """
    if not page or not page.get("limit"):
        return {}

    limit = int(page["limit"])
    offset = int(page.get("offset") or 0)
    count = int(page.get("count") or 0)

    if limit < 0:
        if offset == 0:
            offset = count - abs(limit)
        offset = max(offset, 0)

    return {"offset": offset, "limit": abs(limit)}


def _model_matches(candidate: Any, model: ModelDescriptor | str) -> bool:
    if isinstance(model, str):
        return isinstance(candidate, ModelDescriptor) and candidate.name == model
    return candidate is model


def get_include(options: Mapping[str, Any], path: list[ModelDescriptor | str]) -> QueryOptions | None:
    """Find a nested include by following a path of models."""
    if not path:
        return None

    current, rest = path[0], path[1:]
    for include in options.get("include") or []:
        if isinstance(include, Mapping) and _model_matches(include.get("model"), current):
            return include if not rest else get_include(include, rest)  # type: ignore[return-value]

    return None


def override_join(options: QueryOptions, *includes: Mapping[str, Any]) -> QueryOptions:
    """Override include entries matching by model and, if given, alias.

    Includes without a match are appended.
    """
    if not options or "include" not in options or not includes:
        return options

    for override in includes:
        fields = {key: value for key, value in override.items() if key != "model"}
        model = override.get("model")
        alias = fields.get("as")
        found = False

        for position, include in enumerate(options["include"]):
            if include is model:
                options["include"][position] = {"model": model, **fields}
                found = True
            elif include.get("model") is model and (not alias or alias == include.get("as")):
                include.update(fields)
                found = True

        if not found:
            options["include"].append({"model": model, **fields})

    return options

"""Recursive entity writer.

Creates a row and every nested associated row from one input mapping:

    await create_entity(db, "Order", {"total": 100, "lines": [{"qty": 2}, {"qty": 3}]},
                        fields={"total": True, "lines": {"qty": True}})
    # {"id": 1, "total": 100, "lines": [{"id": 1, "qty": 2}, {"id": 2, "qty": 3}]}

Everything runs on a single connection and transaction, committed once by
the outermost call.
"""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncConnection

from pg_modelkit.database.interface import QueryInterface
from pg_modelkit.models.descriptors import AssociationKind, ModelDescriptor
from pg_modelkit.query.builder import filtered, foreign_keys_map, merge_unique, pure_data

if TYPE_CHECKING:
    from pg_modelkit.database.handle import Database

logger = logging.getLogger(__name__)

Fields = Mapping[str, Any]


async def create_entity(
    db: "Database",
    model: ModelDescriptor | str,
    data: Mapping[str, Any],
    fields: Fields | None = None,
    connection: AsyncConnection | None = None,
) -> dict[str, Any]:
    """Create an entity with all nested associated entities.

    Args:
        db: Database handle.
        model: Model (or model name) of the root entity.
        data: Attribute values; association aliases hold nested inputs
            (a mapping, or a list of mappings for many-associations).
        fields: Fields to return, in field-request tree form. Primary keys
            are always returned. None returns every column.
        connection: Connection with an open transaction owned by the caller.
            When None, a connection and transaction are opened, committed
            on success and rolled back on any error.

    Returns:
        The created entity, with nested entities under their aliases.
    """
    model = db.registry.resolve(model)

    if connection is not None:
        return await _create(db.interface(connection), model, data, fields)

    async with db.engine.connect() as conn:
        transaction = await conn.begin()
        try:
            entity = await _create(db.interface(conn), model, data, fields)
        except Exception:
            await transaction.rollback()
            raise
        await transaction.commit()

    return entity


def _sub_fields(fields: Fields | None, name: str) -> Fields | None:
    if fields is None:
        return None
    value = fields.get(name)
    return value if isinstance(value, Mapping) else None


def _returning(model: ModelDescriptor, fields: Fields | None, internal: list[str]) -> list[str] | bool:
    if fields is None:
        return True
    requested = filtered(model.attribute_names, list(fields), model)
    return merge_unique(requested, model.primary_keys, internal)


def _with_key(fields: Fields | None, key: str) -> Fields | None:
    if fields is None or key in fields:
        return fields
    return {**fields, key: False}


def _fill_keys(item: dict[str, Any], values: Mapping[str, Any]) -> dict[str, Any]:
    for key, value in values.items():
        if item.get(key) is None:
            item[key] = value
    return item


async def _create(
    qi: QueryInterface,
    model: ModelDescriptor,
    data: Mapping[str, Any],
    fields: Fields | None,
) -> dict[str, Any]:
    registry = qi.registry
    values = dict(data)
    nested = {alias: values.pop(alias) for alias in list(model.associations) if alias in values}
    children: dict[str, Any] = {}

    # Parents referenced through belongs-to go first so their key can be copied
    for alias, item in nested.items():
        association = model.associations[alias]
        if association.kind != AssociationKind.BELONGS_TO or item is None:
            continue
        target = registry.get(association.target)
        key = association.target_key or target.primary_keys[0]
        created = await _create(qi, target, item, _with_key(_sub_fields(fields, alias), key))
        _fill_keys(values, {association.foreign_key: created[key]})
        children[alias] = created

    internal = [
        association.source_key or model.primary_keys[0]
        for alias, association in model.associations.items()
        if alias in nested and association.kind != AssociationKind.BELONGS_TO
    ]
    returning = _returning(model, fields, internal)
    entity = await qi.insert(model, pure_data(model, values), returning=returning) or {}
    logger.debug(f"Created {model.name} {[entity.get(k) for k in model.primary_keys]}")

    for alias, item in nested.items():
        association = model.associations[alias]
        if association.kind == AssociationKind.BELONGS_TO or item is None:
            continue

        target = registry.get(association.target)
        source_key = association.source_key or model.primary_keys[0]
        sub_fields = _sub_fields(fields, alias)
        items = item if isinstance(item, list) else [item]
        created_items = []

        # Sequential: all children share one connection
        for child in items:
            child = dict(child)
            if association.kind == AssociationKind.BELONGS_TO_MANY:
                target_key = association.target_key or target.primary_keys[0]
                created = await _create(qi, target, child, _with_key(sub_fields, target_key))
                await qi.insert(
                    association.through,
                    {
                        association.foreign_key: entity[source_key],
                        association.other_key: created[target_key],
                    },
                    returning=False,
                )
            else:
                _fill_keys(child, {association.foreign_key: entity[source_key]})
                references = foreign_keys_map(model, target) or {}
                _fill_keys(child, {name: entity[key] for name, key in references.items() if key in entity})
                created = await _create(qi, target, child, sub_fields)
            created_items.append(created)

        children[alias] = created_items if isinstance(item, list) else created_items[0]

    if fields is not None:
        keep = set(merge_unique(filtered(model.attribute_names, list(fields), model), model.primary_keys))
        entity = {key: value for key, value in entity.items() if key in keep}

    entity.update(children)
    return entity

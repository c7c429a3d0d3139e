"""Model registry: declaration surface for tables and views.

Example:
    registry = ModelRegistry()
    registry.table(
        "Order",
        [column("id", Integer, primary_key=True), column("total", Numeric)],
        associations=[has_many("lines", "OrderLine", "order_id")],
    )
"""

import importlib
import logging
import pkgutil
from collections.abc import Iterable, Iterator
from types import MappingProxyType
from typing import Any

import sqlalchemy as sa

from pg_modelkit.errors import DeclarationError, ModelNotFoundError, ViewDefinitionError, did_you_mean
from pg_modelkit.models.descriptors import (
    Association,
    Column,
    ColumnIndex,
    ModelDescriptor,
    ModelKind,
    ViewDefinition,
    paranoid_columns,
    paranoid_indices,
)
from pg_modelkit.query.sql import view_params_in

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Holds every declared model and the SQLAlchemy metadata built from them."""

    def __init__(self) -> None:
        self.metadata = sa.MetaData()
        # Views live apart so create_all() never materializes them as tables
        self.view_metadata = sa.MetaData()
        self._models: dict[str, ModelDescriptor] = {}
        self._tables: dict[str, sa.Table] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[ModelDescriptor]:
        return iter(list(self._models.values()))

    def __len__(self) -> int:
        return len(self._models)

    # --- declaration ---------------------------------------------------------

    def table(
        self,
        name: str,
        columns: Iterable[Column],
        *,
        table_name: str | None = None,
        associations: Iterable[Association] = (),
        indices: Iterable[ColumnIndex | list[ColumnIndex]] = (),
        paranoid: bool = False,
    ) -> ModelDescriptor:
        """Declare a table model.

        Args:
            name: Model name.
            columns: Declared columns.
            table_name: Table name; the model name when None.
            associations: Relationships to other models.
            indices: Column indices, single or grouped.
            paranoid: Add id, created_at, updated_at and deleted_at columns
                (those not declared already) with their indices. Reads skip
                soft-deleted rows of paranoid models.
        """
        if paranoid:
            columns, indices = _with_paranoid_columns(list(columns), list(indices))

        return self._register(
            name,
            ModelKind.TABLE,
            columns,
            table_name=table_name,
            associations=associations,
            indices=indices,
            paranoid=paranoid,
        )

    def view(
        self,
        name: str,
        columns: Iterable[Column],
        definition: str,
        *,
        table_name: str | None = None,
        associations: Iterable[Association] = (),
        indices: Iterable[ColumnIndex | list[ColumnIndex]] = (),
        depends_on: Iterable[str] = (),
    ) -> ModelDescriptor:
        """Declare a read-only view model backed by a CREATE VIEW statement."""
        if not definition or not definition.strip():
            raise ViewDefinitionError(f"View definition is missing! (model '{name}')")

        view = ViewDefinition(sql=definition, depends_on=tuple(depends_on))
        return self._register(
            name,
            ModelKind.VIEW,
            columns,
            table_name=table_name,
            associations=associations,
            indices=indices,
            view=view,
        )

    def dynamic_view(
        self,
        name: str,
        columns: Iterable[Column],
        definition: str,
        params: dict[str, Any],
        *,
        table_name: str | None = None,
        associations: Iterable[Association] = (),
        indices: Iterable[ColumnIndex | list[ColumnIndex]] = (),
        depends_on: Iterable[str] = (),
    ) -> ModelDescriptor:
        """Declare a view whose @{name} placeholders are substituted per query.

        Every placeholder in the definition must have a default in params.
        """
        if not definition or not definition.strip():
            raise ViewDefinitionError(f"View definition is missing! (model '{name}')")

        params = dict(params or {})
        for param in view_params_in(definition):
            if param not in params:
                raise ViewDefinitionError(
                    f"View definition contains param '{param}', "
                    f"but it was not provided (model '{name}')",
                    suggestion=f"Add a default value for '{param}' to the view params",
                )

        view = ViewDefinition(
            sql=definition,
            params=params,
            is_dynamic=True,
            depends_on=tuple(depends_on),
        )
        return self._register(
            name,
            ModelKind.VIEW,
            columns,
            table_name=table_name,
            associations=associations,
            indices=indices,
            view=view,
        )

    def _register(
        self,
        name: str,
        kind: ModelKind,
        columns: Iterable[Column],
        *,
        table_name: str | None,
        associations: Iterable[Association],
        indices: Iterable[ColumnIndex | list[ColumnIndex]],
        view: ViewDefinition | None = None,
        paranoid: bool = False,
    ) -> ModelDescriptor:
        if name in self._models:
            raise DeclarationError(f"Model '{name}' is already declared")

        columns = tuple(columns)
        if not columns:
            raise DeclarationError(f"Model '{name}' declares no columns")

        names = [c.name for c in columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DeclarationError(f"Model '{name}' declares duplicate columns: {duplicates}")

        association_map: dict[str, Association] = {}
        for association in associations:
            if association.alias in association_map or association.alias in names:
                raise DeclarationError(
                    f"Model '{name}' association alias '{association.alias}' is already used"
                )
            association_map[association.alias] = association

        flat_indices: list[ColumnIndex] = []
        for item in indices:
            flat_indices.extend(item if isinstance(item, list) else [item])
        for index in flat_indices:
            if index.column not in names and not index.options.expression:
                raise DeclarationError(
                    f"Index on unknown column '{index.column}' of model '{name}'",
                    suggestion=did_you_mean(index.column, names),
                )

        descriptor = ModelDescriptor(
            name=name,
            table_name=table_name or name,
            kind=kind,
            columns=columns,
            associations=MappingProxyType(association_map),
            indices=tuple(flat_indices),
            view=view,
            paranoid=paranoid,
            registry=self,
        )
        self._models[name] = descriptor
        logger.debug(f"Declared {kind.value} model {name}")
        return descriptor

    # --- lookup --------------------------------------------------------------

    def get(self, name: str) -> ModelDescriptor:
        """Get a model by name.

        Raises:
            ModelNotFoundError: If no model with that name is declared.
        """
        try:
            return self._models[name]
        except KeyError:
            raise ModelNotFoundError(
                f"Model '{name}' is not declared",
                suggestion=did_you_mean(name, list(self._models)),
            ) from None

    def resolve(self, model: ModelDescriptor | str) -> ModelDescriptor:
        if isinstance(model, ModelDescriptor):
            return model
        return self.get(model)

    def models(self) -> list[ModelDescriptor]:
        return list(self._models.values())

    def tables(self) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.kind == ModelKind.TABLE]

    def views(self) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.kind == ModelKind.VIEW]

    def models_with_indices(self) -> list[ModelDescriptor]:
        return [m for m in self._models.values() if m.indices]

    def association_target(self, model: ModelDescriptor, alias: str) -> ModelDescriptor:
        return self.get(model.associations[alias].target)

    # --- SQLAlchemy metadata -------------------------------------------------

    def table_for(self, model: ModelDescriptor) -> sa.Table:
        """Build (once) and return the SQLAlchemy table of a model."""
        table = self._tables.get(model.name)
        if table is not None:
            return table

        metadata = self.view_metadata if model.is_view else self.metadata
        sa_columns = []
        for col in model.columns:
            foreign_key = None
            # Views carry no constraints
            if col.references is not None and not model.is_view:
                target = self.get(col.references.model)
                foreign_key = sa.ForeignKey(
                    f"{target.table_name}.{col.references.key}",
                    ondelete=col.references.on_delete,
                    onupdate=col.references.on_update,
                )
            sa_columns.append(col.to_sqlalchemy(foreign_key))

        table = sa.Table(model.table_name, metadata, *sa_columns)
        self._tables[model.name] = table
        return table

    def build(self) -> sa.MetaData:
        """Build the tables of every model so foreign keys can resolve."""
        for model in self._models.values():
            self.table_for(model)
        return self.metadata

    # --- loading -------------------------------------------------------------

    def load_models(self, package: str) -> list[ModelDescriptor]:
        """Import every module of a models package and let it register.

        Each module may define ``register(registry)``; it is called with this
        registry. Modules that declare against the registry at import time
        need no hook.

        Args:
            package: Dotted name of the models package (or single module).

        Returns:
            Models declared while loading.
        """
        before = set(self._models)
        root = importlib.import_module(package)
        modules = [root]

        if hasattr(root, "__path__"):
            for module_info in pkgutil.walk_packages(root.__path__, f"{root.__name__}."):
                modules.append(importlib.import_module(module_info.name))

        for module in modules:
            register = getattr(module, "register", None)
            if callable(register):
                register(self)

        loaded = [m for name, m in self._models.items() if name not in before]
        logger.info(f"Database models initialized: {len(loaded)} loaded from {package}")
        return loaded


def _with_paranoid_columns(
    columns: list[Column], indices: list[ColumnIndex | list[ColumnIndex]]
) -> tuple[list[Column], list[ColumnIndex | list[ColumnIndex]]]:
    """Merge the soft-delete columns and indices into a declaration.

    id goes first, the timestamps last; declared columns win on name clashes.
    """
    declared = {c.name for c in columns}
    preset = [c for c in paranoid_columns() if c.name not in declared]
    head = [c for c in preset if c.primary_key]
    tail = [c for c in preset if not c.primary_key]

    added = {c.name for c in tail}
    extra = [index for index in paranoid_indices() if index.column in added]
    return [*head, *columns, *tail], [*indices, *extra]

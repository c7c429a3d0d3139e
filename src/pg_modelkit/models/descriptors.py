"""Model descriptors: immutable records describing tables and views.

Descriptors replace class-level decorators. They are built once by a
ModelRegistry at startup and never change afterwards.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.types import TypeEngine

if TYPE_CHECKING:
    from pg_modelkit.models.registry import ModelRegistry


class ModelKind(str, Enum):
    """Physical kind of a model."""

    TABLE = "table"
    VIEW = "view"


# === Columns ===


class ColumnReference(BaseModel):
    """Foreign key reference from a column to another model's column."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(description="Name of the referenced model")
    key: str = Field(default="id", description="Referenced column name")
    on_delete: str | None = Field(default=None, description="ON DELETE action")
    on_update: str | None = Field(default=None, description="ON UPDATE action")


class Column(BaseModel):
    """A model attribute backed by a table or view column."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(description="Column name")
    type: TypeEngine = Field(description="SQLAlchemy column type")
    primary_key: bool = Field(default=False, description="Part of primary key")
    nullable: bool | None = Field(
        default=None, description="Whether column allows NULL (default: not primary_key)"
    )
    autoincrement: bool | str = Field(default="auto", description="SQLAlchemy autoincrement flag")
    default: Any = Field(default=None, description="Client-side default value")
    server_default: str | None = Field(default=None, description="Server default SQL expression")
    unique: bool = Field(default=False, description="Has unique constraint")
    references: ColumnReference | None = Field(default=None, description="FK reference")

    @field_validator("type", mode="before")
    @classmethod
    def instantiate_type(cls, value: Any) -> Any:
        """Accept type classes (Integer) as well as instances (Integer())."""
        if isinstance(value, type) and issubclass(value, TypeEngine):
            return value()
        return value

    @property
    def is_nullable(self) -> bool:
        if self.nullable is None:
            return not self.primary_key
        return self.nullable

    def to_sqlalchemy(self, foreign_key: sa.ForeignKey | None = None) -> sa.Column:
        """Build the SQLAlchemy column for this attribute."""
        args: list[Any] = [self.name, self.type]
        if foreign_key is not None:
            args.append(foreign_key)

        kwargs: dict[str, Any] = {
            "primary_key": self.primary_key,
            "nullable": self.is_nullable,
            "autoincrement": self.autoincrement,
            "unique": self.unique or None,
        }
        if self.default is not None:
            kwargs["default"] = self.default
        if self.server_default is not None:
            kwargs["server_default"] = sa.text(self.server_default)

        return sa.Column(*args, **kwargs)


def column(name: str, type_: Any, **options: Any) -> Column:
    """Shorthand for Column(name=..., type=..., **options)."""
    return Column(name=name, type=type_, **options)


# === Associations ===


class AssociationKind(str, Enum):
    """Relationship kinds between two models."""

    BELONGS_TO = "belongsTo"
    HAS_ONE = "hasOne"
    HAS_MANY = "hasMany"
    BELONGS_TO_MANY = "belongsToMany"


class Association(BaseModel):
    """A declared relationship from one model to another.

    Key semantics per kind:
        belongsTo:     source.foreign_key -> target.target_key
        hasOne/hasMany: target.foreign_key -> source.source_key
        belongsToMany: through.foreign_key -> source.source_key and
                       through.other_key -> target.target_key
    Missing source_key/target_key default to the first primary key.
    """

    model_config = ConfigDict(frozen=True)

    alias: str = Field(description="Property name the association is exposed as")
    target: str = Field(description="Target model name")
    kind: AssociationKind
    foreign_key: str = Field(description="Foreign key column (see class docstring)")
    source_key: str | None = Field(default=None, description="Custom key on the source model")
    target_key: str | None = Field(default=None, description="Custom key on the target model")
    through: str | None = Field(default=None, description="Join model for belongsToMany")
    other_key: str | None = Field(default=None, description="Through column pointing at target")

    @model_validator(mode="after")
    def check_through(self) -> "Association":
        if self.kind == AssociationKind.BELONGS_TO_MANY and not (self.through and self.other_key):
            raise ValueError(f"Association '{self.alias}' requires 'through' and 'other_key'")
        return self

    @property
    def is_many(self) -> bool:
        return self.kind in (AssociationKind.HAS_MANY, AssociationKind.BELONGS_TO_MANY)


def belongs_to(alias: str, target: str, foreign_key: str, **options: Any) -> Association:
    return Association(
        alias=alias,
        target=target,
        kind=AssociationKind.BELONGS_TO,
        foreign_key=foreign_key,
        **options,
    )


def has_one(alias: str, target: str, foreign_key: str, **options: Any) -> Association:
    return Association(
        alias=alias,
        target=target,
        kind=AssociationKind.HAS_ONE,
        foreign_key=foreign_key,
        **options,
    )


def has_many(alias: str, target: str, foreign_key: str, **options: Any) -> Association:
    return Association(
        alias=alias,
        target=target,
        kind=AssociationKind.HAS_MANY,
        foreign_key=foreign_key,
        **options,
    )


def belongs_to_many(
    alias: str, target: str, through: str, foreign_key: str, other_key: str, **options: Any
) -> Association:
    return Association(
        alias=alias,
        target=target,
        kind=AssociationKind.BELONGS_TO_MANY,
        through=through,
        foreign_key=foreign_key,
        other_key=other_key,
        **options,
    )


# === Indices ===


class IndexMethod(str, Enum):
    """PostgreSQL index access methods."""

    BTREE = "btree"
    HASH = "hash"
    GIST = "gist"
    SPGIST = "spgist"
    GIN = "gin"
    BRIN = "brin"


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class ColumnIndexOptions(BaseModel):
    """Options of a single column index."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Explicit index name")
    method: IndexMethod | None = Field(default=None, description="USING method")
    unique: bool = False
    concurrently: bool = Field(default=False, description="Create/drop CONCURRENTLY")
    safe: bool = Field(default=False, description="Use IF NOT EXISTS instead of drop+create")
    nulls_first: bool | None = Field(default=None, description="NULLS FIRST/LAST, None omits")
    order: SortOrder | None = None
    predicate: str | None = Field(default=None, description="Partial index WHERE predicate")
    expression: str | None = Field(default=None, description="Indexed expression")
    include: tuple[str, ...] | None = Field(default=None, description="Covering columns")
    collation: str | None = None
    op_class: str | None = None
    tablespace: str | None = None


class ColumnIndex(BaseModel):
    """An index declared on a model column."""

    model_config = ConfigDict(frozen=True)

    column: str
    options: ColumnIndexOptions = Field(default_factory=ColumnIndexOptions)


def column_index(column_name: str, **options: Any) -> ColumnIndex:
    return ColumnIndex(column=column_name, options=ColumnIndexOptions(**options))


def nullable_index(column_name: str, **options: Any) -> list[ColumnIndex]:
    """Declare a pair of partial indices for NULL and NOT NULL values."""
    indices = []
    for predicate in (f'"{column_name}" IS NULL', f'"{column_name}" IS NOT NULL'):
        index_options = {"expression": predicate, "predicate": predicate, **options}
        indices.append(column_index(column_name, **index_options))
    return indices


# === Model presets ===

DELETED_AT = "deleted_at"


def paranoid_columns() -> list[Column]:
    """Identity and timestamp columns of a soft-deletable model.

    deleted_at stays NULL until a row is soft-deleted; reads of paranoid
    models skip rows where it is set.
    """
    return [
        column("id", sa.BigInteger, primary_key=True),
        column("created_at", sa.DateTime(timezone=True), nullable=False, server_default="now()"),
        column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default="now()"),
        column(DELETED_AT, sa.DateTime(timezone=True), nullable=True),
    ]


def paranoid_indices() -> list[ColumnIndex]:
    return [
        column_index("created_at"),
        column_index("updated_at"),
        *nullable_index(DELETED_AT),
    ]


def dictionary_columns() -> list[Column]:
    """Columns of a lookup table: a short required name and a free text description."""
    return [
        column("name", sa.String(45), nullable=False),
        column("description", sa.Text, nullable=True),
    ]


# === Views ===


class ViewDefinition(BaseModel):
    """Stored definition of a view model."""

    model_config = ConfigDict(frozen=True)

    sql: str = Field(description="CREATE VIEW statement, optionally with @{name} placeholders")
    params: dict[str, Any] = Field(default_factory=dict, description="Default placeholder values")
    is_dynamic: bool = Field(default=False, description="Placeholders substituted per query")
    depends_on: tuple[str, ...] = Field(
        default=(), description="Models the view selects from"
    )


# === Model descriptor ===


@dataclass(frozen=True, eq=False)
class ModelDescriptor:
    """Static metadata of a single model (table or view)."""

    name: str
    table_name: str
    kind: ModelKind
    columns: tuple[Column, ...]
    associations: Mapping[str, Association]
    indices: tuple[ColumnIndex, ...] = ()
    view: ViewDefinition | None = None
    paranoid: bool = False
    registry: "ModelRegistry | None" = field(default=None, repr=False)

    def __repr__(self) -> str:
        return f"<ModelDescriptor {self.name} ({self.kind.value})>"

    @property
    def is_view(self) -> bool:
        return self.kind == ModelKind.VIEW

    @property
    def is_dynamic_view(self) -> bool:
        return self.view is not None and self.view.is_dynamic

    @property
    def attribute_names(self) -> list[str]:
        return [c.name for c in self.columns]

    @property
    def primary_keys(self) -> list[str]:
        return [c.name for c in self.columns if c.primary_key]

    @property
    def table(self) -> sa.Table:
        """SQLAlchemy table (or view stand-in) for this model."""
        if self.registry is None:
            raise RuntimeError(f"Model '{self.name}' is not bound to a registry")
        return self.registry.table_for(self)

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def index_name(self, index: ColumnIndex, position: int) -> str:
        """Name of an index, derived from its 1-based declaration position if unnamed."""
        return index.options.name or f"{self.table_name}_{index.column}_idx{position}"

"""Model declaration: descriptors and the registry that builds them."""

from pg_modelkit.models.descriptors import (
    Association,
    AssociationKind,
    Column,
    ColumnIndex,
    ColumnIndexOptions,
    ColumnReference,
    IndexMethod,
    ModelDescriptor,
    ModelKind,
    SortOrder,
    ViewDefinition,
    belongs_to,
    belongs_to_many,
    column,
    column_index,
    dictionary_columns,
    has_many,
    has_one,
    nullable_index,
    paranoid_columns,
    paranoid_indices,
)
from pg_modelkit.models.registry import ModelRegistry

__all__ = [
    # Columns
    "Column",
    "ColumnReference",
    "column",
    "dictionary_columns",
    "paranoid_columns",
    # Associations
    "Association",
    "AssociationKind",
    "belongs_to",
    "belongs_to_many",
    "has_many",
    "has_one",
    # Indices
    "ColumnIndex",
    "ColumnIndexOptions",
    "IndexMethod",
    "SortOrder",
    "column_index",
    "nullable_index",
    "paranoid_indices",
    # Models
    "ModelDescriptor",
    "ModelKind",
    "ModelRegistry",
    "ViewDefinition",
]

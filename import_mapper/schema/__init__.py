"""Target schema catalog."""

from import_mapper.schema.target_fields import (
    DEFAULT_TARGET_FIELDS,
    FormatConstraint,
    TargetCatalog,
    TargetFieldSpec,
    get_default_catalog,
)

__all__ = [
    "DEFAULT_TARGET_FIELDS",
    "FormatConstraint",
    "TargetCatalog",
    "TargetFieldSpec",
    "get_default_catalog",
]

"""
Target Field Definitions

Defines the fixed product (SKU) schema that uploaded catalog files are
mapped onto, and the read-only catalog the matchers consume.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

import yaml

from import_mapper.utils.normalize import normalize_field_name


SEMANTIC_TYPES = ("string", "number", "integer", "boolean", "date")


@dataclass(frozen=True)
class FormatConstraint:
    """Value-format constraint of a target field.

    Every attribute is optional; a value satisfies the constraint when it
    satisfies all attributes that are set.
    """

    min_value: Optional[float] = None
    max_value: Optional[float] = None
    allowed_values: Tuple[str, ...] = ()
    pattern: Optional[str] = None
    max_length: Optional[int] = None

    def is_empty(self) -> bool:
        return (
            self.min_value is None
            and self.max_value is None
            and not self.allowed_values
            and self.pattern is None
            and self.max_length is None
        )

    def compiled_pattern(self) -> Optional["re.Pattern"]:
        return re.compile(self.pattern) if self.pattern else None

    def to_dict(self) -> dict:
        result = {}
        if self.min_value is not None:
            result["min_value"] = self.min_value
        if self.max_value is not None:
            result["max_value"] = self.max_value
        if self.allowed_values:
            result["allowed_values"] = list(self.allowed_values)
        if self.pattern is not None:
            result["pattern"] = self.pattern
        if self.max_length is not None:
            result["max_length"] = self.max_length
        return result

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["FormatConstraint"]:
        if not data:
            return None
        return cls(
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            allowed_values=tuple(str(v) for v in data.get("allowed_values") or ()),
            pattern=data.get("pattern"),
            max_length=data.get("max_length"),
        )


@dataclass(frozen=True)
class TargetFieldSpec:
    """Definition of a target schema field"""

    name: str
    semantic_type: str  # string, number, integer, boolean, date
    aliases: Tuple[str, ...] = ()
    constraint: Optional[FormatConstraint] = None
    description: str = ""
    required: bool = False

    @property
    def normalized_name(self) -> str:
        return normalize_field_name(self.name)

    @property
    def normalized_aliases(self) -> Tuple[str, ...]:
        return tuple(normalize_field_name(alias) for alias in self.aliases)

    @property
    def has_constraint(self) -> bool:
        return self.constraint is not None and not self.constraint.is_empty()

    def to_dict(self) -> dict:
        """Convert to dictionary for LLM prompt"""
        result = {
            "name": self.name,
            "type": self.semantic_type,
            "description": self.description,
            "aliases": list(self.aliases),
            "required": self.required,
        }
        if self.has_constraint:
            result["format"] = self.constraint.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "TargetFieldSpec":
        semantic_type = str(data.get("type") or data.get("semantic_type") or "string").lower()
        if semantic_type not in SEMANTIC_TYPES:
            raise ValueError(
                f"Unknown semantic type '{semantic_type}' for target field '{data.get('name')}'. "
                f"Must be one of: {SEMANTIC_TYPES}"
            )
        return cls(
            name=data["name"],
            semantic_type=semantic_type,
            aliases=tuple(data.get("aliases") or ()),
            constraint=FormatConstraint.from_dict(data.get("format") or data.get("constraint")),
            description=data.get("description", ""),
            required=bool(data.get("required", False)),
        )


class TargetCatalog:
    """Read-only, ordered snapshot of the target schema.

    Declaration order is significant: it is the final tie-breaker wherever
    two targets score the same.
    """

    def __init__(self, fields: List[TargetFieldSpec]):
        names = [f.name for f in fields]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate target field names: {duplicates}")
        self._fields: Tuple[TargetFieldSpec, ...] = tuple(fields)
        self._by_name: Dict[str, TargetFieldSpec] = {f.name: f for f in fields}
        self._order: Dict[str, int] = {f.name: i for i, f in enumerate(fields)}

    def __iter__(self) -> Iterator[TargetFieldSpec]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    @property
    def fields(self) -> Tuple[TargetFieldSpec, ...]:
        return self._fields

    def get(self, name: str) -> Optional[TargetFieldSpec]:
        return self._by_name.get(name)

    def declaration_index(self, name: str) -> int:
        """Position of a target in the catalog (unknown names sort last)."""
        return self._order.get(name, len(self._fields))

    def required_fields(self) -> List[str]:
        return [f.name for f in self._fields if f.required]

    def to_prompt(self) -> List[dict]:
        """Target fields formatted for the inference prompt."""
        return [f.to_dict() for f in self._fields]

    @classmethod
    def from_dicts(cls, items: List[dict]) -> "TargetCatalog":
        return cls([TargetFieldSpec.from_dict(item) for item in items])

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "TargetCatalog":
        """
        Load a catalog from a YAML file.

        The file holds either a list of field dicts or a mapping with a
        ``fields`` key.

        Args:
            path: Path to YAML file

        Returns:
            TargetCatalog
        """
        with open(path, "r", encoding="utf-8") as fh:
            payload = yaml.safe_load(fh) or []
        if isinstance(payload, dict):
            payload = payload.get("fields", [])
        return cls.from_dicts(payload)


# Standard product fields for catalog imports
DEFAULT_TARGET_FIELDS = [
    TargetFieldSpec(
        name="name",
        semantic_type="string",
        required=True,
        description="Product name/title",
        aliases=("Product Name", "Title", "Product Title", "Item Name", "Product"),
    ),
    TargetFieldSpec(
        name="slug",
        semantic_type="string",
        description="URL-friendly identifier",
        aliases=("Handle", "URL Key", "Permalink"),
        constraint=FormatConstraint(pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)+$"),
    ),
    TargetFieldSpec(
        name="sku",
        semantic_type="string",
        description="Stock keeping unit identifier",
        aliases=("Product Code", "Item Code", "Part Number", "Article Number", "Model"),
        constraint=FormatConstraint(pattern=r"^[A-Z]{2,}[A-Z0-9]*[-_][A-Z0-9\-_]+$", max_length=64),
    ),
    TargetFieldSpec(
        name="gtin",
        semantic_type="string",
        description="Global trade item number (barcode)",
        aliases=("Barcode", "UPC", "EAN", "ISBN"),
        constraint=FormatConstraint(pattern=r"^\d{8}$|^\d{12,14}$"),
    ),
    TargetFieldSpec(
        name="shortDescription",
        semantic_type="string",
        description="Brief product description",
        aliases=("Description", "Short Description", "Summary", "Desc"),
    ),
    TargetFieldSpec(
        name="longDescription",
        semantic_type="string",
        description="Detailed product description",
        aliases=("Long Description", "Full Description", "Details", "Body"),
    ),
    TargetFieldSpec(
        name="story",
        semantic_type="string",
        description="Product or brand story",
        aliases=("Brand Story", "Product Story"),
    ),
    TargetFieldSpec(
        name="price",
        semantic_type="number",
        description="Product selling price",
        aliases=("Selling Price", "Unit Price", "Retail Price", "Cost", "Amount"),
        constraint=FormatConstraint(min_value=0, max_value=1_000_000),
    ),
    TargetFieldSpec(
        name="compareAtPrice",
        semantic_type="number",
        description="Original/MSRP price",
        aliases=("MSRP", "RRP", "List Price", "Original Price"),
        constraint=FormatConstraint(min_value=0, max_value=1_000_000),
    ),
    TargetFieldSpec(
        name="stock",
        semantic_type="integer",
        description="Available stock quantity",
        aliases=("Inventory", "Quantity", "Qty", "Available", "Stock Level"),
        constraint=FormatConstraint(min_value=0, max_value=10_000_000),
    ),
    TargetFieldSpec(
        name="lowStockThreshold",
        semantic_type="integer",
        description="Low stock alert threshold",
        aliases=("Reorder Level", "Reorder Point", "Min Stock"),
        constraint=FormatConstraint(min_value=0, max_value=100_000),
    ),
    TargetFieldSpec(
        name="brandId",
        semantic_type="string",
        description="Brand identifier",
        aliases=("Brand", "Brand Name", "Manufacturer", "Vendor"),
    ),
    TargetFieldSpec(
        name="parentId",
        semantic_type="string",
        description="Parent product ID for variants",
        aliases=("Parent SKU", "Parent", "Variant Of"),
    ),
    TargetFieldSpec(
        name="status",
        semantic_type="string",
        description="Product status (draft, review, live, archived)",
        aliases=("State", "Publish Status", "Product Status"),
        constraint=FormatConstraint(allowed_values=("draft", "review", "live", "archived")),
    ),
    TargetFieldSpec(
        name="isVariant",
        semantic_type="boolean",
        description="Whether this is a product variant",
        aliases=("Variant", "Is Variant"),
    ),
    TargetFieldSpec(
        name="createdAt",
        semantic_type="date",
        description="Creation timestamp",
        aliases=("Created", "Created Date", "Date Added"),
    ),
    TargetFieldSpec(
        name="updatedAt",
        semantic_type="date",
        description="Last update timestamp",
        aliases=("Updated", "Last Modified", "Modified Date"),
    ),
]


def get_default_catalog() -> TargetCatalog:
    """Catalog built from DEFAULT_TARGET_FIELDS."""
    return TargetCatalog(list(DEFAULT_TARGET_FIELDS))

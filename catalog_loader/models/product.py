"""
Product validation models for CSV import.
Validates raw rows and describes catalog records handed out by the store.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

REQUIRED_COLUMNS = ("sku", "name", "price")
OPTIONAL_COLUMNS = ("category", "stock", "description", "image")

MAX_STRING_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 65535


class ProductRow(BaseModel):
    """
    Validates one data row of a catalog CSV.
    Field names are the normalized (trimmed, lower-cased) CSV headers.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,  # Auto-strip whitespace
        extra="ignore",  # Unknown columns are not an error
    )

    # === REQUIRED FIELDS ===
    sku: str = Field(min_length=1, max_length=MAX_STRING_LENGTH)
    name: str = Field(min_length=1, max_length=MAX_STRING_LENGTH)
    price: Decimal = Field(ge=0, allow_inf_nan=False)

    # === OPTIONAL FIELDS ===
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    image: Optional[str] = Field(default=None, max_length=MAX_STRING_LENGTH)

    # === VALIDATORS ===

    @field_validator("price", "stock", mode="before")
    @classmethod
    def strip_numeric(cls, v):
        """Numbers arrive as text; surrounding whitespace is not significant."""
        if isinstance(v, str):
            v = v.strip()
            if v == "":
                return None
        return v

    @field_validator("category", "description", "image", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    # === METHODS ===

    def catalog_fields(self) -> Dict[str, Any]:
        """Mutable catalog fields written on create and update."""
        return {
            "name": self.name,
            "price": self.price,
            "description": self.description,
            "category": self.category,
            "stock": self.stock if self.stock is not None else 0,
            "pending_asset_name": self.image,
        }


@dataclass
class RowValidationResult:
    """Outcome of validating one CSV row."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    row: Optional[ProductRow] = None


def _format_error(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "row"
    return f"{location}: {error.get('msg', 'invalid value')}"


def validate_row(data: Mapping[str, Optional[str]]) -> RowValidationResult:
    """
    Validate a header-mapped CSV row.

    Missing required columns are reported on their own; type and format
    errors are only reported once every required column has a value.
    """
    errors = []
    for column in REQUIRED_COLUMNS:
        value = data.get(column)
        if value is None or str(value).strip() == "":
            errors.append(f"Missing required column: {column}")

    if errors:
        return RowValidationResult(valid=False, errors=errors)

    try:
        row = ProductRow.model_validate(dict(data))
    except ValidationError as e:
        return RowValidationResult(valid=False, errors=[_format_error(err) for err in e.errors()])

    return RowValidationResult(valid=True, row=row)


class CatalogRecord(BaseModel):
    """
    Catalog product as returned by a CatalogStore.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    sku: str
    name: str
    price: Decimal
    description: Optional[str] = None
    category: Optional[str] = None
    stock: int = 0
    pending_asset_name: Optional[str] = None
    primary_asset_id: Optional[int] = None


@dataclass
class UpsertOutcome:
    record: CatalogRecord
    created: bool

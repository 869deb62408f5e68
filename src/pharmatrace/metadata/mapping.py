"""Allow-listed mapping from gateway metadata documents onto batch fields.

Only the keys declared here are read; everything else in the remote document
is ignored so a malformed or hostile payload cannot touch unrelated columns.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pharmatrace.batches.models import BatchModel


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RemoteBatchProperties(BaseModel):
    model_config = ConfigDict(
        extra="ignore", populate_by_name=True, coerce_numbers_to_str=True,
    )

    strength: Optional[str] = None
    expiry: Optional[str] = None
    packing_type: Optional[str] = Field(None, alias="packingType")
    ingredients: Optional[str] = None
    storage_temp: Optional[str] = Field(None, alias="storageTemp")
    pack_composition: Optional[str] = Field(None, alias="packComposition")
    total_units_per_pack: Optional[int] = Field(None, alias="totalUnitsPerPack", ge=1)
    product_image: Optional[str] = Field(None, alias="productImage")
    base_unit_price: Optional[float] = Field(None, alias="baseUnitPrice", ge=0)
    base_unit_cost: Optional[float] = Field(None, alias="baseUnitCost", ge=0)

    @field_validator("ingredients", mode="before")
    @classmethod
    def _join_ingredients(cls, value: Any) -> Any:
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return _blank_to_none(value)

    @field_validator(
        "strength", "expiry", "packing_type", "storage_temp",
        "pack_composition", "product_image", mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator(
        "total_units_per_pack", "base_unit_price", "base_unit_cost", mode="before",
    )
    @classmethod
    def _drop_unparseable_number(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None or isinstance(value, (int, float)):
            return value
        try:
            float(value)
        except (TypeError, ValueError):
            return None
        return value


class RemoteBatchMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    name: Optional[str] = None
    image: Optional[str] = None
    properties: RemoteBatchProperties = Field(default_factory=RemoteBatchProperties)

    @field_validator("name", "image", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("properties", mode="before")
    @classmethod
    def _default_properties(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}

    def batch_fields(self) -> dict[str, Any]:
        """Batch column values carried by this document, absent keys omitted."""
        props = self.properties
        fields = {
            "product_name": self.name,
            "dosage_strength": props.strength,
            "expiry": props.expiry,
            "packing_type": props.packing_type,
            "ingredients": props.ingredients,
            "storage_temp": props.storage_temp,
            "pack_composition": props.pack_composition,
            "total_units_per_pack": props.total_units_per_pack,
            "product_image": self.image or props.product_image,
            "base_unit_price": props.base_unit_price,
            "base_unit_cost": props.base_unit_cost,
        }
        return {k: v for k, v in fields.items() if v is not None}


def apply_remote_metadata(batch: BatchModel, metadata: RemoteBatchMetadata) -> list[str]:
    """Copy present remote values onto the batch and recompute its value.

    Returns the names of the columns that were written.
    """
    fields = metadata.batch_fields()
    for name, value in fields.items():
        setattr(batch, name, value)

    units_per_pack = batch.total_units_per_pack or 1
    unit_price = batch.base_unit_price or 0.0
    batch.total_batch_value = batch.quantity * units_per_pack * unit_price
    return sorted(fields)

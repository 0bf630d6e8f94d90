from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductCategory(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int
    name: Optional[str] = None


class MetaEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: str
    value: Any = None


class Product(BaseModel):
    """The subset of a WooCommerce product the portal reads."""

    model_config = ConfigDict(extra="allow")

    id: int
    name: str = ""
    sku: Optional[str] = None
    categories: List[ProductCategory] = Field(default_factory=list)
    meta_data: List[MetaEntry] = Field(default_factory=list)

    @property
    def primary_category_id(self) -> Optional[int]:
        return self.categories[0].id if self.categories else None

    def meta_value(self, key: str) -> Any:
        for entry in self.meta_data:
            if entry.key == key:
                return entry.value
        return None


class BlueprintField(BaseModel):
    model_config = ConfigDict(extra="allow")

    field_name: str
    field_label: str = ""
    field_type: str = "text"
    default_value: Any = None
    blueprint_id: Optional[int] = None
    is_required: bool = False
    choices: Optional[Any] = None


class BlueprintSchema(BaseModel):
    category_id: int
    blueprint_id: Optional[int] = None
    fields: List[BlueprintField] = Field(default_factory=list)
    fetched_at: float = 0.0


class ResolvedField(BaseModel):
    field_name: str
    field_label: str
    field_type: str
    field_value: Any = ""


class ProductFieldData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)

    product_id: int = Field(alias="productId")
    fields: List[ResolvedField] = Field(default_factory=list)


class BatchLoadResponse(BaseModel):
    success: bool = True
    products: List[ProductFieldData]
    failed: int


class PreloadRequest(BaseModel):
    products: List[Product] = Field(default_factory=list)
    expanded: bool = True


class BlueprintFieldsUpdate(BaseModel):
    blueprint_fields: Optional[dict] = None

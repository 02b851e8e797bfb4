from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRODUCT_TITLE = "Product Title"
PRODUCT_DESCRIPTION = "Product Description"
SEO_TITLE = "SEO Title"
SEO_DESCRIPTION = "SEO Description"
TAGS = "Tags"
ALT_TEXT = "Alt Text"
METAFIELDS = "Metafields"

DESTINATION_FIELDS: tuple[str, ...] = (
    PRODUCT_TITLE,
    PRODUCT_DESCRIPTION,
    SEO_TITLE,
    SEO_DESCRIPTION,
    TAGS,
    ALT_TEXT,
    METAFIELDS,
)

SOURCE_FIELDS: tuple[str, ...] = (
    "Product Title",
    "Product Description",
    "SEO Title",
    "SEO Description",
    "Vendor",
    "Tags",
    "Min Variant Price",
    "Max Variant Price",
    "Options",
    "Total Inventory",
    "Images",
    "Metafield",
)

# Destination name -> generated field on a result.
GENERATED_FIELD_BY_DESTINATION: dict[str, str] = {
    PRODUCT_TITLE: "generatedTitle",
    PRODUCT_DESCRIPTION: "generatedDescription",
    SEO_TITLE: "generatedSeoTitle",
    SEO_DESCRIPTION: "generatedSeoDescription",
}

UNKNOWN_PRODUCT_TYPE = "Unknown"

ProductStatus = Literal["not-applied", "applied", "failed"]
SelectionType = Literal["products", "images"]


class CollectionRef(BaseModel):
    id: str
    title: str


class Product(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    title: str = ""
    vendor: str = ""
    productType: str = ""
    tags: list[str] = Field(default_factory=list)
    featuredImage: str | None = None
    collections: list[CollectionRef] = Field(default_factory=list)


class GenerationResult(Product):
    generatedTitle: str | None = None
    generatedDescription: str | None = None
    generatedSeoTitle: str | None = None
    generatedSeoDescription: str | None = None
    error: str | None = None
    status: ProductStatus | None = None

    def generated_values(self) -> dict[str, str]:
        values: dict[str, str] = {}
        for field_name in GENERATED_FIELD_BY_DESTINATION.values():
            value = getattr(self, field_name)
            if value:
                values[field_name] = value
        return values


class CatalogResponse(BaseModel):
    shopDomain: str
    products: list[Product]
    vendors: list[str]
    productTypes: list[str]
    tags: list[str]
    collections: list[CollectionRef]
    complete: bool = True
    warning: str | None = None


class FlowTemplate(BaseModel):
    id: str
    title: str
    description: str
    selectionType: SelectionType = "products"
    sourceFields: list[str]
    destinations: list[str]
    prompt: str


class Flow(BaseModel):
    id: str
    title: str
    description: str
    selectionType: SelectionType = "products"
    sourceFields: list[str]
    destinations: list[str]
    prompt: str = ""


class FlowCreateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    selectionType: SelectionType | None = None
    sourceFields: list[str] | None = None
    destinations: list[str] | None = None
    prompt: str | None = None
    preset: str | None = None


class FlowUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    selectionType: SelectionType | None = None
    sourceFields: list[str] | None = None
    destinations: list[str] | None = None
    prompt: str | None = None


class GenerateRequest(BaseModel):
    products: list[Product] = Field(default_factory=list)
    prompt: str = ""
    destinations: list[str] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    results: list[GenerationResult]


class UserError(BaseModel):
    field: list[str] | None = None
    message: str

    @field_validator("field", mode="before")
    @classmethod
    def coerce_field(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


class ApplySingleRequest(BaseModel):
    product: GenerationResult | None = None
    destinations: list[str] | None = None


class ApplySingleResponse(BaseModel):
    success: bool
    product: dict[str, Any] | None = None


class ApplyOutcome(BaseModel):
    productId: str
    success: bool
    skipped: bool = False
    product: dict[str, Any] | None = None
    userErrors: list[UserError] = Field(default_factory=list)
    error: str | None = None


class ApplySummary(BaseModel):
    total: int
    applied: int
    failed: int
    skipped: int


class ApplyAllRequest(BaseModel):
    products: list[GenerationResult] = Field(default_factory=list)
    destinations: list[str] = Field(default_factory=list)


class ApplyAllResponse(BaseModel):
    results: list[ApplyOutcome]
    summary: ApplySummary


class RunFlowSnapshot(BaseModel):
    id: str | None = None
    title: str | None = None
    description: str | None = None
    prompt: str
    sourceFields: list[str] = Field(default_factory=list)
    destinations: list[str] = Field(default_factory=list)


class RunRecord(BaseModel):
    runId: str
    createdAt: datetime
    flow: RunFlowSnapshot
    products: list[GenerationResult]
    generated: bool = False


class CreateRunRequest(BaseModel):
    flowId: str = Field(min_length=1)
    productIds: list[str] = Field(default_factory=list)
    products: list[Product] | None = None


class RunApplyRequest(BaseModel):
    productId: str = Field(min_length=1)

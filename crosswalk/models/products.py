"""Pydantic models for competitor and catalog product records.

Both record kinds are immutable once built: the engine only reads them.
Specification values arrive from spreadsheets, PDFs and e-mails in every
shape imaginable ("3 Ton", "16 SEER", 3.0), so numeric fields are coerced
at the boundary and anything unparseable degrades to None.
"""
import re
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from crosswalk.errors.exceptions import ValidationFailed

_NUMBER_PATTERN = re.compile(r"-?\d+(?:\.\d+)?")


def parse_numeric(value: Any) -> Optional[float]:
    """Extract the first number from a spec value.

    Args:
        value: Raw spec value (number, string like "3.5 Ton", or None)

    Returns:
        Parsed float, or None if no number can be found
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        match = _NUMBER_PATTERN.search(value.replace(",", ""))
        if match:
            return float(match.group())
    return None


class CompetitorSpecs(BaseModel):
    """Normalized competitor specifications.

    Attributes:
        tonnage: Cooling capacity in tons
        seer: Seasonal energy efficiency ratio
        eer: Energy efficiency ratio
        afue: Annual fuel utilization efficiency (percent)
        hspf: Heating seasonal performance factor
        refrigerant: Refrigerant designation (e.g. R-410A)
        voltage: Supply voltage
        product_type: Equipment type (AC, Heat Pump, Furnace, ...)
    """

    tonnage: Optional[float] = None
    seer: Optional[float] = None
    eer: Optional[float] = None
    afue: Optional[float] = None
    hspf: Optional[float] = None
    refrigerant: Optional[str] = None
    voltage: Optional[float] = None
    product_type: Optional[str] = None

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("tonnage", "seer", "eer", "afue", "hspf", "voltage", mode="before")
    @classmethod
    def coerce_numeric(cls, v):
        return parse_numeric(v)

    @field_validator("refrigerant", "product_type", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    def has_any(self) -> bool:
        """Whether at least one specification is present."""
        return any(value is not None for value in self.model_dump().values())


class CompetitorProduct(BaseModel):
    """An externally sourced product record to be matched.

    Attributes:
        sku: Competitor SKU (may be partial)
        company: Competitor company or brand name
        model: Model number, if known
        description: Free-text description
        price: Listed price
        specifications: Optional normalized specifications
    """

    sku: str = Field(default="", max_length=100)
    company: str = Field(default="", max_length=100)
    model: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    specifications: Optional[CompetitorSpecs] = None

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    @field_validator("sku", "company", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, v):
        if v is None or v == "":
            return None
        return parse_numeric(v)

    def has_identity(self) -> bool:
        """Whether the record carries any signal a stage could match on."""
        if self.sku or self.model or self.description:
            return True
        return self.specifications is not None and self.specifications.has_any()

    @classmethod
    def from_raw(cls, data: dict) -> "CompetitorProduct":
        """Build a competitor from an untrusted dict.

        Raises:
            ValidationFailed: If the payload does not validate or carries
                no identifying field at all
        """
        try:
            competitor = cls.model_validate(data)
        except ValidationError as e:
            raise ValidationFailed(
                "Malformed competitor record",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e
        validate_competitor(competitor)
        return competitor


def validate_competitor(competitor: CompetitorProduct) -> None:
    """Reject competitors that no stage could ever match.

    Raises:
        ValidationFailed: If SKU, model, description and specs are all empty
    """
    if not competitor.has_identity():
        raise ValidationFailed(
            "Competitor has no SKU, model, description or specifications",
            details={"company": competitor.company},
        )


class CatalogProduct(BaseModel):
    """One of our own products, owned by the catalog collaborator.

    Attributes:
        sku: Our SKU (unique within the catalog)
        model: Model number
        brand: Brand name
        product_type: Equipment type, serialized as ``type``
        tonnage, seer, seer2, eer, afue, hspf: Optional ratings
        refrigerant: Refrigerant designation
        price: List price
        stage: Compressor staging (single, two-stage, variable)
    """

    sku: str = Field(..., min_length=1, max_length=100)
    model: str = ""
    brand: str = ""
    product_type: str = Field(default="", alias="type")
    tonnage: Optional[float] = None
    seer: Optional[float] = None
    seer2: Optional[float] = None
    eer: Optional[float] = None
    afue: Optional[float] = None
    hspf: Optional[float] = None
    refrigerant: Optional[str] = None
    price: Optional[float] = Field(default=None, ge=0)
    stage: Optional[str] = None

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    @field_validator("tonnage", "seer", "seer2", "eer", "afue", "hspf", "price", mode="before")
    @classmethod
    def coerce_numeric(cls, v):
        return parse_numeric(v)

    @field_validator("model", "brand", "product_type", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    def specifications(self) -> dict:
        """Spec fields present on this product, for result echoing."""
        fields = ("tonnage", "seer", "seer2", "eer", "afue", "hspf", "refrigerant", "stage")
        return {
            name: getattr(self, name)
            for name in fields
            if getattr(self, name) is not None
        }

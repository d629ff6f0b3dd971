"""
component_schema.py — Pydantic models for the progress core.

Covers:
  - ImportRow: one normalized take-off line handed over by the CSV importer
  - MilestoneConfig / ProgressTemplate: ordered, weighted milestone lists
  - AggregateAttributes / ComponentAttributes: attribute variants per type
  - Component: the tracked physical item, as persisted
"""
import uuid
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pipetrak.config import AGGREGATE_TYPES, WEIGHT_TOTAL_TOLERANCE


def gen_uuid() -> str:
    return str(uuid.uuid4())


# bool must come first so True/False are not coerced to 1/0
MilestoneValue = Union[bool, int, float]

MilestoneKind = Literal["discrete", "partial", "quantity"]


# ---------------------------------------------------------------------------
# Import rows
# ---------------------------------------------------------------------------

class ImportRow(BaseModel):
    """
    One take-off line. Field aliases match the importer's JSON payload
    (``type``, ``cmdtyCode``, ``testPackage``, ``unmappedFields``).
    """
    model_config = ConfigDict(populate_by_name=True)

    component_type: str = Field(..., alias="type")
    drawing: str = ""
    cmdty_code: str = Field("", alias="cmdtyCode")
    size: Optional[str] = None
    qty: float = Field(..., allow_inf_nan=False, description="Units, or linear feet for aggregate types")
    line_number: Optional[str] = Field(None, description="Provenance token; defaults to the row number")
    spec: Optional[str] = None
    description: Optional[str] = None
    comments: Optional[str] = None
    area: Optional[str] = None
    system: Optional[str] = None
    test_package: Optional[str] = Field(None, alias="testPackage")
    unmapped_fields: Dict[str, Any] = Field(default_factory=dict, alias="unmappedFields")

    @field_validator("component_type")
    @classmethod
    def _lower_type(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("line_number", mode="before")
    @classmethod
    def _token_as_string(cls, v: Any) -> Optional[str]:
        if v is None or v == "":
            return None
        return str(v)


# ---------------------------------------------------------------------------
# Progress templates
# ---------------------------------------------------------------------------

class MilestoneConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, max_length=50)
    weight: float = Field(..., ge=0, le=100)
    order: int = Field(..., ge=1)
    kind: MilestoneKind = "discrete"
    requires_welder: bool = False


class ProgressTemplate(BaseModel):
    """
    Ordered, weighted milestone list for one component type.

    Weights must total exactly 100; construction fails otherwise. Milestones
    are kept sorted by ``order``. ``project_id`` is set for project-level
    overrides and left empty for system templates.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=gen_uuid)
    component_type: str
    version: int = Field(1, ge=1)
    workflow_type: Literal["discrete", "quantity", "hybrid"] = "discrete"
    project_id: Optional[str] = None
    milestones: Tuple[MilestoneConfig, ...]

    @field_validator("milestones")
    @classmethod
    def _sorted_by_order(cls, v: Tuple[MilestoneConfig, ...]) -> Tuple[MilestoneConfig, ...]:
        return tuple(sorted(v, key=lambda m: m.order))

    @model_validator(mode="after")
    def _check_weights(self) -> "ProgressTemplate":
        names = [m.name for m in self.milestones]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate milestone names in {self.component_type} template")
        total = sum(m.weight for m in self.milestones)
        if abs(total - 100.0) > WEIGHT_TOTAL_TOLERANCE:
            raise ValueError(
                f"Milestone weights for {self.component_type} total {total}, expected 100"
            )
        return self

    @property
    def total_weight(self) -> float:
        return sum(m.weight for m in self.milestones)


# ---------------------------------------------------------------------------
# Attribute variants
# ---------------------------------------------------------------------------

class ComponentAttributes(BaseModel):
    """Free-form attributes for non-aggregating types."""
    model_config = ConfigDict(extra="allow")


class AggregateAttributes(BaseModel):
    """
    Attributes of a quantity-bearing aggregate (threaded pipe).

    ``line_numbers`` is append-only and never holds the same token twice.
    """
    model_config = ConfigDict(extra="allow")

    original_qty: float = Field(0.0, allow_inf_nan=False)
    total_linear_feet: float = Field(0.0, allow_inf_nan=False)
    line_numbers: List[str] = Field(default_factory=list)

    @field_validator("line_numbers", mode="before")
    @classmethod
    def _tokens_as_strings(cls, v: Any) -> List[str]:
        tokens: List[str] = []
        for item in v or []:
            token = str(item)
            if token not in tokens:
                tokens.append(token)
        return tokens


def is_aggregate_identity(component_type: str, identity_key: Dict[str, Any]) -> bool:
    """Aggregate rows have no ``seq``; legacy per-seq threaded pipe rows do."""
    return component_type in AGGREGATE_TYPES and identity_key.get("seq") is None


# ---------------------------------------------------------------------------
# Component
# ---------------------------------------------------------------------------

class Component(BaseModel):
    """
    A trackable physical item.

    ``percent_complete`` is derived: only the progress calculator writes it.
    ``version`` is the optimistic-lock counter, bumped by the store on every
    successful write.
    """

    id: str = Field(default_factory=gen_uuid)
    project_id: str
    drawing_id: Optional[str] = None
    component_type: str
    identity_key: Dict[str, Any]
    attributes: Union[AggregateAttributes, ComponentAttributes] = Field(
        default_factory=ComponentAttributes
    )
    current_milestones: Dict[str, MilestoneValue] = Field(default_factory=dict)
    percent_complete: int = Field(0, ge=0, le=100)
    version: int = Field(1, ge=1)
    is_retired: bool = False
    progress_template_id: Optional[str] = None
    area_id: Optional[str] = None
    system_id: Optional[str] = None
    test_package_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _tag_attributes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        attrs = data.get("attributes")
        if attrs is None or isinstance(attrs, (AggregateAttributes, ComponentAttributes)):
            return data
        if isinstance(attrs, BaseModel):
            attrs = attrs.model_dump()
        ctype = str(data.get("component_type", "")).lower()
        key = data.get("identity_key") or {}
        variant = AggregateAttributes if is_aggregate_identity(ctype, key) else ComponentAttributes
        return {**data, "attributes": variant.model_validate(attrs)}

    @property
    def is_aggregate(self) -> bool:
        return is_aggregate_identity(self.component_type, self.identity_key)

    @property
    def total_quantity(self) -> Optional[float]:
        """Quantity denominator for quantity milestones; None for discrete types."""
        if isinstance(self.attributes, AggregateAttributes):
            return self.attributes.total_linear_feet
        return None

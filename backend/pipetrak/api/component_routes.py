"""Component routes — milestone updates, metadata assignment, drawing listings."""
import logging
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from pipetrak.api.deps import get_snapshot, get_store
from pipetrak.exceptions import (
    ComponentNotFound,
    ConcurrentUpdate,
    InvalidMilestoneUpdate,
    MissingTemplate,
)
from pipetrak.services.component_store import METADATA_FIELDS, ComponentStore
from pipetrak.services.display_formatter import assign_display_labels
from pipetrak.services.milestone_updates import apply_milestone_update
from pipetrak.services.milestone_weights import TemplateSnapshot

router = APIRouter(tags=["Components"])
logger = logging.getLogger("pipetrak-api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class MilestoneUpdateRequest(BaseModel):
    milestone: str
    value: Union[bool, Annotated[float, Field(allow_inf_nan=False)]]
    expected_version: int = Field(ge=1)


class MetadataUpdateRequest(BaseModel):
    expected_version: int = Field(ge=1)
    area_id: Optional[str] = None
    system_id: Optional[str] = None
    test_package_id: Optional[str] = None


def _component_out(component, label: Optional[str] = None) -> dict:
    out = component.model_dump(mode="json")
    if label is not None:
        out["display_label"] = label
    return out


# ─── Routes ──────────────────────────────────────────────────────────────────

@router.patch("/api/components/{component_id}/milestones")
async def update_milestone(
    component_id: str,
    body: MilestoneUpdateRequest,
    store: ComponentStore = Depends(get_store),
    snapshot: TemplateSnapshot = Depends(get_snapshot),
):
    try:
        component = await store.get(component_id)
        if component.version != body.expected_version:
            raise ConcurrentUpdate(component_id, body.expected_version, component.version)
        updated = apply_milestone_update(component, body.milestone, body.value, snapshot)
        saved = await store.save(updated, expected_version=body.expected_version)
    except ComponentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidMilestoneUpdate as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ConcurrentUpdate as e:
        raise HTTPException(status_code=409, detail=str(e))
    except MissingTemplate as e:
        logger.error("No template for component: %s", e, extra={"component_id": component_id})
        raise HTTPException(status_code=500, detail=str(e))
    return _component_out(saved)


@router.patch("/api/components/{component_id}/metadata")
async def update_metadata(
    component_id: str,
    body: MetadataUpdateRequest,
    store: ComponentStore = Depends(get_store),
):
    # Only fields present in the request body change; an explicit null clears
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if k in METADATA_FIELDS}
    if not changes:
        raise HTTPException(status_code=422, detail="No metadata fields supplied")
    try:
        component = await store.update_metadata(component_id, body.expected_version, **changes)
    except ComponentNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentUpdate as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _component_out(component)


@router.get("/api/drawings/{drawing_id}/components")
async def list_drawing_components(
    drawing_id: str,
    store: ComponentStore = Depends(get_store),
):
    components = await store.list_for_drawing(drawing_id)
    labels = assign_display_labels(components)
    return {
        "drawing_id": drawing_id,
        "count": len(components),
        "components": [_component_out(c, labels.get(c.id)) for c in components],
    }

"""Import routes — take-off rows into components."""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from pipetrak.api.deps import get_snapshot, get_store
from pipetrak.exceptions import ConcurrentUpdate, MissingTemplate
from pipetrak.services.component_store import ComponentStore
from pipetrak.services.import_pipeline import TakeoffImporter
from pipetrak.services.milestone_weights import TemplateSnapshot

router = APIRouter(prefix="/api/projects", tags=["Imports"])
logger = logging.getLogger("pipetrak-api")


# ─── Pydantic schemas ────────────────────────────────────────────────────────

class ImportRequest(BaseModel):
    # Rows are validated one by one so a bad row becomes an error entry, not a 422
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    # normalized drawing number -> drawing id
    drawing_ids: Optional[Dict[str, str]] = None


# ─── Routes ──────────────────────────────────────────────────────────────────

@router.post("/{project_id}/imports")
async def import_takeoff(
    project_id: str,
    body: ImportRequest,
    store: ComponentStore = Depends(get_store),
    snapshot: TemplateSnapshot = Depends(get_snapshot),
):
    existing = await store.list_for_project(project_id)
    try:
        result = TakeoffImporter().import_rows(
            project_id, body.rows, existing, snapshot, drawing_ids=body.drawing_ids
        )
    except MissingTemplate as e:
        logger.error("Import aborted: %s", e, extra={"project_id": project_id})
        raise HTTPException(status_code=500, detail=str(e))

    if not result.success:
        # Nothing is written when any row is rejected
        return result.summary()

    try:
        written = await store.apply_import(result)
    except ConcurrentUpdate as e:
        raise HTTPException(status_code=409, detail=str(e))

    summary = result.summary()
    summary.update(written)
    return summary

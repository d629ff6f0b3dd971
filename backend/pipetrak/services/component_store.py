"""
component_store.py — Persistence boundary for components and templates.

Every component write is a compare-and-swap on ``version``:

    UPDATE components SET ..., version = version + 1
    WHERE id = :id AND version = :expected

Zero rows matched means another writer got there first; the caller gets
ConcurrentUpdate and must reload. Nothing is merged or retried here.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pipetrak.config import AGGREGATE_TYPES, IMPORT_BATCH_SIZE
from pipetrak.exceptions import ComponentNotFound, ConcurrentUpdate
from pipetrak.models.component_schema import Component, MilestoneConfig, ProgressTemplate
from pipetrak.models.orm_models import ComponentRecord, ProgressTemplateRecord
from pipetrak.services.import_pipeline import ImportResult
from pipetrak.services.milestone_weights import TemplateSnapshot, build_system_templates

logger = logging.getLogger("pipetrak-db")

METADATA_FIELDS = ("area_id", "system_id", "test_package_id")

# CAS writes bypass the identity map, so reads must overwrite cached rows
_FRESH = {"populate_existing": True}


def storage_token(identity_key: Dict[str, Any]) -> str:
    return json.dumps(identity_key, sort_keys=True, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Record <-> model conversion
# ---------------------------------------------------------------------------

def template_from_record(record: ProgressTemplateRecord) -> ProgressTemplate:
    milestones = []
    for i, m in enumerate(record.milestones_config or [], start=1):
        # Older rows carry is_partial instead of kind
        kind = m.get("kind") or ("partial" if m.get("is_partial") else "discrete")
        milestones.append(MilestoneConfig(
            name=m["name"],
            weight=float(m["weight"]),
            order=int(m.get("order", i)),
            kind=kind,
            requires_welder=bool(m.get("requires_welder", False)),
        ))
    return ProgressTemplate(
        id=record.id,
        component_type=record.component_type,
        version=record.version,
        workflow_type=record.workflow_type,
        project_id=record.project_id,
        milestones=tuple(milestones),
    )


def template_values(template: ProgressTemplate) -> Dict[str, Any]:
    return {
        "id": template.id,
        "project_id": template.project_id,
        "component_type": template.component_type,
        "version": template.version,
        "workflow_type": template.workflow_type,
        "milestones_config": [m.model_dump() for m in template.milestones],
    }


def component_from_record(record: ComponentRecord) -> Component:
    return Component.model_validate({
        "id": record.id,
        "project_id": record.project_id,
        "drawing_id": record.drawing_id,
        "component_type": record.component_type,
        "identity_key": record.identity_key,
        "attributes": record.attributes or {},
        "current_milestones": record.current_milestones or {},
        "percent_complete": record.percent_complete,
        "version": record.version,
        "is_retired": record.is_retired,
        "progress_template_id": record.progress_template_id,
        "area_id": record.area_id,
        "system_id": record.system_id,
        "test_package_id": record.test_package_id,
    })


def _mutable_values(component: Component) -> Dict[str, Any]:
    return {
        "drawing_id": component.drawing_id,
        "progress_template_id": component.progress_template_id,
        "attributes": component.attributes.model_dump(),
        "current_milestones": dict(component.current_milestones),
        "percent_complete": component.percent_complete,
        "is_retired": component.is_retired,
        "area_id": component.area_id,
        "system_id": component.system_id,
        "test_package_id": component.test_package_id,
    }


def component_values(component: Component) -> Dict[str, Any]:
    return {
        "id": component.id,
        "project_id": component.project_id,
        "component_type": component.component_type,
        "identity_token": storage_token(component.identity_key),
        "identity_key": dict(component.identity_key),
        "version": component.version,
        **_mutable_values(component),
    }


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

async def seed_system_templates(session: AsyncSession) -> int:
    """Insert any missing system templates. Returns how many were added."""
    existing = set((await session.execute(select(ProgressTemplateRecord.id))).scalars().all())
    missing = [template_values(t) for t in build_system_templates() if t.id not in existing]
    if missing:
        await session.execute(insert(ProgressTemplateRecord), missing)
    return len(missing)


# ---------------------------------------------------------------------------
# ComponentStore
# ---------------------------------------------------------------------------

class ComponentStore:
    """Async component repository bound to one session (one unit of work)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # -- templates ------------------------------------------------------------

    async def load_snapshot(self) -> TemplateSnapshot:
        records = (await self.session.execute(select(ProgressTemplateRecord))).scalars().all()
        return TemplateSnapshot(template_from_record(r) for r in records)

    async def save_template(self, template: ProgressTemplate) -> None:
        """Store a template version. Existing versions are immutable."""
        await self.session.execute(insert(ProgressTemplateRecord), [template_values(template)])

    # -- reads ----------------------------------------------------------------

    async def get(self, component_id: str) -> Component:
        record = await self.session.get(ComponentRecord, component_id, populate_existing=True)
        if record is None:
            raise ComponentNotFound(component_id)
        return component_from_record(record)

    async def list_for_project(self, project_id: str, include_retired: bool = False) -> List[Component]:
        stmt = select(ComponentRecord).where(ComponentRecord.project_id == project_id)
        if not include_retired:
            stmt = stmt.where(ComponentRecord.is_retired.is_(False))
        stmt = stmt.order_by(ComponentRecord.created_at)
        records = (await self.session.execute(stmt, execution_options=_FRESH)).scalars().all()
        return [component_from_record(r) for r in records]

    async def list_for_drawing(self, drawing_id: str, include_retired: bool = False) -> List[Component]:
        stmt = select(ComponentRecord).where(ComponentRecord.drawing_id == drawing_id)
        if not include_retired:
            stmt = stmt.where(ComponentRecord.is_retired.is_(False))
        records = (await self.session.execute(stmt, execution_options=_FRESH)).scalars().all()
        return [component_from_record(r) for r in records]

    async def find_aggregates(self, project_id: str) -> List[Component]:
        """Live aggregate (quantity-summed) components of a project."""
        stmt = select(ComponentRecord).where(
            ComponentRecord.project_id == project_id,
            ComponentRecord.component_type.in_(sorted(AGGREGATE_TYPES)),
            ComponentRecord.is_retired.is_(False),
        )
        records = (await self.session.execute(stmt, execution_options=_FRESH)).scalars().all()
        return [c for c in (component_from_record(r) for r in records) if c.is_aggregate]

    # -- writes ---------------------------------------------------------------

    async def insert(self, component: Component) -> Component:
        await self.session.execute(insert(ComponentRecord), [component_values(component)])
        return component

    async def insert_many(self, components: Iterable[Component], batch_size: int = IMPORT_BATCH_SIZE) -> int:
        rows = [component_values(c) for c in components]
        for i in range(0, len(rows), batch_size):
            await self.session.execute(insert(ComponentRecord), rows[i:i + batch_size])
        return len(rows)

    async def save(self, component: Component, expected_version: Optional[int] = None) -> Component:
        """
        Compare-and-swap write of every mutable field.

        ``expected_version`` defaults to ``component.version``. Returns the
        component carrying its new version. Raises ConcurrentUpdate or
        ComponentNotFound.
        """
        expected = component.version if expected_version is None else expected_version
        await self._swap(component.id, expected, _mutable_values(component))
        return component.model_copy(update={"version": expected + 1})

    async def update_metadata(self, component_id: str, expected_version: int, **changes: Optional[str]) -> Component:
        """Assign area / system / test package, version-checked on its own."""
        unknown = set(changes) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Not metadata fields: {sorted(unknown)}")
        await self._swap(component_id, expected_version, changes)
        return await self.get(component_id)

    async def retire(self, component_id: str, expected_version: int) -> Component:
        await self._swap(component_id, expected_version, {"is_retired": True})
        return await self.get(component_id)

    async def apply_import(self, result: ImportResult) -> Dict[str, int]:
        """Persist an import result: inserts first, then version-checked updates."""
        created = await self.insert_many(result.created)
        for component in result.updated:
            await self.save(component)
        return {"inserted": created, "updated": len(result.updated)}

    async def _swap(self, component_id: str, expected_version: int, values: Dict[str, Any]) -> None:
        stmt = (
            update(ComponentRecord)
            .where(ComponentRecord.id == component_id, ComponentRecord.version == expected_version)
            .values(**values, version=ComponentRecord.version + 1)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        if res.rowcount == 1:
            return
        actual = await self.session.scalar(
            select(ComponentRecord.version).where(ComponentRecord.id == component_id)
        )
        if actual is None:
            raise ComponentNotFound(component_id)
        logger.warning(
            "Version conflict: expected %s, found %s",
            expected_version,
            actual,
            extra={"component_id": component_id},
        )
        raise ConcurrentUpdate(component_id, expected_version, actual)

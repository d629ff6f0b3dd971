"""
import_pipeline.py — Take-off import: rows in, new and updated components out.

Routing per row:
  - qty == 0                 → skipped with a warning
  - aggregate type           → QuantityAggregator (one row per identity,
                               repeated identities in the batch fold together)
  - spool / field_weld /
    instrument               → one component
  - everything else          → qty components, seq 1..qty

Row-level failures (InvalidIdentity, DuplicateIdentity, InvalidQuantity) are
collected and never stop the batch. MissingTemplate aborts the import.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from pipetrak.config import AGGREGATE_TYPES
from pipetrak.exceptions import (
    DuplicateIdentity,
    InvalidQuantity,
    RowValidationError,
)
from pipetrak.models.component_schema import Component, ComponentAttributes, ImportRow
from pipetrak.services.identity_resolver import (
    IdentityResolver,
    ResolvedIdentity,
    identity_token,
    normalize_drawing,
)
from pipetrak.services.milestone_weights import MilestoneWeightResolver, TemplateSnapshot
from pipetrak.services.progress_calculator import ProgressCalculator
from pipetrak.services.quantity_aggregator import QuantityAggregator, zero_state

logger = logging.getLogger("pipetrak-import")

IdentityIndexKey = Tuple[str, Tuple[Tuple[str, Any], ...]]


class ImportResult(BaseModel):
    success: bool = True
    created: List[Component] = Field(default_factory=list)
    updated: List[Component] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
    components_by_type: Dict[str, int] = Field(default_factory=dict)
    duration_ms: float = 0.0

    def summary(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "components_created": len(self.created),
            "components_updated": len(self.updated),
            "components_by_type": self.components_by_type,
            "errors": self.errors,
            "warnings": self.warnings,
            "duration_ms": self.duration_ms,
        }


def _index_key(identity: ResolvedIdentity) -> IdentityIndexKey:
    return (identity.component_type, identity.token)


class TakeoffImporter:
    """
    Turns a batch of take-off rows into component writes.

    The importer does not touch storage: it receives the project's live
    components and returns what to insert and what to update.
    """

    def __init__(
        self,
        resolver: Optional[IdentityResolver] = None,
        calculator: Optional[ProgressCalculator] = None,
    ) -> None:
        self.resolver = resolver or IdentityResolver()
        self.calculator = calculator or ProgressCalculator()
        self.aggregator = QuantityAggregator(self.calculator)

    def import_rows(
        self,
        project_id: str,
        rows: Iterable[Union[ImportRow, Mapping[str, Any]]],
        existing: Iterable[Component],
        snapshot: TemplateSnapshot,
        drawing_ids: Optional[Mapping[str, str]] = None,
    ) -> ImportResult:
        """
        Import ``rows`` (1-based row numbers) into ``project_id``.

        ``drawing_ids`` maps normalized drawing numbers to drawing ids; when a
        drawing is missing the normalized number itself is used.
        """
        start = time.perf_counter()
        result = ImportResult()

        live: Dict[IdentityIndexKey, Component] = {}
        for component in existing:
            if not component.is_retired:
                live[(component.component_type, identity_token(component.identity_key))] = component

        aggregates: Dict[IdentityIndexKey, Component] = {}
        seen: Dict[IdentityIndexKey, int] = {}

        for row_number, raw in enumerate(rows, start=1):
            try:
                row = raw if isinstance(raw, ImportRow) else ImportRow.model_validate(raw)
            except ValidationError as exc:
                result.errors.append({
                    "row": row_number,
                    "issue": f"Malformed row: {exc.errors()[0].get('msg', 'invalid')}",
                    "kind": "ValidationError",
                })
                continue

            try:
                if row.qty == 0:
                    raise InvalidQuantity("qty is 0; row skipped", row=row_number, drawing=row.drawing)
                if row.qty < 0:
                    raise InvalidQuantity(
                        f"Invalid qty: must be > 0, got {row.qty}", row=row_number, drawing=row.drawing
                    )
                drawing_id = self._drawing_id(row, drawing_ids)
                if row.component_type in AGGREGATE_TYPES:
                    self._import_aggregate(
                        project_id, row, row_number, drawing_id, snapshot, live, aggregates
                    )
                else:
                    result.created.extend(self._import_discrete(
                        project_id, row, row_number, drawing_id, snapshot, live, seen
                    ))
            except InvalidQuantity as exc:
                logger.warning("Row %s skipped: %s", row_number, exc.message, extra={"project_id": project_id})
                result.warnings.append(exc.to_detail())
            except RowValidationError as exc:
                logger.warning("Row %s rejected: %s", row_number, exc.message, extra={"project_id": project_id})
                result.errors.append(exc.to_detail())

        for key, component in aggregates.items():
            if key in live:
                result.updated.append(component)
            else:
                result.created.append(component)

        for component in result.created + result.updated:
            ctype = component.component_type
            result.components_by_type[ctype] = result.components_by_type.get(ctype, 0) + 1

        result.success = not result.errors
        result.duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "Import finished: %d created, %d updated, %d errors, %d warnings",
            len(result.created),
            len(result.updated),
            len(result.errors),
            len(result.warnings),
            extra={"project_id": project_id, "duration_ms": result.duration_ms},
        )
        return result

    # -----------------------------------------------------------------------
    # Routing helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _drawing_id(row: ImportRow, drawing_ids: Optional[Mapping[str, str]]) -> Optional[str]:
        if not row.drawing or not row.drawing.strip():
            return None
        norm = normalize_drawing(row.drawing)
        if drawing_ids and norm in drawing_ids:
            return drawing_ids[norm]
        return norm

    def _import_aggregate(
        self,
        project_id: str,
        row: ImportRow,
        row_number: int,
        drawing_id: Optional[str],
        snapshot: TemplateSnapshot,
        live: Dict[IdentityIndexKey, Component],
        aggregates: Dict[IdentityIndexKey, Component],
    ) -> None:
        identity = self.resolver.resolve(row, row_number=row_number)
        key = _index_key(identity)
        current = aggregates.get(key) or live.get(key)
        token = row.line_number or str(row_number)
        aggregates[key] = self.aggregator.merge(
            current,
            row,
            token,
            identity,
            snapshot,
            project_id=project_id,
            drawing_id=drawing_id,
            row_number=row_number,
        )

    def _import_discrete(
        self,
        project_id: str,
        row: ImportRow,
        row_number: int,
        drawing_id: Optional[str],
        snapshot: TemplateSnapshot,
        live: Dict[IdentityIndexKey, Component],
        seen: Dict[IdentityIndexKey, int],
    ) -> List[Component]:
        identities = self.resolver.expand(row, row_number=row_number)

        for identity in identities:
            key = _index_key(identity)
            if key in seen:
                raise DuplicateIdentity(
                    f"Duplicate identity key \"{identity.identity_group_key}\" "
                    f"(first seen at row {seen[key]})",
                    row=row_number,
                    drawing=row.drawing,
                )
            if key in live:
                raise DuplicateIdentity(
                    f"Identity \"{identity.identity_group_key}\" already exists in this project",
                    row=row_number,
                    drawing=row.drawing,
                )

        table = MilestoneWeightResolver(snapshot).resolve(row.component_type, project_id=project_id)
        attributes = ComponentAttributes.model_validate({
            "spec": row.spec or "",
            "description": row.description or "",
            "size": row.size or "",
            "cmdty_code": row.cmdty_code,
            "comments": row.comments or "",
            "original_qty": row.qty,
            **row.unmapped_fields,
        })

        created: List[Component] = []
        for identity in identities:
            seen[_index_key(identity)] = row_number
            component = Component(
                project_id=project_id,
                drawing_id=drawing_id,
                component_type=identity.component_type,
                identity_key=dict(identity.identity_key),
                progress_template_id=table.template.id,
                attributes=attributes.model_copy(),
                current_milestones=zero_state(table),
            )
            created.append(self.calculator.recompute(component, snapshot))
        return created

"""
quantity_aggregator.py — Duplicate-import merge for aggregate component types.

One aggregate row exists per identity (threaded pipe: drawing + size +
commodity). Every further import of that identity:

  - adds its qty to total_linear_feet
  - appends its provenance token to line_numbers unless already present
    (the qty is summed even when the token repeats)
  - leaves current_milestones untouched: completed linear feet are absolute,
    so growing the total lowers the percentage

percent_complete is re-derived after every merge.
"""

import logging
import math
from typing import Any, Dict, Optional

from pipetrak.config import AGGREGATE_TYPES
from pipetrak.exceptions import InvalidQuantity
from pipetrak.models.component_schema import (
    AggregateAttributes,
    Component,
    ImportRow,
    MilestoneValue,
)
from pipetrak.services.identity_resolver import ResolvedIdentity
from pipetrak.services.milestone_weights import MilestoneWeightResolver, TemplateSnapshot, WeightTable
from pipetrak.services.progress_calculator import ProgressCalculator

logger = logging.getLogger("pipetrak-import")


def zero_state(table: WeightTable) -> Dict[str, MilestoneValue]:
    """Initial milestones: False for discrete, 0 for partial/quantity."""
    return {m.name: (False if m.kind == "discrete" else 0) for m in table.milestones}


def _row_attributes(row: ImportRow) -> Dict[str, Any]:
    return {
        "spec": row.spec or "",
        "description": row.description or "",
        "size": row.size or "",
        "cmdty_code": row.cmdty_code,
        "comments": row.comments or "",
        **row.unmapped_fields,
    }


class QuantityAggregator:
    """Creates or grows aggregate components. Holds no state between calls."""

    def __init__(self, calculator: Optional[ProgressCalculator] = None) -> None:
        self.calculator = calculator or ProgressCalculator()

    def merge(
        self,
        existing: Optional[Component],
        row: ImportRow,
        token: str,
        identity: ResolvedIdentity,
        snapshot: TemplateSnapshot,
        project_id: str,
        drawing_id: Optional[str] = None,
        row_number: Optional[int] = None,
    ) -> Component:
        """
        Fold one row into the aggregate for ``identity``.

        ``existing`` is the stored aggregate, or None on first import. The
        existing component is never mutated; a new one is returned with the
        same id and version (the store bumps the version on save).

        Raises InvalidQuantity for a non-finite or non-positive qty before anything changes, and
        MissingTemplate when the type has no template.
        """
        if not math.isfinite(row.qty) or row.qty <= 0:
            raise InvalidQuantity(
                f"Invalid qty: must be > 0, got {row.qty}", row=row_number, drawing=row.drawing
            )
        if identity.component_type not in AGGREGATE_TYPES:
            raise ValueError(f"{identity.component_type} is not an aggregate type")

        qty = float(row.qty)
        token = str(token)

        if existing is None:
            table = MilestoneWeightResolver(snapshot).resolve(identity.component_type, project_id=project_id)
            attrs = _row_attributes(row)
            attrs.update(original_qty=qty, total_linear_feet=qty, line_numbers=[token])
            component = Component(
                project_id=project_id,
                drawing_id=drawing_id,
                component_type=identity.component_type,
                identity_key=dict(identity.identity_key),
                progress_template_id=table.template.id,
                attributes=AggregateAttributes.model_validate(attrs),
                current_milestones=zero_state(table),
            )
            logger.debug(
                "Created aggregate %s with %s LF",
                identity.identity_group_key,
                qty,
                extra={"component_id": component.id, "project_id": project_id},
            )
            return self.calculator.recompute(component, snapshot)

        old = existing.attributes
        if not isinstance(old, AggregateAttributes):
            old = AggregateAttributes.model_validate(old.model_dump())

        line_numbers = list(old.line_numbers)
        if token not in line_numbers:
            line_numbers.append(token)

        attributes = old.model_copy(update={
            "total_linear_feet": old.total_linear_feet + qty,
            "line_numbers": line_numbers,
        })
        merged = existing.model_copy(update={
            "attributes": attributes,
            "current_milestones": dict(existing.current_milestones),
        })
        logger.debug(
            "Merged %s LF into %s (total %s)",
            qty,
            identity.identity_group_key,
            attributes.total_linear_feet,
            extra={"component_id": existing.id, "project_id": project_id},
        )
        return self.calculator.recompute(merged, snapshot)

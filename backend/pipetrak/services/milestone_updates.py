"""
milestone_updates.py — Field-work milestone writes.

Every write to current_milestones goes through apply_milestone_update so the
percentage is recomputed before the component reaches the store.

Accepted values by milestone kind:
  discrete   bool, or 0 / 1 / 100
  partial    number in [0, 100]
  quantity   number in [0, current total] (absolute linear feet)
"""

import logging
import math
from typing import Any, Optional, Union

from pipetrak.exceptions import InvalidMilestoneUpdate
from pipetrak.models.component_schema import Component, MilestoneConfig
from pipetrak.services.milestone_weights import MilestoneWeightResolver, TemplateSnapshot
from pipetrak.services.progress_calculator import ProgressCalculator

logger = logging.getLogger("pipetrak-progress")

_DISCRETE_NUMBERS = (0, 1, 100)


def validate_milestone_value(
    milestone: MilestoneConfig,
    value: Union[bool, int, float],
    total_quantity: Optional[float] = None,
) -> Union[bool, int, float]:
    """Return the value to store, or raise InvalidMilestoneUpdate."""
    if milestone.kind == "discrete":
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)) and value in _DISCRETE_NUMBERS:
            return value != 0
        raise InvalidMilestoneUpdate(milestone.name, "discrete milestones take true/false")

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidMilestoneUpdate(milestone.name, f"{milestone.kind} milestones take a number")
    if not math.isfinite(value):
        raise InvalidMilestoneUpdate(milestone.name, "value must be a finite number")
    if value < 0:
        raise InvalidMilestoneUpdate(milestone.name, "value must be at least 0")

    if milestone.kind == "partial":
        if value > 100:
            raise InvalidMilestoneUpdate(milestone.name, "value must be at most 100")
        return value

    if total_quantity is None:
        raise InvalidMilestoneUpdate(milestone.name, "component has no quantity total")
    if value > total_quantity:
        raise InvalidMilestoneUpdate(
            milestone.name, f"value {value} exceeds total quantity {total_quantity}"
        )
    return value


def apply_milestone_update(
    component: Component,
    milestone_name: str,
    value: Any,
    snapshot: TemplateSnapshot,
    calculator: Optional[ProgressCalculator] = None,
) -> Component:
    """
    Copy of ``component`` with one milestone set and percent recomputed.

    A legacy milestone name is written under its current template name; other
    stored keys (including unrecognized legacy ones) are kept as they are.
    """
    table = MilestoneWeightResolver(snapshot).resolve(
        component.component_type,
        project_id=component.project_id,
        template_id=component.progress_template_id,
    )
    canonical = table.canonical_name(milestone_name)
    if canonical is None:
        raise InvalidMilestoneUpdate(
            milestone_name, f"not a milestone of template {table.template.id}"
        )
    milestone = table.get(canonical)
    stored = validate_milestone_value(milestone, value, component.total_quantity)

    milestones = dict(component.current_milestones)
    milestones[canonical] = stored
    updated = component.model_copy(update={"current_milestones": milestones})
    updated = (calculator or ProgressCalculator()).recompute(updated, snapshot)
    logger.info(
        "Milestone %s set to %s (%s%% -> %s%%)",
        canonical,
        stored,
        component.percent_complete,
        updated.percent_complete,
        extra={"component_id": component.id, "project_id": component.project_id},
    )
    return updated

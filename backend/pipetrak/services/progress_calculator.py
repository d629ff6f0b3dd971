"""
progress_calculator.py — Weighted percent-complete for components.

percent_complete is a pure function of:
  - current_milestones (stored values, possibly under legacy names)
  - the resolved weight table
  - the quantity denominator (aggregate total) for quantity milestones

Milestone contributions:
  discrete   weight            if complete, else 0
  partial    weight * v / 100  (v is a 0–100 percentage)
  quantity   weight * v / total, using the component's *current* total

Contributions are summed unrounded, rounded once (half-up) to a whole
percent, then clamped to [0, 100].
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pipetrak.config import DISCRETE_COMPLETE_THRESHOLD
from pipetrak.models.component_schema import Component, MilestoneConfig
from pipetrak.services.milestone_weights import (
    MilestoneWeightResolver,
    TemplateSnapshot,
    WeightTable,
)

logger = logging.getLogger("pipetrak-progress")


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def milestone_number(value: Any) -> float:
    """Stored milestone value as a number; booleans map to 1/0, junk to 0."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "t", "yes"):
            return 1.0
        if text in ("false", "f", "no", ""):
            return 0.0
        try:
            return float(text)
        except ValueError:
            return 0.0
    return 0.0


def is_milestone_complete(value: Any) -> bool:
    """Discrete completion: True, or a number on either the 0/1 or 0/100 scale."""
    if isinstance(value, bool):
        return value
    return milestone_number(value) >= DISCRETE_COMPLETE_THRESHOLD


def _stored_value(current_milestones: Mapping[str, Any], milestone: MilestoneConfig, table: WeightTable) -> Any:
    """Value for ``milestone``; the current name wins over any legacy alias."""
    if milestone.name in current_milestones:
        return current_milestones[milestone.name]
    for stored_name, value in current_milestones.items():
        if stored_name != milestone.name and table.canonical_name(stored_name) == milestone.name:
            return value
    return None


def _contribution(milestone: MilestoneConfig, value: Any, total_quantity: Optional[float]) -> float:
    if value is None:
        return 0.0
    if milestone.kind == "discrete":
        return milestone.weight if is_milestone_complete(value) else 0.0
    if milestone.kind == "partial":
        pct = min(max(milestone_number(value), 0.0), 100.0)
        return milestone.weight * pct / 100.0
    # quantity
    if not total_quantity or total_quantity <= 0:
        # a zero-quantity aggregate should not exist; count nothing
        return 0.0
    return milestone.weight * milestone_number(value) / total_quantity


def round_percent(raw: float) -> int:
    """Half-up to a whole percent, clamped to [0, 100]."""
    rounded = int(Decimal(repr(raw)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))


# ---------------------------------------------------------------------------
# ProgressCalculator
# ---------------------------------------------------------------------------

class ProgressCalculator:
    """Stateless percent-complete calculator."""

    def calculate(
        self,
        current_milestones: Mapping[str, Any],
        table: WeightTable,
        total_quantity: Optional[float] = None,
    ) -> int:
        """Weighted percent complete in [0, 100]."""
        raw = sum(
            _contribution(m, _stored_value(current_milestones, m, table), total_quantity)
            for m in table.milestones
        )
        return round_percent(raw)

    def breakdown(
        self,
        current_milestones: Mapping[str, Any],
        table: WeightTable,
        total_quantity: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Itemised contributions for audit views.

        Returns per-milestone weight and unrounded contribution, the raw sum,
        the final percent and the stored keys that were ignored.
        """
        items: List[Dict[str, Any]] = []
        raw = 0.0
        for m in table.milestones:
            value = _stored_value(current_milestones, m, table)
            contribution = _contribution(m, value, total_quantity)
            raw += contribution
            items.append({
                "milestone": m.name,
                "kind": m.kind,
                "weight": m.weight,
                "value": value,
                "contribution": round(contribution, 4),
            })
        return {
            "template_id": table.template.id,
            "template_version": table.template.version,
            "total_quantity": total_quantity,
            "milestones": items,
            "raw_percent": round(raw, 4),
            "percent_complete": round_percent(raw),
            "ignored_keys": table.unrecognized(current_milestones),
        }

    def recompute(self, component: Component, snapshot: TemplateSnapshot) -> Component:
        """
        Copy of ``component`` with percent_complete re-derived.

        Stored milestone values are carried over untouched, including keys the
        current template no longer recognizes. Raises MissingTemplate.
        """
        table = MilestoneWeightResolver(snapshot).resolve(
            component.component_type,
            project_id=component.project_id,
            template_id=component.progress_template_id,
        )
        percent = self.calculate(component.current_milestones, table, component.total_quantity)
        ignored = table.unrecognized(component.current_milestones)
        if ignored:
            logger.debug(
                "Ignoring milestone keys %s not in template %s",
                ignored,
                table.template.id,
                extra={"component_id": component.id},
            )
        return component.model_copy(update={"percent_complete": percent})

    def recompute_all(self, components: Iterable[Component], snapshot: TemplateSnapshot) -> List[Component]:
        """Re-derive every percentage, e.g. after a template weight edit."""
        return [self.recompute(c, snapshot) for c in components]


def calculate_percent_complete(
    current_milestones: Mapping[str, Any],
    table: WeightTable,
    total_quantity: Optional[float] = None,
) -> int:
    return ProgressCalculator().calculate(current_milestones, table, total_quantity)

"""
test_milestone_updates.py — Unit tests for apply_milestone_update.

Tests cover:
  - Discrete writes (bool and 0/1/100) and the recomputed percent
  - Quantity writes bounded by the aggregate's current total
  - Partial writes on a project hybrid template
  - Legacy milestone names written under the current name
  - Rejections: unknown milestone, wrong value type, out of range
"""

import pytest

from pipetrak.exceptions import InvalidMilestoneUpdate, MissingTemplate
from pipetrak.models.component_schema import Component, MilestoneConfig, ProgressTemplate
from pipetrak.services.milestone_updates import apply_milestone_update, validate_milestone_value
from pipetrak.services.milestone_weights import TemplateSnapshot

PROJECT_ID = "11111111-1111-1111-1111-111111111111"


@pytest.fixture
def weld():
    return Component(
        project_id=PROJECT_ID,
        component_type="field_weld",
        identity_key={"weld_number": "W-001"},
        progress_template_id="system:field_weld:v1",
        current_milestones={"Fit-up": False, "Weld Complete": False},
    )


@pytest.fixture
def pipe():
    return Component(
        project_id=PROJECT_ID,
        component_type="threaded_pipe",
        identity_key={"pipe_id": "P-001-1-PIPE-SCH40-AGG"},
        progress_template_id="system:threaded_pipe:v1",
        attributes={"original_qty": 50, "total_linear_feet": 50, "line_numbers": ["1"]},
    )


class TestDiscreteUpdates:

    def test_weld_complete(self, weld, snapshot):
        """Weld Complete = 60."""
        out = apply_milestone_update(weld, "Weld Complete", True, snapshot)
        assert out.current_milestones["Weld Complete"] is True
        assert out.percent_complete == 60
        assert weld.percent_complete == 0

    @pytest.mark.parametrize("value,stored", [(1, True), (100, True), (0, False)])
    def test_numeric_discrete(self, weld, snapshot, value, stored):
        out = apply_milestone_update(weld, "Fit-up", value, snapshot)
        assert out.current_milestones["Fit-up"] is stored

    def test_discrete_rejects_other_numbers(self, weld, snapshot):
        with pytest.raises(InvalidMilestoneUpdate):
            apply_milestone_update(weld, "Fit-up", 50, snapshot)

    def test_legacy_name_written_under_current_name(self, weld, snapshot):
        out = apply_milestone_update(weld, "Weld Made", True, snapshot)
        assert out.current_milestones["Weld Complete"] is True
        assert "Weld Made" not in out.current_milestones

    def test_unknown_milestone(self, weld, snapshot):
        with pytest.raises(InvalidMilestoneUpdate, match="not a milestone"):
            apply_milestone_update(weld, "Paint", True, snapshot)

    def test_missing_template(self, weld):
        with pytest.raises(MissingTemplate):
            apply_milestone_update(weld, "Fit-up", True, TemplateSnapshot([]))


class TestQuantityUpdates:

    def test_linear_feet(self, pipe, snapshot):
        """Fabricate_LF 25 of 50 -> 16×0.5 = 8."""
        out = apply_milestone_update(pipe, "Fabricate_LF", 25, snapshot)
        assert out.percent_complete == 8

    def test_full_length_allowed(self, pipe, snapshot):
        assert apply_milestone_update(pipe, "Install_LF", 50, snapshot).percent_complete == 16

    def test_above_total_rejected(self, pipe, snapshot):
        with pytest.raises(InvalidMilestoneUpdate, match="exceeds"):
            apply_milestone_update(pipe, "Fabricate_LF", 50.5, snapshot)

    def test_negative_rejected(self, pipe, snapshot):
        with pytest.raises(InvalidMilestoneUpdate):
            apply_milestone_update(pipe, "Fabricate_LF", -1, snapshot)

    def test_bool_rejected(self, pipe, snapshot):
        with pytest.raises(InvalidMilestoneUpdate):
            apply_milestone_update(pipe, "Fabricate_LF", True, snapshot)


class TestPartialUpdates:

    def test_hybrid_partial(self, snapshot):
        tpl = ProgressTemplate(
            id="proj:valve:v1",
            component_type="valve",
            project_id=PROJECT_ID,
            workflow_type="hybrid",
            milestones=(MilestoneConfig(name="Receive", weight=20, order=1),
                        MilestoneConfig(name="Install", weight=80, order=2, kind="partial")),
        )
        valve = Component(
            project_id=PROJECT_ID,
            component_type="valve",
            identity_key={"drawing_norm": "P-001", "commodity_code": "V", "size": "2", "seq": 1},
        )
        snap = snapshot.with_templates([tpl])
        out = apply_milestone_update(valve, "Install", 25, snap)
        assert out.percent_complete == 20
        with pytest.raises(InvalidMilestoneUpdate, match="at most 100"):
            apply_milestone_update(valve, "Install", 120, snap)

    def test_quantity_without_total(self):
        m = MilestoneConfig(name="Fabricate_LF", weight=16, order=1, kind="quantity")
        with pytest.raises(InvalidMilestoneUpdate, match="no quantity total"):
            validate_milestone_value(m, 5, None)


class TestNonFiniteValues:

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_quantity_rejected(self, pipe, snapshot, value):
        with pytest.raises(InvalidMilestoneUpdate, match="finite"):
            apply_milestone_update(pipe, "Fabricate_LF", value, snapshot)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_partial_rejected(self, value):
        m = MilestoneConfig(name="Install", weight=80, order=2, kind="partial")
        with pytest.raises(InvalidMilestoneUpdate, match="finite"):
            validate_milestone_value(m, value)

    def test_discrete_nan_rejected(self):
        m = MilestoneConfig(name="Receive", weight=20, order=1)
        with pytest.raises(InvalidMilestoneUpdate):
            validate_milestone_value(m, float("nan"))

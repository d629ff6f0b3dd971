"""
test_progress_calculator.py — Unit tests for ProgressCalculator.

Tests cover:
  - Discrete milestones: bool and numeric (0/1 and 0/100) completion
  - Quantity milestones against the aggregate total
  - Partial milestones on hybrid templates
  - Half-up rounding once at the end, clamping to [0, 100]
  - Zero / missing quantity total
  - Legacy and unrecognized milestone keys
  - recompute / recompute_all: percent re-derived, milestones untouched
"""

import pytest

from pipetrak.models.component_schema import Component, MilestoneConfig, ProgressTemplate
from pipetrak.services.milestone_weights import MilestoneWeightResolver, WeightTable
from pipetrak.services.progress_calculator import (
    calculate_percent_complete,
    is_milestone_complete,
    round_percent,
)

PROJECT_ID = "11111111-1111-1111-1111-111111111111"


def _pipe(total, milestones):
    return Component(
        project_id=PROJECT_ID,
        component_type="threaded_pipe",
        identity_key={"pipe_id": "P-001-1-PIPE-SCH40-AGG"},
        attributes={"original_qty": total, "total_linear_feet": total, "line_numbers": ["1"]},
        current_milestones=milestones,
    )


def _table(*milestones):
    tpl = ProgressTemplate(component_type="valve", workflow_type="hybrid", milestones=tuple(milestones))
    return WeightTable(template=tpl, aliases={})


# ===========================================================================
# Class 1: Discrete
# ===========================================================================

class TestDiscrete:

    def test_nothing_complete_is_zero(self, calculator, weight_resolver):
        table = weight_resolver.resolve("valve")
        assert calculator.calculate({}, table) == 0

    def test_receive_and_install(self, calculator, weight_resolver):
        """Receive 10 + Install 60 = 70."""
        table = weight_resolver.resolve("valve")
        assert calculator.calculate({"Receive": True, "Install": True}, table) == 70

    def test_all_complete_is_100(self, calculator, weight_resolver):
        table = weight_resolver.resolve("spool")
        assert calculator.calculate({m.name: True for m in table.milestones}, table) == 100

    @pytest.mark.parametrize("value,expected", [
        (True, True), (False, False), (1, True), (100, True), (0, False), (0.5, False), (None, False),
    ])
    def test_completion_values(self, value, expected):
        assert is_milestone_complete(value) is expected

    def test_numeric_scales_agree(self, calculator, weight_resolver):
        table = weight_resolver.resolve("valve")
        assert calculator.calculate({"Install": 1}, table) == calculator.calculate({"Install": 100}, table) == 60


# ===========================================================================
# Class 2: Quantity
# ===========================================================================

class TestQuantity:

    def test_partial_feet_on_50_lf(self, calculator, threaded_pipe_table):
        """16×25/50 + 16×10/50 = 8 + 3.2 = 11.2 -> 11."""
        assert calculator.calculate({"Fabricate_LF": 25, "Install_LF": 10}, threaded_pipe_table, 50) == 11

    def test_same_feet_on_larger_total(self, calculator, threaded_pipe_table):
        """16×25/100 + 16×10/100 = 4 + 1.6 = 5.6 -> 6."""
        assert calculator.calculate({"Fabricate_LF": 25, "Install_LF": 10}, threaded_pipe_table, 100) == 6

    def test_zero_total_contributes_nothing(self, calculator, threaded_pipe_table):
        assert calculator.calculate({"Fabricate_LF": 25, "Punch": True}, threaded_pipe_table, 0) == 5

    def test_missing_total_contributes_nothing(self, calculator, threaded_pipe_table):
        assert calculator.calculate({"Fabricate_LF": 25}, threaded_pipe_table, None) == 0

    def test_everything_done(self, calculator, threaded_pipe_table):
        done = {m.name: (40 if m.kind == "quantity" else True) for m in threaded_pipe_table.milestones}
        assert calculator.calculate(done, threaded_pipe_table, 40) == 100

    def test_over_reported_feet_clamped(self, calculator, threaded_pipe_table):
        """Feet above the total can only come from stale data; result stays <= 100."""
        done = {m.name: (500 if m.kind == "quantity" else True) for m in threaded_pipe_table.milestones}
        assert calculator.calculate(done, threaded_pipe_table, 40) == 100


# ===========================================================================
# Class 3: Partial (hybrid)
# ===========================================================================

class TestPartial:

    def test_partial_contribution(self, calculator):
        """Receive 20 + Install 50×40/100 = 20 + 20 = 40."""
        table = _table(
            MilestoneConfig(name="Receive", weight=20, order=1),
            MilestoneConfig(name="Install", weight=50, order=2, kind="partial"),
            MilestoneConfig(name="Test", weight=30, order=3),
        )
        assert calculator.calculate({"Receive": True, "Install": 40}, table) == 40


# ===========================================================================
# Class 4: Rounding & bounds
# ===========================================================================

class TestRounding:

    @pytest.mark.parametrize("raw,expected", [
        (0.0, 0), (0.5, 1), (2.5, 3), (11.2, 11), (5.6, 6), (99.5, 100), (100.4, 100), (-3.0, 0), (250.0, 100),
    ])
    def test_half_up_and_clamp(self, raw, expected):
        assert round_percent(raw) == expected

    def test_rounded_once_at_the_end(self, calculator):
        """Three 1/3-weight partials at 50%: 16.67 + 16.67 + 16.67 = 50.0, not 17×3 = 51."""
        third = 100.0 / 3
        table = _table(
            MilestoneConfig(name="A", weight=third, order=1, kind="partial"),
            MilestoneConfig(name="B", weight=third, order=2, kind="partial"),
            MilestoneConfig(name="C", weight=third, order=3, kind="partial"),
        )
        assert calculator.calculate({"A": 50, "B": 50, "C": 50}, table) == 50

    def test_monotonic_in_completed_milestones(self, calculator, weight_resolver):
        table = weight_resolver.resolve("field_weld")
        done, last = {}, 0
        for m in table.milestones:
            done[m.name] = True
            pct = calculator.calculate(done, table)
            assert pct >= last
            last = pct
        assert last == 100

    @pytest.mark.parametrize("milestone", ["Fabricate_LF", "Install_LF"])
    def test_monotonic_in_linear_feet(self, calculator, threaded_pipe_table, milestone):
        """Feet swept 0 -> 50 in half-foot steps on a fixed 50 LF total."""
        last = 0
        for step in range(101):
            pct = calculator.calculate({milestone: step * 0.5}, threaded_pipe_table, 50)
            assert 0 <= pct <= 100
            assert pct >= last
            last = pct
        assert last == 16

    def test_monotonic_in_partial_value(self, calculator):
        """Install swept 0 -> 100 with Receive done: 20 -> 20 + 50 = 70."""
        table = _table(
            MilestoneConfig(name="Receive", weight=20, order=1),
            MilestoneConfig(name="Install", weight=50, order=2, kind="partial"),
            MilestoneConfig(name="Test", weight=30, order=3),
        )
        last = 0
        for value in range(0, 101, 5):
            pct = calculator.calculate({"Receive": True, "Install": value}, table)
            assert 0 <= pct <= 100
            assert pct >= last
            last = pct
        assert last == 70

    def test_module_function(self, weight_resolver):
        assert calculate_percent_complete({"Install": True}, weight_resolver.resolve("valve")) == 60


# ===========================================================================
# Class 5: Legacy keys & recompute
# ===========================================================================

class TestLegacyKeysAndRecompute:

    def test_legacy_field_weld_names_count(self, calculator, field_weld_table):
        """Fit-Up 10 + Weld Made 60 = 70."""
        assert calculator.calculate({"Fit-Up": True, "Weld Made": True}, field_weld_table) == 70

    def test_current_name_beats_alias(self, calculator, field_weld_table):
        assert calculator.calculate({"Fit-Up": True, "Fit-up": False}, field_weld_table) == 0

    def test_unrecognized_key_ignored_but_kept(self, calculator, snapshot):
        pipe = _pipe(50, {"Fabricate": 100, "Fabricate_LF": 25})
        out = calculator.recompute(pipe, snapshot)
        assert out.percent_complete == 8
        assert out.current_milestones == {"Fabricate": 100, "Fabricate_LF": 25}

    def test_recompute_does_not_mutate(self, calculator, snapshot):
        pipe = _pipe(50, {"Fabricate_LF": 25, "Install_LF": 10})
        out = calculator.recompute(pipe, snapshot)
        assert out.percent_complete == 11
        assert pipe.percent_complete == 0
        assert out.id == pipe.id

    def test_breakdown(self, calculator, threaded_pipe_table):
        out = calculator.breakdown({"Fabricate_LF": 25, "Legacy": 1}, threaded_pipe_table, 50)
        assert out["percent_complete"] == 8
        assert out["raw_percent"] == 8.0
        assert out["ignored_keys"] == ["Legacy"]
        assert out["milestones"][0] == {
            "milestone": "Fabricate_LF", "kind": "quantity", "weight": 16.0, "value": 25, "contribution": 8.0,
        }

    def test_recompute_all_after_template_edit(self, calculator, snapshot):
        """Re-weighting a template changes percentages, never the stored values."""
        valve = Component(
            project_id=PROJECT_ID,
            component_type="valve",
            identity_key={"drawing_norm": "P-001", "commodity_code": "V", "size": "2", "seq": 1},
            current_milestones={"Receive": True, "Install": False},
            progress_template_id="system:valve:v1",
        )
        edited = ProgressTemplate(
            id="proj:valve:v1",
            component_type="valve",
            project_id=PROJECT_ID,
            milestones=(MilestoneConfig(name="Receive", weight=50, order=1),
                        MilestoneConfig(name="Install", weight=50, order=2)),
        )
        before = calculator.recompute_all([valve], snapshot)[0]
        after = calculator.recompute_all([valve], snapshot.with_templates([edited]))[0]
        assert before.percent_complete == 10
        assert after.percent_complete == 50
        assert after.current_milestones == valve.current_milestones

    def test_resolver_uses_linked_template(self, snapshot):
        table = MilestoneWeightResolver(snapshot).resolve("valve", template_id="system:valve:v1")
        assert table.template.id == "system:valve:v1"

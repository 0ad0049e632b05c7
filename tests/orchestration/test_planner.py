"""Tests for execution planning."""

import pytest

from tests._support.engines import CountingEngine, descriptor
from tilespine.core.errors import ConfigurationError
from tilespine.core.models import Phase, sequential_layout
from tilespine.orchestration.planner import build_plan
from tilespine.orchestration.registry import UnitRegistry


@pytest.fixture
def populated(registry: UnitRegistry) -> UnitRegistry:
    registry.register(CountingEngine(), descriptor("f2", priority=20, estimated_duration_ms=100))
    registry.register(CountingEngine(), descriptor("f1", priority=10, estimated_duration_ms=300))
    registry.register(CountingEngine(), descriptor("ga", Phase.GROUP_A, dependencies={"f1"}, tags={"macro"}))
    registry.register(CountingEngine(), descriptor("gb", Phase.GROUP_B, tags={"macro"}))
    registry.register(CountingEngine(), descriptor("syn", Phase.SYNTHESIS, dependencies={"ga", "gb"}))
    registry.register(CountingEngine(), descriptor("off", Phase.SYNTHESIS, enabled=False))
    return registry


class TestBuildPlan:
    """Tests for build_plan()."""

    def test_stages_follow_layout(self, populated: UnitRegistry):
        """Test stages are ordered by layout and skip empty stages."""
        plan = build_plan(populated)

        assert [stage.index for stage in plan.stages] == [0, 1, 2]
        assert plan.stages[0].unit_ids == ("f1", "f2")
        assert plan.stages[1].unit_ids == ("ga", "gb")
        assert plan.stages[1].phases == frozenset({Phase.GROUP_A, Phase.GROUP_B, Phase.GROUP_C})
        assert plan.stages[2].unit_ids == ("syn",)

    def test_disabled_units_excluded(self, populated: UnitRegistry):
        assert "off" not in build_plan(populated).unit_ids

    def test_single_phase(self, populated: UnitRegistry):
        plan = build_plan(populated, Phase.GROUP_B)
        assert len(plan.stages) == 1
        assert plan.stages[0].phases == frozenset({Phase.GROUP_B})
        assert plan.unit_ids == ("gb",)

    def test_tags(self, populated: UnitRegistry):
        assert build_plan(populated, tags={"macro"}).unit_ids == ("ga", "gb")

    def test_phase_outside_layout(self):
        registry = UnitRegistry(sequential_layout([Phase.FOUNDATION]))
        with pytest.raises(ConfigurationError):
            build_plan(registry, Phase.EXECUTION)

    def test_estimates(self, populated: UnitRegistry):
        """Test a stage is as long as its slowest unit and stages add up."""
        plan = build_plan(populated)
        assert plan.stages[0].estimated_duration_ms == 300
        assert plan.estimated_duration_ms == 300 + 5000 + 5000

    def test_empty_registry(self, registry: UnitRegistry):
        plan = build_plan(registry)
        assert plan.stages == ()
        assert len(plan) == 0

    def test_to_dict(self, populated: UnitRegistry):
        data = build_plan(populated).to_dict()
        assert data["unit_count"] == 5
        assert data["stages"][1]["phases"] == ["group_a", "group_b", "group_c"]
        assert data["stages"][0]["unit_ids"] == ["f1", "f2"]

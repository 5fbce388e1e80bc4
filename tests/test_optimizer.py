"""
Budget optimizer tests.
Covers the floor and greedy passes, the SLSQP refinement and the result contract.
"""
import math

import pytest

from omniverse.model.channel_profiles import Channel, get_channel_profiles
from omniverse.model.response_curves import roi_at_spend
from omniverse.optimization.optimizer import (
    BudgetConstraints, BudgetOptimizer, allocations_from_budgets, blended_roi, build_current_allocations
)
from omniverse.utils.exceptions import ConfigurationError, InfeasibleBudgetError, OptimizationError

TOTAL_BUDGET = 47_000_000


def _spend(allocations):
    return {a.channel: a.optimized_budget for a in allocations}


class TestCurrentAllocations:
    """Test construction of the current-state allocations."""

    def test_built_from_snapshot(self, current_allocations):
        field_force = current_allocations[0]
        assert field_force.channel == Channel.FIELD_FORCE
        assert field_force.current_budget == 28_000_000
        assert field_force.optimized_budget == field_force.current_budget
        assert field_force.current_roi == 3.5
        assert field_force.efficiency == pytest.approx(3.5 * 0.25 * 0.8)
        profile = get_channel_profiles()[Channel.FIELD_FORCE]
        assert field_force.projected_roi == pytest.approx(roi_at_spend(profile, 28_000_000))

    def test_from_budgets(self):
        allocations = allocations_from_budgets({"Digital": 5_000_000, "Web Portals": 1_000_000})
        assert [a.channel for a in allocations] == [Channel.DIGITAL, Channel.WEB_PORTALS]
        assert allocations[1].saturation == pytest.approx(1 / 3)

    def test_from_budgets_rejects_unknown_channel(self):
        with pytest.raises(ConfigurationError):
            allocations_from_budgets({"Television": 1_000_000})

    def test_blended_roi(self, current_allocations):
        expected = (
            sum(a.optimized_budget * a.projected_roi for a in current_allocations)
            / sum(a.optimized_budget for a in current_allocations)
        )
        assert blended_roi(current_allocations) == pytest.approx(expected)
        assert blended_roi([]) == 0.0


class TestBudgetOptimizer:
    """Test the default optimization path."""

    def test_budget_conservation(self, optimizer):
        result = optimizer.optimize(TOTAL_BUDGET)
        assert sum(_spend(result.optimized_allocation).values()) == pytest.approx(TOTAL_BUDGET)
        assert result.total_budget == TOTAL_BUDGET
        assert result.warnings == []

    @pytest.mark.parametrize("total_budget", [20_000_000, 47_000_000, 60_000_000])
    def test_bounds_respected(self, optimizer, total_budget):
        profiles = get_channel_profiles()
        result = optimizer.optimize(total_budget)
        for allocation in result.optimized_allocation:
            profile = profiles[allocation.channel]
            assert allocation.optimized_budget >= profile.min_spend - 1e-6
            assert allocation.optimized_budget <= profile.saturation_spend + 1e-6

    def test_never_regresses_current_portfolio(self, optimizer):
        result = optimizer.optimize(TOTAL_BUDGET)
        assert result.optimized_roi >= result.current_roi - 1e-9
        assert result.roi_improvement >= -1e-7

    def test_idempotent(self, optimizer):
        first = optimizer.optimize(TOTAL_BUDGET)
        second = optimizer.optimize(TOTAL_BUDGET)
        assert _spend(first.optimized_allocation) == _spend(second.optimized_allocation)
        assert first.optimized_roi == second.optimized_roi

    def test_current_allocation_not_mutated(self, optimizer, current_allocations):
        before = [(a.current_budget, a.optimized_budget) for a in current_allocations]
        result = optimizer.optimize(TOTAL_BUDGET, current_allocations)

        assert [(a.current_budget, a.optimized_budget) for a in current_allocations] == before
        assert result.current_allocation[0] is not result.optimized_allocation[0]
        assert result.current_allocation[0] is not current_allocations[0]

    def test_result_fields(self, optimizer):
        result = optimizer.optimize(TOTAL_BUDGET)
        for allocation in result.optimized_allocation:
            profile = get_channel_profiles()[allocation.channel]
            assert allocation.projected_roi == pytest.approx(roi_at_spend(profile, allocation.optimized_budget))
            assert 0.0 <= allocation.saturation <= 1.0
            assert isinstance(allocation.recommendations, list)

        assert result.implementation_plan[-1].phase == 3
        expected_improvement = (result.optimized_roi - result.current_roi) / result.current_roi * 100
        assert result.roi_improvement == pytest.approx(expected_improvement)

    def test_to_dict(self, optimizer):
        data = optimizer.optimize(TOTAL_BUDGET).to_dict()
        assert set(data) == {
            "current_allocation", "optimized_allocation", "total_budget", "current_roi",
            "optimized_roi", "roi_improvement", "implementation_plan", "warnings",
            "recommendations", "impact_attribution"
        }
        assert data["optimized_allocation"][0]["channel"] == "Field Force"

    @pytest.mark.parametrize("total_budget", [0, -1_000_000, math.nan, math.inf, None])
    def test_invalid_budget(self, optimizer, total_budget):
        with pytest.raises(OptimizationError):
            optimizer.optimize(total_budget)

    def test_iterations_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            BudgetOptimizer(iterations=0)


class TestInfeasibleBudgets:
    """Test budgets below the summed channel minimums."""

    def test_floors_scaled_with_warning(self, optimizer):
        result = optimizer.optimize(5_000_000)
        spend = _spend(result.optimized_allocation)

        assert sum(spend.values()) == pytest.approx(5_000_000)
        assert all(value >= 0 for value in spend.values())
        assert spend[Channel.FIELD_FORCE] == pytest.approx(10_000_000 * 5_000_000 / 13_600_000)
        assert any("below the summed minimum" in w for w in result.warnings)

    def test_strict_mode_raises(self, strict_optimizer):
        with pytest.raises(InfeasibleBudgetError) as exc_info:
            strict_optimizer.optimize(5_000_000)
        assert exc_info.value.required == pytest.approx(13_600_000)
        assert exc_info.value.total_budget == 5_000_000


class TestGreedyPass:
    """Test the marginal-ROI greedy pass in isolation."""

    def test_ties_go_to_first_channel(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles, rebalance=False)
        allocations, warnings = optimizer.allocate(1_000_000, twin_linear_allocations)

        spend = _spend(allocations)
        assert spend[Channel.DIGITAL] == pytest.approx(1_000_000)
        assert spend[Channel.EMAIL_MARKETING] == 0.0
        assert warnings == []

    def test_tie_order_follows_input(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles, rebalance=False)
        allocations, _ = optimizer.allocate(1_000_000, list(reversed(twin_linear_allocations)))
        assert _spend(allocations)[Channel.EMAIL_MARKETING] == pytest.approx(1_000_000)

    def test_increment_clipped_at_cap(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles, rebalance=False)
        constraints = BudgetConstraints(max_budgets={"Digital": 305_000})
        allocations, _ = optimizer.allocate(1_000_000, twin_linear_allocations, constraints)

        spend = _spend(allocations)
        assert spend[Channel.DIGITAL] == pytest.approx(305_000)
        assert spend[Channel.EMAIL_MARKETING] == pytest.approx(695_000)

    def test_unallocated_budget_reported(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles, rebalance=False)
        constraints = BudgetConstraints(max_budgets={"Digital": 300_000, "Email Marketing": 300_000})
        allocations, warnings = optimizer.allocate(1_000_000, twin_linear_allocations, constraints)

        assert sum(_spend(allocations).values()) == pytest.approx(600_000)
        assert any("unallocated" in w for w in warnings)

    def test_unallocated_budget_strict(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles, rebalance=False, strict=True)
        constraints = BudgetConstraints(max_budgets={"Digital": 300_000, "Email Marketing": 300_000})
        with pytest.raises(ConfigurationError):
            optimizer.allocate(1_000_000, twin_linear_allocations, constraints)

    def test_default_portfolio_allocation(self, current_allocations):
        result = BudgetOptimizer(rebalance=False).optimize(TOTAL_BUDGET, current_allocations)
        spend = _spend(result.optimized_allocation)

        # Digital stops one increment past its plateau, Email Marketing at saturation
        assert spend[Channel.FIELD_FORCE] == pytest.approx(22_692_000, abs=1_000)
        assert spend[Channel.DIGITAL] == pytest.approx(12_020_000, abs=1_000)
        assert spend[Channel.SPEAKER_PROGRAMS] == pytest.approx(5_116_000, abs=1_000)
        assert spend[Channel.MEDICAL_CONFERENCES] == pytest.approx(3_172_000, abs=1_000)
        assert spend[Channel.EMAIL_MARKETING] == pytest.approx(4_000_000)
        assert result.optimized_roi == pytest.approx(2.19, abs=0.01)
        assert result.warnings == []


class TestConstraints:
    """Test constraint handling."""

    def test_fixed_budget_is_locked(self, optimizer):
        constraints = BudgetConstraints(fixed_budgets={"Digital": 5_000_000})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        spend = _spend(result.optimized_allocation)
        assert spend[Channel.DIGITAL] == pytest.approx(5_000_000)
        assert sum(spend.values()) == pytest.approx(TOTAL_BUDGET)

    def test_min_and_max_budgets(self, optimizer):
        constraints = BudgetConstraints(
            min_budgets={Channel.EMAIL_MARKETING: 3_000_000},
            max_budgets={"Field Force": 20_000_000}
        )
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        spend = _spend(result.optimized_allocation)
        assert spend[Channel.EMAIL_MARKETING] >= 3_000_000 - 1e-6
        assert spend[Channel.FIELD_FORCE] <= 20_000_000 + 1e-6

    def test_unknown_channel_becomes_warning(self, optimizer):
        constraints = BudgetConstraints(min_budgets={"Television": 1_000_000})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)
        assert any("Unknown channel: Television" in w for w in result.warnings)

    def test_channel_outside_allocation_becomes_warning(self, optimizer):
        constraints = BudgetConstraints(max_budgets={"Web Portals": 1_000_000})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)
        assert any("Web Portals" in w for w in result.warnings)

    def test_unknown_channel_strict(self, strict_optimizer):
        constraints = BudgetConstraints(min_budgets={"Television": 1_000_000})
        with pytest.raises(ConfigurationError):
            strict_optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

    def test_min_above_max_raises_cap(self, optimizer):
        constraints = BudgetConstraints(
            min_budgets={"Digital": 6_000_000}, max_budgets={"Digital": 4_000_000}
        )
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        assert _spend(result.optimized_allocation)[Channel.DIGITAL] >= 6_000_000 - 1e-6
        assert any("exceeds its maximum" in w for w in result.warnings)

    def test_total_budget_limit(self, optimizer):
        constraints = BudgetConstraints(total_budget_limit=40_000_000)
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        assert result.total_budget == 40_000_000
        assert sum(_spend(result.optimized_allocation).values()) == pytest.approx(40_000_000)
        assert any("exceeds limit" in w for w in result.warnings)

    def test_nan_minimum_becomes_warning(self, optimizer):
        constraints = BudgetConstraints(min_budgets={"Digital": math.nan})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        spend = _spend(result.optimized_allocation)
        assert all(math.isfinite(value) for value in spend.values())
        assert spend[Channel.DIGITAL] >= 2_000_000 - 1e-6
        assert sum(spend.values()) == pytest.approx(TOTAL_BUDGET)
        assert any("min_budgets for Digital" in w for w in result.warnings)

    def test_infinite_fixed_budget_becomes_warning(self, optimizer):
        constraints = BudgetConstraints(fixed_budgets={"Digital": math.inf})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        spend = _spend(result.optimized_allocation)
        assert all(math.isfinite(value) for value in spend.values())
        assert math.isfinite(result.optimized_roi)
        assert sum(spend.values()) == pytest.approx(TOTAL_BUDGET)
        assert any("fixed_budgets for Digital" in w for w in result.warnings)

    def test_infinite_minimum_becomes_warning(self, optimizer):
        constraints = BudgetConstraints(min_budgets={"Field Force": math.inf})
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        assert all(math.isfinite(value) for value in _spend(result.optimized_allocation).values())
        assert any("min_budgets for Field Force" in w for w in result.warnings)

    def test_nan_maximum_keeps_default_cap(self, optimizer):
        constraints = BudgetConstraints(max_budgets={"Digital": math.nan})
        result = optimizer.optimize(60_000_000, constraints=constraints)

        spend = _spend(result.optimized_allocation)
        assert spend[Channel.DIGITAL] <= 15_000_000 + 1e-6
        assert any("max_budgets for Digital" in w for w in result.warnings)

    def test_non_finite_constraint_strict(self, strict_optimizer):
        constraints = BudgetConstraints(max_budgets={"Digital": math.nan})
        with pytest.raises(ConfigurationError):
            strict_optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

    def test_non_finite_total_budget_limit_ignored(self, optimizer):
        constraints = BudgetConstraints(total_budget_limit=math.nan)
        result = optimizer.optimize(TOTAL_BUDGET, constraints=constraints)

        assert result.total_budget == TOTAL_BUDGET
        assert sum(_spend(result.optimized_allocation).values()) == pytest.approx(TOTAL_BUDGET)
        assert any("must be finite" in w for w in result.warnings)

    def test_infinite_current_budget_rejected(self):
        with pytest.raises(ConfigurationError):
            allocations_from_budgets({"Digital": math.inf})


class TestRebalancing:
    """Test the SLSQP refinement of the greedy allocation."""

    def test_rebalancing_never_lowers_return(self, current_allocations):
        greedy = BudgetOptimizer(rebalance=False).optimize(TOTAL_BUDGET, current_allocations)
        rebalanced = BudgetOptimizer(rebalance=True).optimize(TOTAL_BUDGET, current_allocations)
        assert rebalanced.optimized_roi >= greedy.optimized_roi - 1e-9

    @pytest.mark.parametrize("total_budget", [20_000_000, 47_000_000, 60_000_000])
    def test_refined_allocation_is_feasible(self, optimizer, total_budget):
        constraints = BudgetConstraints(fixed_budgets={"Medical Conferences": 2_500_000})
        result = optimizer.optimize(total_budget, constraints=constraints)
        spend = _spend(result.optimized_allocation)

        assert sum(spend.values()) == pytest.approx(total_budget)
        assert spend[Channel.MEDICAL_CONFERENCES] == pytest.approx(2_500_000)
        for channel, value in spend.items():
            if channel == Channel.MEDICAL_CONFERENCES:
                continue
            profile = get_channel_profiles()[channel]
            assert profile.min_spend - 1e-6 <= value <= profile.saturation_spend + 1e-6

    def test_short_refinement_never_regresses(self, current_allocations):
        optimizer = BudgetOptimizer(max_rebalance_iterations=1)
        result = optimizer.optimize(TOTAL_BUDGET, current_allocations)
        assert result.optimized_roi >= result.current_roi - 1e-9
        assert sum(_spend(result.optimized_allocation).values()) == pytest.approx(TOTAL_BUDGET)

    def test_single_free_channel_is_left_alone(self, twin_linear_profiles, twin_linear_allocations):
        optimizer = BudgetOptimizer(profiles=twin_linear_profiles)
        constraints = BudgetConstraints(fixed_budgets={"Email Marketing": 400_000})
        allocations, warnings = optimizer.allocate(1_000_000, twin_linear_allocations, constraints)

        spend = _spend(allocations)
        assert spend[Channel.DIGITAL] == pytest.approx(600_000)
        assert spend[Channel.EMAIL_MARKETING] == pytest.approx(400_000)
        assert warnings == []

    def test_custom_current_allocation(self, optimizer):
        current = build_current_allocations()[:3]
        result = optimizer.optimize(30_000_000, current)

        assert [a.channel for a in result.optimized_allocation] == [a.channel for a in current]
        assert sum(_spend(result.optimized_allocation).values()) == pytest.approx(30_000_000)

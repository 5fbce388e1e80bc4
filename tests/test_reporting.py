"""
Recommendation and implementation plan tests.
"""
import pytest

from omniverse.model.channel_profiles import Channel
from omniverse.optimization.optimizer import BudgetAllocation
from omniverse.optimization.reporting import (
    CONTINUOUS_OPTIMIZATION_IMPACT, STANDING_PORTFOLIO_ADVICE, calculate_impact_attribution,
    calculate_phase_impact, generate_channel_recommendations, generate_implementation_plan,
    generate_portfolio_recommendations
)


def _allocation(channel=Channel.DIGITAL, current_budget=1_000_000, optimized_budget=1_000_000,
                current_roi=2.5, projected_roi=2.5, saturation=0.5, efficiency=2.0):
    return BudgetAllocation(
        channel=channel,
        current_budget=current_budget,
        optimized_budget=optimized_budget,
        current_roi=current_roi,
        projected_roi=projected_roi,
        saturation=saturation,
        efficiency=efficiency
    )


class TestChannelRecommendations:
    """Test recommendation rules."""

    def test_no_rule_matches(self):
        assert generate_channel_recommendations(_allocation()) == []

    def test_budget_increase(self):
        recommendations = generate_channel_recommendations(_allocation(optimized_budget=1_500_000))
        assert recommendations == ["Increase budget by 50% to capture untapped opportunity"]

    def test_budget_reduction(self):
        recommendations = generate_channel_recommendations(_allocation(optimized_budget=700_000))
        assert recommendations == ["Reduce budget by 30% due to saturation"]

    def test_budget_rule_skipped_without_current_budget(self):
        recommendations = generate_channel_recommendations(
            _allocation(current_budget=0, optimized_budget=1_000_000)
        )
        assert not any("budget by" in r for r in recommendations)

    def test_saturation_rules(self):
        assert generate_channel_recommendations(_allocation(saturation=0.9)) == [
            "Channel approaching saturation - consider reallocation"
        ]
        assert generate_channel_recommendations(_allocation(saturation=0.1)) == [
            "Significant growth potential available"
        ]

    def test_efficiency_rules(self):
        assert generate_channel_recommendations(_allocation(efficiency=3.0)) == [
            "High efficiency channel - prioritize for investment"
        ]
        assert generate_channel_recommendations(_allocation(efficiency=0.5)) == [
            "Low efficiency - optimize targeting or reduce spend"
        ]

    def test_roi_improvement(self):
        recommendations = generate_channel_recommendations(_allocation(projected_roi=3.0))
        assert recommendations == ["Projected 0.5x ROI improvement"]

    def test_rule_order(self):
        recommendations = generate_channel_recommendations(_allocation(
            optimized_budget=2_000_000, saturation=0.9, efficiency=0.5, projected_roi=3.0
        ))
        assert recommendations == [
            "Increase budget by 100% to capture untapped opportunity",
            "Channel approaching saturation - consider reallocation",
            "Low efficiency - optimize targeting or reduce spend",
            "Projected 0.5x ROI improvement",
        ]


class TestImplementationPlan:
    """Test phased rollout generation."""

    def test_no_op_plan_has_only_phase_three(self, current_allocations):
        plan = generate_implementation_plan(current_allocations, current_allocations)

        assert [step.phase for step in plan] == [3]
        assert plan[0].timeline == "60-90 days"
        assert plan[0].budget_changes == {}
        assert plan[0].expected_impact == CONTINUOUS_OPTIMIZATION_IMPACT

    def test_phases(self):
        current = [
            _allocation(Channel.DIGITAL, 10_000_000, 10_000_000, current_roi=2.0),
            _allocation(Channel.EMAIL_MARKETING, 2_000_000, 2_000_000, current_roi=2.5),
        ]
        optimized = [
            _allocation(Channel.DIGITAL, 10_000_000, 11_000_000, current_roi=2.0, projected_roi=2.5),
            _allocation(Channel.EMAIL_MARKETING, 2_000_000, 1_000_000, current_roi=2.5, projected_roi=2.6),
        ]
        plan = generate_implementation_plan(current, optimized)

        assert [step.phase for step in plan] == [1, 2, 3]
        assert plan[0].budget_changes == {"Digital": 1_000_000}
        assert plan[0].timeline == "0-30 days"
        assert plan[0].expected_impact == pytest.approx(0.5)
        assert plan[1].budget_changes == {"Email Marketing": -1_000_000}
        assert plan[1].timeline == "30-60 days"
        assert plan[1].expected_impact == pytest.approx(0.1)

    def test_small_change_without_roi_gain_is_skipped(self):
        current = [_allocation(Channel.DIGITAL, 10_000_000, 10_000_000, current_roi=2.0)]
        optimized = [_allocation(Channel.DIGITAL, 10_000_000, 10_500_000, current_roi=2.0, projected_roi=1.9)]
        assert [step.phase for step in generate_implementation_plan(current, optimized)] == [3]

    def test_channels_matched_by_name(self):
        current = [
            _allocation(Channel.DIGITAL, 10_000_000, 10_000_000),
            _allocation(Channel.EMAIL_MARKETING, 2_000_000, 2_000_000),
        ]
        optimized = [
            _allocation(Channel.EMAIL_MARKETING, 2_000_000, 4_000_000),
            _allocation(Channel.DIGITAL, 10_000_000, 10_000_000),
        ]
        plan = generate_implementation_plan(current, optimized)
        assert plan[0].phase == 2
        assert plan[0].budget_changes == {"Email Marketing": 2_000_000}

    def test_phase_impact_without_changes(self):
        assert calculate_phase_impact({}, [], []) == 0.0

    def test_step_to_dict(self, current_allocations):
        data = generate_implementation_plan(current_allocations, current_allocations)[0].to_dict()
        assert data["phase"] == 3
        assert "Performance tracking systems" in data["dependencies"]


class TestPortfolioRecommendations:
    """Test portfolio-level advice."""

    def test_large_moves_and_overall_gain(self):
        current = [
            _allocation(Channel.DIGITAL, optimized_budget=1_000_000),
            _allocation(Channel.EMAIL_MARKETING, optimized_budget=1_000_000),
            _allocation(Channel.WEB_PORTALS, current_budget=0, optimized_budget=0),
        ]
        optimized = [
            _allocation(Channel.DIGITAL, optimized_budget=1_500_000),
            _allocation(Channel.EMAIL_MARKETING, optimized_budget=600_000),
            _allocation(Channel.WEB_PORTALS, current_budget=0, optimized_budget=500_000),
        ]

        recommendations = generate_portfolio_recommendations(current, optimized, roi_improvement=12.34)
        assert recommendations[:3] == [
            "Increase Digital budget by 50.0% to capture higher ROI opportunity",
            "Reduce Email Marketing budget by 40.0% due to diminishing returns",
            "This optimization can improve overall ROI by 12.3%",
        ]
        assert recommendations[3:] == list(STANDING_PORTFOLIO_ADVICE)

    def test_small_gain_gives_standing_advice_only(self):
        current = [_allocation()]
        optimized = [_allocation(optimized_budget=1_100_000)]
        assert generate_portfolio_recommendations(current, optimized, 10.0) == list(STANDING_PORTFOLIO_ADVICE)

    def test_result_carries_portfolio_advice(self, optimizer):
        result = optimizer.optimize(47_000_000)
        assert result.recommendations[-3:] == list(STANDING_PORTFOLIO_ADVICE)


class TestImpactAttribution:
    """Test the attribution split of projected ROI."""

    def test_attribution_views(self):
        attribution = calculate_impact_attribution([_allocation(projected_roi=2.0)])
        assert attribution == [{
            "channel": "Digital",
            "attribution": {
                "direct_impact": pytest.approx(1.4),
                "assisted_impact": pytest.approx(0.6),
                "time_decay": pytest.approx(1.8),
                "last_touch": pytest.approx(1.6),
            },
        }]

    def test_result_attribution_follows_optimized_allocation(self, optimizer):
        result = optimizer.optimize(47_000_000)
        channels = [item["channel"] for item in result.impact_attribution]
        assert channels == [a.channel.value for a in result.optimized_allocation]
        for item, allocation in zip(result.impact_attribution, result.optimized_allocation):
            assert item["attribution"]["direct_impact"] == pytest.approx(allocation.projected_roi * 0.7)

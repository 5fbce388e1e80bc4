"""
Advisory output for finalized budget allocations.

Turns allocations into per-channel and portfolio recommendation strings,
a phased implementation plan and an impact attribution. All functions
are pure.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Sequence, TYPE_CHECKING

from omniverse.config.settings import OptimizationConfig

if TYPE_CHECKING:
    from omniverse.optimization.optimizer import BudgetAllocation


QUICK_WIN_CHANGE_RATIO = 0.2
CONTINUOUS_OPTIMIZATION_IMPACT = 0.05

_CHANGE_EPSILON = 1e-6


@dataclass
class ImplementationStep:
    phase: int
    description: str
    timeline: str
    budget_changes: Dict[str, float] = field(default_factory=dict)
    expected_impact: float = 0.0
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "description": self.description,
            "timeline": self.timeline,
            "budget_changes": dict(self.budget_changes),
            "expected_impact": self.expected_impact,
            "dependencies": list(self.dependencies),
        }


def generate_channel_recommendations(allocation: "BudgetAllocation",
                                     config: Optional[OptimizationConfig] = None) -> List[str]:
    """
    Advisory strings for a finalized allocation.

    Rules are evaluated in order (budget change, saturation, efficiency,
    ROI) and every matching rule contributes a line.
    """
    config = config or OptimizationConfig()
    recommendations = []

    # Budget change recommendations
    if allocation.current_budget > 0:
        budget_change = allocation.optimized_budget - allocation.current_budget
        change_percent = budget_change / allocation.current_budget * 100

        if change_percent > config.budget_change_threshold_pct:
            recommendations.append(
                f"Increase budget by {round(change_percent)}% to capture untapped opportunity"
            )
        elif change_percent < -config.budget_change_threshold_pct:
            recommendations.append(
                f"Reduce budget by {round(abs(change_percent))}% due to saturation"
            )

    # Saturation recommendations
    if allocation.saturation > config.high_saturation:
        recommendations.append("Channel approaching saturation - consider reallocation")
    elif allocation.saturation < config.low_saturation:
        recommendations.append("Significant growth potential available")

    # Efficiency recommendations
    if allocation.efficiency > config.high_efficiency:
        recommendations.append("High efficiency channel - prioritize for investment")
    elif allocation.efficiency < config.low_efficiency:
        recommendations.append("Low efficiency - optimize targeting or reduce spend")

    # ROI recommendations
    if allocation.projected_roi > allocation.current_roi * config.roi_improvement_ratio:
        improvement = round(allocation.projected_roi - allocation.current_roi, 2)
        recommendations.append(f"Projected {improvement}x ROI improvement")

    return recommendations


def calculate_phase_impact(changes: Dict[str, float],
                           current: Sequence["BudgetAllocation"],
                           optimized: Sequence["BudgetAllocation"]) -> float:
    """Change-weighted average ROI gain of the channels moved in a phase."""
    current_by_channel = {a.channel.value: a for a in current}
    optimized_by_channel = {a.channel.value: a for a in optimized}

    impact_sum = 0.0
    change_sum = 0.0

    for channel, change in changes.items():
        current_channel = current_by_channel.get(channel)
        optimized_channel = optimized_by_channel.get(channel)

        if current_channel and optimized_channel:
            roi_diff = optimized_channel.projected_roi - current_channel.current_roi
            impact_sum += abs(change) * roi_diff
            change_sum += abs(change)

    return impact_sum / change_sum if change_sum > 0 else 0.0


def generate_implementation_plan(current: Sequence["BudgetAllocation"],
                                 optimized: Sequence["BudgetAllocation"]) -> List[ImplementationStep]:
    """
    Partition the before/after allocation delta into rollout phases.

    Phases 1 and 2 are only emitted when they move at least one channel;
    phase 3 is always present.
    """
    current_by_channel = {a.channel: a for a in current}
    steps = []

    quick_wins: Dict[str, float] = {}
    major_changes: Dict[str, float] = {}

    for channel_allocation in optimized:
        baseline = current_by_channel.get(channel_allocation.channel)
        if baseline is None:
            continue

        change = channel_allocation.optimized_budget - baseline.current_budget
        if abs(change) <= _CHANGE_EPSILON:
            continue

        threshold = baseline.current_budget * QUICK_WIN_CHANGE_RATIO
        if abs(change) < threshold and channel_allocation.projected_roi > baseline.current_roi:
            quick_wins[channel_allocation.channel.value] = change
        elif abs(change) >= threshold:
            major_changes[channel_allocation.channel.value] = change

    # Phase 1: Quick wins (high ROI, low risk changes)
    if quick_wins:
        steps.append(ImplementationStep(
            phase=1,
            description="Quick wins - Minor adjustments with immediate impact",
            timeline="0-30 days",
            budget_changes=quick_wins,
            expected_impact=calculate_phase_impact(quick_wins, current, optimized),
            dependencies=["Budget approval", "Channel partner alignment"]
        ))

    # Phase 2: Major reallocations
    if major_changes:
        steps.append(ImplementationStep(
            phase=2,
            description="Strategic reallocation - Significant budget shifts",
            timeline="30-60 days",
            budget_changes=major_changes,
            expected_impact=calculate_phase_impact(major_changes, current, optimized),
            dependencies=["Executive approval", "Contract renegotiation", "Team restructuring"]
        ))

    # Phase 3: Optimization and monitoring
    steps.append(ImplementationStep(
        phase=3,
        description="Continuous optimization - Monitor and adjust based on performance",
        timeline="60-90 days",
        budget_changes={},
        expected_impact=CONTINUOUS_OPTIMIZATION_IMPACT,
        dependencies=["Performance tracking systems", "Analytics infrastructure", "Regular review cycles"]
    ))

    return steps


PORTFOLIO_IMPROVEMENT_THRESHOLD_PCT = 10.0
STANDING_PORTFOLIO_ADVICE = (
    "Consider quarterly reviews to adjust for market changes",
    "Monitor early indicators weekly for rapid optimization",
    "Implement A/B testing for digital channels to refine ROI estimates",
)

# Share of channel ROI credited to each attribution view
ATTRIBUTION_WEIGHTS = {
    "direct_impact": 0.7,
    "assisted_impact": 0.3,
    "time_decay": 0.9,
    "last_touch": 0.8,
}


def generate_portfolio_recommendations(current: Sequence["BudgetAllocation"],
                                       optimized: Sequence["BudgetAllocation"],
                                       roi_improvement: float,
                                       config: Optional[OptimizationConfig] = None) -> List[str]:
    """
    Portfolio-level advice for an optimization result.

    Large per-channel moves come first, then the overall ROI gain when it
    clears the threshold, then the standing review advice.
    """
    config = config or OptimizationConfig()
    current_by_channel = {a.channel: a for a in current}
    recommendations = []

    for allocation in optimized:
        baseline = current_by_channel.get(allocation.channel)
        if baseline is None or baseline.current_budget <= 0:
            continue

        change_percent = (allocation.optimized_budget - baseline.current_budget) / baseline.current_budget * 100
        if change_percent > config.budget_change_threshold_pct:
            recommendations.append(
                f"Increase {allocation.channel.value} budget by {change_percent:.1f}% "
                f"to capture higher ROI opportunity"
            )
        elif change_percent < -config.budget_change_threshold_pct:
            recommendations.append(
                f"Reduce {allocation.channel.value} budget by {abs(change_percent):.1f}% "
                f"due to diminishing returns"
            )

    if roi_improvement > PORTFOLIO_IMPROVEMENT_THRESHOLD_PCT:
        recommendations.append(f"This optimization can improve overall ROI by {roi_improvement:.1f}%")

    recommendations.extend(STANDING_PORTFOLIO_ADVICE)
    return recommendations


def calculate_impact_attribution(allocations: Sequence["BudgetAllocation"]) -> List[Dict[str, Any]]:
    """Split each channel's projected ROI across direct, assisted, time-decay and last-touch views."""
    return [
        {
            "channel": allocation.channel.value,
            "attribution": {
                view: max(0.0, allocation.projected_roi * weight)
                for view, weight in ATTRIBUTION_WEIGHTS.items()
            },
        }
        for allocation in allocations
    ]

"""
What-if analysis for promotional budgets.

ScenarioSimulator prices hand-written reallocations against the current
portfolio snapshot and re-runs the optimizer at other budget levels.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Mapping, Sequence, Union

import structlog

from omniverse.config.settings import ScenarioConfig
from omniverse.model.channel_profiles import (
    Channel, ChannelSnapshot, get_current_snapshot, snapshot_blended_roi
)
from omniverse.model.response_curves import roi_at_spend, saturation_at_spend
from omniverse.optimization.optimizer import BudgetOptimizer, BudgetConstraints, OptimizationResult
from omniverse.utils.exceptions import ConfigurationError, OptimizationError

logger = structlog.get_logger()


def _modelled_return(result: OptimizationResult) -> float:
    return sum(a.optimized_budget * a.projected_roi for a in result.optimized_allocation)


@dataclass
class ScenarioImpact:
    scenario: str
    changes: Dict[str, float]
    total_budget: float
    projected_roi: float
    roi_change: float  # percent
    reach_impact: float  # percent of the HCP universe
    prescription_lift: float  # percent
    risks: List[str] = field(default_factory=list)
    opportunities: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario": self.scenario,
            "changes": dict(self.changes),
            "total_budget": self.total_budget,
            "projected_roi": self.projected_roi,
            "roi_change": self.roi_change,
            "reach_impact": self.reach_impact,
            "prescription_lift": self.prescription_lift,
            "risks": list(self.risks),
            "opportunities": list(self.opportunities),
            "warnings": list(self.warnings),
        }


@dataclass
class _SimulatedChannel:
    channel: Channel
    budget: float
    roi: float
    saturation: float


class ScenarioSimulator:
    """Simulates budget reallocations and budget-level sensitivity."""

    def __init__(self,
                 optimizer: BudgetOptimizer,
                 snapshot: Optional[Sequence[ChannelSnapshot]] = None,
                 config: Optional[ScenarioConfig] = None):
        self.optimizer = optimizer
        self.snapshot = tuple(get_current_snapshot() if snapshot is None else snapshot)
        self.config = config or ScenarioConfig()
        self._current_budgets = {item.channel: item.budget for item in self.snapshot}

    def current_budget(self, channel: Channel) -> float:
        return self._current_budgets.get(channel, 0.0)

    def simulate(self, changes: Mapping[Union[str, Channel], float]) -> ScenarioImpact:
        """
        Price a set of proposed channel budgets against the current portfolio.

        Args:
            changes: Proposed budget per channel; channels left out keep
                their current budget

        Returns:
            ScenarioImpact with blended ROI, reach and prescription
            estimates and the risks and opportunities of the move
        """
        warnings: List[str] = []
        proposed = self._parse_changes(changes, warnings)

        simulated = self._simulate_channels(proposed)
        total_budget = sum(item.budget for item in simulated)
        projected_roi = (
            sum(item.roi * item.budget for item in simulated) / total_budget if total_budget > 0 else 0.0
        )

        current_roi = snapshot_blended_roi(self.snapshot)
        roi_change = (projected_roi - current_roi) / current_roi * 100 if current_roi > 0 else 0.0
        reach_impact = self.calculate_reach_impact(proposed)

        impact = ScenarioImpact(
            scenario=self.describe(proposed),
            changes={channel.value: budget for channel, budget in proposed.items()},
            total_budget=total_budget,
            projected_roi=projected_roi,
            roi_change=roi_change,
            reach_impact=reach_impact,
            prescription_lift=roi_change * self.config.prescription_lift_factor,
            risks=self._identify_risks(proposed, simulated),
            opportunities=self._identify_opportunities(simulated, roi_change, reach_impact),
            warnings=warnings
        )

        logger.info("Scenario simulated",
                    scenario=impact.scenario,
                    projected_roi=round(projected_roi, 4),
                    roi_change_pct=round(roi_change, 2),
                    risks=len(impact.risks))
        return impact

    def _parse_changes(self,
                       changes: Mapping[Union[str, Channel], float],
                       warnings: List[str]) -> Dict[Channel, float]:
        proposed = {}
        for key, budget in changes.items():
            try:
                channel = Channel.parse(key)
                if channel not in self.optimizer.profiles:
                    raise ConfigurationError(f"No channel profile for {channel.value}", channel=channel.value)
                if budget is None or not math.isfinite(budget) or budget < 0:
                    raise ConfigurationError(
                        f"Budget for {channel.value} must be a finite non-negative amount",
                        channel=channel.value
                    )
            except ConfigurationError as e:
                if self.optimizer.strict:
                    raise
                logger.warning("Scenario change ignored", message=str(e))
                warnings.append(str(e))
                continue
            proposed[channel] = float(budget)
        return proposed

    def _simulate_channels(self, proposed: Dict[Channel, float]) -> List[_SimulatedChannel]:
        """Apply the snapshot elasticity rule to every changed channel."""
        simulated = []
        for item in self.snapshot:
            if item.channel not in proposed:
                simulated.append(_SimulatedChannel(item.channel, item.budget, item.roi, item.saturation))
                continue

            new_budget = proposed[item.channel]
            if item.budget <= 0:
                profile = self.optimizer.profiles[item.channel]
                simulated.append(_SimulatedChannel(
                    item.channel, new_budget, roi_at_spend(profile, new_budget),
                    saturation_at_spend(profile, new_budget)
                ))
                continue

            ratio = new_budget / item.budget
            if ratio > 1:
                # More spend, diminishing returns
                roi = item.roi * (1 - item.saturation * 0.1 * (ratio - 1))
            else:
                roi = item.roi * (1 + (1 - ratio) * 0.05)

            simulated.append(_SimulatedChannel(
                item.channel, new_budget, max(roi, 0.0), min(item.saturation * ratio, 1.0)
            ))

        # Channels without a current budget are priced from their profile
        for channel, new_budget in proposed.items():
            if channel in self._current_budgets:
                continue
            profile = self.optimizer.profiles[channel]
            simulated.append(_SimulatedChannel(
                channel, new_budget, roi_at_spend(profile, new_budget),
                saturation_at_spend(profile, new_budget)
            ))

        return simulated

    def calculate_reach_impact(self, proposed: Mapping[Channel, float]) -> float:
        """Reach change as a percentage of the HCP universe."""
        total_reach_change = 0.0
        for channel, new_budget in proposed.items():
            profile = self.optimizer.profiles.get(channel)
            if profile:
                total_reach_change += (new_budget - self.current_budget(channel)) * profile.reach_per_dollar

        return total_reach_change / self.config.hcp_universe * 100

    def describe(self, proposed: Mapping[Channel, float]) -> str:
        increases = []
        decreases = []

        for channel, new_budget in proposed.items():
            change = new_budget - self.current_budget(channel)
            if change > 0:
                increases.append(f"{channel.value} +${round(change / 1000)}K")
            elif change < 0:
                decreases.append(f"{channel.value} -${round(abs(change) / 1000)}K")

        parts = []
        if increases:
            parts.append(f"Increase: {', '.join(increases)}")
        if decreases:
            parts.append(f"Decrease: {', '.join(decreases)}")

        return "; ".join(parts) if parts else "No budget changes"

    def _identify_risks(self,
                        proposed: Dict[Channel, float],
                        simulated: List[_SimulatedChannel]) -> List[str]:
        risks = []

        # Over-saturation
        for item in simulated:
            if item.saturation > self.config.saturation_risk:
                risks.append(f"{item.channel.value} approaching saturation ({round(item.saturation * 100)}%)")

        # Under-investment
        for channel, new_budget in proposed.items():
            if new_budget < self.optimizer.profiles[channel].min_spend:
                risks.append(f"{channel.value} below minimum effective spend threshold")

        # Dramatic shifts
        for channel, new_budget in proposed.items():
            current = self.current_budget(channel)
            if current > 0:
                change_pct = abs(new_budget - current) / current * 100
            else:
                change_pct = math.inf if new_budget > 0 else 0.0

            if change_pct > self.config.dramatic_change_pct:
                risks.append(
                    f"{channel.value} change >{self.config.dramatic_change_pct:g}% may disrupt operations"
                )

        return risks

    def _identify_opportunities(self,
                                simulated: List[_SimulatedChannel],
                                roi_change: float,
                                reach_impact: float) -> List[str]:
        opportunities = []
        roi_ratio = 1 + self.config.opportunity_roi_pct / 100
        current_roi = {item.channel: item.roi for item in self.snapshot}

        for item in simulated:
            baseline = current_roi.get(item.channel)
            if baseline and item.roi > baseline * roi_ratio:
                opportunities.append(
                    f"{item.channel.value} ROI improvement of {round(item.roi - baseline, 2)}x"
                )

        if roi_change > self.config.opportunity_roi_pct:
            opportunities.append(f"Blended ROI improvement of {round(roi_change, 1)}%")

        quality_factor = self.optimizer.config.snapshot_quality_factor
        current_efficiency = sum(i.roi * (1 - i.saturation) * quality_factor for i in self.snapshot)
        simulated_efficiency = sum(i.roi * (1 - i.saturation) * quality_factor for i in simulated)
        if simulated_efficiency > current_efficiency:
            opportunities.append("Overall efficiency improvement potential identified")

        if reach_impact > self.config.opportunity_reach_pct:
            opportunities.append(f"{round(reach_impact)}% increase in HCP reach")

        return opportunities

    def run_scenarios(self,
                      budgets: Sequence[float],
                      constraints: Optional[BudgetConstraints] = None) -> List[OptimizationResult]:
        """Optimize the portfolio at each of the given budget levels."""
        if not budgets:
            raise OptimizationError("At least one budget level is required")
        return [self.optimizer.optimize(budget, constraints=constraints) for budget in budgets]

    def budget_sensitivity(self,
                           total_budget: float,
                           multipliers: Optional[Sequence[float]] = None,
                           constraints: Optional[BudgetConstraints] = None) -> Dict[str, Any]:
        """Re-optimizes at scaled budget levels and compares modelled return."""
        multipliers = list(multipliers or self.config.sensitivity_multipliers)
        base = self.optimizer.optimize(total_budget, constraints=constraints)
        base_return = _modelled_return(base)

        scenarios = {}
        for multiplier in multipliers:
            result = self.optimizer.optimize(total_budget * multiplier, constraints=constraints)
            scenario_return = _modelled_return(result)

            scenarios[f"budget_{round(multiplier * 100)}pct"] = {
                "budget": result.total_budget,
                "optimized_roi": result.optimized_roi,
                "total_return": scenario_return,
                "return_change_pct": (
                    (scenario_return - base_return) / base_return * 100 if base_return > 0 else 0.0
                ),
                "allocation": {a.channel.value: a.optimized_budget for a in result.optimized_allocation},
            }

        logger.info("Budget sensitivity analysis completed",
                    total_budget=total_budget, scenarios=len(scenarios))
        return scenarios

    def channel_elimination(self, total_budget: float) -> Dict[str, Any]:
        """Re-optimizes with each funded channel switched off in turn."""
        base = self.optimizer.optimize(total_budget)
        base_return = _modelled_return(base)

        scenarios = {}
        for item in self.snapshot:
            if item.budget <= 0:
                continue
            result = self.optimizer.optimize(
                total_budget, constraints=BudgetConstraints(fixed_budgets={item.channel: 0.0})
            )
            scenario_return = _modelled_return(result)

            scenarios[f"eliminate_{item.channel.value}"] = {
                "eliminated_channel": item.channel.value,
                "optimized_roi": result.optimized_roi,
                "total_return": scenario_return,
                "return_change_pct": (
                    (scenario_return - base_return) / base_return * 100 if base_return > 0 else 0.0
                ),
                "allocation": {a.channel.value: a.optimized_budget for a in result.optimized_allocation},
                "warnings": result.warnings,
            }

        return scenarios

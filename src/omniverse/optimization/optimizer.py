"""
Budget optimization module for the OmniVerse budget planning service.
Handles greedy marginal-ROI allocation with per-channel bounds and an
SLSQP refinement of the allocated return.
"""
from typing import Dict, List, Tuple, Optional, Any, Mapping, Sequence, Union
from dataclasses import dataclass, field, replace
import math
import numpy as np
from scipy.optimize import Bounds, minimize
import structlog

from omniverse.config.settings import OptimizationConfig
from omniverse.model.channel_profiles import (
    Channel, ChannelProfile, ChannelSnapshot, get_channel_profiles, get_current_snapshot
)
from omniverse.model.response_curves import (
    roi_at_spend, marginal_roi, saturation_at_spend, efficiency_at_spend, channel_return
)
from omniverse.optimization.reporting import (
    ImplementationStep, calculate_impact_attribution, generate_channel_recommendations,
    generate_implementation_plan, generate_portfolio_recommendations
)
from omniverse.utils.exceptions import (
    ConfigurationError, InfeasibleBudgetError, OptimizationError, OmniVerseException
)

logger = structlog.get_logger()

_EPSILON = 1e-6  # dollars
_MIN_GAIN_RATIO = 1e-9  # of total budget


@dataclass
class BudgetConstraints:
    min_budgets: Dict[Union[str, Channel], float] = field(default_factory=dict)
    max_budgets: Dict[Union[str, Channel], float] = field(default_factory=dict)
    fixed_budgets: Dict[Union[str, Channel], float] = field(default_factory=dict)
    total_budget_limit: Optional[float] = None


@dataclass
class BudgetAllocation:
    channel: Channel
    current_budget: float
    optimized_budget: float
    current_roi: float
    projected_roi: float
    saturation: float
    efficiency: float
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "current_budget": self.current_budget,
            "optimized_budget": self.optimized_budget,
            "current_roi": self.current_roi,
            "projected_roi": self.projected_roi,
            "saturation": self.saturation,
            "efficiency": self.efficiency,
            "recommendations": list(self.recommendations),
        }


@dataclass
class OptimizationResult:
    current_allocation: List[BudgetAllocation]
    optimized_allocation: List[BudgetAllocation]
    total_budget: float
    current_roi: float
    optimized_roi: float
    roi_improvement: float  # percent
    implementation_plan: List[ImplementationStep]
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    impact_attribution: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_allocation": [a.to_dict() for a in self.current_allocation],
            "optimized_allocation": [a.to_dict() for a in self.optimized_allocation],
            "total_budget": self.total_budget,
            "current_roi": self.current_roi,
            "optimized_roi": self.optimized_roi,
            "roi_improvement": self.roi_improvement,
            "implementation_plan": [step.to_dict() for step in self.implementation_plan],
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "impact_attribution": [dict(item) for item in self.impact_attribution],
        }


def build_current_allocations(snapshot: Optional[Sequence[ChannelSnapshot]] = None,
                              profiles: Optional[Mapping[Channel, ChannelProfile]] = None,
                              quality_factor: float = 0.8) -> List[BudgetAllocation]:
    """Turn a current-state snapshot into allocations ready for optimization."""
    snapshot = get_current_snapshot() if snapshot is None else snapshot
    profiles = get_channel_profiles() if profiles is None else profiles

    allocations = []
    for item in snapshot:
        profile = profiles.get(item.channel)
        projected = roi_at_spend(profile, item.budget) if profile else item.roi
        allocations.append(BudgetAllocation(
            channel=item.channel,
            current_budget=float(item.budget),
            optimized_budget=float(item.budget),
            current_roi=item.roi,
            projected_roi=projected,
            saturation=item.saturation,
            efficiency=item.roi * (1 - item.saturation) * quality_factor
        ))
    return allocations


def allocations_from_budgets(budgets: Mapping[Union[str, Channel], float],
                             profiles: Optional[Mapping[Channel, ChannelProfile]] = None,
                             quality_factor: float = 0.8) -> List[BudgetAllocation]:
    """Current allocations for caller-supplied budgets, priced from the channel profiles."""
    profiles = get_channel_profiles() if profiles is None else profiles

    snapshot = []
    for name, budget in budgets.items():
        channel = Channel.parse(name)
        profile = profiles.get(channel)
        if profile is None:
            raise ConfigurationError(f"No channel profile for {channel.value}", channel=channel.value)
        if budget is None or not math.isfinite(budget) or budget < 0:
            raise ConfigurationError(
                f"Current budget for {channel.value} must be a finite non-negative amount",
                channel=channel.value
            )
        snapshot.append(ChannelSnapshot(
            channel=channel,
            budget=float(budget),
            roi=roi_at_spend(profile, budget),
            saturation=saturation_at_spend(profile, budget)
        ))

    return build_current_allocations(snapshot, profiles, quality_factor)


def blended_roi(allocations: Sequence[BudgetAllocation]) -> float:
    """Spend-weighted projected ROI of an allocation."""
    total_spend = sum(a.optimized_budget for a in allocations)
    if total_spend <= 0:
        return 0.0
    total_return = sum(a.optimized_budget * a.projected_roi for a in allocations)
    return total_return / total_spend


class BudgetOptimizer:
    """
    Distributes a budget across promotional channels.

    The optimizer is a stateless value: construct it once with its tuning
    parameters and call optimize() as often as needed.
    """

    def __init__(self,
                 profiles: Optional[Mapping[Channel, ChannelProfile]] = None,
                 iterations: int = 100,
                 strict: bool = False,
                 rebalance: bool = True,
                 max_rebalance_iterations: int = 200,
                 rebalance_tolerance: float = 1e-9,
                 config: Optional[OptimizationConfig] = None):
        if iterations < 1:
            raise ConfigurationError("Optimization needs at least one iteration")
        self.profiles = get_channel_profiles() if profiles is None else profiles
        self.iterations = iterations
        self.strict = strict
        self.rebalance = rebalance
        self.max_rebalance_iterations = max_rebalance_iterations
        self.rebalance_tolerance = rebalance_tolerance
        self.config = config or OptimizationConfig()

    def optimize(self,
                 total_budget: float,
                 current_allocations: Optional[Sequence[BudgetAllocation]] = None,
                 constraints: Optional[BudgetConstraints] = None) -> OptimizationResult:
        """
        Optimizes budget allocation to maximize blended ROI.

        Args:
            total_budget: Budget to distribute
            current_allocations: Current-state allocations (defaults to the
                current portfolio snapshot)
            constraints: Optional per-channel bounds and a total budget limit

        Returns:
            OptimizationResult with both allocations, ROI figures,
            implementation plan and any warnings raised along the way
        """
        if current_allocations is None:
            current_allocations = build_current_allocations(
                profiles=self.profiles, quality_factor=self.config.snapshot_quality_factor
            )
        current = [replace(a, recommendations=list(a.recommendations)) for a in current_allocations]

        optimized, warnings = self.allocate(total_budget, current, constraints)
        effective_budget = self._effective_budget(total_budget, constraints)

        current_roi = blended_roi(current)
        optimized_roi = blended_roi(optimized)
        roi_improvement = ((optimized_roi - current_roi) / current_roi * 100) if current_roi > 0 else 0.0

        implementation_plan = generate_implementation_plan(current, optimized)
        recommendations = generate_portfolio_recommendations(
            current, optimized, roi_improvement, self.config
        )

        logger.info(
            "Budget optimization completed",
            total_budget=effective_budget,
            current_roi=round(current_roi, 4),
            optimized_roi=round(optimized_roi, 4),
            roi_improvement_pct=round(roi_improvement, 2),
            warnings=len(warnings)
        )

        return OptimizationResult(
            current_allocation=current,
            optimized_allocation=optimized,
            total_budget=effective_budget,
            current_roi=current_roi,
            optimized_roi=optimized_roi,
            roi_improvement=roi_improvement,
            implementation_plan=implementation_plan,
            warnings=warnings,
            recommendations=recommendations,
            impact_attribution=calculate_impact_attribution(optimized)
        )

    def allocate(self,
                 total_budget: float,
                 current_allocations: Sequence[BudgetAllocation],
                 constraints: Optional[BudgetConstraints] = None) -> Tuple[List[BudgetAllocation], List[str]]:
        """
        Runs the floor, greedy and rebalancing passes.

        Returns copies of the given allocations with optimized_budget,
        projected_roi, saturation, efficiency and recommendations filled
        in, together with the warnings collected along the way.
        """
        if total_budget is None or not math.isfinite(total_budget) or total_budget <= 0:
            raise OptimizationError(f"Total budget must be a positive finite amount, got {total_budget}")

        constraints = constraints or BudgetConstraints()
        warnings: List[str] = []

        limit = constraints.total_budget_limit
        if limit is not None and not math.isfinite(limit):
            self._report(ConfigurationError(
                f"Total budget limit must be finite, got {limit}; ignoring it"
            ), warnings)
        elif limit is not None and total_budget > limit:
            self._report(ConfigurationError(
                f"Total budget {total_budget:,.0f} exceeds limit {limit:,.0f}; using the limit"
            ), warnings)
        total_budget = self._effective_budget(total_budget, constraints)
        if not total_budget > 0:
            raise OptimizationError(f"Total budget limit must be positive, got {total_budget}")

        optimized = [replace(a, recommendations=[]) for a in current_allocations]
        channels = [a.channel for a in optimized]

        logger.info("Starting budget optimization",
                    total_budget=total_budget, channels=[c.value for c in channels])

        floors, caps = self._resolve_bounds(channels, constraints, warnings)
        spend = self._floor_pass(total_budget, floors, warnings)

        if spend is None:
            # Floors were scaled down to fit the budget; nothing left to distribute
            required = sum(floors.values())
            scale = total_budget / required
            spend = {channel: floor * scale for channel, floor in floors.items()}
        else:
            remaining = total_budget - sum(spend.values())
            unallocated = self._greedy_pass(spend, caps, remaining)
            if unallocated > _EPSILON:
                self._report(ConfigurationError(
                    f"{unallocated:,.0f} of budget left unallocated: every channel is at its maximum"
                ), warnings)

            if self.rebalance:
                spend = self._choose_rebalanced(total_budget, spend, current_allocations, floors, caps)

        for allocation in optimized:
            self._finalize(allocation, spend[allocation.channel])

        return optimized, warnings

    def _effective_budget(self, total_budget: float, constraints: Optional[BudgetConstraints]) -> float:
        limit = constraints.total_budget_limit if constraints else None
        if limit is not None and math.isfinite(limit):
            return min(total_budget, limit)
        return total_budget

    def _report(self, error: OmniVerseException, warnings: List[str]):
        """Raise in strict mode, otherwise record the problem as a warning."""
        if self.strict:
            raise error
        logger.warning("Optimization warning", message=str(error))
        warnings.append(str(error))

    def _normalize_budget_map(self,
                              name: str,
                              values: Mapping[Union[str, Channel], float],
                              channels: List[Channel],
                              warnings: List[str]) -> Dict[Channel, float]:
        """Resolve constraint keys to channels, dropping unknown or unused ones."""
        resolved = {}
        for key, value in (values or {}).items():
            try:
                channel = Channel.parse(key)
            except ConfigurationError as e:
                self._report(ConfigurationError(f"{e} in {name}", channel=e.channel), warnings)
                continue

            if channel not in channels:
                self._report(ConfigurationError(
                    f"{channel.value} in {name} is not part of the current allocation",
                    channel=channel.value
                ), warnings)
                continue

            if value is None or not math.isfinite(value) or value < 0:
                self._report(ConfigurationError(
                    f"{name} for {channel.value} must be a finite non-negative amount",
                    channel=channel.value
                ), warnings)
                continue

            resolved[channel] = float(value)
        return resolved

    def _resolve_bounds(self,
                        channels: List[Channel],
                        constraints: BudgetConstraints,
                        warnings: List[str]) -> Tuple[Dict[Channel, float], Dict[Channel, float]]:
        """Per-channel floor and cap after applying constraints."""
        min_budgets = self._normalize_budget_map("min_budgets", constraints.min_budgets, channels, warnings)
        max_budgets = self._normalize_budget_map("max_budgets", constraints.max_budgets, channels, warnings)
        fixed_budgets = self._normalize_budget_map("fixed_budgets", constraints.fixed_budgets, channels, warnings)

        floors = {}
        caps = {}
        for channel in channels:
            profile = self.profiles.get(channel)
            if profile is None:
                self._report(ConfigurationError(
                    f"No channel profile for {channel.value}; channel receives no budget",
                    channel=channel.value
                ), warnings)
                floors[channel] = caps[channel] = 0.0
                continue

            if channel in fixed_budgets:
                floors[channel] = caps[channel] = fixed_budgets[channel]
                continue

            floor = min_budgets.get(channel, profile.min_spend)
            cap = max_budgets.get(channel, profile.saturation_spend)
            if floor > cap:
                self._report(ConfigurationError(
                    f"Minimum budget for {channel.value} exceeds its maximum; "
                    f"raising the maximum to {floor:,.0f}",
                    channel=channel.value
                ), warnings)
                cap = floor

            floors[channel] = floor
            caps[channel] = cap

        return floors, caps

    def _floor_pass(self,
                    total_budget: float,
                    floors: Dict[Channel, float],
                    warnings: List[str]) -> Optional[Dict[Channel, float]]:
        """Assign every channel its floor; None when the floors do not fit."""
        required = sum(floors.values())
        if required > total_budget:
            self._report(InfeasibleBudgetError(
                f"Total budget {total_budget:,.0f} is below the summed minimum spend "
                f"{required:,.0f}; minimums scaled by {total_budget / required:.3f}",
                total_budget=total_budget,
                required=required
            ), warnings)
            return None
        return dict(floors)

    def _best_channel(self, spend: Dict[Channel, float], caps: Dict[Channel, float]) -> Optional[Channel]:
        """Channel with the strictly highest positive marginal ROI; first wins ties."""
        best_channel = None
        best_marginal_roi = 0.0

        for channel, current_spend in spend.items():
            if caps[channel] - current_spend <= _EPSILON:
                continue
            value = marginal_roi(self.profiles[channel], current_spend)
            if value > best_marginal_roi:
                best_marginal_roi = value
                best_channel = channel

        return best_channel

    def _greedy_pass(self,
                     spend: Dict[Channel, float],
                     caps: Dict[Channel, float],
                     remaining: float) -> float:
        """Hand out the remaining budget in equal increments; returns what could not be placed."""
        increment = remaining / self.iterations
        unallocated = 0.0

        for iteration in range(self.iterations):
            amount = increment
            while amount > 0:
                best_channel = self._best_channel(spend, caps)
                if best_channel is None:
                    unallocated += amount
                    break
                given = min(amount, caps[best_channel] - spend[best_channel])
                spend[best_channel] += given
                amount -= given

            if iteration == 0 or (iteration + 1) % 25 == 0:
                logger.debug("Greedy allocation progress",
                             iteration=iteration + 1,
                             allocation={c.value: round(s) for c, s in spend.items()})

        return unallocated

    def _spread_residual(self,
                         spend: Dict[Channel, float],
                         floors: Dict[Channel, float],
                         caps: Dict[Channel, float],
                         total_budget: float) -> Optional[Dict[Channel, float]]:
        """Close the gap to the total by headroom or slack; None when the bounds cannot absorb it."""
        residual = total_budget - sum(spend.values())
        if residual > _EPSILON:
            room = {c: caps[c] - s for c, s in spend.items()}
            total_room = sum(room.values())
            if total_room < residual:
                return None
            for channel in spend:
                spend[channel] += residual * room[channel] / total_room
        elif residual < -_EPSILON:
            slack = {c: s - floors[c] for c, s in spend.items()}
            total_slack = sum(slack.values())
            if total_slack < -residual:
                return None
            for channel in spend:
                spend[channel] += residual * slack[channel] / total_slack
        return spend

    def _baseline_allocation(self,
                             total_budget: float,
                             current_allocations: Sequence[BudgetAllocation],
                             floors: Dict[Channel, float],
                             caps: Dict[Channel, float]) -> Optional[Dict[Channel, float]]:
        """Current budgets rescaled to the total and pushed inside the bounds."""
        current_total = sum(a.current_budget for a in current_allocations)
        if current_total <= 0:
            return None

        scale = total_budget / current_total
        spend = {
            a.channel: min(max(a.current_budget * scale, floors[a.channel]), caps[a.channel])
            for a in current_allocations
        }
        return self._spread_residual(spend, floors, caps, total_budget)

    def _total_return(self, spend: Dict[Channel, float]) -> float:
        return sum(channel_return(self.profiles[c], s) for c, s in spend.items() if c in self.profiles)

    def _refine(self,
                start: Dict[Channel, float],
                floors: Dict[Channel, float],
                caps: Dict[Channel, float],
                total_budget: float) -> Dict[Channel, float]:
        """
        Refine an allocation with SLSQP on total modelled return.

        Spend is optimized as a share of the total budget, with the channel
        bounds as box constraints and an equality constraint holding the
        total. Channels whose floor equals their cap are held out. The
        refined allocation is kept only when it is feasible and earns more
        than the starting point.
        """
        free = [c for c in start if c in self.profiles and caps[c] - floors[c] > _EPSILON]
        if len(free) < 2:
            return start

        profiles = [self.profiles[c] for c in free]
        free_share = sum(start[c] for c in free) / total_budget

        def objective(shares):
            return -sum(
                channel_return(profile, share * total_budget) for profile, share in zip(profiles, shares)
            ) / total_budget

        def budget_constraint(shares):
            return free_share - np.sum(shares)

        x0 = np.array([start[c] / total_budget for c in free])
        bounds = Bounds(
            [floors[c] / total_budget for c in free],
            [caps[c] / total_budget for c in free]
        )

        result = minimize(
            objective,
            x0,
            method="SLSQP",
            bounds=bounds,
            constraints=[{"type": "eq", "fun": budget_constraint}],
            options={"maxiter": self.max_rebalance_iterations, "ftol": self.rebalance_tolerance}
        )

        candidate = dict(start)
        for channel, share in zip(free, result.x):
            candidate[channel] = min(max(float(share) * total_budget, floors[channel]), caps[channel])
        candidate = self._spread_residual(candidate, floors, caps, total_budget)

        if candidate is None or not all(np.isfinite(s) for s in candidate.values()):
            logger.debug("Discarding infeasible refinement", message=str(result.message))
            return start

        gain = self._total_return(candidate) - self._total_return(start)
        logger.debug("Allocation refinement finished",
                     success=bool(result.success),
                     message=str(result.message),
                     iterations=int(result.nit),
                     gain=round(gain))

        return candidate if gain > total_budget * _MIN_GAIN_RATIO else start

    def _choose_rebalanced(self,
                           total_budget: float,
                           greedy_spend: Dict[Channel, float],
                           current_allocations: Sequence[BudgetAllocation],
                           floors: Dict[Channel, float],
                           caps: Dict[Channel, float]) -> Dict[Channel, float]:
        """Refine from the greedy and the current allocation; keep the better one."""
        best = self._refine(greedy_spend, floors, caps, total_budget)
        best_return = self._total_return(best)

        baseline = self._baseline_allocation(total_budget, current_allocations, floors, caps)
        if baseline is not None:
            candidate = self._refine(baseline, floors, caps, total_budget)
            candidate_return = self._total_return(candidate)
            if candidate_return > best_return:
                logger.info("Rebalanced current allocation outperforms greedy allocation",
                            greedy_return=round(best_return),
                            baseline_return=round(candidate_return))
                best, best_return = candidate, candidate_return

        return best

    def _finalize(self, allocation: BudgetAllocation, spend: float):
        """Fill in projections and recommendations for a channel."""
        allocation.optimized_budget = spend
        profile = self.profiles.get(allocation.channel)
        if profile is None:
            allocation.projected_roi = 0.0
            allocation.saturation = 0.0
            allocation.efficiency = 0.0
        else:
            allocation.projected_roi = roi_at_spend(profile, spend)
            allocation.saturation = saturation_at_spend(profile, spend)
            allocation.efficiency = efficiency_at_spend(profile, spend)
        allocation.recommendations = generate_channel_recommendations(allocation, self.config)

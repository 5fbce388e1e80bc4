"""
Budget planning endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Dict, Any, List, Optional
import structlog

from omniverse.api.dependencies import (
    get_settings, get_budget_optimizer, get_scenario_simulator, get_channel_planner
)
from omniverse.api.schemas import (
    OptimizationRequestSchema, ScenarioRequestSchema, ScenarioRunRequestSchema, QuarterlyPlanRequestSchema
)
from omniverse.config.settings import Settings
from omniverse.model.channel_profiles import (
    CHANNEL_BENCHMARKS, DEFAULT_BENCHMARK, get_current_snapshot, snapshot_blended_roi, snapshot_total_budget
)
from omniverse.model.response_curves import ResponseCurveGenerator
from omniverse.optimization.optimizer import BudgetOptimizer, allocations_from_budgets
from omniverse.optimization.planning import ChannelPlanner
from omniverse.optimization.scenarios import ScenarioSimulator
from omniverse.utils.exceptions import (
    OmniVerseException, ConfigurationError, InfeasibleBudgetError, OptimizationError
)

router = APIRouter()
logger = structlog.get_logger()


def _http_error(error: OmniVerseException) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(error, (ConfigurationError, InfeasibleBudgetError)):
        status_code = 400
    elif isinstance(error, OptimizationError):
        status_code = 422
    else:
        status_code = 500
    logger.warning("Budget request rejected", status_code=status_code, error=str(error))
    return HTTPException(status_code=status_code, detail=str(error))


@router.get("/")
async def agent_info() -> Dict[str, Any]:
    """Budget planning agent summary."""
    snapshot = get_current_snapshot()
    return {
        "agent": "Budget Planning Agent",
        "description": "Optimizes promotional budget allocation across channels using response curves",
        "capabilities": [
            "optimize",
            "simulate_scenario",
            "budget_sensitivity",
            "response_curves",
            "channel_analysis",
            "quarterly_plan",
        ],
        "channels": len(snapshot),
        "current_budget": snapshot_total_budget(snapshot),
        "current_roi": snapshot_blended_roi(snapshot),
    }


@router.get("/channels")
async def list_channels(optimizer: BudgetOptimizer = Depends(get_budget_optimizer)) -> Dict[str, Any]:
    """Channel profiles with their current budget and industry benchmark."""
    current = {item.channel: item for item in get_current_snapshot()}

    channels = []
    for channel, profile in optimizer.profiles.items():
        benchmark = CHANNEL_BENCHMARKS.get(channel, DEFAULT_BENCHMARK)
        snapshot = current.get(channel)
        channels.append({
            **profile.to_dict(),
            "current_budget": snapshot.budget if snapshot else 0.0,
            "current_roi": snapshot.roi if snapshot else None,
            "current_saturation": snapshot.saturation if snapshot else None,
            "benchmark": {
                "avg_roi": benchmark.avg_roi,
                "top_quartile": benchmark.top_quartile,
                "avg_spend": benchmark.avg_spend,
            },
        })

    return {"channels": channels}


@router.post("/optimize")
async def optimize_budget(request: OptimizationRequestSchema,
                          app_settings: Settings = Depends(get_settings),
                          optimizer: BudgetOptimizer = Depends(get_budget_optimizer)) -> Dict[str, Any]:
    """
    Run budget optimization with optional constraints.

    Args:
        request: Total budget, optional current budgets and constraints

    Returns:
        OptimizationResult as a dictionary
    """
    logger.info("Budget optimization requested", total_budget=request.total_budget)

    try:
        if request.strict is not None and request.strict != optimizer.strict:
            optimizer = BudgetOptimizer(
                **{**app_settings.get_optimizer_config(), "strict": request.strict},
                config=app_settings.optimization
            )

        current_allocations = None
        if request.current_budgets is not None:
            current_allocations = allocations_from_budgets(
                request.current_budgets, optimizer.profiles, optimizer.config.snapshot_quality_factor
            )

        constraints = request.constraints.to_constraints() if request.constraints else None
        result = optimizer.optimize(request.total_budget, current_allocations, constraints)
        return result.to_dict()

    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Budget optimization failed", total_budget=request.total_budget, error=str(e))
        raise HTTPException(status_code=500, detail=f"Optimization failed: {str(e)}")


@router.post("/scenario")
async def simulate_scenario(request: ScenarioRequestSchema,
                            simulator: ScenarioSimulator = Depends(get_scenario_simulator)) -> Dict[str, Any]:
    """Price a proposed reallocation against the current portfolio."""
    try:
        return simulator.simulate(request.changes).to_dict()
    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Scenario simulation failed", error=str(e))
        raise HTTPException(status_code=500, detail=f"Scenario simulation failed: {str(e)}")


@router.post("/scenarios/run")
async def run_scenarios(request: ScenarioRunRequestSchema,
                        simulator: ScenarioSimulator = Depends(get_scenario_simulator)) -> Dict[str, Any]:
    """Budget sensitivity, extra budget levels and channel elimination."""
    try:
        response = {
            "total_budget": request.total_budget,
            "sensitivity": simulator.budget_sensitivity(request.total_budget, request.multipliers),
        }
        if request.budgets:
            response["budget_levels"] = [r.to_dict() for r in simulator.run_scenarios(request.budgets)]
        if request.include_elimination:
            response["elimination"] = simulator.channel_elimination(request.total_budget)
        return response

    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Scenario analysis failed", total_budget=request.total_budget, error=str(e))
        raise HTTPException(status_code=500, detail=f"Scenario analysis failed: {str(e)}")


@router.get("/response-curves")
async def get_response_curves(channels: Optional[List[str]] = Query(None),
                              app_settings: Settings = Depends(get_settings)) -> Dict[str, Any]:
    """Response curves for the requested channels (all funded channels by default)."""
    generator = ResponseCurveGenerator(
        current_budgets={item.channel: item.budget for item in get_current_snapshot()},
        num_points=app_settings.planning.curve_points,
        max_spend_multiplier=app_settings.planning.curve_max_multiplier
    )

    try:
        curves = generator.generate_response_curves(channels)
        return {"response_curves": [curve.to_dict() for curve in curves]}
    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Response curve generation failed", channels=channels, error=str(e))
        raise HTTPException(status_code=500, detail=f"Response curve generation failed: {str(e)}")


@router.get("/channels/{channel}/analysis")
async def analyze_channel(channel: str,
                          months: int = Query(12, ge=6, le=36),
                          planner: ChannelPlanner = Depends(get_channel_planner)) -> Dict[str, Any]:
    """Performance diagnostics for a single channel."""
    try:
        return planner.analyze_channel_performance(channel, months=months).to_dict()
    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Channel analysis failed", channel=channel, error=str(e))
        raise HTTPException(status_code=500, detail=f"Channel analysis failed: {str(e)}")


@router.post("/quarterly-plan")
async def quarterly_plan(request: QuarterlyPlanRequestSchema,
                         planner: ChannelPlanner = Depends(get_channel_planner)) -> Dict[str, Any]:
    """Seasonally weighted quarterly plan for an annual budget."""
    try:
        plan = planner.generate_quarterly_plan(request.annual_budget, request.priorities, request.year)
        return plan.to_dict()
    except OmniVerseException as e:
        raise _http_error(e)
    except Exception as e:
        logger.error("Quarterly planning failed", annual_budget=request.annual_budget, error=str(e))
        raise HTTPException(status_code=500, detail=f"Quarterly planning failed: {str(e)}")

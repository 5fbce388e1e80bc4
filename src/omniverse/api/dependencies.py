"""
FastAPI dependencies for request handling.
"""
from fastapi import Depends

from omniverse.config.settings import Settings, settings
from omniverse.optimization.optimizer import BudgetOptimizer
from omniverse.optimization.planning import ChannelPlanner
from omniverse.optimization.scenarios import ScenarioSimulator


def get_settings() -> Settings:
    """Application settings; overridden in tests."""
    return settings


def get_budget_optimizer(app_settings: Settings = Depends(get_settings)) -> BudgetOptimizer:
    """Build an optimizer from the configured tuning parameters."""
    return BudgetOptimizer(**app_settings.get_optimizer_config(), config=app_settings.optimization)


def get_scenario_simulator(optimizer: BudgetOptimizer = Depends(get_budget_optimizer),
                           app_settings: Settings = Depends(get_settings)) -> ScenarioSimulator:
    return ScenarioSimulator(optimizer, config=app_settings.scenarios)


def get_channel_planner(optimizer: BudgetOptimizer = Depends(get_budget_optimizer),
                        app_settings: Settings = Depends(get_settings)) -> ChannelPlanner:
    return ChannelPlanner(optimizer, config=app_settings.planning)

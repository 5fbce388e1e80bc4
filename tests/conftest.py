"""
Pytest configuration and fixtures for OmniVerse budget planning tests.
"""
import pytest
from types import MappingProxyType
from fastapi.testclient import TestClient

from omniverse.api.main import app
from omniverse.model.channel_profiles import Channel, ChannelProfile, ChannelSnapshot, ResponseType
from omniverse.optimization.optimizer import BudgetOptimizer, build_current_allocations
from omniverse.optimization.planning import ChannelPlanner
from omniverse.optimization.scenarios import ScenarioSimulator


@pytest.fixture
def client():
    """Create a test client for the FastAPI app."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def optimizer():
    """Optimizer with default profiles and tuning."""
    return BudgetOptimizer()


@pytest.fixture
def strict_optimizer():
    return BudgetOptimizer(strict=True)


@pytest.fixture
def current_allocations():
    """Allocations for the default current portfolio."""
    return build_current_allocations()


@pytest.fixture
def simulator(optimizer):
    return ScenarioSimulator(optimizer)


@pytest.fixture
def planner(optimizer):
    return ChannelPlanner(optimizer)


@pytest.fixture
def twin_linear_profiles():
    """Two identical linear channels, for tie-break and cap tests."""
    def profile(channel):
        return ChannelProfile(
            channel=channel,
            base_roi=2.0,
            saturation_spend=10_000_000,
            min_spend=0,
            response_type=ResponseType.LINEAR,
            reach_per_dollar=0.0001,
            quality_score=1.0
        )

    return MappingProxyType({
        Channel.DIGITAL: profile(Channel.DIGITAL),
        Channel.EMAIL_MARKETING: profile(Channel.EMAIL_MARKETING),
    })


@pytest.fixture
def twin_linear_allocations(twin_linear_profiles):
    """Unfunded current allocations for the twin linear channels, Digital first."""
    snapshot = [
        ChannelSnapshot(Channel.DIGITAL, 0.0, 2.0, 0.0),
        ChannelSnapshot(Channel.EMAIL_MARKETING, 0.0, 2.0, 0.0),
    ]
    return build_current_allocations(snapshot, twin_linear_profiles)

"""
Configuration management for the OmniVerse budget planning service.
Handles application settings, environment variables, and business rules.
"""
import os
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Environment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


@dataclass
class OptimizationConfig:
    """Budget optimization configuration."""
    iterations: int = 100
    strict_constraints: bool = False

    # SLSQP refinement of the greedy allocation
    rebalance: bool = True
    max_rebalance_iterations: int = 200
    rebalance_tolerance: float = 1e-9

    # Efficiency multiplier applied to snapshot channels (no profile lookup)
    snapshot_quality_factor: float = 0.8

    # Recommendation thresholds
    budget_change_threshold_pct: float = 20.0
    high_saturation: float = 0.8
    low_saturation: float = 0.3
    high_efficiency: float = 2.5
    low_efficiency: float = 1.0
    roi_improvement_ratio: float = 1.1


@dataclass
class ScenarioConfig:
    """Scenario simulation configuration."""
    hcp_universe: int = 2847
    prescription_lift_factor: float = 0.5
    saturation_risk: float = 0.85
    dramatic_change_pct: float = 50.0
    opportunity_roi_pct: float = 10.0
    opportunity_reach_pct: float = 10.0
    sensitivity_multipliers: tuple = (0.8, 0.9, 1.1, 1.2, 1.5)


@dataclass
class PlanningConfig:
    """Response curve and quarterly planning configuration."""
    curve_points: int = 50
    curve_max_multiplier: float = 1.5
    optimal_saturation_share: float = 0.7
    seasonal_factors: tuple = (0.9, 1.1, 0.8, 1.2)
    plan_year: int = 2025
    random_seed: int = 42


@dataclass
class APIConfig:
    """API server configuration."""
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    reload: bool = False

    # CORS settings
    cors_origins: list = field(default_factory=lambda: ["*"])
    cors_methods: list = field(default_factory=lambda: ["GET", "POST"])


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_dir: str = "logs"
    log_to_file: bool = False
    max_file_size_mb: int = 10
    backup_count: int = 5

    # Structured logging
    use_json: bool = True


class Settings:
    """Main application settings class."""

    def __init__(self, env: Optional[Environment] = None):
        self.env = env or Environment(os.getenv("OMNIVERSE_ENV", "development"))
        self._load_environment_variables()
        self._initialize_configs()

    def _load_environment_variables(self):
        """Loads configuration from environment variables."""
        env_file = Path(".env")
        if env_file.exists():
            self._load_env_file(env_file)

    def _load_env_file(self, env_file: Path):
        """Loads environment variables from .env file."""
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        key, value = line.split("=", 1)
                        os.environ.setdefault(key.strip(), value.strip())
        except OSError as e:
            print(f"Warning: Could not load .env file: {e}")

    def _initialize_configs(self):
        """Initializes configuration objects."""
        self.optimization = OptimizationConfig(
            iterations=int(os.getenv("OPTIMIZATION_ITERATIONS", "100")),
            strict_constraints=os.getenv("STRICT_CONSTRAINTS", "false").lower() == "true",
            rebalance=os.getenv("REBALANCE_ALLOCATION", "true").lower() == "true",
            max_rebalance_iterations=int(os.getenv("REBALANCE_MAX_ITERATIONS", "200")),
            rebalance_tolerance=float(os.getenv("REBALANCE_TOLERANCE", "1e-9"))
        )

        self.scenarios = ScenarioConfig(
            hcp_universe=int(os.getenv("HCP_UNIVERSE", "2847"))
        )

        self.planning = PlanningConfig(
            plan_year=int(os.getenv("PLAN_YEAR", "2025")),
            random_seed=int(os.getenv("RANDOM_SEED", "42"))
        )

        self.api = APIConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
            debug=self.env == Environment.DEVELOPMENT,
            reload=self.env == Environment.DEVELOPMENT
        )

        self.logging = LoggingConfig(
            level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_to_file=os.getenv("LOG_TO_FILE", "false").lower() == "true",
            use_json=os.getenv("USE_JSON_LOGGING", "true").lower() == "true"
        )

    def get_optimizer_config(self) -> Dict[str, Any]:
        """Keyword arguments for constructing a BudgetOptimizer."""
        return {
            "iterations": self.optimization.iterations,
            "strict": self.optimization.strict_constraints,
            "rebalance": self.optimization.rebalance,
            "max_rebalance_iterations": self.optimization.max_rebalance_iterations,
            "rebalance_tolerance": self.optimization.rebalance_tolerance,
        }

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env == Environment.PRODUCTION


# Global settings instance
settings = Settings()

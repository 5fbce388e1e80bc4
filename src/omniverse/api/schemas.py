"""
Pydantic schemas for API request/response validation.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional

from omniverse.optimization.optimizer import BudgetConstraints

# Each budget level or multiplier is a full optimizer run
MAX_SCENARIO_LEVELS = 10


class ConstraintsSchema(BaseModel):
    min_budgets: Dict[str, float] = Field(default_factory=dict, description="Minimum budget per channel")
    max_budgets: Dict[str, float] = Field(default_factory=dict, description="Maximum budget per channel")
    fixed_budgets: Dict[str, float] = Field(default_factory=dict, description="Locked budget per channel")
    total_budget_limit: Optional[float] = Field(None, description="Upper limit on the total budget")

    def to_constraints(self) -> BudgetConstraints:
        return BudgetConstraints(
            min_budgets=dict(self.min_budgets),
            max_budgets=dict(self.max_budgets),
            fixed_budgets=dict(self.fixed_budgets),
            total_budget_limit=self.total_budget_limit
        )


class OptimizationRequestSchema(BaseModel):
    total_budget: float = Field(..., description="Budget to distribute across channels")
    current_budgets: Optional[Dict[str, float]] = Field(
        None, description="Current budget per channel; defaults to the current portfolio"
    )
    constraints: Optional[ConstraintsSchema] = None
    strict: Optional[bool] = Field(None, description="Raise on constraint problems instead of warning")


class ScenarioRequestSchema(BaseModel):
    changes: Dict[str, float] = Field(..., description="Proposed budget per channel")

    @field_validator("changes")
    @classmethod
    def validate_changes(cls, v):
        if not v:
            raise ValueError("At least one channel change is required")
        return v


class ScenarioRunRequestSchema(BaseModel):
    total_budget: float = Field(..., description="Reference budget")
    budgets: Optional[List[float]] = Field(
        None, max_length=MAX_SCENARIO_LEVELS, description="Additional budget levels to optimize"
    )
    multipliers: Optional[List[float]] = Field(
        None, max_length=MAX_SCENARIO_LEVELS, description="Budget multipliers for sensitivity analysis"
    )
    include_elimination: bool = Field(False, description="Also re-optimize with each channel switched off")

    @field_validator("multipliers")
    @classmethod
    def validate_multipliers(cls, v):
        if v is not None and any(m <= 0 for m in v):
            raise ValueError("Budget multipliers must be positive")
        return v


class QuarterlyPlanRequestSchema(BaseModel):
    annual_budget: float = Field(..., description="Budget for the whole year")
    priorities: List[str] = Field(default_factory=list, description="Strategic priorities")
    year: Optional[int] = Field(None, description="Plan year used in quarter labels")

    @field_validator("year")
    @classmethod
    def validate_year(cls, v):
        if v is not None and not 2000 <= v <= 2100:
            raise ValueError("Plan year must be between 2000 and 2100")
        return v

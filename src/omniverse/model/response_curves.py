"""
Response curve model for promotional channels.

This module maps channel spend to ROI using the curve shape of each
channel profile, and generates response curves that show the relationship
between spend and total return for each channel.
"""
import numpy as np
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass
import structlog

from omniverse.model.channel_profiles import (
    Channel, ChannelProfile, ResponseType, get_channel_profile
)
from omniverse.utils.exceptions import NumericDomainError

logger = structlog.get_logger()

_LOG_11 = np.log(11.0)
_EXP_DECAY_NORM = 1.0 - np.exp(-3.0)


def _finite_or_zero(value: float, channel: Channel, quantity: str) -> float:
    """Floor NaN, infinite and negative curve values at zero."""
    if not np.isfinite(value):
        error = NumericDomainError(f"{quantity} for {channel.value} is not finite")
        logger.warning("Non-finite curve value floored to zero",
                       channel=channel.value, quantity=quantity, error=str(error))
        return 0.0
    return max(float(value), 0.0)


def _saturation_ratio(profile: ChannelProfile, spend: float) -> float:
    """Unclamped spend / saturation ratio; inf or nan when saturation is zero."""
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.divide(max(spend, 0.0), profile.saturation_spend))


def roi_at_spend(profile: ChannelProfile, spend: float) -> float:
    """Quality-adjusted ROI of a channel at a spend level."""
    ratio = _saturation_ratio(profile, spend)
    if np.isnan(ratio):
        return _finite_or_zero(ratio, profile.channel, "roi")
    r = min(ratio, 1.0)

    response_type = profile.response_type
    if response_type == ResponseType.LOGARITHMIC:
        multiplier = np.log(1 + r * 10) / _LOG_11
    elif response_type == ResponseType.LINEAR_PLATEAU:
        multiplier = 1.0 if r < 0.8 else 1 - (r - 0.8) * 2
    elif response_type == ResponseType.EXPONENTIAL_DECAY:
        multiplier = (1 - np.exp(-r * 3)) / _EXP_DECAY_NORM
    elif response_type == ResponseType.STEP_FUNCTION:
        if r < 0.3:
            multiplier = 0.8
        elif r < 0.6:
            multiplier = 1.0
        elif r < 0.9:
            multiplier = 0.9
        else:
            multiplier = 0.6
    else:  # LINEAR
        multiplier = 1 - r * 0.3

    return _finite_or_zero(profile.base_roi * multiplier * profile.quality_score,
                           profile.channel, "roi")


def marginal_roi(profile: ChannelProfile, current_spend: float) -> float:
    """
    Marginal ROI used to rank channels during greedy allocation.

    This is a simplified per-curve formula, not the derivative of
    roi_at_spend, and carries no quality adjustment.
    """
    r = _saturation_ratio(profile, current_spend)
    if np.isnan(r):
        return _finite_or_zero(r, profile.channel, "marginal_roi")

    base = profile.base_roi
    response_type = profile.response_type
    if response_type == ResponseType.LOGARITHMIC:
        value = base / (1 + r * 2)
    elif response_type == ResponseType.LINEAR_PLATEAU:
        value = base if r < 0.8 else base * 0.2
    elif response_type == ResponseType.EXPONENTIAL_DECAY:
        value = base * np.exp(-r * 2)
    elif response_type == ResponseType.STEP_FUNCTION:
        if r < 0.3:
            value = base * 1.2
        elif r < 0.6:
            value = base
        else:
            value = base * 0.5
    else:  # LINEAR
        value = base if r < 1 else 0.0

    return _finite_or_zero(value, profile.channel, "marginal_roi")


def saturation_at_spend(profile: ChannelProfile, spend: float) -> float:
    """Share of the saturation spend in use, capped at 1."""
    ratio = _saturation_ratio(profile, spend)
    if np.isnan(ratio):
        return 0.0
    return min(ratio, 1.0)


def efficiency_at_spend(profile: ChannelProfile, spend: float) -> float:
    """Efficiency = ROI * (1 - saturation) * quality."""
    roi = roi_at_spend(profile, spend)
    saturation = saturation_at_spend(profile, spend)
    return roi * (1 - saturation) * profile.quality_score


def channel_return(profile: ChannelProfile, spend: float) -> float:
    """Total modelled return generated by a spend level."""
    return max(spend, 0.0) * roi_at_spend(profile, spend)


@dataclass
class ResponseCurve:
    channel: Channel
    data_points: List[Dict[str, float]]
    saturation_point: float
    optimal_spend: float
    current_position: float
    marginal_roi: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel.value,
            "data_points": self.data_points,
            "saturation_point": self.saturation_point,
            "optimal_spend": self.optimal_spend,
            "current_position": self.current_position,
            "marginal_roi": self.marginal_roi,
        }


class ResponseCurveGenerator:
    """Generates spend/response curves from channel profiles."""

    def __init__(self,
                 current_budgets: Optional[Dict[Channel, float]] = None,
                 num_points: int = 50,
                 max_spend_multiplier: float = 1.5):
        self.current_budgets = dict(current_budgets or {})
        self.num_points = num_points
        self.max_spend_multiplier = max_spend_multiplier

    def generate_response_curve(self,
                                channel: Union[str, Channel],
                                current_budget: Optional[float] = None) -> ResponseCurve:
        """
        Generate the response curve for a single channel.

        Args:
            channel: Channel name or member
            current_budget: Spend to mark on the curve (defaults to the
                budget known to the generator, or zero)

        Returns:
            ResponseCurve with data points and key spend levels
        """
        profile = get_channel_profile(channel)
        if current_budget is None:
            current_budget = self.current_budgets.get(profile.channel, 0.0)

        max_spend = profile.saturation_spend * self.max_spend_multiplier
        spend_levels = np.linspace(0, max_spend, self.num_points + 1)

        data_points = []
        for spend in spend_levels:
            roi = roi_at_spend(profile, float(spend))
            data_points.append({
                "spend": float(spend),
                "response": float(spend) * roi,
                "roi": roi
            })

        return ResponseCurve(
            channel=profile.channel,
            data_points=data_points,
            saturation_point=self._find_saturation_point(data_points),
            optimal_spend=self._find_optimal_spend(data_points),
            current_position=float(current_budget),
            marginal_roi=marginal_roi(profile, current_budget)
        )

    def generate_response_curves(self,
                                 channels: Optional[List[Union[str, Channel]]] = None) -> List[ResponseCurve]:
        """Generate response curves for several channels (all funded channels by default)."""
        if channels is None:
            channels = list(self.current_budgets.keys())
        return [self.generate_response_curve(channel) for channel in channels]

    def _find_saturation_point(self, data_points: List[Dict[str, float]]) -> float:
        """First spend level where an extra dollar returns less than a dollar."""
        for previous, point in zip(data_points, data_points[1:]):
            spend_delta = point["spend"] - previous["spend"]
            if spend_delta <= 0:
                continue
            if (point["response"] - previous["response"]) / spend_delta < 1.0:
                return point["spend"]

        return data_points[-1]["spend"]

    def _find_optimal_spend(self, data_points: List[Dict[str, float]]) -> float:
        """Spend level with the maximum total return."""
        max_return = 0.0
        optimal_spend = 0.0

        for point in data_points:
            if point["response"] > max_return:
                max_return = point["response"]
                optimal_spend = point["spend"]

        return optimal_spend

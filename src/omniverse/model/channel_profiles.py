"""
Static channel economics for pharmaceutical promotional channels.

Holds the per-channel response profiles used by the optimizer, the
current-state portfolio snapshot and industry benchmarks. Everything in
this module is immutable once built.
"""
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Dict, Mapping, Sequence, Tuple, Union

from omniverse.utils.exceptions import ConfigurationError


class Channel(str, Enum):
    FIELD_FORCE = "Field Force"
    DIGITAL = "Digital"
    SPEAKER_PROGRAMS = "Speaker Programs"
    MEDICAL_CONFERENCES = "Medical Conferences"
    EMAIL_MARKETING = "Email Marketing"
    WEB_PORTALS = "Web Portals"

    @classmethod
    def parse(cls, name: Union[str, "Channel"]) -> "Channel":
        """Resolve a channel display name (or member) to a Channel."""
        if isinstance(name, cls):
            return name
        try:
            return cls(name)
        except ValueError:
            raise ConfigurationError(f"Unknown channel: {name}", channel=str(name))


class ResponseType(str, Enum):
    LOGARITHMIC = "logarithmic"
    LINEAR_PLATEAU = "linear-plateau"
    EXPONENTIAL_DECAY = "exponential-decay"
    STEP_FUNCTION = "step-function"
    LINEAR = "linear"


@dataclass(frozen=True)
class ChannelProfile:
    channel: Channel
    base_roi: float
    saturation_spend: float
    min_spend: float
    response_type: ResponseType
    reach_per_dollar: float
    quality_score: float

    def __post_init__(self):
        if self.min_spend < 0 or self.saturation_spend < 0:
            raise ConfigurationError(
                f"Spend levels must be non-negative for {self.channel.value}",
                channel=self.channel.value
            )
        if self.min_spend > self.saturation_spend:
            raise ConfigurationError(
                f"Minimum spend exceeds saturation spend for {self.channel.value}",
                channel=self.channel.value
            )
        if not 0.0 <= self.quality_score <= 1.0:
            raise ConfigurationError(
                f"Quality score must be within [0, 1] for {self.channel.value}",
                channel=self.channel.value
            )

    def to_dict(self) -> Dict[str, object]:
        return {
            "channel": self.channel.value,
            "base_roi": self.base_roi,
            "saturation_spend": self.saturation_spend,
            "min_spend": self.min_spend,
            "response_type": self.response_type.value,
            "reach_per_dollar": self.reach_per_dollar,
            "quality_score": self.quality_score,
        }


@dataclass(frozen=True)
class ChannelSnapshot:
    """Observed state of a channel in the current plan."""
    channel: Channel
    budget: float
    roi: float
    saturation: float


@dataclass(frozen=True)
class ChannelBenchmark:
    avg_roi: float
    top_quartile: float
    avg_spend: float


@lru_cache(maxsize=1)
def get_channel_profiles() -> Mapping[Channel, ChannelProfile]:
    """Build the channel profile table once per process."""
    profiles = [
        ChannelProfile(Channel.FIELD_FORCE, 3.5, 35_000_000, 10_000_000,
                       ResponseType.LOGARITHMIC, 0.00008, 0.85),
        ChannelProfile(Channel.DIGITAL, 2.8, 15_000_000, 2_000_000,
                       ResponseType.LINEAR_PLATEAU, 0.00025, 0.65),
        ChannelProfile(Channel.SPEAKER_PROGRAMS, 4.2, 10_000_000, 1_000_000,
                       ResponseType.EXPONENTIAL_DECAY, 0.00005, 0.90),
        ChannelProfile(Channel.MEDICAL_CONFERENCES, 2.2, 5_000_000, 500_000,
                       ResponseType.STEP_FUNCTION, 0.00012, 0.75),
        ChannelProfile(Channel.EMAIL_MARKETING, 2.5, 4_000_000, 100_000,
                       ResponseType.LINEAR, 0.00035, 0.55),
        ChannelProfile(Channel.WEB_PORTALS, 2.0, 3_000_000, 200_000,
                       ResponseType.LOGARITHMIC, 0.00020, 0.60),
    ]
    return MappingProxyType({profile.channel: profile for profile in profiles})


def get_channel_profile(channel: Union[str, Channel]) -> ChannelProfile:
    """Look up the profile for a channel name or member."""
    return get_channel_profiles()[Channel.parse(channel)]


@lru_cache(maxsize=1)
def get_current_snapshot() -> Tuple[ChannelSnapshot, ...]:
    """Current-year promotional plan. Web Portals is not funded today."""
    return (
        ChannelSnapshot(Channel.FIELD_FORCE, 28_000_000, 3.5, 0.75),
        ChannelSnapshot(Channel.DIGITAL, 8_000_000, 2.8, 0.45),
        ChannelSnapshot(Channel.SPEAKER_PROGRAMS, 6_000_000, 4.2, 0.60),
        ChannelSnapshot(Channel.MEDICAL_CONFERENCES, 3_000_000, 2.2, 0.80),
        ChannelSnapshot(Channel.EMAIL_MARKETING, 2_000_000, 2.5, 0.35),
    )


def snapshot_total_budget(snapshot: Sequence[ChannelSnapshot]) -> float:
    return sum(item.budget for item in snapshot)


def snapshot_blended_roi(snapshot: Sequence[ChannelSnapshot]) -> float:
    """Budget-weighted ROI of a snapshot."""
    total = snapshot_total_budget(snapshot)
    if total <= 0:
        return 0.0
    return sum(item.roi * item.budget for item in snapshot) / total


# Industry benchmark data
CHANNEL_BENCHMARKS: Mapping[Channel, ChannelBenchmark] = MappingProxyType({
    Channel.FIELD_FORCE: ChannelBenchmark(3.2, 4.0, 30_000_000),
    Channel.DIGITAL: ChannelBenchmark(2.5, 3.2, 10_000_000),
    Channel.SPEAKER_PROGRAMS: ChannelBenchmark(3.8, 4.5, 7_000_000),
    Channel.MEDICAL_CONFERENCES: ChannelBenchmark(2.0, 2.5, 4_000_000),
    Channel.EMAIL_MARKETING: ChannelBenchmark(2.2, 2.8, 2_500_000),
    Channel.WEB_PORTALS: ChannelBenchmark(1.8, 2.3, 2_000_000),
})

DEFAULT_BENCHMARK = ChannelBenchmark(2.5, 3.0, 5_000_000)

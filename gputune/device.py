"""
GPUTune - Device Model

Data structures for GPU devices, their live telemetry and the tuning
targets staged by the user before they are applied.
"""

import copy
import time
from collections import deque
from dataclasses import dataclass, field, fields
from typing import Deque, Iterable, List, Optional, Tuple

# Fan curve: fixed temperature steps (°C) and the default duty at each (%)
DEFAULT_FAN_TEMPERATURES: Tuple[int, ...] = (30, 50, 65, 75, 85)
DEFAULT_FAN_DUTIES: Tuple[int, ...] = (30, 40, 50, 70, 85)
FAN_CURVE_POINTS = 5

DEFAULT_POWER_LIMIT_PERCENT = 100
DEFAULT_HISTORY_LENGTH = 100

TELEMETRY_FIELDS: Tuple[str, ...] = (
    "temperature",
    "memory_used",
    "memory_total",
    "gpu_utilization",
    "memory_utilization",
    "power_usage",
    "power_limit",
    "core_clock",
    "memory_clock",
    "fan_speed",
)


@dataclass(frozen=True)
class FanPoint:
    """A single fan curve point: duty cycle (%) at a temperature (°C)."""
    temperature: int
    duty: int


class FanCurve:
    """
    Five ordered (temperature, duty) points.

    Ordering is checked whenever points are edited: temperatures must be
    strictly ascending and duties must stay within 0-100%.
    """

    def __init__(self, points: Optional[Iterable[FanPoint]] = None):
        if points is None:
            points = [
                FanPoint(t, d)
                for t, d in zip(DEFAULT_FAN_TEMPERATURES, DEFAULT_FAN_DUTIES)
            ]
        points = list(points)
        if len(points) != FAN_CURVE_POINTS:
            raise ValueError(
                f"Fan curve needs exactly {FAN_CURVE_POINTS} points, got {len(points)}"
            )
        self._check(points)
        self._points: List[FanPoint] = points

    @classmethod
    def default(cls) -> "FanCurve":
        return cls()

    @staticmethod
    def _check(points: List[FanPoint]) -> None:
        for point in points:
            if not 0 <= point.duty <= 100:
                raise ValueError(f"Fan duty {point.duty}% outside 0-100%")
        for lower, upper in zip(points, points[1:]):
            if upper.temperature <= lower.temperature:
                raise ValueError(
                    f"Fan curve temperatures must ascend "
                    f"({lower.temperature}°C then {upper.temperature}°C)"
                )

    @property
    def points(self) -> Tuple[FanPoint, ...]:
        return tuple(self._points)

    @property
    def temperatures(self) -> Tuple[int, ...]:
        return tuple(p.temperature for p in self._points)

    @property
    def duties(self) -> Tuple[int, ...]:
        return tuple(p.duty for p in self._points)

    def set_point(
        self,
        position: int,
        temperature: Optional[int] = None,
        duty: Optional[int] = None
    ) -> None:
        """
        Edit one point of the curve.

        Args:
            position: Point index (0-4)
            temperature: New temperature in °C (unchanged if None)
            duty: New duty cycle in % (unchanged if None)

        Raises:
            IndexError: If position is not 0-4
            ValueError: If the edit breaks ordering or the duty range
        """
        current = self._points[position]
        candidate = list(self._points)
        candidate[position] = FanPoint(
            temperature=current.temperature if temperature is None else temperature,
            duty=current.duty if duty is None else duty,
        )
        self._check(candidate)
        self._points = candidate

    def to_dict(self) -> dict:
        return {p.temperature: p.duty for p in self._points}

    def __eq__(self, other) -> bool:
        if not isinstance(other, FanCurve):
            return NotImplemented
        return self._points == other._points

    def __repr__(self) -> str:
        return f"FanCurve({self.to_dict()})"


@dataclass
class TuningSettings:
    """Operating point requested by the user (0 clock = no change)."""
    target_core_clock: int = 0
    target_memory_clock: int = 0
    target_power_limit: int = DEFAULT_POWER_LIMIT_PERCENT
    fan_curve: FanCurve = field(default_factory=FanCurve)

    def copy(self) -> "TuningSettings":
        return copy.deepcopy(self)


@dataclass
class TelemetrySample:
    """
    One backend read for one device.

    Values are already in display units (°C, MB, %, W, MHz). A field left
    as None means that individual read failed.
    """
    temperature: Optional[int] = None
    memory_used: Optional[int] = None
    memory_total: Optional[int] = None
    gpu_utilization: Optional[int] = None
    memory_utilization: Optional[int] = None
    power_usage: Optional[int] = None
    power_limit: Optional[int] = None
    core_clock: Optional[int] = None
    memory_clock: Optional[int] = None
    fan_speed: Optional[int] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


@dataclass(frozen=True)
class HistoryPoint:
    """Telemetry recorded after a refresh, for graphing."""
    timestamp: float  # time.monotonic()
    temperature: int
    gpu_utilization: int
    power_usage: int
    memory_used_percent: float


def _history(length: int = DEFAULT_HISTORY_LENGTH) -> Deque[HistoryPoint]:
    return deque(maxlen=length)


@dataclass
class Device:
    """A GPU visible to the process."""
    index: int
    name: str
    driver_version: str = ""
    vendor_capable: bool = False

    # Live telemetry
    temperature: int = 0
    memory_used: int = 0
    memory_total: int = 0
    gpu_utilization: int = 0
    memory_utilization: int = 0
    power_usage: int = 0
    power_limit: int = 0
    core_clock: int = 0
    memory_clock: int = 0
    fan_speed: int = 0

    # Tuning targets
    tuning: TuningSettings = field(default_factory=TuningSettings)

    history: Deque[HistoryPoint] = field(
        default_factory=_history, repr=False, compare=False
    )

    @property
    def memory_used_percent(self) -> float:
        if self.memory_total <= 0:
            return 0.0
        return self.memory_used / self.memory_total * 100.0

    def target_power_watts(self, percent: Optional[int] = None) -> int:
        """Absolute power limit a percentage of the reported limit maps to."""
        if percent is None:
            percent = self.tuning.target_power_limit
        return percent * self.power_limit // 100

    def update_from(self, sample: TelemetrySample) -> int:
        """
        Merge a telemetry sample into this device.

        Failed reads (None) keep the previous value.

        Returns:
            Number of fields updated
        """
        updated = 0
        for name in TELEMETRY_FIELDS:
            value = getattr(sample, name)
            if value is not None:
                setattr(self, name, value)
                updated += 1
        return updated

    def record_history(self, timestamp: Optional[float] = None) -> None:
        self.history.append(HistoryPoint(
            timestamp=time.monotonic() if timestamp is None else timestamp,
            temperature=self.temperature,
            gpu_utilization=self.gpu_utilization,
            power_usage=self.power_usage,
            memory_used_percent=self.memory_used_percent,
        ))

    def reset_tuning(self) -> None:
        """Targets back to observed clocks, 100% power and the default curve."""
        self.tuning.target_core_clock = self.core_clock
        self.tuning.target_memory_clock = self.memory_clock
        self.tuning.target_power_limit = DEFAULT_POWER_LIMIT_PERCENT
        self.tuning.fan_curve = FanCurve.default()


def new_device(
    index: int,
    name: str,
    driver_version: str = "",
    vendor_capable: bool = False,
    history_length: int = DEFAULT_HISTORY_LENGTH,
) -> Device:
    """Create a device with zeroed telemetry and default tuning targets."""
    return Device(
        index=index,
        name=name,
        driver_version=driver_version,
        vendor_capable=vendor_capable,
        history=_history(history_length),
    )

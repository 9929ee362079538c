"""Shared fixtures: an in-memory backend standing in for a vendor API."""

from typing import Dict, List, Optional, Tuple

import pytest

from gputune.backend import (
    BackendInitError,
    DeviceIdentity,
    DeviceQueryError,
    GPUBackend,
    SystemDefaultBackend,
)
from gputune.config import AppConfig
from gputune.device import FanCurve, TelemetrySample
from gputune.monitor import GPUMonitor
from gputune.registry import DeviceRegistry


def full_sample(**overrides) -> TelemetrySample:
    values = dict(
        temperature=55,
        memory_used=2048,
        memory_total=8192,
        gpu_utilization=40,
        memory_utilization=20,
        power_usage=120,
        power_limit=200,
        core_clock=1800,
        memory_clock=7000,
        fan_speed=45,
    )
    values.update(overrides)
    return TelemetrySample(**values)


class FakeBackend(GPUBackend):
    """Records every write; telemetry comes from `samples`."""

    name = "fake"
    vendor_capable = True

    def __init__(
        self,
        devices: Optional[List[Tuple[str, str]]] = None,
        fail_init: bool = False,
        supports_fan_curve: bool = False,
    ):
        self.identities = devices if devices is not None else [("Fake GPU 0", "550.54")]
        self.samples: Dict[int, TelemetrySample] = {
            i: full_sample() for i in range(len(self.identities))
        }
        self.fail_init = fail_init
        self.supports_fan_curve = supports_fan_curve
        self.broken_identities = set()
        self.unreachable = set()
        self.reject_writes: Optional[Exception] = None
        self.calls: List[tuple] = []
        self.shutdown_calls = 0

    def initialize(self) -> None:
        if self.fail_init:
            raise BackendInitError("driver not loaded")

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    def device_count(self) -> int:
        return len(self.identities)

    def device_identity(self, index: int) -> DeviceIdentity:
        if index in self.broken_identities:
            raise DeviceQueryError(f"GPU {index} is lost")
        name, driver = self.identities[index]
        return DeviceIdentity(name=name, driver_version=driver)

    def read_telemetry(self, index: int) -> TelemetrySample:
        if index in self.unreachable:
            raise DeviceQueryError(f"GPU {index} not reachable")
        return self.samples[index]

    def set_power_limit(self, index: int, watts: int) -> None:
        self.calls.append(("power", index, watts))
        if self.reject_writes:
            raise self.reject_writes

    def set_application_clocks(self, index: int, memory_mhz: int, core_mhz: int) -> None:
        self.calls.append(("clocks", index, memory_mhz, core_mhz))
        if self.reject_writes:
            raise self.reject_writes

    def set_fan_curve(self, index: int, curve: FanCurve) -> None:
        self.calls.append(("fan", index, curve.duties))


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def fallback(tmp_path):
    return SystemDefaultBackend("System Default GPU", drm_root=tmp_path)


@pytest.fixture
def make_registry(fallback):
    def _make(backend: GPUBackend, config: Optional[AppConfig] = None) -> DeviceRegistry:
        return DeviceRegistry(backends=[lambda: backend], fallback=fallback, config=config)
    return _make


@pytest.fixture
def make_monitor(make_registry):
    def _make(backend: GPUBackend, config: Optional[AppConfig] = None) -> GPUMonitor:
        config = config or AppConfig()
        return GPUMonitor(registry=make_registry(backend, config), config=config)
    return _make


@pytest.fixture
def monitor(make_monitor, backend):
    return make_monitor(backend)


@pytest.fixture
def unavailable_monitor(make_monitor):
    return make_monitor(FakeBackend(fail_init=True))

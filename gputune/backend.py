"""
GPUTune - GPU Backends

Capability interface over vendor management APIs, with an NVML
implementation and a minimal fallback used when no vendor API is present.

Backends convert native units exactly once, at the read boundary:
- bytes -> MB by integer division by 1048576
- milliwatts -> watts by integer division by 1000

API Reference: https://docs.nvidia.com/deploy/nvml-api/
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Tuple

# Import nvidia-ml-py (the official NVIDIA Python bindings)
try:
    import pynvml
except ImportError:
    raise ImportError(
        "nvidia-ml-py is required. Install with: pip install nvidia-ml-py"
    )

from .device import FanCurve, TelemetrySample

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
MILLIWATTS_PER_WATT = 1000

DEFAULT_FALLBACK_NAME = "System Default GPU"
DRM_ROOT = Path("/sys/class/drm")

# PCI vendor ids used to name the fallback device
PCI_VENDORS = {
    "0x10de": "NVIDIA",
    "0x1002": "AMD",
    "0x8086": "Intel",
}


class GPUTuneError(Exception):
    """Base exception for GPUTune errors."""
    pass


class BackendInitError(GPUTuneError):
    """Raised when a vendor backend cannot be initialized."""
    pass


class DeviceQueryError(GPUTuneError):
    """Raised when a device (or the device count) cannot be queried."""
    pass


class ApplyRejectedError(GPUTuneError):
    """Raised when the backend refuses a tuning write."""
    pass


class PermissionDeniedError(ApplyRejectedError):
    """Raised when a tuning write requires elevated privileges."""
    pass


class NotSupportedError(GPUTuneError):
    """Raised for optional controls the backend does not implement."""
    pass


@dataclass
class DeviceIdentity:
    """Static identity of a device."""
    name: str
    driver_version: str


def _decode(value: Any) -> str:
    # Handle bytes vs string (depends on pynvml version); bad bytes become U+FFFD
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


class GPUBackend(ABC):
    """
    Capability interface implemented once per vendor API.

    Reads of individual telemetry fields never raise; writes raise
    ApplyRejectedError (or a subclass) when refused.
    """

    name: str = "abstract"
    vendor_capable: bool = False
    supports_fan_curve: bool = False

    @abstractmethod
    def initialize(self) -> None:
        """
        Bring the backend up.

        Raises:
            BackendInitError: If the vendor API is unusable on this host
        """

    @abstractmethod
    def shutdown(self) -> None:
        """Release backend resources. Safe to call more than once."""

    @abstractmethod
    def device_count(self) -> int:
        """Raises DeviceQueryError if the count cannot be read."""

    @abstractmethod
    def device_identity(self, index: int) -> DeviceIdentity:
        """Raises DeviceQueryError if the device cannot be queried."""

    @abstractmethod
    def read_telemetry(self, index: int) -> TelemetrySample:
        """Raises DeviceQueryError only if the device itself is unreachable."""

    def set_power_limit(self, index: int, watts: int) -> None:
        raise ApplyRejectedError(f"{self.name} backend cannot set power limits")

    def set_application_clocks(self, index: int, memory_mhz: int, core_mhz: int) -> None:
        raise ApplyRejectedError(f"{self.name} backend cannot set clocks")

    def set_fan_curve(self, index: int, curve: FanCurve) -> None:
        raise NotSupportedError(f"{self.name} backend cannot program fan curves")


class NVMLBackend(GPUBackend):
    """
    Backend for NVIDIA GPUs via NVML.

    Usage:
        backend = NVMLBackend()
        backend.initialize()
        try:
            sample = backend.read_telemetry(0)
        finally:
            backend.shutdown()
    """

    name = "nvml"
    vendor_capable = True
    supports_fan_curve = False

    def __init__(self):
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as e:
            raise BackendInitError(f"Failed to initialize NVML: {e}")
        self._initialized = True
        logger.info("NVML initialized successfully")

    def shutdown(self) -> None:
        if not self._initialized:
            return
        try:
            pynvml.nvmlShutdown()
            logger.info("NVML shutdown complete")
        except pynvml.NVMLError as e:
            logger.warning(f"Error during NVML shutdown: {e}")
        finally:
            self._initialized = False

    def _handle(self, index: int):
        try:
            return pynvml.nvmlDeviceGetHandleByIndex(index)
        except pynvml.NVMLError as e:
            raise DeviceQueryError(f"GPU {index} not reachable: {e}")

    # =========================================================================
    # Enumeration
    # =========================================================================

    def device_count(self) -> int:
        try:
            return pynvml.nvmlDeviceGetCount()
        except pynvml.NVMLError as e:
            raise DeviceQueryError(f"Failed to get device count: {e}")

    def device_identity(self, index: int) -> DeviceIdentity:
        handle = self._handle(index)
        try:
            name = _decode(pynvml.nvmlDeviceGetName(handle))
            driver_version = _decode(pynvml.nvmlSystemGetDriverVersion())
        except pynvml.NVMLError as e:
            raise DeviceQueryError(f"Failed to identify GPU {index}: {e}")
        return DeviceIdentity(name=name, driver_version=driver_version)

    # =========================================================================
    # Telemetry
    # =========================================================================

    def _query(self, index: int, what: str, func: Callable, *args) -> Any:
        """Run one NVML query, returning None if it fails."""
        try:
            return func(*args)
        except pynvml.NVMLError as e:
            logger.debug(f"GPU {index}: {what} unavailable: {e}")
            return None

    def read_telemetry(self, index: int) -> TelemetrySample:
        handle = self._handle(index)
        sample = TelemetrySample()

        sample.temperature = self._query(
            index, "temperature",
            pynvml.nvmlDeviceGetTemperature, handle, pynvml.NVML_TEMPERATURE_GPU
        )

        memory = self._query(index, "memory info", pynvml.nvmlDeviceGetMemoryInfo, handle)
        if memory is not None:
            sample.memory_used = memory.used // BYTES_PER_MB
            sample.memory_total = memory.total // BYTES_PER_MB

        utilization = self._query(
            index, "utilization", pynvml.nvmlDeviceGetUtilizationRates, handle
        )
        if utilization is not None:
            sample.gpu_utilization = utilization.gpu
            sample.memory_utilization = utilization.memory

        power = self._query(index, "power usage", pynvml.nvmlDeviceGetPowerUsage, handle)
        if power is not None:
            sample.power_usage = power // MILLIWATTS_PER_WATT

        # Constraints come back as (min, max); the upper bound is the limit shown
        constraints = self._query(
            index, "power limit",
            pynvml.nvmlDeviceGetPowerManagementLimitConstraints, handle
        )
        if constraints is not None:
            sample.power_limit = constraints[1] // MILLIWATTS_PER_WATT

        sample.core_clock = self._query(
            index, "core clock",
            pynvml.nvmlDeviceGetClockInfo, handle, pynvml.NVML_CLOCK_GRAPHICS
        )
        sample.memory_clock = self._query(
            index, "memory clock",
            pynvml.nvmlDeviceGetClockInfo, handle, pynvml.NVML_CLOCK_MEM
        )
        sample.fan_speed = self._query(
            index, "fan speed", pynvml.nvmlDeviceGetFanSpeed, handle
        )

        return sample

    # =========================================================================
    # Tuning (requires root privileges)
    # =========================================================================

    def set_power_limit(self, index: int, watts: int) -> None:
        handle = self._handle_for_write(index)
        try:
            pynvml.nvmlDeviceSetPowerManagementLimit(handle, watts * MILLIWATTS_PER_WATT)
        except pynvml.NVMLError_NoPermission:
            raise PermissionDeniedError(
                "Setting power limit requires root privileges. "
                "Run with sudo or as root."
            )
        except pynvml.NVMLError as e:
            raise ApplyRejectedError(f"Failed to set power limit: {e}")
        logger.info(f"GPU {index}: power limit set to {watts}W")

    def set_application_clocks(self, index: int, memory_mhz: int, core_mhz: int) -> None:
        handle = self._handle_for_write(index)
        try:
            pynvml.nvmlDeviceSetApplicationsClocks(handle, memory_mhz, core_mhz)
        except pynvml.NVMLError_NoPermission:
            raise PermissionDeniedError(
                "Setting application clocks requires root privileges. "
                "Run with sudo or as root."
            )
        except pynvml.NVMLError as e:
            raise ApplyRejectedError(f"Failed to set application clocks: {e}")
        logger.info(
            f"GPU {index}: application clocks set to "
            f"core:{core_mhz}MHz, mem:{memory_mhz}MHz"
        )

    def _handle_for_write(self, index: int):
        try:
            return self._handle(index)
        except DeviceQueryError as e:
            raise ApplyRejectedError(str(e))


class SystemDefaultBackend(GPUBackend):
    """
    Fallback when no vendor management API is usable.

    Exposes a single read-only device named after whatever the host reports
    for its primary display adapter.
    """

    name = "system"
    vendor_capable = False

    def __init__(self, fallback_name: str = DEFAULT_FALLBACK_NAME, drm_root: Path = DRM_ROOT):
        self.fallback_name = fallback_name
        self.drm_root = drm_root

    def initialize(self) -> None:
        logger.info("Using system default GPU probe (read-only)")

    def shutdown(self) -> None:
        pass

    def probe_name(self) -> str:
        """Best-effort adapter name from DRM sysfs, else the fallback name."""
        try:
            vendor_files = sorted(self.drm_root.glob("card*/device/vendor"))
        except OSError:
            vendor_files = []

        for path in vendor_files:
            try:
                vendor_id = path.read_text().strip().lower()
            except OSError as e:
                logger.debug(f"Could not read {path}: {e}")
                continue
            vendor = PCI_VENDORS.get(vendor_id)
            if vendor:
                return f"{vendor} GPU"

        return self.fallback_name

    def device_count(self) -> int:
        return 1

    def device_identity(self, index: int) -> DeviceIdentity:
        if index != 0:
            raise DeviceQueryError(f"GPU {index} not found")
        return DeviceIdentity(name=self.probe_name(), driver_version="")

    def read_telemetry(self, index: int) -> TelemetrySample:
        return TelemetrySample()


def probe_backends(
    candidates: Iterable[Callable[[], GPUBackend]],
    fallback: GPUBackend
) -> Tuple[GPUBackend, bool]:
    """
    Pick the first candidate backend that initializes.

    Args:
        candidates: Backend factories, tried in order
        fallback: Backend used when every candidate fails

    Returns:
        Tuple of (backend, vendor_backend_found)
    """
    for factory in candidates:
        backend = factory()
        try:
            backend.initialize()
        except BackendInitError as e:
            logger.warning(f"{backend.name} backend unavailable: {e}")
            continue
        return backend, True

    fallback.initialize()
    return fallback, False

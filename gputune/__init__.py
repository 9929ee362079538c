"""
GPUTune - GPU Monitor & Tuning

Samples live GPU telemetry and applies tuning requests (application clocks,
power limit, fan curve) through the vendor management API. Hosts without a
supported API get a single read-only device entry.

License: MIT
"""

__version__ = "0.1.0"
__author__ = "GPUTune Contributors"
__license__ = "MIT"

from .backend import (
    GPUBackend,
    NVMLBackend,
    SystemDefaultBackend,
    DeviceIdentity,
    GPUTuneError,
    BackendInitError,
    DeviceQueryError,
    ApplyRejectedError,
    PermissionDeniedError,
    NotSupportedError,
)

from .device import (
    Device,
    FanCurve,
    FanPoint,
    HistoryPoint,
    TelemetrySample,
    TuningSettings,
)

from .registry import (
    BackendStatus,
    DeviceRegistry,
)

from .monitor import (
    GPUMonitor,
    MonitorState,
    ThermalState,
)

from .config import (
    AppConfig,
    ConfigManager,
    get_config,
    get_config_manager,
)

__all__ = [
    # Backends
    "GPUBackend",
    "NVMLBackend",
    "SystemDefaultBackend",
    "DeviceIdentity",
    "GPUTuneError",
    "BackendInitError",
    "DeviceQueryError",
    "ApplyRejectedError",
    "PermissionDeniedError",
    "NotSupportedError",
    # Model
    "Device",
    "FanCurve",
    "FanPoint",
    "HistoryPoint",
    "TelemetrySample",
    "TuningSettings",
    # Registry / monitor
    "BackendStatus",
    "DeviceRegistry",
    "GPUMonitor",
    "MonitorState",
    "ThermalState",
    # Config
    "AppConfig",
    "ConfigManager",
    "get_config",
    "get_config_manager",
]

"""
GPUTune - Telemetry & Tuning Monitor

Owns the device list, refreshes live telemetry on demand and pushes tuning
requests back to the hardware.

The monitor has no timer of its own: callers invoke refresh_all() on their
own cadence (AppConfig.monitoring_interval_ms). Every call is blocking and
runs to completion. Per-field and per-device failures are absorbed here;
only whole-operation outcomes reach the caller.
"""

import copy
import logging
from enum import Enum
from typing import List, Optional

from .backend import ApplyRejectedError, DeviceQueryError, NotSupportedError
from .config import AppConfig
from .device import Device, TuningSettings
from .registry import BackendStatus, DeviceRegistry

logger = logging.getLogger(__name__)


class MonitorState(Enum):
    UNINITIALIZED = "uninitialized"
    BACKEND_READY = "backend_ready"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    SHUT_DOWN = "shut_down"


class ThermalState(Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


class GPUMonitor:
    """
    Live view over the host's GPUs.

    Usage:
        with GPUMonitor() as monitor:
            monitor.refresh_all()
            gpu = monitor.devices()[0]
            gpu.tuning.target_power_limit = 90
            if not monitor.apply_settings(0, gpu.tuning):
                print(monitor.last_error)
    """

    def __init__(
        self,
        registry: Optional[DeviceRegistry] = None,
        config: Optional[AppConfig] = None
    ):
        """
        Initialize the backend and enumerate devices.

        Args:
            registry: Device registry to use (a default one is built if None)
            config: Application config (defaults used if None)
        """
        self._config = config or AppConfig()
        self._registry = registry or DeviceRegistry(config=self._config)
        self._state = MonitorState.UNINITIALIZED
        self._last_error: Optional[str] = None

        status = self._registry.initialize()
        if status is BackendStatus.AVAILABLE:
            self._state = MonitorState.BACKEND_READY
        else:
            self._state = MonitorState.BACKEND_UNAVAILABLE
        self._registry.enumerate()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def backend_available(self) -> bool:
        return self._state is MonitorState.BACKEND_READY

    @property
    def last_error(self) -> Optional[str]:
        """Reason the most recent apply_settings() call failed, if it did."""
        return self._last_error

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> BackendStatus:
        """Backend status decided at construction."""
        return self._registry.initialize()

    def shutdown(self) -> None:
        """Release the backend. Later refresh and apply calls do nothing."""
        self._registry.shutdown()
        self._state = MonitorState.SHUT_DOWN

    # =========================================================================
    # Devices
    # =========================================================================

    def enumerate(self) -> List[Device]:
        """Re-detect devices (e.g. after hot-plug). Replaces all entries."""
        return self._registry.enumerate()

    def devices(self) -> List[Device]:
        """
        The live device list.

        Callers may edit each device's tuning targets in place; telemetry
        fields belong to the monitor.
        """
        return self._registry.devices

    def snapshot(self) -> List[Device]:
        """Deep copy of the device list, safe to hand to another thread."""
        return copy.deepcopy(self._registry.devices)

    def thermal_state(self, device: Device) -> ThermalState:
        if device.temperature > self._config.critical_temp_celsius:
            return ThermalState.CRITICAL
        if device.temperature > self._config.warning_temp_celsius:
            return ThermalState.WARNING
        return ThermalState.NORMAL

    # =========================================================================
    # Telemetry
    # =========================================================================

    def refresh_all(self) -> None:
        """
        Poll telemetry for every vendor-capable device.

        Fields whose read fails keep their previous value; a device that
        cannot be reached at all is skipped until the next poll.
        """
        if self._state is MonitorState.SHUT_DOWN:
            return

        backend = self._registry.backend
        for device in self._registry.devices:
            if not device.vendor_capable:
                continue

            try:
                sample = backend.read_telemetry(device.index)
            except DeviceQueryError as e:
                logger.debug(f"Skipping refresh of GPU {device.index}: {e}")
                continue

            device.update_from(sample)
            device.record_history()

    # =========================================================================
    # Tuning
    # =========================================================================

    def apply_settings(self, device_index: int, settings: TuningSettings) -> bool:
        """
        Push a tuning request to one device.

        Args:
            device_index: Position in devices()
            settings: Requested targets

        Returns:
            True if every attempted write succeeded. On failure the reason
            is available from last_error.
        """
        if self._state is MonitorState.SHUT_DOWN:
            return self._reject("Monitor has been shut down")
        if not self.backend_available:
            return self._reject("No GPU management backend available")

        devices = self._registry.devices
        if not 0 <= device_index < len(devices):
            logger.warning(
                f"GPU index {device_index} out of range (have {len(devices)})"
            )
            return self._reject(f"GPU index {device_index} not found")

        device = devices[device_index]
        backend = self._registry.backend

        try:
            if settings.target_power_limit > 0:
                if device.power_limit <= 0:
                    raise ApplyRejectedError(
                        f"Power limit of GPU {device.index} is unknown"
                    )
                watts = device.target_power_watts(settings.target_power_limit)
                backend.set_power_limit(device.index, watts)

            if settings.target_core_clock > 0:
                memory_clock = settings.target_memory_clock or device.memory_clock
                if memory_clock <= 0:
                    raise ApplyRejectedError(
                        f"Memory clock of GPU {device.index} is unknown; "
                        "set a memory clock target"
                    )
                backend.set_application_clocks(
                    device.index, memory_clock, settings.target_core_clock
                )

            if backend.supports_fan_curve:
                try:
                    backend.set_fan_curve(device.index, settings.fan_curve)
                except NotSupportedError as e:
                    logger.debug(f"Fan curve kept locally: {e}")
            else:
                logger.debug(
                    f"{backend.name} backend cannot program fan curves, "
                    "keeping curve locally"
                )

        except ApplyRejectedError as e:
            logger.error(f"Failed to apply settings to GPU {device.index}: {e}")
            self._last_error = str(e)
            return False

        device.tuning = settings.copy()
        self._last_error = None
        logger.info(f"Applied settings to GPU {device.index} ({device.name})")
        return True

    def reset_to_default(self, device_index: int) -> bool:
        """
        Reset a device's tuning targets.

        Clock targets become the currently observed clocks, the power target
        100% and the fan curve the built-in default. No hardware write.

        Returns:
            False if the index is out of range
        """
        devices = self._registry.devices
        if not 0 <= device_index < len(devices):
            logger.warning(f"Cannot reset GPU {device_index}: index out of range")
            return False

        devices[device_index].reset_tuning()
        return True

    def _reject(self, reason: str) -> bool:
        self._last_error = reason
        return False

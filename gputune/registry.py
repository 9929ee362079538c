"""
GPUTune - Device Registry

Selects a backend for the host and enumerates the GPUs it exposes.
Neither initialization nor enumeration ever raises: a host without a
supported vendor API still gets a single read-only fallback entry.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .backend import (
    DeviceQueryError,
    GPUBackend,
    NVMLBackend,
    SystemDefaultBackend,
    probe_backends,
)
from .config import AppConfig
from .device import Device, new_device

logger = logging.getLogger(__name__)

DEFAULT_BACKENDS: Sequence[Callable[[], GPUBackend]] = (NVMLBackend,)


class BackendStatus(Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class DeviceRegistry:
    """
    Owns the active backend and the ordered device list.

    Usage:
        registry = DeviceRegistry()
        if registry.initialize() is BackendStatus.AVAILABLE:
            ...
        devices = registry.enumerate()
        registry.shutdown()
    """

    def __init__(
        self,
        backends: Optional[Sequence[Callable[[], GPUBackend]]] = None,
        fallback: Optional[GPUBackend] = None,
        config: Optional[AppConfig] = None
    ):
        """
        Args:
            backends: Vendor backend factories to probe, in priority order
            fallback: Backend used when no vendor backend initializes
            config: Application config (defaults used if None)
        """
        self._config = config or AppConfig()
        self._candidates = DEFAULT_BACKENDS if backends is None else backends
        self._fallback = fallback or SystemDefaultBackend(self._config.fallback_device_name)
        self._backend: Optional[GPUBackend] = None
        self._status: Optional[BackendStatus] = None
        self._devices: List[Device] = []
        self._closed = False

    @property
    def backend(self) -> Optional[GPUBackend]:
        return self._backend

    @property
    def status(self) -> Optional[BackendStatus]:
        """Backend status, or None before initialize()."""
        return self._status

    @property
    def devices(self) -> List[Device]:
        return self._devices

    @property
    def closed(self) -> bool:
        """True once shutdown() has been called."""
        return self._closed

    def initialize(self) -> BackendStatus:
        """Probe the vendor backends once; later calls return the cached status."""
        if self._status is not None:
            return self._status

        self._backend, found = probe_backends(self._candidates, self._fallback)
        self._status = BackendStatus.AVAILABLE if found else BackendStatus.UNAVAILABLE

        if found:
            logger.info(f"Using {self._backend.name} backend")
        else:
            logger.warning(
                "No GPU management backend available, running in read-only mode"
            )
        return self._status

    def enumerate(self) -> List[Device]:
        """
        Rebuild the device list from the active backend.

        Devices that cannot be identified are skipped. The same list object
        is reused so references held by callers stay current.

        Returns:
            The ordered device list (possibly empty)
        """
        if self._closed:
            logger.warning("Registry has been shut down, keeping current device list")
            return self._devices

        self.initialize()
        backend = self._backend

        found: List[Device] = []
        try:
            count = backend.device_count()
        except DeviceQueryError as e:
            logger.error(f"GPU enumeration failed: {e}")
            count = 0

        for index in range(count):
            try:
                identity = backend.device_identity(index)
            except DeviceQueryError as e:
                logger.warning(f"Skipping GPU {index}: {e}")
                continue

            found.append(new_device(
                index=index,
                name=identity.name,
                driver_version=identity.driver_version,
                vendor_capable=backend.vendor_capable,
                history_length=self._config.history_length,
            ))

        self._devices[:] = found
        logger.info(f"Found {len(found)} GPU(s) via {backend.name} backend")
        return self._devices

    def shutdown(self) -> None:
        """Release the backend. Safe to call repeatedly or before initialize()."""
        self._closed = True
        if self._backend is not None:
            self._backend.shutdown()

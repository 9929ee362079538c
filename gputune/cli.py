#!/usr/bin/env python3
"""
GPUTune command line helper

Scriptable access to the GPU monitor. Every command prints a single JSON
object to stdout with a "success" key.

Usage:
    gputune <command> [args...]

Commands:
    status                              - Telemetry for every GPU
    list-gpus                           - Index, name and driver of every GPU
    watch [samples]                     - Print telemetry once per interval
    set-power-limit <index> <percent>   - Set power limit (% of reported limit)
    set-clocks <index> <core> [mem]     - Set application clocks in MHz
    help                                - Show this help
"""

import sys
import json
import logging
import time
from typing import Any, Dict, List, Optional

from .config import get_config
from .device import Device
from .monitor import GPUMonitor

logger = logging.getLogger(__name__)


def output_json(data: Dict[str, Any]) -> None:
    """Output JSON result to stdout."""
    print(json.dumps(data))


def output_error(message: str) -> int:
    """Output error as JSON."""
    output_json({"success": False, "error": message})
    return 1


def output_success(data: Dict[str, Any] = None) -> int:
    """Output success result."""
    result = {"success": True}
    if data:
        result.update(data)
    output_json(result)
    return 0


def device_status(monitor: GPUMonitor, device: Device) -> Dict[str, Any]:
    return {
        "index": device.index,
        "name": device.name,
        "driver": device.driver_version,
        "vendor_capable": device.vendor_capable,
        "temperature": device.temperature,
        "thermal_state": monitor.thermal_state(device).value,
        "fan_speed": device.fan_speed,
        "power_usage": device.power_usage,
        "power_limit": device.power_limit,
        "core_clock": device.core_clock,
        "memory_clock": device.memory_clock,
        "gpu_util": device.gpu_utilization,
        "mem_util": device.memory_utilization,
        "vram_used_mb": device.memory_used,
        "vram_total_mb": device.memory_total,
    }


def cmd_status(monitor: GPUMonitor) -> int:
    """Get telemetry for every GPU."""
    monitor.refresh_all()
    return output_success({
        "backend": monitor.initialize().value,
        "gpus": [device_status(monitor, d) for d in monitor.devices()],
    })


def cmd_list_gpus(monitor: GPUMonitor) -> int:
    """List all GPUs in the system."""
    gpus = [
        {"index": d.index, "name": d.name, "driver": d.driver_version}
        for d in monitor.devices()
    ]
    return output_success({"gpu_count": len(gpus), "gpus": gpus})


def cmd_watch(monitor: GPUMonitor, samples: int) -> int:
    """Print one status line per monitoring interval."""
    interval = monitor.config.monitoring_interval_ms / 1000.0
    next_poll = time.monotonic()
    for _ in range(samples):
        monitor.refresh_all()
        output_json({
            "success": True,
            "gpus": [device_status(monitor, d) for d in monitor.devices()],
        })
        next_poll += interval
        time.sleep(max(0.0, next_poll - time.monotonic()))
    return 0


def _apply(monitor: GPUMonitor, index: int, **targets) -> int:
    devices = monitor.devices()
    if not 0 <= index < len(devices):
        return output_error(f"GPU index {index} not found")

    # Current telemetry is needed for the percentage and memory clock fallback
    monitor.refresh_all()
    settings = devices[index].tuning.copy()
    for name, value in targets.items():
        setattr(settings, name, value)

    if not monitor.apply_settings(index, settings):
        return output_error(monitor.last_error or "Failed to apply settings")
    return output_success({"index": index, **targets})


def cmd_set_power_limit(monitor: GPUMonitor, index: int, percent: int) -> int:
    """Set power limit as a percentage of the reported limit."""
    return _apply(monitor, index, target_power_limit=percent, target_core_clock=0)


def cmd_set_clocks(monitor: GPUMonitor, index: int, core: int, mem: int) -> int:
    """Set application clocks."""
    return _apply(
        monitor, index,
        target_core_clock=core, target_memory_clock=mem, target_power_limit=0
    )


def run(argv: List[str], monitor: Optional[GPUMonitor] = None) -> int:
    """Dispatch a command. A monitor is created (and shut down) if not given."""
    if not argv:
        print(__doc__)
        return 1

    command = argv[0]
    if command == "help":
        print(__doc__)
        return output_success({"action": "help"})

    owned = monitor is None
    if owned:
        monitor = GPUMonitor(config=get_config())

    try:
        if command == "status":
            return cmd_status(monitor)

        elif command == "list-gpus":
            return cmd_list_gpus(monitor)

        elif command == "watch":
            samples = int(argv[1]) if len(argv) > 1 else 10
            return cmd_watch(monitor, samples)

        elif command == "set-power-limit":
            if len(argv) < 3:
                return output_error("Usage: set-power-limit <index> <percent>")
            return cmd_set_power_limit(monitor, int(argv[1]), int(argv[2]))

        elif command == "set-clocks":
            if len(argv) < 3:
                return output_error("Usage: set-clocks <index> <core_mhz> [mem_mhz]")
            mem = int(argv[3]) if len(argv) > 3 else 0
            return cmd_set_clocks(monitor, int(argv[1]), int(argv[2]), mem)

        else:
            return output_error(f"Unknown command: {command}")

    except ValueError as e:
        return output_error(f"Invalid argument: {e}")
    finally:
        if owned:
            monitor.shutdown()


def main() -> int:
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    return run(sys.argv[1:])


if __name__ == "__main__":
    sys.exit(main())

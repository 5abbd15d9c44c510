"""
GPU Device Manager - platform/device enumeration and selection.

Compute devices are grouped into platforms, one per backend:

1. wgpu (Vulkan/Metal/DX12) - one device per adapter, kernels are WGSL shaders
2. NumPy Reference - always present, kernels are NumPy workgroup emulations

Platforms are listed GPU first. A platform/device index pair selects the
device a pipeline runs on; a bad pair is a ConfigurationError.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from hist_equalizer.config import settings
from .errors import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)

REFERENCE_BACKEND = "reference"
WGPU_BACKEND = "wgpu"

REFERENCE_PLATFORM_NAME = "NumPy Reference"


@dataclass(frozen=True)
class DeviceInfo:
    """Capabilities of one compute device."""
    name: str
    backend: str
    compute_units: int
    max_workgroup_size: int
    max_buffer_size: int


@dataclass(frozen=True)
class PlatformInfo:
    """A backend and the devices it exposes."""
    name: str
    backend: str
    devices: Tuple[DeviceInfo, ...]


class ComputeDevice:
    """
    Handle to a selected compute device.

    For wgpu the underlying GPUDevice is requested from the adapter on
    construction; the reference device needs no backend object.
    """

    def __init__(self, platform: PlatformInfo, info: DeviceInfo, adapter: Optional[Any] = None) -> None:
        self.platform = platform
        self.info = info
        self._wgpu_device: Optional[Any] = None

        if info.backend == WGPU_BACKEND:
            if adapter is None:
                raise ConfigurationError(f"No adapter for wgpu device '{info.name}'", setting_name="device")
            request = getattr(adapter, "request_device_sync", None) or adapter.request_device
            self._wgpu_device = request()

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def backend(self) -> str:
        return self.info.backend

    @property
    def is_wgpu(self) -> bool:
        """True if kernels run as WGSL shaders on a wgpu device."""
        return self.info.backend == WGPU_BACKEND

    @property
    def is_reference(self) -> bool:
        """True if kernels run as NumPy emulations on the host."""
        return self.info.backend == REFERENCE_BACKEND

    @property
    def wgpu_device(self) -> Optional[Any]:
        """Get the wgpu device (None if not using wgpu)."""
        return self._wgpu_device

    def get_info(self) -> Dict[str, Any]:
        """Get device information for display."""
        return {
            "platform": self.platform.name,
            "device_name": self.info.name,
            "backend": self.info.backend,
            "compute_units": self.info.compute_units,
            "max_workgroup_size": self.info.max_workgroup_size,
            "max_buffer_size": self.info.max_buffer_size,
        }

    def wait_idle(self) -> None:
        """Poll the device until submitted work has completed (wgpu only)."""
        if not self.is_wgpu or not self._wgpu_device:
            return
        if hasattr(self._wgpu_device, "poll"):
            self._wgpu_device.poll()
        elif hasattr(self._wgpu_device, "_poll"):
            self._wgpu_device._poll()

    def __repr__(self) -> str:
        return f"ComputeDevice({self.platform.name!r}, {self.info.name!r})"


# Enumeration results, filled on first use
_platforms: Optional[List[PlatformInfo]] = None
_adapters: Dict[Tuple[str, int], Any] = {}


def _get_limit(limits: Dict[str, Any], name: str, default: int) -> int:
    """Read an adapter limit; wgpu-py has used both dashed and underscored keys."""
    for key in (name.replace("_", "-"), name):
        if key in limits:
            return int(limits[key])
    return default


def _probe_wgpu() -> Optional[PlatformInfo]:
    """Enumerate wgpu adapters. Returns None if wgpu is unusable."""
    try:
        import wgpu

        enumerate_adapters = (
            getattr(wgpu.gpu, "enumerate_adapters_sync", None)
            or getattr(wgpu.gpu, "enumerate_adapters", None)
        )
        adapters = list(enumerate_adapters()) if enumerate_adapters else []

        if not adapters:
            adapter = wgpu.gpu.request_adapter_sync(
                power_preference=settings.DEVICE_DEFAULTS["wgpu_power_preference"]
            )
            adapters = [adapter] if adapter is not None else []

        if not adapters:
            logger.debug("wgpu: No compatible GPU adapter found")
            return None

        devices = []
        for index, adapter in enumerate(adapters):
            limits = dict(adapter.limits) if hasattr(adapter, "limits") else {}
            summary = str(getattr(adapter, "summary", "")) or f"wgpu adapter {index}"
            devices.append(DeviceInfo(
                name=summary,
                backend=WGPU_BACKEND,
                compute_units=settings.DEVICE_DEFAULTS["wgpu_compute_units"],
                max_workgroup_size=_get_limit(limits, "max_compute_invocations_per_workgroup", 256),
                max_buffer_size=min(
                    _get_limit(limits, "max_buffer_size", 1 << 28),
                    _get_limit(limits, "max_storage_buffer_binding_size", 1 << 27),
                ),
            ))
            _adapters[(WGPU_BACKEND, index)] = adapter

        logger.debug("wgpu: found %d adapter(s)", len(devices))
        return PlatformInfo(name="wgpu", backend=WGPU_BACKEND, devices=tuple(devices))

    except ImportError:
        logger.debug("wgpu not installed")
    except Exception as e:
        logger.debug(f"wgpu enumeration failed: {e}")

    return None


def _reference_platform() -> PlatformInfo:
    """The host-side NumPy platform. Always available."""
    device = DeviceInfo(
        name="NumPy workgroup emulator",
        backend=REFERENCE_BACKEND,
        compute_units=os.cpu_count() or 1,
        max_workgroup_size=settings.DEVICE_DEFAULTS["reference_max_workgroup_size"],
        max_buffer_size=settings.DEVICE_DEFAULTS["reference_max_buffer_size"],
    )
    return PlatformInfo(name=REFERENCE_PLATFORM_NAME, backend=REFERENCE_BACKEND, devices=(device,))


def list_platforms(refresh: bool = False) -> List[PlatformInfo]:
    """List available platforms, GPU backends first."""
    global _platforms

    if _platforms is not None and not refresh:
        return list(_platforms)

    _adapters.clear()
    platforms = []
    wgpu_platform = _probe_wgpu()
    if wgpu_platform is not None:
        platforms.append(wgpu_platform)
    platforms.append(_reference_platform())

    _platforms = platforms
    return list(platforms)


def format_platforms(platforms: Optional[List[PlatformInfo]] = None) -> str:
    """Render the platform/device listing printed by ``-l``."""
    if platforms is None:
        platforms = list_platforms()

    lines = [f"Found {len(platforms)} platform(s):"]
    for p_index, platform in enumerate(platforms):
        lines.append(f"Platform {p_index}, {platform.name}, backend: {platform.backend}")
        for d_index, device in enumerate(platform.devices):
            lines.append(
                f"  Device {d_index}, {device.name}, compute units: {device.compute_units}, "
                f"max workgroup size: {device.max_workgroup_size}, "
                f"max buffer size: {device.max_buffer_size}"
            )
    return "\n".join(lines)


def get_device(platform_id: int = 0, device_id: int = 0) -> ComputeDevice:
    """
    Select a device by platform and device index.

    Raises:
        ConfigurationError: if either index is out of range or the device
            cannot be opened.
    """
    platforms = list_platforms()

    if not 0 <= platform_id < len(platforms):
        raise ConfigurationError(
            f"Invalid platform index {platform_id} ({len(platforms)} platform(s) available)",
            setting_name="platform",
        )
    platform = platforms[platform_id]

    if not 0 <= device_id < len(platform.devices):
        raise ConfigurationError(
            f"Invalid device index {device_id} for platform '{platform.name}' "
            f"({len(platform.devices)} device(s) available)",
            setting_name="device",
        )
    info = platform.devices[device_id]

    try:
        device = ComputeDevice(platform, info, _adapters.get((platform.backend, device_id)))
    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(
            f"Could not open device '{info.name}': {e}", setting_name="device", original_error=e
        ) from e

    logger.info("Selected device: %s (%s)", info.name, platform.name)
    return device


def get_reference_device() -> ComputeDevice:
    """Open the NumPy reference device regardless of its platform index."""
    for p_index, platform in enumerate(list_platforms()):
        if platform.backend == REFERENCE_BACKEND:
            return get_device(p_index, 0)
    raise ConfigurationError("Reference platform missing", setting_name="platform")

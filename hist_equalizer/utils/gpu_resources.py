"""
GPU Resource Wrappers - device buffers for the equalization pipeline.

The BufferManager owns every device buffer of a run. All transfers are
blocking, so a stage never observes partial writes from the previous one.
Every buffer holds 32-bit unsigned elements (WGSL storage buffers have no
8-bit type, so image samples are widened on upload).
"""

from enum import Enum
from typing import Any, List, Optional
import numpy as np

from .errors import AllocationError, TransferError
from .logger import get_logger

logger = get_logger(__name__)

ELEMENT_DTYPE = np.uint32
ELEMENT_SIZE = 4


class AccessMode(Enum):
    """How kernels access a buffer."""
    READ_ONLY = "read_only"
    WRITE_ONLY = "write_only"
    READ_WRITE = "read_write"


class DeviceBuffer:
    """
    Device-resident memory region.

    The handle is a NumPy array on the reference device and a wgpu buffer on
    wgpu devices. Buffers are created by BufferManager.allocate only.
    """

    def __init__(self, label: str, size_bytes: int, mode: AccessMode, handle: Any) -> None:
        self.label = label
        self.size_bytes = size_bytes
        self.mode = mode
        self._handle = handle

    @property
    def count(self) -> int:
        """Number of uint32 elements."""
        return self.size_bytes // ELEMENT_SIZE

    @property
    def handle(self) -> Any:
        return self._handle

    @property
    def released(self) -> bool:
        return self._handle is None

    def __repr__(self) -> str:
        return f"DeviceBuffer({self.label!r}, {self.size_bytes} bytes, {self.mode.value})"


def kernel_view(buffer: DeviceBuffer) -> np.ndarray:
    """
    Array a reference kernel operates on.

    READ_ONLY buffers are exposed as non-writeable views.
    """
    if buffer.released:
        raise TransferError(f"Buffer '{buffer.label}' has been released", buffer_label=buffer.label)
    if not isinstance(buffer.handle, np.ndarray):
        raise TypeError("kernel_view is only available on the reference device")
    if buffer.mode is AccessMode.READ_ONLY:
        view = buffer.handle.view()
        view.flags.writeable = False
        return view
    return buffer.handle


class BufferManager:
    """
    Allocates and owns the device buffers of one pipeline run.

    Use as a context manager so buffers are released when the run ends:

        with BufferManager(device) as buffers:
            image_buf = buffers.allocate(nbytes, AccessMode.READ_ONLY, "image")
            buffers.upload(image_buf, samples)
    """

    def __init__(self, device) -> None:
        self.device = device
        self._buffers: List[DeviceBuffer] = []

    def __enter__(self) -> "BufferManager":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release_all()
        return False

    def __len__(self) -> int:
        return len(self._buffers)

    def allocate(self, size_bytes: int, access_mode: AccessMode = AccessMode.READ_WRITE,
                 label: str = "") -> DeviceBuffer:
        """
        Allocate a zero-initialised device buffer.

        Args:
            size_bytes: Requested size, rounded up to a whole number of elements
            access_mode: Kernel access mode
            label: Name used in logs and errors

        Raises:
            AllocationError: if the device cannot provide the memory.
        """
        size = max((int(size_bytes) + ELEMENT_SIZE - 1) & ~(ELEMENT_SIZE - 1), ELEMENT_SIZE)
        limit = self.device.info.max_buffer_size

        if size > limit:
            raise AllocationError(
                f"Buffer '{label}' needs {size} bytes, device limit is {limit}",
                size_bytes=size,
            )

        try:
            if self.device.is_wgpu:
                import wgpu
                handle = self.device.wgpu_device.create_buffer(
                    size=size,
                    usage=(wgpu.BufferUsage.STORAGE |
                           wgpu.BufferUsage.COPY_SRC |
                           wgpu.BufferUsage.COPY_DST),
                    label=label,
                )
            else:
                handle = np.zeros(size // ELEMENT_SIZE, dtype=ELEMENT_DTYPE)
        except MemoryError as e:
            raise AllocationError(
                f"Out of memory allocating '{label}' ({size} bytes)", size_bytes=size, original_error=e
            ) from e
        except Exception as e:
            raise AllocationError(
                f"Failed to allocate '{label}' ({size} bytes): {e}", size_bytes=size, original_error=e
            ) from e

        buffer = DeviceBuffer(label, size, access_mode, handle)
        self._buffers.append(buffer)
        logger.debug("Allocated %s", buffer)
        return buffer

    def upload(self, buffer: DeviceBuffer, host_data: np.ndarray) -> None:
        """Copy host data into the start of a buffer. Blocks until complete."""
        self._check_live(buffer)
        data = np.ascontiguousarray(host_data, dtype=ELEMENT_DTYPE).ravel()

        if data.size > buffer.count:
            raise TransferError(
                f"Upload of {data.size} elements does not fit '{buffer.label}' ({buffer.count} elements)",
                buffer_label=buffer.label,
            )
        if data.size == 0:
            return

        try:
            if self.device.is_wgpu:
                self.device.wgpu_device.queue.write_buffer(buffer.handle, 0, data.tobytes())
                self.device.wait_idle()
            else:
                buffer.handle[:data.size] = data
        except Exception as e:
            raise TransferError(
                f"Upload to '{buffer.label}' failed: {e}", buffer_label=buffer.label, original_error=e
            ) from e

    def download(self, buffer: DeviceBuffer) -> np.ndarray:
        """Copy a whole buffer back to the host. Blocks until complete."""
        self._check_live(buffer)

        try:
            if self.device.is_wgpu:
                raw = self.device.wgpu_device.queue.read_buffer(buffer.handle)
                return np.frombuffer(raw, dtype=ELEMENT_DTYPE).copy()
            return buffer.handle.copy()
        except Exception as e:
            raise TransferError(
                f"Download from '{buffer.label}' failed: {e}", buffer_label=buffer.label, original_error=e
            ) from e

    def fill(self, buffer: DeviceBuffer, value: int) -> None:
        """Set every element of a buffer to value. Blocks until complete."""
        self._check_live(buffer)

        if not 0 <= int(value) <= np.iinfo(ELEMENT_DTYPE).max:
            raise TransferError(f"Fill value {value} out of range for uint32", buffer_label=buffer.label)

        try:
            if self.device.is_wgpu:
                data = np.full(buffer.count, value, dtype=ELEMENT_DTYPE)
                self.device.wgpu_device.queue.write_buffer(buffer.handle, 0, data.tobytes())
                self.device.wait_idle()
            else:
                buffer.handle.fill(value)
        except Exception as e:
            raise TransferError(
                f"Fill of '{buffer.label}' failed: {e}", buffer_label=buffer.label, original_error=e
            ) from e

    def release(self, buffer: DeviceBuffer) -> None:
        """Release one buffer."""
        if buffer.released:
            return
        try:
            if self.device.is_wgpu:
                buffer.handle.destroy()
        finally:
            buffer._handle = None
            if buffer in self._buffers:
                self._buffers.remove(buffer)
            logger.debug("Released buffer '%s'", buffer.label)

    def release_all(self) -> None:
        """Release every buffer owned by this manager."""
        for buffer in list(self._buffers):
            self.release(buffer)

    def _check_live(self, buffer: Optional[DeviceBuffer]) -> None:
        if buffer is None or buffer.released:
            label = buffer.label if buffer is not None else None
            raise TransferError(f"Buffer '{label}' has been released", buffer_label=label)

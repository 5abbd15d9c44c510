"""
In-order command queue for kernel dispatches.

Every dispatch blocks until the kernel has completed, which is the only
synchronisation between workgroups of consecutive stages. Each dispatch
returns a ProfilingEvent bounding the kernel's execution.
"""

import struct
from typing import Iterable, List, Sequence

from .errors import AppError, DispatchError
from .gpu_resources import DeviceBuffer, kernel_view
from .logger import get_logger
from .profiler import ProfilingEvent, timestamp_ns

logger = get_logger(__name__)

# WGSL uniform structs are padded to 16 bytes
UNIFORM_ALIGNMENT = 16


def pack_params(params: Sequence[int]) -> bytes:
    """Pack scalar kernel parameters as a little-endian u32 uniform block."""
    count = max(len(params), 1)
    count = (count + 3) // 4 * 4
    values = [int(v) for v in params] + [0] * (count - len(params))
    return struct.pack(f"<{count}I", *values)


class CommandQueue:
    """Single in-order queue bound to one device."""

    def __init__(self, device) -> None:
        self.device = device
        self._dispatches = 0

    @property
    def dispatch_count(self) -> int:
        return self._dispatches

    def enqueue_kernel(
        self,
        kernel,
        partition,
        buffers: Sequence[DeviceBuffer],
        params: Iterable[int] = (),
        stage: str = None,
    ) -> ProfilingEvent:
        """
        Dispatch a kernel over a work partition and wait for it.

        Buffers bind to slots 0..n-1 in order; scalar params go to a
        uniform block at slot n (wgpu) or follow the arrays as positional
        arguments (reference).

        Raises:
            DispatchError: if the kernel cannot be launched or fails.
        """
        params = tuple(int(p) for p in params)
        stage = stage or kernel.entry_point

        logger.debug(
            "Dispatch %s: %d groups x %d work-items over %d elements",
            kernel.entry_point, partition.group_count, partition.local_size, partition.element_count,
        )

        try:
            if self.device.is_wgpu:
                start, end = self._dispatch_wgpu(kernel, partition, buffers, params)
            else:
                start, end = self._dispatch_reference(kernel, partition, buffers, params)
        except AppError:
            raise
        except Exception as e:
            raise DispatchError(
                f"Kernel {kernel.entry_point} failed: {e}", kernel_name=kernel.entry_point, original_error=e
            ) from e

        self._dispatches += 1
        return ProfilingEvent(stage, start, end)

    def _dispatch_reference(self, kernel, partition, buffers, params):
        arrays: List = [kernel_view(buffer) for buffer in buffers]
        start = timestamp_ns()
        kernel.function(partition, *arrays, *params)
        return start, timestamp_ns()

    def _dispatch_wgpu(self, kernel, partition, buffers, params):
        import wgpu

        device = self.device.wgpu_device
        entries = [
            {"binding": slot, "resource": {"buffer": buffer.handle, "offset": 0, "size": buffer.size_bytes}}
            for slot, buffer in enumerate(buffers)
        ]

        uniform = None
        if params:
            data = pack_params(params)
            uniform = device.create_buffer_with_data(data=data, usage=wgpu.BufferUsage.UNIFORM)
            entries.append(
                {"binding": len(buffers), "resource": {"buffer": uniform, "offset": 0, "size": len(data)}}
            )

        bind_group = device.create_bind_group(
            layout=kernel.pipeline.get_bind_group_layout(0),
            entries=entries,
        )

        encoder = device.create_command_encoder()
        compute_pass = encoder.begin_compute_pass()
        compute_pass.set_pipeline(kernel.pipeline)
        compute_pass.set_bind_group(0, bind_group)
        compute_pass.dispatch_workgroups(partition.group_count, 1, 1)
        compute_pass.end()

        start = timestamp_ns()
        device.queue.submit([encoder.finish()])
        self.device.wait_idle()
        end = timestamp_ns()

        if uniform is not None:
            uniform.destroy()
        return start, end

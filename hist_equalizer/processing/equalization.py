# Histogram equalization pipeline
"""
Four-stage histogram equalization on a compute device.

Stages run strictly in sequence on one in-order queue; after every dispatch
the stage output is read back before the next stage starts:

    Histogram (accumulate + reduce) -> Scan -> LUT -> Back-projection

Histogram, cumulative histogram and LUT are returned to the caller as plain
arrays in a PipelineResult rather than kept as shared state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple
import numpy as np

from hist_equalizer.config import settings
from hist_equalizer.utils.errors import (
    AppError,
    ConfigurationError,
    DispatchError,
    ProcessingError,
    log_error,
)
from hist_equalizer.utils.gpu_queue import CommandQueue
from hist_equalizer.utils.gpu_resources import AccessMode, BufferManager, ELEMENT_SIZE
from hist_equalizer.utils.gpu_shaders import build_program
from hist_equalizer.utils.logger import get_logger
from hist_equalizer.utils.profiler import ProfilingEvent
from .image import Image
from .kernels import INTENSITY_LEVELS, KERNEL_NAMES, MAX_LEVEL
from .partition import WorkPartition

logger = get_logger(__name__)

STAGE_HISTOGRAM = "Histogram"
STAGE_SCAN = "Cumulative scan"
STAGE_LUT = "LUT"
STAGE_PROJECTION = "Back-projection"


class PipelineState(Enum):
    """Orchestrator states. DONE and FAILED are terminal."""
    INIT = "init"
    HISTOGRAM_DISPATCHED = "histogram_dispatched"
    HISTOGRAM_READ_BACK = "histogram_read_back"
    SCAN_DISPATCHED = "scan_dispatched"
    SCAN_READ_BACK = "scan_read_back"
    LUT_DISPATCHED = "lut_dispatched"
    LUT_READ_BACK = "lut_read_back"
    PROJECTION_DISPATCHED = "projection_dispatched"
    PROJECTION_READ_BACK = "projection_read_back"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Result of equalizing one channel."""
    image: Image
    channel: int
    histogram: np.ndarray
    cumulative: np.ndarray
    lut: np.ndarray
    partials: np.ndarray
    partition: WorkPartition
    events: Tuple[ProfilingEvent, ...]

    @property
    def total_time_ns(self) -> int:
        return sum(event.elapsed_ns for event in self.events)


# =========================================================================
# Readback checks
# =========================================================================

def check_histogram(histogram: np.ndarray, pixel_count: int) -> None:
    """Histogram must have 256 bins summing to the pixel count."""
    if histogram.size != INTENSITY_LEVELS:
        raise ProcessingError(f"Histogram has {histogram.size} bins", step="histogram")
    total = int(histogram.sum(dtype=np.uint64))
    if total != pixel_count:
        raise ProcessingError(f"Histogram counts {total} pixels, image has {pixel_count}", step="histogram")


def check_cumulative(cumulative: np.ndarray, pixel_count: int) -> None:
    """Cumulative histogram must be non-decreasing and end at the pixel count."""
    if cumulative.size != INTENSITY_LEVELS:
        raise ProcessingError(f"Cumulative histogram has {cumulative.size} bins", step="scan")
    if np.any(np.diff(cumulative.astype(np.int64)) < 0):
        raise ProcessingError("Cumulative histogram is not monotonic", step="scan")
    if int(cumulative[-1]) != pixel_count:
        raise ProcessingError(
            f"Cumulative histogram ends at {int(cumulative[-1])}, expected {pixel_count}", step="scan"
        )


def check_lut(lut: np.ndarray) -> None:
    """LUT must map into [0, 255] and be non-decreasing."""
    if lut.size != INTENSITY_LEVELS:
        raise ProcessingError(f"LUT has {lut.size} entries", step="lut")
    if int(lut.max()) > MAX_LEVEL - 1:
        raise ProcessingError(f"LUT value {int(lut.max())} out of range", step="lut")
    if np.any(np.diff(lut.astype(np.int64)) < 0):
        raise ProcessingError("LUT is not monotonic", step="lut")


# =========================================================================
# Orchestrator
# =========================================================================

class EqualizationPipeline:
    """
    Runs the four equalization stages for one channel at a time.

    The kernel program is built once per pipeline; device buffers are
    allocated per run and released when the run ends.
    """

    def __init__(self, device, local_size: Optional[int] = None, validate: Optional[bool] = None):
        if local_size is None:
            local_size = settings.PIPELINE_DEFAULTS["workgroup_size"]
        if validate is None:
            validate = settings.PIPELINE_DEFAULTS["validate_stages"]

        if local_size < 1 or local_size > device.info.max_workgroup_size:
            raise ConfigurationError(
                f"Workgroup size {local_size} outside 1..{device.info.max_workgroup_size}",
                setting_name="workgroup_size",
            )

        self.device = device
        self.local_size = local_size
        self.validate = validate
        self.queue = CommandQueue(device)
        self.program = build_program(device, KERNEL_NAMES, local_size)
        self.state = PipelineState.INIT
        self._history: List[PipelineState] = [PipelineState.INIT]

    @property
    def history(self) -> List[PipelineState]:
        """States visited by the last run, in order."""
        return list(self._history)

    def _transition(self, state: PipelineState) -> None:
        self.state = state
        self._history.append(state)
        logger.debug("Pipeline state -> %s", state.value)

    def run(self, image: Image, channel: int = 0) -> PipelineResult:
        """
        Equalize one channel of an image.

        Other channels are copied to the output unchanged.

        Raises:
            ConfigurationError: if channel is out of range.
            AppError: any stage failure; the pipeline ends in FAILED.
        """
        if not 0 <= channel < image.channels:
            raise ConfigurationError(
                f"Channel {channel} out of range for a {image.channels}-channel image",
                setting_name="channel",
            )

        self.state = PipelineState.INIT
        self._history = [PipelineState.INIT]

        try:
            result = self._execute(image, channel)
        except AppError as e:
            self._transition(PipelineState.FAILED)
            log_error(e)
            raise
        except Exception as e:
            self._transition(PipelineState.FAILED)
            error = DispatchError(f"Pipeline failed: {e}", original_error=e)
            log_error(error)
            raise error from e

        self._transition(PipelineState.DONE)
        logger.info(
            "Pipeline complete: channel %d of %dx%dx%d in %.3f ms (%s)",
            channel, image.width, image.height, image.channels,
            result.total_time_ns / 1e6, self.device.name,
        )
        return result

    def run_all_channels(self, image: Image) -> List[PipelineResult]:
        """
        Equalize every colour channel, each with its own histogram.

        The alpha channel of LA and RGBA images is transparency, not
        intensity, and is passed through unchanged.
        """
        results = []
        current = image
        for channel in image.color_channels:
            result = self.run(current, channel)
            results.append(result)
            current = result.image
        return results

    def _execute(self, image: Image, channel: int) -> PipelineResult:
        pixel_count = image.pixel_count
        pixel_partition = WorkPartition.for_device(self.device, pixel_count, self.local_size)
        sample_partition = WorkPartition.for_device(self.device, image.size, self.local_size)
        bin_partition = WorkPartition.single_group(INTENSITY_LEVELS)
        bins_bytes = INTENSITY_LEVELS * ELEMENT_SIZE
        group_count = pixel_partition.group_count

        with BufferManager(self.device) as buffers:
            image_in = buffers.allocate(sample_partition.padded_size * ELEMENT_SIZE, AccessMode.READ_ONLY, "image_input")
            image_out = buffers.allocate(sample_partition.padded_size * ELEMENT_SIZE, AccessMode.WRITE_ONLY, "image_output")
            partials_buf = buffers.allocate(group_count * bins_bytes, AccessMode.READ_WRITE, "partial_histograms")
            histogram_buf = buffers.allocate(bins_bytes, AccessMode.READ_WRITE, "histogram")
            cumulative_buf = buffers.allocate(bins_bytes, AccessMode.READ_WRITE, "cumulative_histogram")
            lut_buf = buffers.allocate(bins_bytes, AccessMode.READ_WRITE, "lut")

            for buffer in (image_in, partials_buf, histogram_buf, cumulative_buf, lut_buf):
                buffers.fill(buffer, 0)
            buffers.upload(image_in, image.samples)

            # Stage 1: local accumulate + flush, then reduce the partials
            accumulate = self.queue.enqueue_kernel(
                self.program["histogram_accumulate"], pixel_partition,
                [image_in, partials_buf], (pixel_count, image.channels, channel),
            )
            reduction = self.queue.enqueue_kernel(
                self.program["reduce_partials"], bin_partition,
                [partials_buf, histogram_buf], (group_count,),
            )
            histogram_event = ProfilingEvent(STAGE_HISTOGRAM, accumulate.start_ns, reduction.end_ns)
            self._transition(PipelineState.HISTOGRAM_DISPATCHED)

            partials = buffers.download(partials_buf)[:group_count * INTENSITY_LEVELS]
            histogram = buffers.download(histogram_buf)[:INTENSITY_LEVELS]
            self._transition(PipelineState.HISTOGRAM_READ_BACK)
            if self.validate:
                check_histogram(histogram, pixel_count)

            # Stage 2
            scan_event = self.queue.enqueue_kernel(
                self.program["cumulative_scan"], bin_partition,
                [histogram_buf, cumulative_buf], stage=STAGE_SCAN,
            )
            self._transition(PipelineState.SCAN_DISPATCHED)

            cumulative = buffers.download(cumulative_buf)[:INTENSITY_LEVELS]
            self._transition(PipelineState.SCAN_READ_BACK)
            if self.validate:
                check_cumulative(cumulative, pixel_count)

            # Stage 3
            lut_event = self.queue.enqueue_kernel(
                self.program["lut_build"], bin_partition,
                [cumulative_buf, lut_buf], (pixel_count,), stage=STAGE_LUT,
            )
            self._transition(PipelineState.LUT_DISPATCHED)

            lut = buffers.download(lut_buf)[:INTENSITY_LEVELS]
            self._transition(PipelineState.LUT_READ_BACK)
            if self.validate:
                check_lut(lut)

            # Stage 4
            projection_event = self.queue.enqueue_kernel(
                self.program["back_project"], sample_partition,
                [image_in, lut_buf, image_out], (image.size, image.channels, channel),
                stage=STAGE_PROJECTION,
            )
            self._transition(PipelineState.PROJECTION_DISPATCHED)

            output = buffers.download(image_out)[:image.size]
            self._transition(PipelineState.PROJECTION_READ_BACK)

        return PipelineResult(
            image=image.with_samples(output),
            channel=channel,
            histogram=histogram,
            cumulative=cumulative,
            lut=lut,
            partials=partials,
            partition=pixel_partition,
            events=(histogram_event, scan_event, lut_event, projection_event),
        )


def equalize(image: Image, device=None, channel: Optional[int] = None) -> List[PipelineResult]:
    """
    Equalize an image on a device (default: platform 0, device 0).

    Args:
        image: Input image.
        device: ComputeDevice to run on.
        channel: Channel to equalize, or None for every channel.

    Returns:
        One PipelineResult per processed channel; the last one holds the
        final image.
    """
    if device is None:
        from hist_equalizer.utils.gpu_device import get_device
        device = get_device()

    pipeline = EqualizationPipeline(device)
    if channel is None:
        return pipeline.run_all_channels(image)
    return [pipeline.run(image, channel)]

"""
Kernel set for the NumPy reference device.

Each kernel mirrors the WGSL shader of the same name in utils/shaders and
takes its arguments in binding order: the work partition, the buffer arrays,
then the scalar parameters. Kernels are pure functions of their arguments.

The emulation keeps the device decomposition visible. The histogram is
accumulated into one local scratch histogram per workgroup and flushed into
that group's slice of the partial buffer, and the scan runs the same
double-buffered rounds a 256-wide workgroup executes.
"""

from typing import Callable, Dict
import numpy as np

from hist_equalizer.utils.errors import DispatchError

INTENSITY_LEVELS = 256
MAX_LEVEL = INTENSITY_LEVELS
SAMPLE_MASK = 0xFF

# Initial value of the workgroup min-reduction in lut_build
NO_NONZERO_BIN = 0xFFFFFFFF

KERNELS: Dict[str, Callable] = {}


def kernel(name: str):
    """Register a reference kernel under its entry point name."""
    def decorator(func):
        KERNELS[name] = func
        func.entry_point = name
        return func
    return decorator


def _require_single_group(partition, entry_point: str) -> None:
    if partition.group_count != 1 or partition.local_size != INTENSITY_LEVELS:
        raise DispatchError(
            f"{entry_point} runs as one workgroup of {INTENSITY_LEVELS} work-items, "
            f"got {partition.group_count} x {partition.local_size}",
            kernel_name=entry_point,
        )


# =========================================================================
# Stage 1: Histogram
# =========================================================================

@kernel("histogram_accumulate")
def histogram_accumulate(partition, samples, partials, pixel_count, channels, channel):
    """
    Two-phase histogram of one channel.

    Phase 1: every work-item increments the local scratch histogram of its
    group for each pixel it owns (pixels ``gid, gid + global_size, ...``).
    Phase 2: after the barrier each group writes its scratch histogram to
    ``partials[group * 256:(group + 1) * 256]``; bin ``b`` is written by
    work-item ``b % local_size`` only.
    """
    needed = partition.group_count * INTENSITY_LEVELS
    if partials.size < needed:
        raise DispatchError(
            f"Partial histogram buffer holds {partials.size} bins, need {needed}",
            kernel_name="histogram_accumulate",
        )

    # Loop bound is the real pixel count, so padding never reaches a bin
    pixels = np.arange(pixel_count, dtype=np.int64)
    values = samples[pixels * channels + channel].astype(np.int64) & SAMPLE_MASK
    groups = (pixels % partition.global_size) // partition.local_size

    # np.bincount is the serialized equivalent of atomic increments
    scratch = np.bincount(
        groups * INTENSITY_LEVELS + values,
        minlength=needed,
    ).astype(np.uint32).reshape(partition.group_count, INTENSITY_LEVELS)

    for group in range(partition.group_count):
        base = group * INTENSITY_LEVELS
        partials[base:base + INTENSITY_LEVELS] = scratch[group]


@kernel("reduce_partials")
def reduce_partials(partition, partials, histogram, group_count):
    """One work-item per bin sums that bin over every partial histogram."""
    _require_single_group(partition, "reduce_partials")
    slices = partials[:group_count * INTENSITY_LEVELS].reshape(group_count, INTENSITY_LEVELS)
    histogram[:INTENSITY_LEVELS] = slices.sum(axis=0, dtype=np.uint32)


# =========================================================================
# Stage 2: Cumulative scan
# =========================================================================

@kernel("cumulative_scan")
def cumulative_scan(partition, histogram, cumulative):
    """
    Inclusive Hillis-Steele scan over 256 bins.

    log2(256) = 8 rounds; in round k every work-item i adds the value at
    ``i - 2**k`` (when it exists). Reads come from one scratch buffer and
    writes go to the other, then the buffers swap.
    """
    _require_single_group(partition, "cumulative_scan")

    ping = np.array(histogram[:INTENSITY_LEVELS], dtype=np.uint32)
    pong = np.empty_like(ping)

    offset = 1
    while offset < INTENSITY_LEVELS:
        pong[:offset] = ping[:offset]
        pong[offset:] = ping[offset:] + ping[:-offset]
        ping, pong = pong, ping
        offset *= 2

    cumulative[:INTENSITY_LEVELS] = ping


# =========================================================================
# Stage 3: Lookup table
# =========================================================================

@kernel("lut_build")
def lut_build(partition, cumulative, lut, total_pixels):
    """
    Classic equalization LUT from the cumulative histogram.

    lut[i] = round((cdf[i] - cdf_min) / (total - cdf_min) * 255), clamped to
    [0, 255], where cdf_min is the smallest non-zero cumulative count. A
    constant image (total <= cdf_min) or an empty one gets the identity LUT.
    Arithmetic is float32 with round-half-to-even, as on the device.
    """
    _require_single_group(partition, "lut_build")

    cdf = np.asarray(cumulative[:INTENSITY_LEVELS], dtype=np.uint32)
    nonzero = cdf[cdf > 0]
    min_nonzero = int(nonzero.min()) if nonzero.size else NO_NONZERO_BIN

    if min_nonzero == NO_NONZERO_BIN or total_pixels <= min_nonzero:
        lut[:INTENSITY_LEVELS] = np.arange(INTENSITY_LEVELS, dtype=np.uint32)
        return

    scale = np.float32(MAX_LEVEL - 1)
    span = np.float32(total_pixels - min_nonzero)
    scaled = (cdf.astype(np.float32) - np.float32(min_nonzero)) / span * scale
    lut[:INTENSITY_LEVELS] = np.clip(np.rint(scaled), 0, MAX_LEVEL - 1).astype(np.uint32)


# =========================================================================
# Stage 4: Back-projection
# =========================================================================

@kernel("back_project")
def back_project(partition, samples, lut, output, sample_count, channels, channel):
    """
    Rewrite the selected channel through the LUT.

    Samples of other channels are copied unchanged, so the channel scoping
    matches histogram_accumulate.
    """
    index = np.arange(sample_count, dtype=np.int64)
    values = np.asarray(samples[:sample_count], dtype=np.uint32)
    selected = (index % channels) == channel
    output[:sample_count] = np.where(selected, lut[values & SAMPLE_MASK], values)


KERNEL_NAMES = tuple(KERNELS)

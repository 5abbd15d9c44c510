# Processing package initialization
from .image import Image
from .partition import WorkPartition
from .kernels import INTENSITY_LEVELS, KERNELS, KERNEL_NAMES
from .equalization import (
    EqualizationPipeline,
    PipelineResult,
    PipelineState,
    equalize,
    check_histogram,
    check_cumulative,
    check_lut,
)

"""
Image value type shared by the loader, the pipeline and the saver.
"""

from dataclasses import dataclass
from typing import Optional, Tuple
import numpy as np

# Alpha channel index by channel count (LA, RGBA)
ALPHA_CHANNEL = {2: 1, 4: 3}


@dataclass(frozen=True)
class Image:
    """
    Decoded 8-bit raster.

    Samples are stored flat in row-major interleaved order: the sample of
    channel ``c`` at ``(x, y)`` is ``samples[(y * width + x) * channels + c]``.
    The sample array is read-only.
    """
    width: int
    height: int
    channels: int
    samples: np.ndarray

    def __post_init__(self):
        samples = np.asarray(self.samples)
        if samples.dtype != np.uint8:
            raise TypeError(f"Image samples must be uint8, got {samples.dtype}")
        if self.width < 1 or self.height < 1 or self.channels < 1:
            raise ValueError(f"Invalid image dimensions {self.width}x{self.height}x{self.channels}")
        expected = self.width * self.height * self.channels
        if samples.size != expected:
            raise ValueError(f"Expected {expected} samples, got {samples.size}")

        samples = np.array(samples.reshape(-1), dtype=np.uint8)
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)

    @classmethod
    def from_array(cls, array: np.ndarray) -> "Image":
        """Build an Image from an (H, W) or (H, W, C) uint8 array."""
        array = np.asarray(array)
        if array.ndim == 2:
            height, width = array.shape
            channels = 1
        elif array.ndim == 3:
            height, width, channels = array.shape
        else:
            raise ValueError(f"Expected a 2-D or 3-D array, got shape {array.shape}")
        return cls(width=width, height=height, channels=channels, samples=array)

    def to_array(self) -> np.ndarray:
        """(H, W) for single channel images, (H, W, C) otherwise."""
        if self.channels == 1:
            return self.samples.reshape(self.height, self.width).copy()
        return self.samples.reshape(self.height, self.width, self.channels).copy()

    def channel(self, index: int) -> np.ndarray:
        """Samples of one channel as a flat array."""
        return self.samples[index::self.channels]

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    @property
    def size(self) -> int:
        return self.width * self.height * self.channels

    @property
    def alpha_channel(self) -> Optional[int]:
        """Index of the alpha channel (LA and RGBA images), else None."""
        return ALPHA_CHANNEL.get(self.channels)

    @property
    def color_channels(self) -> Tuple[int, ...]:
        """Channels holding intensity, i.e. every channel except alpha."""
        return tuple(c for c in range(self.channels) if c != self.alpha_channel)

    def with_samples(self, samples: np.ndarray) -> "Image":
        """New image of identical dimensions holding samples."""
        return Image(self.width, self.height, self.channels, np.asarray(samples, dtype=np.uint8))

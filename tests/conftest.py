import pytest
import numpy as np

from hist_equalizer.processing.image import Image


@pytest.fixture
def reference_device():
    """The NumPy reference device (always available)."""
    from hist_equalizer.utils.gpu_device import get_reference_device
    return get_reference_device()


@pytest.fixture
def pipeline(reference_device):
    """Equalization pipeline on the reference device."""
    from hist_equalizer.processing.equalization import EqualizationPipeline
    return EqualizationPipeline(reference_device)


@pytest.fixture
def checkerboard():
    """4x4 grayscale checkerboard, 8 pixels at 0 and 8 at 255."""
    board = np.zeros((4, 4), dtype=np.uint8)
    board[0::2, 1::2] = 255
    board[1::2, 0::2] = 255
    return Image.from_array(board)


@pytest.fixture
def gray_image():
    """37x23 low-contrast grayscale image (851 pixels, not a multiple of any workgroup size)."""
    rng = np.random.default_rng(42)
    return Image.from_array(rng.integers(60, 180, size=(23, 37), dtype=np.uint8))


@pytest.fixture
def rgb_image():
    """30x20 RGB image with a different intensity range per channel."""
    rng = np.random.default_rng(7)
    img = np.zeros((20, 30, 3), dtype=np.uint8)
    img[:, :, 0] = rng.integers(0, 100, size=(20, 30))
    img[:, :, 1] = rng.integers(100, 200, size=(20, 30))
    img[:, :, 2] = rng.integers(50, 250, size=(20, 30))
    return Image.from_array(img)

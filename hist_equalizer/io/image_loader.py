# Image import functionality using Pillow
import os
import numpy as np

from ..processing.image import Image
from ..utils.errors import DecodeError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Attempt to import Pillow (PIL)
try:
    from PIL import Image as PILImage, ImageOps, UnidentifiedImageError
    # ImageOps is needed for exif_transpose
    # UnidentifiedImageError is a specific Pillow error for bad formats
    PILLOW_AVAILABLE = True
except ImportError:
    PILLOW_AVAILABLE = False
    logger.error("Pillow library not found. Image loading will not work. Install with 'pip install Pillow'.")

SUPPORTED_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff', '.pgm', '.ppm', '.pnm', '.webp')

# Pillow modes kept as-is; everything else is converted
NATIVE_MODES = {
    'L': 1,
    'LA': 2,
    'RGB': 3,
    'RGBA': 4,
}


def _conversion_mode(mode):
    """Target 8-bit mode for a Pillow image mode."""
    if mode in NATIVE_MODES:
        return mode
    # 1-bit, 16/32-bit integer and float grayscale
    if mode in ('1', 'I', 'F') or mode.startswith('I;'):
        return 'L'
    if mode == 'PA':
        return 'RGBA'
    return 'RGB'


def load_image(file_path):
    """Loads an 8-bit image from the specified file path using Pillow.

    Handles EXIF orientation. Grayscale and RGB(A) images keep their channel
    count; other modes are converted to 8-bit grayscale or RGB.

    Args:
        file_path (str): The path to the image file.

    Returns:
        Image: The decoded image.

    Raises:
        DecodeError: if the file is missing or cannot be decoded.
    """
    if not PILLOW_AVAILABLE:
        raise DecodeError("Cannot load image: Pillow library is not available.", file_path=file_path)

    if not isinstance(file_path, str) or not file_path:
        raise DecodeError("Invalid file path provided.", file_path=file_path)

    if not os.path.isfile(file_path):
        raise DecodeError(f"File not found at '{file_path}'", file_path=file_path)

    try:
        with PILImage.open(file_path) as img:
            # Apply EXIF orientation (returns a new image object)
            img_oriented = ImageOps.exif_transpose(img)

            target_mode = _conversion_mode(img_oriented.mode)
            if img_oriented.mode != target_mode:
                logger.info("Converting image from mode '%s' to '%s'.", img_oriented.mode, target_mode)
                img_converted = img_oriented.convert(target_mode)
            else:
                img_converted = img_oriented

            image_np = np.array(img_converted, dtype=np.uint8)

    except UnidentifiedImageError as e:
        raise DecodeError(
            f"Pillow could not identify image file format or file is corrupted: '{file_path}'",
            file_path=file_path,
            original_error=e,
        ) from e
    except (OSError, ValueError) as e:
        raise DecodeError(
            f"Error loading image '{file_path}': {e}", file_path=file_path, original_error=e
        ) from e

    if image_np.size == 0:
        raise DecodeError(f"Loaded image is empty: '{file_path}'", file_path=file_path)

    image = Image.from_array(image_np)
    logger.info(
        "Loaded image '%s' (%dx%d, %d channel(s))", file_path, image.width, image.height, image.channels
    )
    return image

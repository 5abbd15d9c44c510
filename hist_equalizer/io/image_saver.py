# Export functionality using Pillow
import os
import numpy as np

from ..utils.errors import FileIOError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Attempt to import Pillow (PIL)
try:
    from PIL import Image as PILImage

    PILLOW_AVAILABLE = True
except ImportError:
    PILLOW_AVAILABLE = False
    logger.error("Pillow library not found. Image saving will not work. Install with 'pip install Pillow'.")

# Pillow mode per channel count
MODES = {1: 'L', 2: 'LA', 3: 'RGB', 4: 'RGBA'}

# Formats that cannot store an alpha channel
NO_ALPHA_EXTENSIONS = ('.jpg', '.jpeg', '.bmp', '.pgm', '.ppm', '.pnm')


def save_image(image, file_path, quality=95, png_compression=3):
    """Saves an Image to the specified file path using Pillow.

    Args:
        image (Image): The image to save.
        file_path (str): Destination path; the extension selects the format.
        quality (int): The quality setting for JPEG (1-100, higher is better).
        png_compression (int): Compression level for PNG (0-9, higher is more compressed).

    Raises:
        FileIOError: if the image cannot be written.
    """
    if not PILLOW_AVAILABLE:
        raise FileIOError("Cannot save image: Pillow library is not available.", file_path=file_path)

    if not isinstance(file_path, str) or not file_path:
        raise FileIOError("Invalid file path provided for saving.", file_path=file_path)

    mode = MODES.get(image.channels)
    if mode is None:
        raise FileIOError(f"Cannot save a {image.channels}-channel image.", file_path=file_path)

    ext = os.path.splitext(file_path)[1].lower()
    array = image.to_array()

    # Drop alpha for formats that cannot store it
    if ext in NO_ALPHA_EXTENSIONS and mode in ('LA', 'RGBA'):
        logger.warning("Format %s has no alpha channel; alpha will be dropped.", ext)
        array = array[:, :, 0] if mode == 'LA' else array[:, :, :3]

    # Create the output directory if it doesn't exist
    output_dir = os.path.dirname(file_path)
    if output_dir and not os.path.exists(output_dir):
        try:
            os.makedirs(output_dir)
            logger.info("Created output directory: %s", output_dir)
        except OSError as e:
            raise FileIOError(
                f"Could not create directory '{output_dir}'", file_path=file_path, original_error=e
            ) from e

    save_kwargs = {}
    if ext in ('.jpg', '.jpeg'):
        save_kwargs['quality'] = quality
    elif ext == '.png':
        save_kwargs['compress_level'] = png_compression

    try:
        # Pillow infers L / LA / RGB / RGBA from the array shape
        img = PILImage.fromarray(np.ascontiguousarray(array, dtype=np.uint8))
        img.save(file_path, **save_kwargs)
    except (OSError, ValueError, KeyError) as e:
        raise FileIOError(f"Error saving image to '{file_path}': {e}", file_path=file_path, original_error=e) from e

    logger.info("Image successfully saved to: %s", file_path)

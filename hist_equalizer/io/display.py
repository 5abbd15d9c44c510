# On-screen display of input/output images using OpenCV
import cv2
import numpy as np

from ..utils.logger import get_logger

logger = get_logger(__name__)

ESC_KEY = 27


def to_bgr(image):
    """Convert an Image to the channel order cv2.imshow expects."""
    array = image.to_array()
    if image.channels == 1:
        return array
    if image.channels == 2:
        # Grayscale + alpha: show the intensity only
        return np.ascontiguousarray(array[:, :, 0])
    if image.channels == 3:
        return cv2.cvtColor(array, cv2.COLOR_RGB2BGR)
    return cv2.cvtColor(array, cv2.COLOR_RGBA2BGRA)


def show_images(images, poll_ms=10):
    """Show images in named windows until ESC is pressed or a window is closed.

    Args:
        images (dict): Window title -> Image.
        poll_ms (int): Event loop wait per iteration.

    Returns:
        bool: False if the display could not be opened (e.g. headless OpenCV build).
    """
    try:
        for title, image in images.items():
            cv2.imshow(title, to_bgr(image))

        while True:
            key = cv2.waitKey(poll_ms) & 0xFF
            if key == ESC_KEY:
                break
            if any(cv2.getWindowProperty(title, cv2.WND_PROP_VISIBLE) < 1 for title in images):
                break
    except cv2.error as e:
        logger.warning("Could not display images: %s", e)
        return False
    finally:
        try:
            cv2.destroyAllWindows()
        except cv2.error:
            logger.debug("No windows to destroy")

    return True

# IO package initialization
from .image_loader import (
    load_image,
    SUPPORTED_EXTENSIONS,
    PILLOW_AVAILABLE,
)
from .image_saver import (
    save_image,
    PILLOW_AVAILABLE as SAVER_PILLOW_AVAILABLE,
)

__all__ = [
    'load_image',
    'SUPPORTED_EXTENSIONS',
    'PILLOW_AVAILABLE',
    'save_image',
    'SAVER_PILLOW_AVAILABLE',
]

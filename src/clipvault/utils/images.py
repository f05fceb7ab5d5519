import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


def image_dimensions(data: bytes) -> Tuple[Optional[int], Optional[int]]:
    """Width and height of an encoded image, or (None, None) if unreadable."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            width, height = image.size
            return width, height
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.debug(f"Could not read image dimensions: {e}")
        return None, None

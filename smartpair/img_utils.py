"""
Image metadata utilities used for dummy detection and quality scoring
"""
import io
import logging
import hashlib
from pathlib import Path
from typing import Optional
from PIL import Image

logger = logging.getLogger(__name__)


def get_image_info(img_bytes: bytes) -> Optional[dict]:
    """
    Get basic information about an image.

    Args:
        img_bytes: Image bytes

    Returns:
        Dictionary with image info or None if invalid
    """
    try:
        with Image.open(io.BytesIO(img_bytes)) as img:
            return {
                'width': img.width,
                'height': img.height,
                'mode': img.mode,
                'format': img.format,
                'size_bytes': len(img_bytes)
            }
    except Exception as e:
        logger.error(f"Error getting image info: {str(e)}")
        return None


def read_image_info(file_path: Path) -> Optional[dict]:
    """
    Read dimensions and byte size of an image file without decoding pixels.

    Args:
        file_path: Path to image file

    Returns:
        Dictionary with width, height and size_bytes, or None if unreadable
    """
    try:
        size_bytes = file_path.stat().st_size
        with Image.open(file_path) as img:
            width, height = img.size
        return {'width': width, 'height': height, 'size_bytes': size_bytes}
    except Exception as e:
        logger.warning(f"Cannot read image metadata for {file_path}: {str(e)}")
        return None


def calculate_sha1(data: bytes) -> str:
    """
    Calculate SHA-1 hash of data.

    Args:
        data: Bytes to hash

    Returns:
        SHA-1 hash as hexadecimal string
    """
    return hashlib.sha1(data).hexdigest()


def megapixels(width: Optional[int], height: Optional[int]) -> Optional[float]:
    if not width or not height:
        return None
    return (width * height) / 1_000_000


def aspect_ratio(width: Optional[int], height: Optional[int]) -> Optional[float]:
    if not width or not height:
        return None
    return width / height


def looks_dummy_by_meta(size_bytes: Optional[int], width: Optional[int], height: Optional[int],
                        min_bytes: int = 10 * 1024, min_dimension: int = 200) -> bool:
    """
    Check whether file metadata marks an image as a placeholder or thumbnail.

    Unknown values never count against the image.

    Args:
        size_bytes: File size in bytes
        width: Pixel width
        height: Pixel height
        min_bytes: Files smaller than this are dummies
        min_dimension: Images with either side below this are dummies

    Returns:
        True if the image looks like a dummy
    """
    if size_bytes and 0 < size_bytes < min_bytes:
        return True
    if width and height and (width < min_dimension or height < min_dimension):
        return True
    return False

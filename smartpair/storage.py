"""
Storage utilities: canonical image keys, folder scanning and result files
"""
import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from . import img_utils

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp', '.tif', '.tiff'}

_STRIP_PREFIXES = ('ebay_', 'ebay-')


def url_key(value: str) -> str:
    """
    Canonical image key for a storage link, path or file name.

    Query strings, folders and pipe-separated labels are dropped, an export
    prefix (EBAY_ / EBAY-) is stripped, and the result is lowercased.

    Args:
        value: URL, path or bare file name

    Returns:
        Canonical key (empty string for empty input)
    """
    if not value:
        return ''
    text = str(value).strip()
    if '://' in text:
        try:
            text = urlparse(text).path
        except ValueError:
            pass
    text = text.split('?')[0].split('#')[0]
    text = text.split('|')[-1].strip()
    text = text.replace('\\', '/').split('/')[-1].strip()
    lowered = text.lower()
    for prefix in _STRIP_PREFIXES:
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix):]
            break
    return lowered


def normalize_folder(value: Optional[str]) -> str:
    """Folder key without leading/trailing separators."""
    if not value:
        return ''
    return str(value).replace('\\', '/').strip().strip('/').strip()


def folder_path(path: str) -> str:
    """Folder part of a slash-separated path."""
    parts = [p for p in str(path or '').replace('\\', '/').split('/') if p]
    return '/'.join(parts[:-1])


def list_images(base_dir: str) -> List[Path]:
    """
    List all image files below a directory.

    Args:
        base_dir: Directory to scan recursively

    Returns:
        Sorted list of Path objects for all image files found
    """
    try:
        base_path = Path(base_dir)
        if not base_path.exists():
            return []

        image_files = [
            p for p in base_path.rglob('*')
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        ]
        return sorted(image_files)

    except Exception as e:
        logger.error(f"Error listing images: {str(e)}")
        return []


def scan_folder(base_dir: str) -> List["Image"]:
    """
    Build Image records for every image file below a directory.

    Keys are relative paths so identically named files in different
    sub-folders stay distinct.

    Args:
        base_dir: Directory to scan

    Returns:
        List of Image records in path order
    """
    from .models import Image

    base_path = Path(base_dir)
    images = []
    for file_path in list_images(base_dir):
        relative = file_path.relative_to(base_path).as_posix()
        info = img_utils.read_image_info(file_path) or {}
        images.append(Image(
            key=relative.lower(),
            url=str(file_path),
            folder=folder_path(relative),
            name=file_path.name,
            width=info.get('width'),
            height=info.get('height'),
            size_bytes=info.get('size_bytes'),
        ))
    logger.info(f"Found {len(images)} images in {base_dir}")
    return images


def load_manifest(manifest_path: str) -> List["Image"]:
    """
    Load Image records from a JSON manifest of remote images.

    Each entry needs a url; key, folder, name, width, height and size are
    optional and derived from the url when missing.

    Args:
        manifest_path: Path to JSON file (list of objects, or {"images": [...]})

    Returns:
        List of Image records
    """
    from .models import Image

    with open(manifest_path, 'r') as f:
        data = json.load(f)
    entries = data.get('images', []) if isinstance(data, dict) else data

    images = []
    for entry in entries:
        url = entry.get('url') or ''
        if not url:
            logger.warning(f"Manifest entry without url skipped: {entry}")
            continue
        path = entry.get('path') or urlparse(url).path
        images.append(Image(
            key=entry.get('key') or url_key(url),
            url=url,
            folder=entry.get('folder', folder_path(path)),
            name=entry.get('name') or path.split('/')[-1],
            width=entry.get('width'),
            height=entry.get('height'),
            size_bytes=entry.get('size') or entry.get('size_bytes'),
        ))
    return images


def make_signature(images: Iterable["Image"], extra: Optional[dict] = None) -> str:
    """
    Content signature of a scan, used as the result cache key.

    Args:
        images: Images of the scan (order does not matter)
        extra: Other inputs that change the result (classification, config)

    Returns:
        SHA-1 hex digest
    """
    lines = sorted(
        f"{img.key}:{img.url}:{img.size_bytes or 0}:{img.width or 0}x{img.height or 0}"
        for img in images
    )
    payload = '|'.join(lines)
    if extra:
        payload += '|' + json.dumps(extra, sort_keys=True, default=str)
    return img_utils.calculate_sha1(payload.encode('utf-8'))


def ensure_directory(path: Path) -> bool:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Path to directory

    Returns:
        True if directory exists or was created successfully
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True

    except Exception as e:
        logger.error(f"Error creating directory {path}: {str(e)}")
        return False


def save_result(result: dict, output_path: Path) -> bool:
    """
    Save a pairing result as JSON.

    Args:
        result: Result dictionary
        output_path: Where to write it

    Returns:
        True if saved successfully
    """
    try:
        if not ensure_directory(output_path.parent):
            return False

        with open(output_path, 'w') as f:
            json.dump(result, f, indent=2)

        logger.info(f"Saved result: {output_path}")
        return True

    except Exception as e:
        logger.error(f"Error saving result to {output_path}: {str(e)}")
        return False

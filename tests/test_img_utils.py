"""
Tests for image metadata utilities
"""
import pytest
import io
from PIL import Image
from smartpair.img_utils import (
    get_image_info, read_image_info, calculate_sha1, megapixels, aspect_ratio, looks_dummy_by_meta,
)


def create_test_image(width: int, height: int, color: str = 'red') -> bytes:
    """Create a test image with specified dimensions"""
    img = Image.new('RGB', (width, height), color)
    output = io.BytesIO()
    img.save(output, format='JPEG')
    return output.getvalue()


def test_get_image_info():
    """Test image info extraction"""
    test_image = create_test_image(800, 600)

    info = get_image_info(test_image)

    assert info is not None
    assert info['width'] == 800
    assert info['height'] == 600
    assert info['format'] == 'JPEG'
    assert info['size_bytes'] == len(test_image)


def test_get_image_info_invalid():
    """Invalid bytes yield None"""
    assert get_image_info(b"not an image") is None


def test_read_image_info(tmp_path):
    """Test reading dimensions and size from a file"""
    path = tmp_path / "photo.jpg"
    path.write_bytes(create_test_image(640, 480))

    info = read_image_info(path)

    assert info == {'width': 640, 'height': 480, 'size_bytes': path.stat().st_size}
    assert read_image_info(tmp_path / "missing.jpg") is None


def test_calculate_sha1():
    """Test SHA-1 hash calculation"""
    data = b"test data"
    hash1 = calculate_sha1(data)
    hash2 = calculate_sha1(data)

    assert hash1 == hash2  # Same data should produce same hash
    assert len(hash1) == 40  # SHA-1 is 40 hex characters

    # Different data should produce different hash
    hash3 = calculate_sha1(b"different data")
    assert hash1 != hash3


def test_megapixels_and_aspect():
    """Test derived geometry helpers"""
    assert megapixels(2000, 1500) == pytest.approx(3.0)
    assert aspect_ratio(1200, 800) == pytest.approx(1.5)
    assert megapixels(None, 100) is None
    assert aspect_ratio(100, 0) is None


def test_looks_dummy_by_meta():
    """Test dummy detection from file metadata"""
    assert looks_dummy_by_meta(5 * 1024, 1000, 1000)  # under 10KB
    assert looks_dummy_by_meta(500 * 1024, 150, 1000)  # thin
    assert not looks_dummy_by_meta(500 * 1024, 1000, 1000)
    # Unknown values never count against an image
    assert not looks_dummy_by_meta(None, None, None)
    assert not looks_dummy_by_meta(0, None, None)

import numpy as np
import pytest

from pixelforge.pipeline.buffer import DetectedRegion, PixelBuffer, Region, round_half_up, to_uint8
from pixelforge.pipeline.errors import BufferAllocationFailed, InvalidRegion


def test_allocate_is_transparent_black():
    buf = PixelBuffer.allocate(4, 3)
    assert (buf.width, buf.height) == (4, 3)
    assert buf.data.size == 4 * 3 * 4
    assert not buf.pixels.any()


@pytest.mark.parametrize("width,height", [(0, 10), (10, 0), (-1, 5)])
def test_allocate_rejects_empty_sizes(width, height):
    with pytest.raises(BufferAllocationFailed):
        PixelBuffer.allocate(width, height)


def test_allocate_respects_pixel_ceiling():
    with pytest.raises(BufferAllocationFailed):
        PixelBuffer.allocate(100, 100, max_pixels=9999)
    assert PixelBuffer.allocate(100, 100, max_pixels=10000).width == 100


def test_from_array_adds_opaque_alpha_and_copies():
    rgb = np.full((2, 3, 3), 7, dtype=np.uint8)
    buf = PixelBuffer.from_array(rgb)
    assert buf.pixels.shape == (2, 3, 4)
    assert (buf.alpha == 255).all()
    rgb[0, 0, 0] = 99
    assert buf.pixels[0, 0, 0] == 7


def test_from_bytes_checks_length():
    data = bytes(range(16))
    buf = PixelBuffer.from_bytes(2, 2, data)
    assert buf.tobytes() == data
    with pytest.raises(ValueError):
        PixelBuffer.from_bytes(3, 2, data)


def test_copy_does_not_alias():
    buf = PixelBuffer.allocate(2, 2)
    clone = buf.copy()
    clone.pixels[0, 0] = 255
    assert buf.pixels[0, 0, 0] == 0
    assert clone != buf


def test_rounding_helpers():
    assert list(round_half_up(np.array([0.5, 1.5, 2.4, -0.5]))) == [1.0, 2.0, 2.0, 0.0]
    assert list(to_uint8(np.array([0.5, 1.5, 300.0, -4.0]))) == [0, 2, 255, 0]


def test_region_clamp_partial_overlap():
    assert Region(-5, -5, 10, 10).clamp(20, 20) == Region(0, 0, 5, 5)
    assert Region(15, 15, 10, 10).clamp(20, 20) == Region(15, 15, 5, 5)


def test_region_fully_outside():
    region = Region(50, 50, 10, 10)
    assert region.clamp(20, 20) is None
    with pytest.raises(InvalidRegion):
        region.clamp_strict(20, 20)


def test_region_touching_edges_do_not_intersect():
    a = Region(0, 0, 10, 10)
    assert not a.intersects(Region(10, 0, 10, 10))
    assert a.intersects(Region(9, 9, 10, 10))
    assert a.union(Region(9, 9, 10, 10)) == Region(0, 0, 19, 19)


def test_detected_region_to_dict():
    d = DetectedRegion(Region(1, 2, 3, 4), 0.81234567)
    assert d.to_dict() == {"x": 1, "y": 2, "width": 3, "height": 4, "confidence": 0.8123}

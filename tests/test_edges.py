import numpy as np

from pixelforge.pipeline.buffer import PixelBuffer
from pixelforge.pipeline.edges import detect_edges, forward_gradient_magnitude, gray_levels, local_edge_mask, sobel_magnitude


def _step(width=10, height=10):
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, width // 2:, :3] = 255
    pixels[..., 3] = 255
    return PixelBuffer.from_array(pixels)


def test_uniform_image_has_no_edges():
    buf = PixelBuffer.from_array(np.full((8, 8, 4), 200, dtype=np.uint8))
    assert not detect_edges(buf, 0).any()


def test_vertical_step_is_an_edge():
    edges = detect_edges(_step(), 50)
    assert edges[1:-1, 4].all()
    assert edges[1:-1, 5].all()
    assert not edges[1:-1, 1].any()
    assert sobel_magnitude(_step())[5, 4] == 1020


def test_border_pixels_never_sobel_edges():
    edges = detect_edges(_step(), 0)
    assert not edges[0].any() and not edges[-1].any()
    assert not edges[:, 0].any() and not edges[:, -1].any()


def test_local_edge_mask_marks_block_boundary():
    block = np.full((5, 6, 4), 90, dtype=np.uint8)
    mask = local_edge_mask(block)
    assert mask[0].all() and mask[-1].all() and mask[:, 0].all() and mask[:, -1].all()
    assert not mask[1:-1, 1:-1].any()


def test_local_edge_mask_threshold():
    block = np.full((5, 5, 3), 100, dtype=np.uint8)
    block[2, 2] = 131
    assert local_edge_mask(block)[2, 2]
    block[2, 2] = 130
    assert not local_edge_mask(block)[2, 2]


def test_forward_gradient_only_interior():
    gray = gray_levels(_step().pixels)
    magnitude, valid = forward_gradient_magnitude(gray)
    assert not valid[0].any() and not valid[:, -1].any()
    assert magnitude[3, 4] == 255
    assert magnitude[3, 2] == 0

import numpy as np  # type: ignore
import pytest  # type: ignore
from PIL import Image

from snip_upscaler.buffer import PixelBuffer


def test_buffer_rejects_wrong_length() -> None:
    with pytest.raises(ValueError):
        PixelBuffer(2, 2, bytearray(15))


def test_blank_buffer_is_zeroed() -> None:
    buffer = PixelBuffer.blank(3, 2)
    assert len(buffer.data) == 3 * 2 * 4
    assert not any(buffer.data)


def test_as_array_is_a_writable_view() -> None:
    buffer = PixelBuffer.blank(2, 2)
    buffer.as_array()[1, 0] = (1, 2, 3, 4)
    assert bytes(buffer.data[8:12]) == b"\x01\x02\x03\x04"


def test_copy_from_clips_against_both_buffers() -> None:
    source = PixelBuffer.from_array(np.full((4, 4, 4), 7, dtype=np.uint8))
    dest = PixelBuffer.blank(5, 5)

    dest.copy_from(source, (-2, 0, 4, 4), (1, 3))

    array = dest.as_array()
    assert (array[3:5, 3:5] == 7).all()
    assert not array[:3].any()
    assert not array[:, :3].any()


def test_pillow_round_trip_preserves_pixels() -> None:
    image = Image.new("RGB", (3, 2), color=(10, 20, 30))

    buffer = PixelBuffer.from_image(image)

    assert buffer.size == (3, 2)
    assert tuple(buffer.as_array()[1, 2]) == (10, 20, 30, 255)
    assert buffer.to_image().mode == "RGBA"
    assert buffer.to_image().getpixel((2, 1)) == (10, 20, 30, 255)

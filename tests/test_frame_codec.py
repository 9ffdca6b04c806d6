import base64

import numpy as np
import pytest

from livedetect.services.errors import FrameDecodeError
from livedetect.services.frame_codec import decode_data_url, downscale, encode_data_url


def test_encoded_frame_decodes_to_same_shape() -> None:
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    frame[60:180, 80:240] = (0, 200, 0)
    url = encode_data_url(frame, quality=60)
    assert url.startswith("data:image/jpeg;base64,")
    decoded = decode_data_url(url)
    assert decoded.shape == (240, 320, 3)
    # raw base64 without the data URL prefix is accepted too
    assert decode_data_url(url.split(",", 1)[1]).shape == (240, 320, 3)


@pytest.mark.parametrize("image", ["", "data:image/jpeg;base64,", "data:image/jpeg;base64," + base64.b64encode(b"not a jpeg").decode()])
def test_undecodable_images_raise(image: str) -> None:
    with pytest.raises(FrameDecodeError):
        decode_data_url(image)


def test_downscale_stretches_without_letterbox() -> None:
    frame = np.zeros((720, 1280, 3), dtype=np.uint8)
    out = downscale(frame, 320, 240)
    assert out.shape == (240, 320, 3)

import io
import numpy as np, cv2, pytest

@pytest.fixture
def rgb_image():
    rng = np.random.default_rng(0)
    return (rng.random((300, 400, 3)) * 255).astype("uint8")

@pytest.fixture
def png_bytes(rgb_image):
    ok, buf = cv2.imencode(".png", rgb_image)
    assert ok
    return io.BytesIO(buf.tobytes())

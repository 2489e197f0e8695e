import numpy as np, cv2, torch
from PIL import Image

from screening.config import INPUT_SIZE, ScreenConfig
from screening.errors import InvalidImageError

def to_rgb_array(image) -> np.ndarray:
    """Decoded bitmap (HxWxC ndarray or PIL image, C>=3) -> HxWx3 float32; alpha/extra channels dropped."""
    arr = np.asarray(image) if isinstance(image, Image.Image) else image
    if not isinstance(arr, np.ndarray):
        raise InvalidImageError(f"Expected an image array, got {type(image).__name__}")
    if arr.ndim != 3 or arr.shape[2] < 3:
        raise InvalidImageError(f"Expected HxWxC image with at least 3 channels, got shape {arr.shape}")
    if arr.shape[0] == 0 or arr.shape[1] == 0:
        raise InvalidImageError(f"Empty image, shape {arr.shape}")
    return np.ascontiguousarray(arr[..., :3], dtype=np.float32)

def normalize(image, config: ScreenConfig = ScreenConfig(), size: int = INPUT_SIZE) -> torch.Tensor:
    """-> (1, size, size, 3) float32 tensor, NHWC."""
    x = to_rgb_array(image)
    # INTER_LINEAR uses half-pixel centres, i.e. bilinear without corner alignment
    x = cv2.resize(x, (size, size), interpolation=cv2.INTER_LINEAR)
    if config.bgr:
        x = x[..., ::-1]
    if config.div255:
        x = x / 255.0
    return torch.from_numpy(np.ascontiguousarray(x, dtype=np.float32)).unsqueeze(0)

import numpy as np, cv2

from screening.errors import InvalidImageError

IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp")

def decode_image_bytes(data: bytes) -> np.ndarray:
    """Decode an uploaded/captured photo to uint8 RGB, HxWx3 (EXIF orientation applied by OpenCV)."""
    arr = np.frombuffer(data, dtype=np.uint8)
    if arr.size == 0:
        raise InvalidImageError("Empty upload.")
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise InvalidImageError("Unsupported or corrupt image.")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)

def load_image_file(file_like) -> np.ndarray:
    return decode_image_bytes(file_like.read())

def load_image_path(path) -> np.ndarray:
    with open(path, "rb") as f:
        return load_image_file(f)

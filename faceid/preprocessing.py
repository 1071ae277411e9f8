"""
Image Preprocessing Module

Turns an arbitrary decoded capture into the fixed-size, lighting-normalized
intensity grid that every descriptor algorithm consumes.

Steps (all deterministic):
    1. Center-crop to a square of side min(width, height)
    2. Resize to grid_size x grid_size (bilinear, OpenCV)
    3. Convert to luminance: Y = 0.299 R + 0.587 G + 0.114 B
    4. Histogram equalization through a CDF lookup table

The preprocessor never rejects an image. Degenerate inputs (empty arrays,
single-value images, odd dtypes) are clamped into a valid grid instead.

Usage:
    from faceid.preprocessing import ImagePreprocessor

    preprocessor = ImagePreprocessor({"grid_size": 64})
    grid = preprocessor.preprocess(frame)  # (64, 64) uint8
"""

import logging
from typing import Any, Dict, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_GRID_SIZE = 64

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


def _coerce_image(image: np.ndarray) -> np.ndarray:
    """
    Bring any numeric array into a (H, W, 3) or (H, W) uint8 image.

    Alpha channels are dropped, single-channel stacks are squeezed and
    values are clipped into 0..255. An empty image becomes one black pixel.
    """
    arr = np.asarray(image)

    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    elif arr.ndim == 3 and arr.shape[2] >= 4:
        arr = arr[:, :, :3]
    elif arr.ndim == 3 and arr.shape[2] == 2:
        # Gray + alpha
        arr = arr[:, :, 0]
    elif arr.ndim not in (2, 3):
        logger.warning(f"Unexpected image shape {arr.shape}, treating as empty")
        arr = np.zeros((1, 1), dtype=np.uint8)

    if arr.size == 0 or arr.shape[0] == 0 or arr.shape[1] == 0:
        logger.warning("Empty image received, clamping to a single black pixel")
        arr = np.zeros((1, 1), dtype=np.uint8)

    if arr.dtype != np.uint8:
        arr = np.clip(np.nan_to_num(arr.astype(np.float64)), 0, 255).astype(np.uint8)

    return arr


def center_crop(image: np.ndarray) -> np.ndarray:
    """
    Crop the largest centered square out of an image.

    Off-center background is discarded, which trades field of view for
    invariance to how far the student stands from the camera.

    Args:
        image: (H, W) or (H, W, C) array.

    Returns:
        Square (S, S[, C]) view where S = min(H, W).
    """
    h, w = image.shape[:2]
    size = min(h, w)
    y0 = (h - size) // 2
    x0 = (w - size) // 2
    return image[y0:y0 + size, x0:x0 + size]


def to_luminance(image: np.ndarray, color_order: str = "bgr") -> np.ndarray:
    """
    Convert a color image into a single-channel luminance image.

    Args:
        image: (H, W, 3) uint8 color image or (H, W) grayscale image.
        color_order: Channel order of the color image, "bgr" or "rgb".

    Returns:
        (H, W) uint8 luminance, rounded half-up.
    """
    if image.ndim == 2:
        return image.astype(np.uint8, copy=True)

    channels = image.astype(np.float64)
    if color_order == "bgr":
        r, g, b = channels[:, :, 2], channels[:, :, 1], channels[:, :, 0]
    else:
        r, g, b = channels[:, :, 0], channels[:, :, 1], channels[:, :, 2]

    wr, wg, wb = LUMA_WEIGHTS
    y = wr * r + wg * g + wb * b
    return np.clip(np.floor(y + 0.5), 0, 255).astype(np.uint8)


def equalize_histogram(gray: np.ndarray) -> np.ndarray:
    """
    Histogram-equalize a uint8 grid through its cumulative distribution.

    lut[v] = round((cdf[v] - cdf_min) * 255 / (pixel_count - cdf_min))

    When every pixel shares one value (pixel_count == cdf_min) the grid is
    returned unchanged to avoid dividing by zero.

    Args:
        gray: (H, W) uint8 grid.

    Returns:
        (H, W) uint8 equalized grid (a new array).
    """
    pixel_count = gray.size
    if pixel_count == 0:
        return gray.copy()

    histogram = np.bincount(gray.ravel(), minlength=256)
    cdf = np.cumsum(histogram)
    cdf_min = int(cdf[np.flatnonzero(cdf)[0]])

    if pixel_count == cdf_min:
        return gray.copy()

    scale = 255.0 / (pixel_count - cdf_min)
    lut = np.floor((cdf - cdf_min) * scale + 0.5)
    lut = np.clip(lut, 0, 255).astype(np.uint8)
    return lut[gray]


class ImagePreprocessor:
    """
    Normalize raw captures into N x N equalized intensity grids.

    The preprocessor is stateless apart from its configuration, so a single
    instance can be shared between worker threads.

    Attributes:
        grid_size: Side length N of the output grid.
        color_order: Channel order of incoming color images.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the preprocessor.

        Args:
            config: Configuration dictionary containing:
                - grid_size: Output grid side length (default 64)
                - color_order: "bgr" (default, OpenCV decoding) or "rgb"
        """
        if config is None:
            config = {}

        self.grid_size = int(config.get("grid_size", DEFAULT_GRID_SIZE))
        self.color_order = str(config.get("color_order", "bgr")).lower()

        if self.grid_size < 3:
            raise ValueError(f"grid_size must be at least 3, got {self.grid_size}")
        if self.color_order not in ("bgr", "rgb"):
            raise ValueError(f"color_order must be 'bgr' or 'rgb', got {self.color_order!r}")

    def preprocess(self, image: np.ndarray) -> np.ndarray:
        """
        Normalize one capture.

        Args:
            image: Decoded bitmap, (H, W, 3), (H, W, 4) or (H, W).

        Returns:
            (grid_size, grid_size) uint8 equalized grid.
        """
        arr = _coerce_image(image)
        square = np.ascontiguousarray(center_crop(arr))

        n = self.grid_size
        resized = cv2.resize(square, (n, n), interpolation=cv2.INTER_LINEAR)

        gray = to_luminance(resized, self.color_order)
        return equalize_histogram(gray)

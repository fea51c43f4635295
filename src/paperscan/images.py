"""
Image utilities for the paper scanning pipeline.

Provides:
- Grayscale conversion
- JPEG and PNG encoding, decoding from bytes
- Foreground (non-background) bounding rectangle detection
- Row-band and box cropping
- Debug drawing of resolved crop bands
"""

import logging
from typing import Tuple, Optional, List
import numpy as np

logger = logging.getLogger(__name__)


# ============================================================================
# Conversion
# ============================================================================

def to_grayscale(image: np.ndarray) -> np.ndarray:
    """
    Convert image to grayscale if it's color.

    Args:
        image: Input image (BGR or grayscale)

    Returns:
        Grayscale image
    """
    import cv2

    if len(image.shape) == 2:
        return image
    elif len(image.shape) == 3:
        if image.shape[2] == 3:
            return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        elif image.shape[2] == 4:
            return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 1:
            return image.squeeze()

    raise ValueError(f"Unexpected image shape: {image.shape}")


# ============================================================================
# Encoding
# ============================================================================

def encode_jpeg(image: np.ndarray, quality: int = 85) -> bytes:
    """Encode an image as JPEG bytes."""
    import cv2

    ok, buffer = cv2.imencode('.jpg', image, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError(f"Could not encode image of shape {image.shape} as JPEG")
    return buffer.tobytes()


def encode_png(image: np.ndarray) -> bytes:
    import cv2

    ok, buffer = cv2.imencode('.png', image)
    if not ok:
        raise ValueError(f"Could not encode image of shape {image.shape} as PNG")
    return buffer.tobytes()


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes into a BGR array.

    Raises:
        ValueError: If the bytes are not a decodable image
    """
    import cv2

    buffer = np.frombuffer(data, dtype=np.uint8)
    img = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
    if img is None:
        raise ValueError("Could not decode image bytes")
    return img


# ============================================================================
# Geometry
# ============================================================================

def content_bounding_rect(
    image: np.ndarray,
    threshold: int = 248
) -> Optional[Tuple[int, int, int, int]]:
    """
    Find the tight rectangle around non-background pixels.

    A pixel is foreground when its grayscale value is below the threshold.

    Args:
        image: Input image (BGR or grayscale)
        threshold: Gray level at or above which a pixel counts as background

    Returns:
        (x, y, width, height) of the foreground, or None when the image is blank
    """
    if image.size == 0:
        return None

    mask = to_grayscale(image) < threshold
    rows = np.flatnonzero(mask.any(axis=1))
    if rows.size == 0:
        return None
    cols = np.flatnonzero(mask.any(axis=0))

    x, y = int(cols[0]), int(rows[0])
    return x, y, int(cols[-1]) - x + 1, int(rows[-1]) - y + 1


def crop_rows(image: np.ndarray, top: int, bottom: int) -> np.ndarray:
    """Crop a full-width horizontal band [top, bottom)."""
    h = image.shape[0]
    top = max(0, min(int(top), h))
    bottom = max(top, min(int(bottom), h))
    return image[top:bottom].copy()


def crop_box(image: np.ndarray, x: int, y: int, width: int, height: int) -> np.ndarray:
    """Crop a rectangle, clamped to the image bounds."""
    h, w = image.shape[:2]
    x1 = max(0, min(int(x), w))
    y1 = max(0, min(int(y), h))
    x2 = max(x1, min(int(x + width), w))
    y2 = max(y1, min(int(y + height), h))
    return image[y1:y2, x1:x2].copy()


# ============================================================================
# Debug Visualization
# ============================================================================

def draw_debug_image(
    image: np.ndarray,
    bands: List[Tuple[int, int]],
    labels: Optional[List[str]] = None,
    line_width: int = 2
) -> np.ndarray:
    """
    Draw resolved crop bands on a copy of the page for debugging.

    Args:
        image: Page image
        bands: List of (top, bottom) pixel rows
        labels: Optional labels for each band
        line_width: Line thickness

    Returns:
        Image with drawn bands
    """
    import cv2

    if len(image.shape) == 2:
        debug_img = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    else:
        debug_img = image.copy()

    colors = [
        (255, 0, 0),
        (0, 160, 0),
        (0, 0, 255),
        (200, 120, 0),
        (200, 0, 200),
    ]
    width = debug_img.shape[1]

    for i, (top, bottom) in enumerate(bands):
        color = colors[i % len(colors)]
        cv2.rectangle(debug_img, (0, int(top)), (width - 1, int(bottom) - 1), color, line_width)
        if labels and i < len(labels):
            cv2.putText(debug_img, labels[i], (5, int(top) + 15), cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1)

    return debug_img

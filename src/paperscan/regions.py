"""
Crop region resolution for the paper scanning pipeline.

Provides:
- Bounding box usability checks
- Full-width primary crop bands with bias compensation and neighbor fallback
- Sub-region (option / figure) boxes tightened to their foreground pixels

Resolution of item i only reads the static list of item boxes, so the order in
which items are resolved never changes the result.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .config import RegionConfig
from .images import content_bounding_rect
from .items import BoundingBox

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PixelBox:
    """Bounding box in pixel coordinates."""
    x1: int
    y1: int
    x2: int
    y2: int

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_xywh(self) -> Tuple[int, int, int, int]:
        return (self.x1, self.y1, self.width, self.height)

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> 'PixelBox':
        return cls(x, y, x + w, y + h)

    def crop_from_image(self, image: np.ndarray) -> np.ndarray:
        return image[self.y1:self.y2, self.x1:self.x2].copy()


@dataclass
class CropRegion:
    """Full-width horizontal band [top, bottom) of the page image."""
    top: int
    bottom: int
    fallback: bool = False

    @property
    def height(self) -> int:
        return self.bottom - self.top


# ============================================================================
# Resolver
# ============================================================================

class RegionResolver:
    """
    Converts oracle bounding boxes into safe pixel crop regions.

    Usage:
        resolver = RegionResolver()
        regions = resolver.resolve_all([item.bbox for item in items], image_height)
    """

    def __init__(self, config: Optional[RegionConfig] = None):
        self.config = config or RegionConfig()

    def is_usable(self, bbox: Optional[BoundingBox]) -> bool:
        """Positive size and an origin inside the tolerated overshoot range."""
        if bbox is None:
            return False
        x_min, x_max = self.config.usable_x_range
        y_min, y_max = self.config.usable_y_range
        return (
            bbox.width > 0
            and bbox.height > 0
            and x_min <= bbox.x <= x_max
            and y_min <= bbox.y <= y_max
        )

    def expansion(self, image_height: int) -> float:
        """Upward expansion compensating boxes that start too low."""
        return min(self.config.upward_expansion_px, self.config.upward_expansion_ratio * image_height)

    def pixel_range(self, bbox: BoundingBox, image_height: int) -> Tuple[float, float]:
        """Raw vertical pixel range of a box, clamped to the image."""
        top = min(max(bbox.y * image_height, 0.0), float(image_height))
        bottom = min(max(bbox.bottom * image_height, 0.0), float(image_height))
        return top, bottom

    def _previous_bottom(self, boxes: List[Optional[BoundingBox]], index: int, image_height: int) -> Optional[float]:
        for j in range(index - 1, -1, -1):
            if self.is_usable(boxes[j]):
                return self.pixel_range(boxes[j], image_height)[1]
        return None

    def _next_top(self, boxes: List[Optional[BoundingBox]], index: int, image_height: int) -> Optional[float]:
        for j in range(index + 1, len(boxes)):
            if self.is_usable(boxes[j]):
                return self.pixel_range(boxes[j], image_height)[0]
        return None

    def resolve(self, boxes: List[Optional[BoundingBox]], index: int, image_height: int) -> CropRegion:
        """
        Resolve the crop band of one item.

        Args:
            boxes: Bounding boxes of every item on the page, in order
            index: Position of the item to resolve
            image_height: Page image height in pixels

        Returns:
            CropRegion with 0 <= top < bottom <= image_height
        """
        if image_height < 1:
            raise ValueError(f"Image height must be positive, got {image_height}")

        bbox = boxes[index]
        prev_bottom = self._previous_bottom(boxes, index, image_height)

        if not self.is_usable(bbox):
            next_top = self._next_top(boxes, index, image_height)
            top = prev_bottom if prev_bottom is not None else 0.0
            bottom = next_top if next_top is not None else float(image_height)
            if bottom - top < 1:
                bottom = float(image_height)
            logger.debug(f"Item {index}: no usable bbox, using neighbor band {top:.0f}-{bottom:.0f}")
            return self._finalize(top, bottom, image_height, fallback=True)

        margin = self.config.margin_px
        expansion = self.expansion(image_height)
        raw_top, raw_bottom = self.pixel_range(bbox, image_height)

        top = max(raw_top - expansion - margin, 0.0)
        bottom = min(raw_bottom + margin, float(image_height))

        at_page_bottom = bbox.y * image_height >= self.config.bottom_page_ratio * image_height
        if bottom <= top + 1 or at_page_bottom:
            if prev_bottom is not None:
                top = prev_bottom - margin - expansion
            bottom = float(image_height)
            logger.debug(f"Item {index}: treated as page-bottom content from {max(top, 0):.0f}")

        return self._finalize(top, bottom, image_height)

    def resolve_all(self, boxes: List[Optional[BoundingBox]], image_height: int) -> List[CropRegion]:
        return [self.resolve(boxes, i, image_height) for i in range(len(boxes))]

    @staticmethod
    def _finalize(top: float, bottom: float, image_height: int, fallback: bool = False) -> CropRegion:
        top_px = min(max(int(math.floor(top)), 0), image_height - 1)
        bottom_px = min(max(int(math.ceil(bottom)), top_px + 1), image_height)
        return CropRegion(top=top_px, bottom=bottom_px, fallback=fallback)

    # ------------------------------------------------------------------
    # Sub-regions
    # ------------------------------------------------------------------

    def sub_region_box(self, bbox: Optional[BoundingBox], image_width: int, image_height: int) -> Optional[PixelBox]:
        """The raw pixel box of an option or figure region, clamped to the image."""
        if not self.is_usable(bbox):
            return None
        x1 = min(max(int(math.floor(bbox.x * image_width)), 0), image_width)
        y1 = min(max(int(math.floor(bbox.y * image_height)), 0), image_height)
        x2 = min(max(int(math.ceil(bbox.right * image_width)), 0), image_width)
        y2 = min(max(int(math.ceil(bbox.bottom * image_height)), 0), image_height)
        if x2 <= x1 or y2 <= y1:
            return None
        return PixelBox(x1, y1, x2, y2)

    def refine_sub_region(self, image: np.ndarray, bbox: Optional[BoundingBox]) -> Optional[PixelBox]:
        """
        Tighten a sub-region to the rectangle of its non-background pixels.

        Falls back to the raw box when no foreground is found or the tightened
        area is below the configured fraction of the raw area.
        """
        image_height, image_width = image.shape[:2]
        raw = self.sub_region_box(bbox, image_width, image_height)
        if raw is None:
            return None

        rect = content_bounding_rect(raw.crop_from_image(image), self.config.background_luminance)
        if rect is None:
            return raw

        x, y, w, h = rect
        if w * h < self.config.min_refined_area_ratio * raw.area:
            return raw
        return PixelBox.from_xywh(raw.x1 + x, raw.y1 + y, w, h)

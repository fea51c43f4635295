"""
Data model for the paper scanning pipeline.

Provides:
- BoundingBox (normalized page coordinates) and its tolerant parser
- ExtractionItem (raw oracle item) and ItemKind canonicalization
- NormalizedItem, PageAnalysisResult, ValidationResult
- Question (the committed output record) and QuestionAnalysis
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

logger = logging.getLogger(__name__)


# ============================================================================
# Geometry
# ============================================================================

def _to_float(value: Any) -> Optional[float]:
    """Parse a JSON number or numeric string. NaN and infinities parse to None."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


@dataclass
class BoundingBox:
    """Bounding box normalized to the page image, nominally in [0, 1]."""
    x: float
    y: float
    width: float
    height: float

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        """Smallest box enclosing both boxes."""
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return BoundingBox(x, y, max(self.right, other.right) - x, max(self.bottom, other.bottom) - y)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def parse(cls, value: Any) -> Optional['BoundingBox']:
        """
        Parse a bbox in object form {x, y, width, height} or array form [x, y, w, h].

        Missing width/height parse as 0 so the usability check rejects them later;
        anything without an x/y pair parses to None.
        """
        if isinstance(value, dict):
            x = _to_float(value.get("x"))
            y = _to_float(value.get("y"))
            width = _to_float(value.get("width", value.get("w")))
            height = _to_float(value.get("height", value.get("h")))
        elif isinstance(value, (list, tuple)) and len(value) == 4:
            x, y, width, height = (_to_float(v) for v in value)
        else:
            return None

        if x is None or y is None:
            return None
        return cls(x, y, width or 0.0, height or 0.0)


def union_full_width(a: Optional[BoundingBox], b: Optional[BoundingBox]) -> Optional[BoundingBox]:
    """
    Vertical union of two boxes spanning the full page width.

    y is the smaller top, bottom the larger bottom; a missing box yields the other.
    """
    if a is None and b is None:
        return None
    if a is None or b is None:
        box = a or b
        return BoundingBox(0.0, box.y, 1.0, box.height)
    top = min(a.y, b.y)
    bottom = max(a.bottom, b.bottom)
    return BoundingBox(0.0, top, 1.0, bottom - top)


def union_enclosing(a: Optional[BoundingBox], b: Optional[BoundingBox]) -> Optional[BoundingBox]:
    if a is None:
        return b
    if b is None:
        return a
    return a.union(b)


# ============================================================================
# Item Kinds
# ============================================================================

class ItemKind(Enum):
    """Canonical item kinds. FIGURE only exists while normalizing."""
    SECTION_HEADER = "SectionHeader"
    INSTRUCTION = "Instruction"
    STEM = "Stem"
    QUESTION = "Question"
    FIGURE = "FigureRef"

    @classmethod
    def from_label(cls, label: Optional[str]) -> 'ItemKind':
        """
        Map a free-form oracle type label to a canonical kind.

        Keyword matching is case-insensitive and tolerant of Chinese and
        English labels; empty or unrecognized labels are Questions.
        """
        text = (label or "").strip().lower()
        if not text:
            return cls.QUESTION

        if "板块" in text or "section" in text or "header" in text or "heading" in text:
            return cls.SECTION_HEADER
        if "分类" in text and "题干" not in text:
            return cls.SECTION_HEADER
        if "说明" in text or "instruction" in text or "direction" in text:
            return cls.INSTRUCTION
        if "题干" in text or "stem" in text or "问句" in text:
            return cls.STEM
        for keyword in ("figure", "diagram", "image", "图片", "插图", "配图", "图形"):
            if keyword in text:
                return cls.FIGURE
        return cls.QUESTION


# ============================================================================
# Oracle Items
# ============================================================================

def _parse_option_boxes(value: Any) -> Optional[Dict[str, BoundingBox]]:
    if not isinstance(value, dict):
        return None
    boxes = {}
    for label, raw in value.items():
        box = BoundingBox.parse(raw)
        if box is not None:
            boxes[str(label).strip()] = box
    return boxes or None


@dataclass
class ExtractionItem:
    """A raw item as reported by the extraction oracle."""
    type: str
    content: str
    subtype: Optional[str] = None
    bbox: Optional[BoundingBox] = None
    option_boxes: Optional[Dict[str, BoundingBox]] = None
    figure_box: Optional[BoundingBox] = None

    @property
    def kind(self) -> ItemKind:
        return ItemKind.from_label(self.type)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['ExtractionItem']:
        """Build an item from oracle JSON; returns None for entries without content."""
        if not isinstance(data, dict):
            return None

        item_type = str(data.get("type") or "")
        content = data.get("content")
        content = "" if content is None else str(content)
        subtype = data.get("subtype")
        subtype = str(subtype).strip() if subtype not in (None, "") else None

        if not content.strip() and ItemKind.from_label(item_type) != ItemKind.FIGURE:
            return None

        boxes = data.get("option_boxes", data.get("optionBoxes"))
        bbox = BoundingBox.parse(data.get("bbox"))
        figure_box = BoundingBox.parse(data.get("figure_bbox", data.get("figureBbox")))
        if ItemKind.from_label(item_type) == ItemKind.FIGURE and bbox is None:
            bbox, figure_box = figure_box, None

        return cls(
            type=item_type,
            content=content,
            subtype=subtype,
            bbox=bbox,
            option_boxes=_parse_option_boxes(boxes),
            figure_box=figure_box,
        )


@dataclass
class NormalizedItem:
    """An item after canonicalization and merging. Content is never empty."""
    kind: ItemKind
    content: str
    subtype: Optional[str] = None
    bbox: Optional[BoundingBox] = None
    option_boxes: Optional[Dict[str, BoundingBox]] = None
    figure_box: Optional[BoundingBox] = None

    @classmethod
    def from_extraction(cls, item: ExtractionItem) -> 'NormalizedItem':
        return cls(
            kind=item.kind,
            content=item.content,
            subtype=item.subtype,
            bbox=item.bbox,
            option_boxes=item.option_boxes,
            figure_box=item.figure_box,
        )

    def summary_line(self, max_chars: int = 400) -> str:
        """One entry of the validation summary: [kind]/subtype content-prefix."""
        sub = f"/{self.subtype}" if self.subtype else ""
        return f"[{self.kind.value}]{sub} {self.content[:max_chars]}"


# ============================================================================
# Oracle Results
# ============================================================================

def _coerce_score(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None:
        return None
    return int(round(number))


def _coerce_flag(value: Any, default: bool) -> bool:
    """Read a yes/no field that may arrive as a bool, number or string."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "no", "0", "")
    return bool(value)


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


@dataclass
class PageAnalysisResult:
    """The extraction oracle's answer for one photograph."""
    is_exam_or_homework: bool
    title: str = ""
    subject: str = ""
    grade: str = ""
    items: List[ExtractionItem] = field(default_factory=list)
    score: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageAnalysisResult':
        """
        Build a result from repaired oracle JSON.

        Accepts the legacy "questions": [str] form as plain Question items.
        An "items" or "questions" value that is not a list reads as empty.
        """
        items = []
        for raw in _as_list(data.get("items")):
            item = ExtractionItem.from_dict(raw)
            if item is not None:
                items.append(item)

        if not items:
            for text in _as_list(data.get("questions")):
                if isinstance(text, str) and text.strip():
                    items.append(ExtractionItem(type="Question", content=text))

        flag = data.get("is_homework_or_exam", data.get("isExamOrHomework"))

        return cls(
            is_exam_or_homework=_coerce_flag(flag, True),
            title=str(data.get("title") or ""),
            subject=str(data.get("subject") or ""),
            grade=str(data.get("grade") or ""),
            items=items,
            score=_coerce_score(data.get("score")),
        )


@dataclass
class ValidationResult:
    """Second-opinion quality judgment over a candidate's normalized items."""
    valid: bool
    score: Optional[int] = None
    issues: Optional[str] = None

    @property
    def effective_score(self) -> int:
        """A null score counts as zero."""
        return self.score if self.score is not None else 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationResult':
        issues = data.get("issues")
        if isinstance(issues, list):
            issues = "; ".join(str(i) for i in issues)
        return cls(
            valid=_coerce_flag(data.get("valid"), False),
            score=_coerce_score(data.get("score")),
            issues=str(issues) if issues not in (None, "") else None,
        )


@dataclass
class QuestionAnalysis:
    """Per-question explanation produced by the text model."""
    section: str = ""
    answer: str = ""
    explanation: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QuestionAnalysis':
        return cls(
            section=str(data.get("section") or ""),
            answer=str(data.get("answer") or ""),
            explanation=str(data.get("explanation") or ""),
        )


# ============================================================================
# Output Records
# ============================================================================

@dataclass
class Question:
    """A committed content block anchored to its crop files."""
    index: Optional[int]
    kind: ItemKind
    text: str
    subtype: Optional[str] = None
    is_wrong: bool = False
    crop_file: Optional[str] = None
    option_crop_files: Optional[Dict[str, str]] = None
    figure_crop_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind.value,
            "subtype": self.subtype,
            "text": self.text,
            "isWrong": self.is_wrong,
            "cropFile": self.crop_file,
            "optionCropFiles": self.option_crop_files,
            "figureCropFile": self.figure_crop_file,
        }


@dataclass
class PaperResult:
    """Outcome of processing all photographs of one paper."""
    title: str
    subject: str = ""
    grade: str = ""
    score: Optional[int] = None
    questions: List[Question] = field(default_factory=list)
    pages: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "subject": self.subject,
            "grade": self.grade,
            "score": self.score,
            "pages": self.pages,
            "questions": [q.to_dict() for q in self.questions],
        }

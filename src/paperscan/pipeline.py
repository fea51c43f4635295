"""
Pipeline coordinator for the paper scanning pipeline.

Provides:
- PaperPipeline: per-photograph orchestration (retry -> filter -> regions -> crops)
- Multi-photograph papers with continued question numbering
- PageOutcome / PaperResult output records

A photograph's questions are committed all-or-nothing: if anything fails once
crop files have started to be written, those files are removed and the error
propagates.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional, Dict, Any, Union, Iterable

import numpy as np

from .config import PipelineConfig, get_config
from .errors import NotAPaper, EmptyResult
from .heuristics import has_higher_order_marker
from .images import encode_jpeg, decode_image, crop_rows, crop_box, draw_debug_image
from .io import load_image, save_image_atomic, remove_files, ensure_dir
from .items import ItemKind, NormalizedItem, PaperResult, Question, QuestionAnalysis
from .normalizer import ItemNormalizer
from .oracles import PaperOracle
from .regions import RegionResolver, CropRegion
from .repair import clean_item_text
from .retry import RetryOrchestrator

logger = logging.getLogger(__name__)

ImageInput = Union[np.ndarray, bytes, str, Path]


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class PageOutcome:
    """Committed result of one photograph."""
    page_number: int
    title: str
    subject: str
    grade: str
    paper_score: Optional[int]
    validation_score: int
    questions: List[Question] = field(default_factory=list)

    @property
    def last_index(self) -> Optional[int]:
        indices = [q.index for q in self.questions if q.index is not None]
        return max(indices) if indices else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "title": self.title,
            "subject": self.subject,
            "grade": self.grade,
            "paper_score": self.paper_score,
            "validation_score": self.validation_score,
            "questions": [q.to_dict() for q in self.questions],
        }


def default_title(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"Homework {today.month}/{today.day}"


def filter_continuation_items(items: List[NormalizedItem]) -> List[NormalizedItem]:
    """Drop section headers re-guessed on later photos unless they name a later section."""
    kept = []
    for item in items:
        if item.kind == ItemKind.SECTION_HEADER and not has_higher_order_marker(item.content):
            logger.debug(f"Dropping repeated section header on continuation page: {item.content[:40]!r}")
            continue
        kept.append(item)
    return kept


# ============================================================================
# Pipeline
# ============================================================================

class PaperPipeline:
    """
    Turns photographs of graded papers into ordered, cropped question records.

    Usage:
        pipeline = PaperPipeline(create_oracle(provider), output_dir="crops")
        paper = await pipeline.process_paper([page1, page2])
    """

    def __init__(
        self,
        oracle: PaperOracle,
        output_dir: Union[str, Path],
        config: Optional[PipelineConfig] = None,
    ):
        self.oracle = oracle
        self.config = config or get_config()
        self.output_dir = ensure_dir(output_dir)

        self.normalizer = ItemNormalizer(self.config.normalizer)
        self.resolver = RegionResolver(self.config.region)
        self.retry = RetryOrchestrator(oracle, self.config.retry, self.normalizer)

    def _load(self, image: ImageInput) -> np.ndarray:
        if isinstance(image, np.ndarray):
            return image
        if isinstance(image, (bytes, bytearray)):
            return decode_image(bytes(image))
        return load_image(image)

    async def process_photo(
        self,
        image: ImageInput,
        page_number: int = 1,
        start_index: int = 0,
    ) -> Optional[PageOutcome]:
        """
        Process one photograph.

        Args:
            image: Page image (array, encoded bytes or file path)
            page_number: 1 for the first photo of a paper, 2+ for continuations
            start_index: Number of Question-kind items on earlier photos

        Returns:
            PageOutcome, or None when nothing was produced (not a paper, or no
            attempt yielded usable items)

        Raises:
            TransportError: If the first attempt's oracle call fails
            MalformedResponse: If the first attempt's answer cannot be parsed
        """
        pixels = self._load(image)
        image_bytes = encode_jpeg(pixels, quality=self.config.crop.jpeg_quality)

        try:
            candidate = await self.retry.run(image_bytes, page_number=page_number)
        except NotAPaper as e:
            logger.info(f"Page {page_number}: {e}")
            return None
        except EmptyResult as e:
            logger.warning(str(e))
            return None

        items = candidate.items
        if page_number > 1:
            items = filter_continuation_items(items)
        if not items:
            logger.warning(f"Page {page_number}: nothing left after filtering repeated headers")
            return None

        regions = self.resolver.resolve_all([item.bbox for item in items], pixels.shape[0])
        if self.config.debug_mode:
            self._save_debug_image(pixels, regions, items, page_number)

        questions = self._commit(pixels, items, regions, start_index)
        page = candidate.page
        logger.info(f"Page {page_number}: committed {len(questions)} blocks")

        return PageOutcome(
            page_number=page_number,
            title=page.title,
            subject=page.subject,
            grade=page.grade,
            paper_score=page.score,
            validation_score=candidate.score,
            questions=questions,
        )

    async def process_paper(self, images: Iterable[ImageInput]) -> Optional[PaperResult]:
        """
        Process every photograph of one paper in order.

        The first photo decides whether this is a paper at all; later photos
        continue its question numbering and are skipped when they yield nothing.

        Returns:
            PaperResult, or None if the first photo produced nothing
        """
        first = None
        questions: List[Question] = []
        next_index = 0
        pages = 0

        for page_number, image in enumerate(images, start=1):
            outcome = await self.process_photo(image, page_number=page_number, start_index=next_index)
            if outcome is None:
                if page_number == 1:
                    return None
                logger.warning(f"Page {page_number}: produced nothing, skipping")
                continue

            if first is None:
                first = outcome
            pages += 1
            questions.extend(outcome.questions)
            if outcome.last_index is not None:
                next_index = outcome.last_index

        if first is None:
            return None

        return PaperResult(
            title=first.title.strip() or default_title(),
            subject=first.subject,
            grade=first.grade,
            score=first.paper_score,
            questions=questions,
            pages=pages,
        )

    async def explain_question(self, question: Question, subject: str = "", grade: str = "") -> QuestionAnalysis:
        """Ask the text model for the answer and explanation of a committed question."""
        return await self.oracle.analyze_question(question.text, subject, grade)

    # ------------------------------------------------------------------
    # Crops
    # ------------------------------------------------------------------

    def _crop_path(self) -> Path:
        return self.output_dir / f"{self.config.crop.crop_prefix}-{uuid.uuid4()}.jpg"

    def _save_crop(self, crop: np.ndarray, written: List[Path]) -> str:
        path = self._crop_path()
        save_image_atomic(crop, path, quality=self.config.crop.jpeg_quality)
        written.append(path)
        return path.name

    def _save_sub_region(self, pixels: np.ndarray, bbox, written: List[Path]) -> Optional[str]:
        box = self.resolver.refine_sub_region(pixels, bbox)
        if box is None:
            return None
        return self._save_crop(crop_box(pixels, *box.to_xywh()), written)

    def _commit(
        self,
        pixels: np.ndarray,
        items: List[NormalizedItem],
        regions: List[CropRegion],
        start_index: int,
    ) -> List[Question]:
        written: List[Path] = []
        questions = []
        next_index = start_index

        try:
            for item, region in zip(items, regions):
                crop_file = self._save_crop(crop_rows(pixels, region.top, region.bottom), written)

                option_files = None
                if item.option_boxes:
                    option_files = {}
                    for label, box in item.option_boxes.items():
                        name = self._save_sub_region(pixels, box, written)
                        if name is not None:
                            option_files[label] = name
                    option_files = option_files or None

                figure_file = None
                if item.figure_box is not None:
                    figure_file = self._save_sub_region(pixels, item.figure_box, written)

                index = None
                if item.kind == ItemKind.QUESTION:
                    next_index += 1
                    index = next_index

                questions.append(Question(
                    index=index,
                    kind=item.kind,
                    text=clean_item_text(item.content),
                    subtype=item.subtype,
                    crop_file=crop_file,
                    option_crop_files=option_files,
                    figure_crop_file=figure_file,
                ))
        except BaseException:
            logger.warning(f"Aborting page commit, removing {len(written)} crop files")
            remove_files(written)
            raise

        return questions

    def _save_debug_image(self, pixels: np.ndarray, regions: List[CropRegion],
                          items: List[NormalizedItem], page_number: int):
        """Save the page with its resolved crop bands drawn on it."""
        debug_img = draw_debug_image(
            pixels,
            [(r.top, r.bottom) for r in regions],
            labels=[item.kind.value for item in items],
        )
        debug_path = self.output_dir / f"debug/page_{page_number:04d}_debug.jpg"
        save_image_atomic(debug_img, debug_path, quality=self.config.crop.jpeg_quality)
        logger.debug(f"Saved debug image: {debug_path}")

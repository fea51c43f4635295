"""
Best-of-N retry orchestration for one photograph.

Each attempt runs extract -> repair -> normalize -> validate. Attempts are
strictly sequential; the best candidate is folded with pick_best() and the
loop stops as soon as a candidate reaches the acceptance score.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .config import RetryConfig
from .errors import TransportError, MalformedResponse, NotAPaper, EmptyResult
from .heuristics import count_option_lines
from .items import ItemKind, NormalizedItem, PageAnalysisResult, ValidationResult
from .normalizer import ItemNormalizer
from .oracles import PaperOracle
from .prompts import RETRY_EMPHASIS_SUFFIX

logger = logging.getLogger(__name__)


@dataclass
class Candidate:
    """One attempt's normalized extraction and its validation score."""
    attempt: int
    page: PageAnalysisResult
    items: List[NormalizedItem]
    score: int
    validation: Optional[ValidationResult] = None


def pick_best(best: Optional[Candidate], candidate: Optional[Candidate]) -> Optional[Candidate]:
    """Keep the higher score; ties stay with the earlier candidate."""
    if candidate is None:
        return best
    if best is None or candidate.score > best.score:
        return candidate
    return best


def build_summary(items: List[NormalizedItem], max_chars: int = 400) -> str:
    """Plain-text summary of normalized items for the validation judge."""
    return "\n\n".join(item.summary_line(max_chars) for item in items)


def has_missing_option_text(items: List[NormalizedItem]) -> bool:
    """
    A question reports option regions but its text carries no option lines.

    This is the signature of the oracle seeing option graphics and dropping
    their text.
    """
    return any(
        item.kind == ItemKind.QUESTION and item.option_boxes and count_option_lines(item.content) == 0
        for item in items
    )


class RetryOrchestrator:
    """
    Runs up to max_attempts extraction attempts for one photograph.

    Usage:
        orchestrator = RetryOrchestrator(oracle)
        best = await orchestrator.run(image_bytes, page_number=1)
    """

    def __init__(
        self,
        oracle: PaperOracle,
        config: Optional[RetryConfig] = None,
        normalizer: Optional[ItemNormalizer] = None,
    ):
        self.oracle = oracle
        self.config = config or RetryConfig()
        self.normalizer = normalizer or ItemNormalizer()

    async def run(self, image_bytes: bytes, page_number: int = 1) -> Optional[Candidate]:
        """
        Run the attempts and return the best candidate.

        Args:
            image_bytes: Encoded photograph sent to the oracles
            page_number: 1 for the first photograph of a paper, 2+ for continuations

        Returns:
            The best candidate

        Raises:
            NotAPaper: If the first photograph's first attempt is judged not to be a paper
            EmptyResult: If no attempt produced usable items
            TransportError: If the first attempt's oracle call fails
            MalformedResponse: If the first attempt's answer cannot be parsed
        """
        best = None
        for attempt in range(self.config.max_attempts):
            candidate = await self._attempt(attempt, image_bytes, page_number)
            best = pick_best(best, candidate)
            if best is not None and best.score >= self.config.accept_score:
                logger.info(f"Page {page_number}: accepted attempt {best.attempt + 1} with score {best.score}")
                break

        if best is None:
            raise EmptyResult(f"Page {page_number}: no attempt produced usable items")
        if best.score < self.config.accept_score:
            logger.info(f"Page {page_number}: using best attempt {best.attempt + 1} with score {best.score}")
        return best

    async def _attempt(self, attempt: int, image_bytes: bytes, page_number: int) -> Optional[Candidate]:
        suffix = RETRY_EMPHASIS_SUFFIX if attempt > 0 else None

        try:
            page = await self.oracle.analyze_page(image_bytes, page_number=page_number, prompt_suffix=suffix)
        except (TransportError, MalformedResponse) as e:
            if attempt == 0:
                raise
            logger.warning(f"Page {page_number} attempt {attempt + 1}: extraction failed, discarding: {e}")
            return None

        items = self.normalizer.normalize(page.items)

        if not page.is_exam_or_homework:
            if page_number == 1 and attempt == 0:
                raise NotAPaper("The photo does not look like homework or an exam paper")
            if page_number == 1 or not items:
                logger.warning(f"Page {page_number} attempt {attempt + 1}: judged not a paper, discarding")
                return None
            logger.info(f"Page {page_number} attempt {attempt + 1}: judged not a paper, keeping {len(items)} items")

        if not items:
            logger.warning(f"Page {page_number} attempt {attempt + 1}: no items extracted, discarding")
            return None

        try:
            validation = await self.oracle.validate_page(
                image_bytes, build_summary(items, self.config.summary_chars)
            )
        except (TransportError, MalformedResponse) as e:
            if attempt == 0:
                raise
            logger.warning(f"Page {page_number} attempt {attempt + 1}: validation failed, discarding: {e}")
            return None

        score = validation.effective_score
        if has_missing_option_text(items):
            score = min(score, self.config.accept_score - 1)
            logger.info(f"Page {page_number} attempt {attempt + 1}: option regions without option text, "
                        f"score capped at {score}")

        logger.info(f"Page {page_number} attempt {attempt + 1}: {len(items)} items, score {score}"
                    + (f", issues: {validation.issues}" if validation.issues else ""))
        return Candidate(attempt=attempt, page=page, items=items, score=score, validation=validation)

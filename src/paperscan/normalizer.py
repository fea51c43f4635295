"""
Item normalization for the paper scanning pipeline.

Provides:
- Canonicalization of free-form oracle item types
- Ordered merge rules that repair fragment splitting
- Figure attachment to the stem or question they illustrate

The merge pass is a single greedy left-to-right scan. At each position the
rules are tried in a fixed order; the first that matches consumes one or more
items and emits exactly one merged item. Unmatched items pass through
unchanged, and merges never reorder content.
"""

import logging
from typing import List, Optional, Tuple, Callable

from .config import NormalizerConfig, FILL_IN_SUBTYPE
from .items import (
    ExtractionItem,
    NormalizedItem,
    ItemKind,
    union_full_width,
    union_enclosing,
)
from . import heuristics

logger = logging.getLogger(__name__)

FIGURE_PLACEHOLDER = "[figure]"

MergeResult = Optional[Tuple[NormalizedItem, int]]


# ============================================================================
# Helpers
# ============================================================================

def _kind_at(items: List[NormalizedItem], index: int) -> Optional[ItemKind]:
    if 0 <= index < len(items):
        return items[index].kind
    return None


def _merge(
    parts: List[NormalizedItem],
    subtype: Optional[str],
    config: NormalizerConfig,
    option_boxes=None,
    figure: Optional[NormalizedItem] = None,
) -> NormalizedItem:
    """Concatenate text-bearing parts into one Question spanning all their boxes."""
    content = config.merge_separator.join(p.content.strip() for p in parts)

    bbox = None
    figure_box = None
    for part in parts:
        bbox = union_full_width(bbox, part.bbox)
        figure_box = union_enclosing(figure_box, part.figure_box)
    if figure is not None:
        if figure.bbox is not None:
            bbox = union_full_width(bbox, figure.bbox)
        figure_box = union_enclosing(figure_box, figure.bbox)

    return NormalizedItem(
        kind=ItemKind.QUESTION,
        content=content,
        subtype=subtype,
        bbox=bbox,
        option_boxes=option_boxes,
        figure_box=figure_box,
    )


def _answer_part_ok(item: NormalizedItem) -> bool:
    """A following question can join its predecessor unless it opens a new number."""
    return item.kind == ItemKind.QUESTION and not heuristics.starts_new_numbering(item.content)


def _stem_only_question(item: NormalizedItem) -> bool:
    return item.kind == ItemKind.QUESTION and heuristics.looks_like_stem_only(item.content)


def _options_only_question(item: NormalizedItem) -> bool:
    return (
        item.kind == ItemKind.QUESTION
        and heuristics.looks_like_options_only(item.content)
        and not heuristics.starts_new_numbering(item.content)
    )


def _fill_in_compatible(item: NormalizedItem) -> bool:
    return item.subtype is None or heuristics.is_fill_in_subtype(item.subtype)


# ============================================================================
# Merge Rules
# ============================================================================

def merge_copy_paragraph(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Instruction asking to copy a passage + the passage -> one fill-in Question."""
    if _kind_at(items, i) != ItemKind.INSTRUCTION or _kind_at(items, i + 1) != ItemKind.STEM:
        return None
    cue, passage = items[i], items[i + 1]
    if not heuristics.looks_like_copy_instruction(cue.content):
        return None
    if heuristics.starts_new_numbering(passage.content):
        return None
    if not heuristics.looks_like_paragraph_to_copy(passage.content, config.paragraph_min_chars):
        return None
    return _merge([cue, passage], FILL_IN_SUBTYPE, config, option_boxes=passage.option_boxes), 2


def merge_fill_in_group(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Fill-in stem followed by one or more short blank-filling sub-items."""
    stem = items[i]
    if stem.kind not in (ItemKind.STEM, ItemKind.QUESTION) or not _fill_in_compatible(stem):
        return None
    if not heuristics.looks_like_fill_in_stem(stem.content, config.fill_in_stem_max_lines):
        return None
    if not heuristics.looks_like_stem_only(stem.content):
        return None

    j = i + 1
    while j < len(items):
        candidate = items[j]
        if candidate.kind != ItemKind.QUESTION or not _fill_in_compatible(candidate):
            break
        if not heuristics.looks_like_fill_in_sub_item(
            candidate.content, config.fill_in_max_chars, config.fill_in_max_lines
        ):
            break
        if heuristics.looks_like_options_only(candidate.content):
            break
        j += 1

    if j == i + 1:
        return None
    return _merge(items[i:j], FILL_IN_SUBTYPE, config), j - i


def merge_stem_figure_question(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Stem + figure + answer question -> one Question with a figure box."""
    if _kind_at(items, i) != ItemKind.STEM or _kind_at(items, i + 1) != ItemKind.FIGURE:
        return None
    if i + 2 >= len(items) or not _answer_part_ok(items[i + 2]):
        return None
    stem, figure, question = items[i], items[i + 1], items[i + 2]
    merged = _merge(
        [stem, question],
        question.subtype or stem.subtype,
        config,
        option_boxes=question.option_boxes or stem.option_boxes,
        figure=figure,
    )
    return merged, 3


def merge_split_question_with_figure(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Stem-only question + figure + options-only question -> one Question."""
    if not _stem_only_question(items[i]) or _kind_at(items, i + 1) != ItemKind.FIGURE:
        return None
    if i + 2 >= len(items) or not _options_only_question(items[i + 2]):
        return None
    stem, figure, options = items[i], items[i + 1], items[i + 2]
    merged = _merge(
        [stem, options],
        options.subtype,
        config,
        option_boxes=options.option_boxes,
        figure=figure,
    )
    return merged, 3


def merge_stem_question(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Stem + the question that answers it -> one Question."""
    if _kind_at(items, i) != ItemKind.STEM or i + 1 >= len(items):
        return None
    if not _answer_part_ok(items[i + 1]):
        return None
    stem, question = items[i], items[i + 1]
    merged = _merge(
        [stem, question],
        question.subtype or stem.subtype,
        config,
        option_boxes=question.option_boxes or stem.option_boxes,
    )
    return merged, 2


def merge_split_question(items: List[NormalizedItem], i: int, config: NormalizerConfig) -> MergeResult:
    """Stem-only question + options-only question -> one Question."""
    if not _stem_only_question(items[i]) or i + 1 >= len(items):
        return None
    if not _options_only_question(items[i + 1]):
        return None
    stem, options = items[i], items[i + 1]
    return _merge([stem, options], options.subtype, config, option_boxes=options.option_boxes), 2


MERGE_RULES: List[Callable[[List[NormalizedItem], int, NormalizerConfig], MergeResult]] = [
    merge_copy_paragraph,
    merge_fill_in_group,
    merge_stem_figure_question,
    merge_split_question_with_figure,
    merge_stem_question,
    merge_split_question,
]


# ============================================================================
# Normalizer
# ============================================================================

class ItemNormalizer:
    """
    Canonicalizes and merges oracle items.

    Usage:
        normalizer = ItemNormalizer()
        items = normalizer.normalize(page.items)
    """

    def __init__(self, config: Optional[NormalizerConfig] = None):
        self.config = config or NormalizerConfig()

    def canonicalize(self, items: List[ExtractionItem]) -> List[NormalizedItem]:
        return [NormalizedItem.from_extraction(item) for item in items]

    def normalize(self, items: List[ExtractionItem]) -> List[NormalizedItem]:
        """
        Canonicalize item kinds and apply the merge rules.

        Args:
            items: Raw oracle items in reported reading order

        Returns:
            Normalized items; no FigureRef survives and no content is empty
        """
        canonical = self.canonicalize(items)
        result = self.merge(canonical)
        logger.debug(f"Normalized {len(items)} items into {len(result)}")
        return result

    def merge(self, items: List[NormalizedItem]) -> List[NormalizedItem]:
        result: List[NormalizedItem] = []
        pending_figures: List[NormalizedItem] = []

        i = 0
        while i < len(items):
            merged = None
            for rule in MERGE_RULES:
                merged = rule(items, i, self.config)
                if merged is not None:
                    logger.debug(f"Rule {rule.__name__} merged items {i}..{i + merged[1] - 1}")
                    break

            if merged is not None:
                item, consumed = merged
                i += consumed
            elif items[i].kind == ItemKind.FIGURE:
                # Attach to the preceding stem or question, else hold for the next one
                figure = items[i]
                i += 1
                if result and result[-1].kind in (ItemKind.STEM, ItemKind.QUESTION):
                    self._attach_figure(result[-1], figure)
                else:
                    pending_figures.append(figure)
                continue
            else:
                item = items[i]
                i += 1

            if pending_figures and item.kind in (ItemKind.STEM, ItemKind.QUESTION):
                for figure in pending_figures:
                    self._attach_figure(item, figure)
                pending_figures = []
            result.append(item)

        for figure in pending_figures:
            logger.warning("Figure with no stem or question to attach to; keeping it as a question")
            result.append(self._standalone_figure(figure))

        return result

    def _attach_figure(self, host: NormalizedItem, figure: NormalizedItem):
        if figure.bbox is None:
            return
        host.figure_box = union_enclosing(host.figure_box, figure.bbox)
        if host.bbox is not None:
            host.bbox = union_full_width(host.bbox, figure.bbox)

    def _standalone_figure(self, figure: NormalizedItem) -> NormalizedItem:
        content = figure.content.strip() or FIGURE_PLACEHOLDER
        return NormalizedItem(
            kind=ItemKind.QUESTION,
            content=content,
            subtype=figure.subtype,
            bbox=figure.bbox,
            figure_box=figure.bbox,
        )


def normalize_items(
    items: List[ExtractionItem],
    config: Optional[NormalizerConfig] = None
) -> List[NormalizedItem]:
    """Convenience wrapper around ItemNormalizer.normalize."""
    return ItemNormalizer(config).normalize(items)

"""
Tests for item canonicalization and the merge rules.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fakes import make_item


class TestItemKind:
    """Test free-form type label canonicalization."""

    @pytest.mark.parametrize("label,expected", [
        ("SectionHeader", "SectionHeader"),
        ("板块标题", "SectionHeader"),
        ("题目分类", "SectionHeader"),
        ("Instruction", "Instruction"),
        ("说明", "Instruction"),
        ("Stem", "Stem"),
        ("题干", "Stem"),
        ("分类题干", "Stem"),
        ("Figure", "FigureRef"),
        ("配图", "FigureRef"),
        ("Question", "Question"),
        ("", "Question"),
        (None, "Question"),
        ("something else", "Question"),
    ])
    def test_from_label(self, label, expected):
        from paperscan.items import ItemKind

        assert ItemKind.from_label(label).value == expected


class TestBasicMerges:
    """Test the stem and split-question rules."""

    def test_stem_question_merge(self):
        """Stem + options question become one full-width Question."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("Stem", "Which is correct?", (0.1, 0.2, 0.8, 0.05)),
            make_item("Question", "A. 1\nB. 2", (0.1, 0.26, 0.8, 0.1), subtype="choice"),
        ]
        result = normalize_items(items)

        assert len(result) == 1
        merged = result[0]
        assert merged.kind == ItemKind.QUESTION
        assert merged.content == "Which is correct?\n\nA. 1\nB. 2"
        assert merged.subtype == "choice"
        assert merged.bbox.x == 0.0
        assert merged.bbox.width == 1.0
        assert merged.bbox.y == pytest.approx(0.2)
        assert merged.bbox.height == pytest.approx(0.16)

    def test_numbered_question_not_merged_into_stem(self):
        """A question opening a new number stays separate from the preceding stem."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("Stem", "Look at the table below.", (0.1, 0.1, 0.8, 0.05)),
            make_item("Question", "3. How many apples are left?", (0.1, 0.2, 0.8, 0.05)),
        ]
        result = normalize_items(items)

        assert [r.kind for r in result] == [ItemKind.STEM, ItemKind.QUESTION]
        assert result[1].content == "3. How many apples are left?"

    def test_split_question(self):
        """Stem-only question followed by options-only question."""
        from paperscan.normalizer import normalize_items

        items = [
            make_item("Question", "1. Which is bigger?", (0.1, 0.1, 0.8, 0.04)),
            make_item("Question", "A. 3\nB. 5", (0.1, 0.15, 0.8, 0.05), subtype="choice"),
        ]
        result = normalize_items(items)

        assert len(result) == 1
        assert result[0].content == "1. Which is bigger?\n\nA. 3\nB. 5"
        assert result[0].subtype == "choice"

    def test_split_question_keeps_option_boxes(self):
        from paperscan.normalizer import normalize_items
        from paperscan.items import BoundingBox

        boxes = {"A": BoundingBox(0.1, 0.15, 0.2, 0.05), "B": BoundingBox(0.4, 0.15, 0.2, 0.05)}
        items = [
            make_item("Question", "1. Which shape is a circle?", (0.1, 0.1, 0.8, 0.04)),
            make_item("Question", "A. first\nB. second", (0.1, 0.15, 0.8, 0.05), option_boxes=boxes),
        ]
        result = normalize_items(items)

        assert result[0].option_boxes == boxes

    def test_unmerged_items_pass_through(self):
        """Headers, instructions and complete questions are untouched."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("SectionHeader", "I. Choice", (0.1, 0.05, 0.8, 0.03)),
            make_item("Instruction", "Choose the right answer.", (0.1, 0.09, 0.8, 0.03)),
            make_item("Question", "1. 2 + 2 = ?\nA. 3\nB. 4", (0.1, 0.13, 0.8, 0.1)),
        ]
        result = normalize_items(items)

        assert [r.kind for r in result] == [ItemKind.SECTION_HEADER, ItemKind.INSTRUCTION, ItemKind.QUESTION]
        assert [r.content for r in result] == [i.content for i in items]
        assert result[2].bbox == items[2].bbox

    def test_order_preserved(self):
        """Merging never reorders content."""
        from paperscan.normalizer import normalize_items

        items = [
            make_item("Question", "1. First?\nA. a\nB. b", (0.1, 0.1, 0.8, 0.1)),
            make_item("Stem", "Read the sentence.", (0.1, 0.25, 0.8, 0.04)),
            make_item("Question", "A. yes\nB. no", (0.1, 0.3, 0.8, 0.05)),
            make_item("Question", "3. Third?", (0.1, 0.4, 0.8, 0.05)),
        ]
        result = normalize_items(items)

        assert [r.content.split("\n")[0] for r in result] == ["1. First?", "Read the sentence.", "3. Third?"]


class TestFillInGroups:
    """Test fill-in stem grouping."""

    def test_fill_in_group_merge(self):
        """A fill-in stem absorbs its short sub-items up to the next numbered question."""
        from paperscan.normalizer import normalize_items
        from paperscan.config import FILL_IN_SUBTYPE

        items = [
            make_item("Stem", '在（）里填上">"、"<"或"="。', (0.1, 0.1, 0.8, 0.04)),
            make_item("Question", "80ml（ ）8L", (0.1, 0.15, 0.3, 0.04)),
            make_item("Question", "3km（ ）300m", (0.5, 0.15, 0.3, 0.04)),
            make_item("Question", "2. 计算 3 + 4", (0.1, 0.25, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert result[0].subtype == FILL_IN_SUBTYPE
        assert result[0].content == '在（）里填上">"、"<"或"="。\n\n80ml（ ）8L\n\n3km（ ）300m'
        assert result[0].bbox.y == pytest.approx(0.1)
        assert result[0].bbox.bottom == pytest.approx(0.19)
        assert result[1].content == "2. 计算 3 + 4"

    def test_fill_in_stem_without_sub_items(self):
        """A fill-in stem with no following sub-items is left alone."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("Question", "Fill in the blanks.", (0.1, 0.1, 0.8, 0.04)),
            make_item("SectionHeader", "II. Calculation", (0.1, 0.2, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert [r.kind for r in result] == [ItemKind.QUESTION, ItemKind.SECTION_HEADER]
        assert result[0].subtype is None

    def test_options_stop_fill_in_group(self):
        """Options-only items belong to a choice question, not the fill-in group."""
        from paperscan.normalizer import normalize_items

        items = [
            make_item("Question", "Fill in > or <.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Question", "3 ( ) 5", (0.1, 0.15, 0.8, 0.04)),
            make_item("Question", "A. >\nB. <", (0.1, 0.2, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert result[0].content == "Fill in > or <.\n\n3 ( ) 5"
        assert result[1].content == "A. >\nB. <"

    def test_choice_subtype_not_absorbed(self):
        from paperscan.normalizer import normalize_items

        items = [
            make_item("Stem", "Fill in the blanks.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Question", "3 ( ) 5", (0.1, 0.15, 0.8, 0.04), subtype="choice"),
        ]
        result = normalize_items(items)

        # Falls through to the stem + question rule instead
        assert len(result) == 1
        assert result[0].subtype == "choice"

    def test_copy_paragraph(self):
        """Copy instruction + passage become one fill-in Question."""
        from paperscan.normalizer import normalize_items
        from paperscan.config import FILL_IN_SUBTYPE
        from paperscan.items import ItemKind

        passage = "The river ran quietly past the old mill, and the children played on its banks."
        items = [
            make_item("Instruction", "Copy the following passage neatly.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Stem", passage, (0.1, 0.15, 0.8, 0.1)),
        ]
        result = normalize_items(items)

        assert len(result) == 1
        assert result[0].kind == ItemKind.QUESTION
        assert result[0].subtype == FILL_IN_SUBTYPE
        assert result[0].content.endswith(passage)


class TestNumberingGuard:
    """An item opening a new number is never merged into what precedes it."""

    @pytest.mark.parametrize("leading,numbered", [
        # copy instruction + passage
        ([("Instruction", "Copy the following passage neatly.")],
         ("Stem", "2. The sun rises in the east and sets in the west every day.")),
        # fill-in stem + sub-item
        ([("Stem", "Fill in > or <.")], ("Question", "2. 3 ( ) 5")),
        # stem + figure + question
        ([("Stem", "Look at the picture."), ("Figure", "")], ("Question", "2. How many birds are there?")),
        # split question around a figure
        ([("Question", "1. Which part is shaded?"), ("Figure", "")], ("Question", "2. Pick one.\nA. half\nB. a third")),
        # stem + question
        ([("Stem", "Look at the table below.")], ("Question", "3. How many apples are left?")),
        # split question
        ([("Question", "1. Which is bigger?")], ("Question", "2. Pick one.\nA. 3\nB. 5")),
    ])
    def test_numbered_item_stays_separate(self, leading, numbered):
        from paperscan.normalizer import normalize_items

        specs = leading + [numbered]
        items = [
            make_item(type_, content, (0.1, 0.1 + 0.1 * n, 0.8, 0.05))
            for n, (type_, content) in enumerate(specs)
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert result[-1].content == numbered[1]


class TestFigures:
    """Test figure merging and attachment."""

    def test_stem_figure_question(self):
        """Stem + figure + question become one Question carrying the figure box."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import BoundingBox

        items = [
            make_item("Stem", "Look at the picture.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Figure", "", (0.3, 0.15, 0.4, 0.2)),
            make_item("Question", "How many birds are there?", (0.1, 0.36, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert len(result) == 1
        assert result[0].content == "Look at the picture.\n\nHow many birds are there?"
        assert result[0].figure_box == BoundingBox(0.3, 0.15, 0.4, 0.2)
        assert result[0].bbox.y == pytest.approx(0.1)
        assert result[0].bbox.bottom == pytest.approx(0.4)

    def test_split_question_with_figure(self):
        from paperscan.normalizer import normalize_items

        items = [
            make_item("Question", "1. Which part is shaded?", (0.1, 0.1, 0.8, 0.04)),
            make_item("Figure", "", (0.3, 0.15, 0.4, 0.2)),
            make_item("Question", "A. half\nB. a third", (0.1, 0.36, 0.8, 0.05)),
        ]
        result = normalize_items(items)

        assert len(result) == 1
        assert result[0].content == "1. Which part is shaded?\n\nA. half\nB. a third"
        assert result[0].figure_box is not None

    def test_figure_attaches_to_preceding_question(self):
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("Question", "1. Count the stars.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Figure", "", (0.2, 0.15, 0.3, 0.1)),
            make_item("Question", "2. Next one.", (0.1, 0.3, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert all(r.kind == ItemKind.QUESTION for r in result)
        assert result[0].figure_box is not None
        assert result[0].bbox.bottom == pytest.approx(0.25)
        assert result[1].figure_box is None

    def test_leading_figure_attaches_to_next_question(self):
        from paperscan.normalizer import normalize_items

        items = [
            make_item("SectionHeader", "I. Pictures", (0.1, 0.05, 0.8, 0.03)),
            make_item("Figure", "", (0.2, 0.1, 0.3, 0.1)),
            make_item("Question", "1. What is shown above?", (0.1, 0.22, 0.8, 0.04)),
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert result[1].figure_box is not None
        assert result[1].bbox.y == pytest.approx(0.1)

    def test_orphan_figure_becomes_question(self):
        """A figure with nothing to attach to is kept as a placeholder Question."""
        from paperscan.normalizer import normalize_items, FIGURE_PLACEHOLDER
        from paperscan.items import ItemKind

        items = [
            make_item("SectionHeader", "I. Pictures", (0.1, 0.05, 0.8, 0.03)),
            make_item("Figure", "", (0.2, 0.1, 0.3, 0.1)),
        ]
        result = normalize_items(items)

        assert len(result) == 2
        assert result[1].kind == ItemKind.QUESTION
        assert result[1].content == FIGURE_PLACEHOLDER

    def test_no_figure_or_empty_content_survives(self):
        """Normalized output never contains FigureRef items or empty content."""
        from paperscan.normalizer import normalize_items
        from paperscan.items import ItemKind

        items = [
            make_item("Figure", "", (0.2, 0.02, 0.3, 0.05)),
            make_item("Stem", "Look.", (0.1, 0.1, 0.8, 0.04)),
            make_item("Figure", "", (0.2, 0.15, 0.3, 0.1)),
            make_item("Figure", "", (0.2, 0.3, 0.3, 0.1)),
            make_item("Question", "A. 1\nB. 2", (0.1, 0.45, 0.8, 0.05)),
            make_item("Figure", "", (0.2, 0.6, 0.3, 0.1)),
        ]
        result = normalize_items(items)

        assert all(r.kind != ItemKind.FIGURE for r in result)
        assert all(r.content.strip() for r in result)


class TestExtractionItemParsing:
    """Test oracle item parsing feeding the normalizer."""

    def test_from_dict_variants(self):
        from paperscan.items import ExtractionItem

        item = ExtractionItem.from_dict({
            "type": "Question",
            "content": "A. 1\nB. 2",
            "bbox": [0.1, 0.2, 0.8, 0.1],
            "optionBoxes": {"A": {"x": 0.1, "y": 0.2, "w": 0.2, "h": 0.05}, "B": "bad"},
        })

        assert item.bbox.height == 0.1
        assert list(item.option_boxes) == ["A"]
        assert item.option_boxes["A"].width == 0.2

    def test_from_dict_drops_empty_content(self):
        from paperscan.items import ExtractionItem

        assert ExtractionItem.from_dict({"type": "Question", "content": "  "}) is None
        assert ExtractionItem.from_dict({"type": "Figure", "content": "", "bbox": [0, 0, 1, 1]}) is not None

    def test_figure_bbox_used_when_bbox_missing(self):
        from paperscan.items import ExtractionItem, BoundingBox

        item = ExtractionItem.from_dict({"type": "Figure", "figure_bbox": {"x": 0.2, "y": 0.3, "width": 0.1, "height": 0.1}})

        assert item.bbox == BoundingBox(0.2, 0.3, 0.1, 0.1)
        assert item.figure_box is None

    def test_bbox_missing_size_parses_as_zero(self):
        from paperscan.items import BoundingBox

        box = BoundingBox.parse({"x": 0, "y": "0.95"})

        assert box == BoundingBox(0.0, 0.95, 0.0, 0.0)
        assert BoundingBox.parse({"y": 0.5}) is None
        assert BoundingBox.parse("0.1,0.2") is None

    def test_page_result_legacy_questions(self):
        from paperscan.items import PageAnalysisResult

        page = PageAnalysisResult.from_dict({"isExamOrHomework": "true", "questions": ["1. a", "", "2. b"], "score": "86.4"})

        assert page.is_exam_or_homework
        assert [i.content for i in page.items] == ["1. a", "2. b"]
        assert page.score == 86

    def test_page_result_not_exam_flag(self):
        from paperscan.items import PageAnalysisResult

        page = PageAnalysisResult.from_dict({"is_homework_or_exam": "false", "items": []})

        assert not page.is_exam_or_homework
        assert page.items == []

    @pytest.mark.parametrize("score", [float("nan"), "nan", float("inf"), "-Infinity", "1e400", True])
    def test_non_finite_score_is_null(self, score):
        from paperscan.items import PageAnalysisResult, ValidationResult

        assert PageAnalysisResult.from_dict({"items": [], "score": score}).score is None
        assert ValidationResult.from_dict({"valid": True, "score": score}).score is None

    def test_non_finite_bbox_is_dropped(self):
        from paperscan.items import BoundingBox

        assert BoundingBox.parse({"x": float("nan"), "y": 0.2, "width": 0.5, "height": 0.1}) is None
        assert BoundingBox.parse([0.1, 0.2, "inf", 0.1]) == BoundingBox(0.1, 0.2, 0.0, 0.1)

    @pytest.mark.parametrize("items", [5, "1. a", {"type": "Question", "content": "1. a"}, None])
    def test_non_list_items_read_as_empty(self, items):
        from paperscan.items import PageAnalysisResult

        page = PageAnalysisResult.from_dict({"is_homework_or_exam": True, "items": items, "questions": 7})

        assert page.is_exam_or_homework
        assert page.items == []

    @pytest.mark.parametrize("flag,expected", [
        ("false", False), ("No", False), ("0", False), (0, False), (False, False),
        ("true", True), ("yes", True), (1, True), (True, True), (None, False),
    ])
    def test_validation_flag_coercion(self, flag, expected):
        from paperscan.items import ValidationResult

        assert ValidationResult.from_dict({"valid": flag, "score": 70}).valid is expected

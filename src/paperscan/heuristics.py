"""
Content heuristics used by the item normalizer and the pipeline.

Every function here is a pure predicate over item text. They are the most
heavily tuned part of the pipeline, so each one is tested on its own.
"""

import re
from typing import List

# A line that opens with an option letter: "A.", "B、", "c)", "Ｄ．"; never "e.g."
OPTION_LINE_PATTERN = re.compile(r'^\s*(?:[A-H]|[a-d]|[Ａ-Ｄ])[\.、\)．）]')

# "12." / "3．" / "7、" at the very start of the first non-blank line
NEW_NUMBERING_PATTERN = re.compile(r'^\d+[\.．、]')

# "II." / "三、" style markers for higher-order sections on continuation pages
HIGHER_ORDER_MARKER_PATTERN = re.compile(
    r'(?<![A-Za-z])(?:II|III|IV|V|VI|VII|VIII|IX|X)\s*[\.、．]'
    r'|[二三四五六七八九十]\s*[\.、．]'
)

FILL_IN_CUES = ("填上", "里填", "fill in", "fill the", "fill each")
FILL_IN_TERMINALS = ("。", "」", "=", ".", "：", ":")

FILL_IN_SUBTYPE_LABELS = ("fill-in", "fill in", "fill_in", "填空", "blank")

PARAGRAPH_TERMINALS = ("。", "」", ".", '"', "”")

GRID_PLACEHOLDERS = ("田字格", "米字格", "九宫格")


def non_blank_lines(content: str) -> List[str]:
    return [line for line in content.splitlines() if line.strip()]


def is_option_line(line: str) -> bool:
    """True when the line opens with an option letter and separator."""
    return bool(OPTION_LINE_PATTERN.match(line))


def count_option_lines(content: str) -> int:
    return sum(1 for line in content.splitlines() if is_option_line(line))


def looks_like_stem_only(content: str) -> bool:
    """No line carries an option letter."""
    return count_option_lines(content) == 0


def looks_like_options_only(content: str) -> bool:
    """At least two lines carry option letters."""
    return count_option_lines(content) >= 2


def starts_new_numbering(content: str) -> bool:
    """The first non-blank line begins with digits followed by '.', '．' or '、'."""
    lines = non_blank_lines(content)
    if not lines:
        return False
    return bool(NEW_NUMBERING_PATTERN.match(lines[0].strip()))


def looks_like_fill_in_stem(content: str, max_lines: int = 3) -> bool:
    """
    Check for the shared instruction heading a group of fill-in sub-items.

    e.g. '在（）里填上">"、"<"或"="。' or 'Fill in > < ='

    Args:
        content: Item text
        max_lines: Maximum number of non-blank lines

    Returns:
        True if the text carries a fill-in cue, is short and ends in terminal punctuation
    """
    text = content.strip()
    if not text:
        return False
    lowered = text.lower()
    if not any(cue in lowered for cue in FILL_IN_CUES):
        return False
    if len(non_blank_lines(text)) > max_lines:
        return False
    return text.endswith(FILL_IN_TERMINALS)


def looks_like_fill_in_sub_item(content: str, max_chars: int = 120, max_lines: int = 2) -> bool:
    """Short blank-filling line such as '80ml < 8L' that is not a new numbered question."""
    text = content.strip()
    if not text or len(text) > max_chars:
        return False
    if starts_new_numbering(text):
        return False
    return len(non_blank_lines(text)) <= max_lines


def looks_like_copy_instruction(content: str) -> bool:
    """An instruction asking the student to copy out the passage that follows."""
    text = content.strip()
    if not text:
        return False
    if "抄写" in text and "下面" in text:
        return True
    if "书写" in text and "工整" in text:
        return True
    lowered = text.lower()
    return "copy" in lowered and ("following" in lowered or "below" in lowered or "neatly" in lowered)


def looks_like_paragraph_to_copy(content: str, min_chars: int = 20) -> bool:
    """A long narrative passage: no question mark, no option lines, ends a sentence."""
    text = content.strip()
    if len(text) < min_chars:
        return False
    if "?" in text or "？" in text:
        return False
    if looks_like_options_only(text):
        return False
    return text.endswith(PARAGRAPH_TERMINALS)


def has_higher_order_marker(content: str) -> bool:
    """Whether a section header names a section beyond the first (II., 二、 ...)."""
    return bool(HIGHER_ORDER_MARKER_PATTERN.search(content))


def is_fill_in_subtype(subtype) -> bool:
    if not subtype:
        return False
    lowered = str(subtype).strip().lower()
    return any(label in lowered for label in FILL_IN_SUBTYPE_LABELS)

"""
Response repair for the paper scanning pipeline.

Provides:
- JSON salvage from free-form model text (code fences, prose, broken escapes,
  raw newlines in strings, stray quotes, missing and trailing commas,
  duplicated keys)
- Cleanup of item text whose LaTeX commands were decoded as control characters

Brace matching and the string-level fixes share one character state machine
(out-of-string, in-string, escape-pending) so every step agrees on what is
inside a string literal.
"""

import json
import logging
import re
from typing import Iterator, List, Optional, Tuple, Dict, Any

from .config import RepairConfig
from .errors import MalformedResponse
from .heuristics import GRID_PLACEHOLDERS

logger = logging.getLogger(__name__)


# ============================================================================
# Character Roles
# ============================================================================

CODE = "code"              # outside any string literal
OPEN = "open"              # quote that opens a string
CLOSE = "close"            # quote that closes a string
STRING = "string"          # ordinary character inside a string
ESCAPE = "escape"          # backslash starting a valid escape
ESCAPED = "escaped"        # character following a valid escape backslash
BAD_ESCAPE = "bad_escape"  # backslash not starting a valid escape
REOPEN = "reopen"          # in-string quote that actually opens the next key
BREAK = "break"            # raw newline ending an unterminated value before the next key
STRAY = "stray"            # dangling quote right after a bare number

SIMPLE_ESCAPES = '"\\/bfnrt'
HEX_4 = re.compile(r'[0-9a-fA-F]{4}')
STRAY_TAIL = re.compile(r'[ \t]*(?:[,}\]]|\r?\n|$)')
TRAILING_COMMA_TAIL = re.compile(r'\s*[}\]]')
FENCE_LINE = re.compile(r'^[ \t]*```[A-Za-z0-9_-]*[ \t]*$', re.MULTILINE)
SHORT_CONTROL_ESCAPES = {'\n': 'n', '\r': 'r', '\t': 't', '\b': 'b', '\f': 'f'}

# LaTeX commands that reached the item text as control characters
DECODED_LATEX = (
    ("\x0crac", "\\frac"),
    ("\x0corall", "\\forall"),
    ("\x08egin", "\\begin"),
    ("\x08eta", "\\beta"),
    ("\times", "\\times"),
    ("\theta", "\\theta"),
    ("\text", "\\text"),
    ("\triangle", "\\triangle"),
    ("\tan", "\\tan"),
    ("\rightarrow", "\\rightarrow"),
)


class JsonRepairer:
    """
    Salvages one JSON object from model output.

    Usage:
        repairer = JsonRepairer()
        text = repairer.repair(raw_response)
    """

    def __init__(self, config: Optional[RepairConfig] = None):
        self.config = config or RepairConfig()

        keys = "|".join(re.escape(k) for k in self.config.known_keys)
        self._key_ahead = re.compile(r'(?:' + keys + r')"\s*:')
        self._newline_key_ahead = re.compile(r'[ \t\r]*"(?:' + keys + r')"\s*:')

        commands = sorted(self.config.latex_commands, key=len, reverse=True)
        self._latex = re.compile(r'(?:' + "|".join(re.escape(c) for c in commands) + r')(?![A-Za-z])')

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _walk(self, text: str, start: int = 0) -> Iterator[Tuple[int, str, str]]:
        """Yield (index, char, role) for every character from start."""
        in_string = False
        escape_pending = False
        last_sig = ""

        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escape_pending:
                    escape_pending = False
                    yield i, ch, ESCAPED
                elif ch == "\\":
                    if self._valid_escape_at(text, i):
                        escape_pending = True
                        yield i, ch, ESCAPE
                    else:
                        yield i, ch, BAD_ESCAPE
                elif ch == '"':
                    if self._key_ahead.match(text, i + 1):
                        yield i, ch, REOPEN
                    else:
                        in_string = False
                        last_sig = '"'
                        yield i, ch, CLOSE
                elif ch == "\n" and self._newline_key_ahead.match(text, i + 1):
                    in_string = False
                    last_sig = ","
                    yield i, ch, BREAK
                else:
                    yield i, ch, STRING
            elif ch == '"':
                if last_sig.isdigit() and STRAY_TAIL.match(text, i + 1):
                    yield i, ch, STRAY
                else:
                    in_string = True
                    yield i, ch, OPEN
            else:
                if not ch.isspace():
                    last_sig = ch
                yield i, ch, CODE

    @staticmethod
    def _valid_escape_at(text: str, i: int) -> bool:
        if i + 1 >= len(text):
            return False
        nxt = text[i + 1]
        if nxt in SIMPLE_ESCAPES:
            return True
        return nxt == "u" and bool(HEX_4.fullmatch(text[i + 2:i + 6]))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def strip_fences(self, text: str) -> str:
        text = text.strip()
        text = re.sub(r'^```[A-Za-z0-9_-]*', '', text)
        text = re.sub(r'```$', '', text)
        return FENCE_LINE.sub('', text).strip()

    def extract_object(self, text: str) -> str:
        """First balanced {...}; the unbalanced tail or the whole text as fallback."""
        start = text.find("{")
        if start < 0:
            return text.strip()

        depth = 0
        for i, ch, role in self._walk(text, start):
            if role != CODE:
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        return text[start:]

    def fix_latex(self, text: str) -> str:
        """Double the backslash of LaTeX commands that read as control escapes."""
        out = []
        for i, ch, role in self._walk(text):
            if role == ESCAPE and self._latex.match(text, i + 1):
                out.append("\\\\")
            else:
                out.append(ch)
        return "".join(out)

    def fix_invalid_escapes(self, text: str) -> str:
        return "".join("\\\\" if role == BAD_ESCAPE else ch for _, ch, role in self._walk(text))

    def escape_control_chars(self, text: str) -> str:
        """Escape raw control characters inside string literals."""
        out = []
        for i, ch, role in self._walk(text):
            if role != STRING or ord(ch) >= 0x20:
                out.append(ch)
                continue
            if ch == "\r" and text[i + 1:i + 2] == "\n":
                continue
            if ch == "\r":
                ch = "\n"
            short = SHORT_CONTROL_ESCAPES.get(ch)
            if short and not self._latex.match(short + text[i + 1:i + 24]):
                out.append("\\" + short)
            else:
                out.append(f"\\u{ord(ch):04x}")
        return "".join(out)

    def remove_stray_quotes(self, text: str) -> str:
        return "".join(ch for _, ch, role in self._walk(text) if role != STRAY)

    def insert_missing_separators(self, text: str) -> str:
        """Close values that ran into the next key and add commas between values."""
        out: List[str] = []
        last_sig = ""
        for _, ch, role in self._walk(text):
            if role in (REOPEN, BREAK):
                _trim_value_tail(out)
                out.append('",')
                out.append(ch)
                last_sig = ","
                continue
            if role == OPEN and last_sig and last_sig not in "{[,:":
                out.append(",")
            if role == CODE and not ch.isspace():
                last_sig = ch
            elif role == CLOSE:
                last_sig = '"'
            out.append(ch)
        return "".join(out)

    def remove_trailing_commas(self, text: str) -> str:
        out = []
        for i, ch, role in self._walk(text):
            if role == CODE and ch == "," and TRAILING_COMMA_TAIL.match(text, i + 1):
                continue
            out.append(ch)
        return "".join(out)

    def deduplicate_keys(self, text: str) -> Tuple[Any, str]:
        """
        Parse the text, keeping the last value of any repeated key.

        Returns:
            (parsed data, text); the text is re-serialized only when duplicates existed

        Raises:
            ValueError: If the text is not valid JSON
        """
        duplicates = []

        def hook(pairs):
            keys = [key for key, _ in pairs]
            if len(keys) != len(set(keys)):
                duplicates.append(keys)
            return dict(pairs)

        data = json.loads(text, object_pairs_hook=hook)
        if not duplicates:
            return data, text

        logger.debug(f"Dropped duplicated keys in {len(duplicates)} object(s)")
        return data, self.fix_latex(json.dumps(data, ensure_ascii=False))

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def repair(self, text: str) -> str:
        """
        Turn model output into a string that parses as JSON.

        Args:
            text: Raw model output

        Returns:
            The repaired JSON text, or the extracted candidate if repair failed
        """
        text = text.lstrip("\ufeff")
        text = self.strip_fences(text)
        extracted = self.extract_object(text)

        candidate = self.fix_latex(extracted)
        candidate = self.fix_invalid_escapes(candidate)
        candidate = self.escape_control_chars(candidate)
        candidate = self.remove_stray_quotes(candidate)
        candidate = self.insert_missing_separators(candidate)
        candidate = self.remove_trailing_commas(candidate)

        try:
            _, candidate = self.deduplicate_keys(candidate)
        except ValueError as e:
            logger.debug(f"Repair did not produce valid JSON: {e}")
            return extracted
        return candidate

    def parse_object(self, text: str) -> Dict[str, Any]:
        """
        Repair and parse model output into a JSON object.

        Raises:
            MalformedResponse: If no JSON object survives repair
        """
        repaired = self.repair(text)
        try:
            data = json.loads(repaired)
        except ValueError as e:
            raise MalformedResponse(f"Unparseable model response: {e}", raw=text)
        if not isinstance(data, dict):
            raise MalformedResponse("Model response is not a JSON object", raw=text)
        return data


def _trim_value_tail(out: List[str]):
    while out and out[-1] in (" ", "\t", "\r", "\n"):
        out.pop()
    if out and out[-1] == ",":
        out.pop()
    while out and out[-1] in (" ", "\t", "\r", "\n"):
        out.pop()


_default_repairer = JsonRepairer()


def repair_json(text: str) -> str:
    """Repair model output with the default settings."""
    return _default_repairer.repair(text)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Repair and parse model output with the default settings."""
    return _default_repairer.parse_object(text)


# ============================================================================
# Item Text Cleanup
# ============================================================================

def clean_item_text(content: str) -> str:
    """
    Restore LaTeX commands decoded as control characters and blank out grid boxes.

    Args:
        content: Item text as decoded from JSON

    Returns:
        Text with e.g. form-feed + "rac" restored to "\\frac" and writing-grid
        placeholders replaced by "_____"
    """
    for decoded, command in DECODED_LATEX:
        content = content.replace(decoded, command)
    for placeholder in GRID_PLACEHOLDERS:
        content = content.replace(placeholder, "_____")
    return re.sub(r'\bgrid box(es)?\b', "_____", content, flags=re.IGNORECASE)

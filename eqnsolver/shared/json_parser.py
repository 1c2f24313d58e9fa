"""
JSON extraction and repair for LLM responses.

Handles common LLM output quirks:
- Prose before/after the JSON object
- Reasoning tokens (<think>...</think>) and markdown code fences
- LaTeX escape sequences (\\frac, \\tau, \\pi ...) that are invalid or misleading JSON escapes
- Responses truncated at max_tokens (unclosed strings / arrays / objects)

extract_json() never raises: it returns a dict, a best-effort placeholder
record for hopelessly truncated output, or None when no '{' exists at all.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


TRUNCATION_MARKER = "[truncated model output]"


# Dangerous LaTeX commands that start with a valid JSON escape character:
#   \beta (\b backspace + "eta"), \frac (\f form-feed + "rac"), \nu (\n + "u"),
#   \tau / \to / \text (\t + ...), \rightarrow (\r + ...)
# json.loads() accepts these silently and corrupts the math, so they are
# pre-escaped. Longer patterns first. The (?<!\\) lookbehind leaves correctly
# escaped output (\\frac) untouched.
_DANGEROUS_LATEX_COMMANDS = [
    "boldsymbol", "bigotimes", "bigoplus", "bigcap", "bigcup", "binom", "boxed",
    "begin", "beta", "bar", "big",
    "forall", "frac",
    "nabla", "newline", "notin", "neq", "neg", "not", "nu",
    "textbf", "textit", "textrm", "texttt", "triangle", "times", "tilde",
    "theta", "text", "top", "tau", "to",
    "rightarrow", "right", "rho", "ref",
    "upsilon", "underset", "underline", "uparrow",
]
_DANGEROUS_LATEX_PATTERN = re.compile(
    r"(?<!\\)\\(" + "|".join(_DANGEROUS_LATEX_COMMANDS) + r")"
)

# The same commands as they look after json.loads decoded their first two characters
_CONTROL_ESCAPE_LETTERS = {"\x08": "b", "\x0c": "f", "\n": "n", "\r": "r", "\t": "t"}
_CONTROL_LATEX_PATTERN = re.compile(
    "([\x08\x0c\n\r\t])("
    + "|".join(sorted(
        {command[1:] for command in _DANGEROUS_LATEX_COMMANDS if command[0] in "bfnrt"},
        key=len,
        reverse=True,
    ))
    + ")(?![A-Za-z])"
)

_THINK_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
_GREEDY_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")
_K_PATTERN = re.compile(r'"k"\s*:\s*(\d+)')


def _strip_wrappers(raw: str) -> str:
    """Remove reasoning blocks and markdown fences; leave everything else alone."""
    content = _THINK_PATTERN.sub("", raw)
    content = _FENCE_PATTERN.sub("", content)
    return content


def _escape_invalid_backslashes(text: str) -> str:
    """
    Escape backslashes inside JSON strings that do not start a valid JSON escape.

    Handles remaining LaTeX like \\pi, \\phi, \\epsilon, \\alpha once the
    dangerous commands have been pre-escaped.
    """
    result = []
    i = 0
    in_string = False

    while i < len(text):
        char = text[i]

        if char == '"':
            # Quote is unescaped if preceded by an even number of backslashes
            num_backslashes = 0
            j = i - 1
            while j >= 0 and text[j] == "\\":
                num_backslashes += 1
                j -= 1
            if num_backslashes % 2 == 0:
                in_string = not in_string
            result.append(char)
            i += 1
            continue

        if in_string and char == "\\":
            next_char = text[i + 1] if i + 1 < len(text) else ""
            if next_char == "\\":
                result.append("\\\\")
                i += 2
                continue
            if next_char and next_char in '"/bfnrt':
                result.append(char)
                i += 1
                continue
            if next_char == "u" and re.match(r"[0-9a-fA-F]{4}", text[i + 2:i + 6]):
                result.append(char)
                i += 1
                continue
            result.append("\\\\")
            i += 1
            continue

        result.append(char)
        i += 1

    return "".join(result)


def _escape_control_chars_in_strings(text: str) -> str:
    """Escape raw newlines/tabs/control chars that appear inside string values."""
    result = []
    in_string = False
    escape_next = False

    for char in text:
        if escape_next:
            result.append(char)
            escape_next = False
            continue
        if char == "\\" and in_string:
            result.append(char)
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            result.append(char)
            continue
        if in_string and ord(char) < 0x20:
            if char == "\n":
                result.append("\\n")
            elif char == "\t":
                result.append("\\t")
            elif char == "\r":
                result.append("\\r")
            else:
                result.append(f"\\u{ord(char):04x}")
            continue
        result.append(char)

    return "".join(result)


def _loads_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def try_parse_object(candidate: str) -> Optional[Dict[str, Any]]:
    """
    Parse a candidate JSON object string, tolerating LaTeX escapes.

    Order of attempts:
    1. Plain json.loads (valid JSON always parses as written)
    2. Pre-escape unescaped dangerous LaTeX commands, then parse
    3. Additionally escape invalid backslashes and raw control characters, then parse

    Valid JSON whose escapes spell a LaTeX command (\\frac as form-feed + "rac")
    is returned as decoded; restore_latex_escapes() repairs latex fields afterwards.

    Returns:
        Parsed dict, or None if nothing parses to an object
    """
    if not candidate:
        return None

    parsed = _loads_object(candidate)
    if parsed is not None:
        return parsed

    if _DANGEROUS_LATEX_PATTERN.search(candidate):
        pre_escaped = _DANGEROUS_LATEX_PATTERN.sub(r"\\\\\1", candidate)
        parsed = _loads_object(pre_escaped)
        if parsed is not None:
            logger.debug("Parsed after pre-escaping dangerous LaTeX commands")
            return parsed
        parsed = _loads_object(_escape_control_chars_in_strings(_escape_invalid_backslashes(pre_escaped)))
        if parsed is not None:
            return parsed

    return _loads_object(_escape_control_chars_in_strings(_escape_invalid_backslashes(candidate)))


def restore_latex_escapes(value: str) -> str:
    """
    Undo JSON escape decoding inside a LaTeX field.

    A model writing "\\frac" with a single backslash produces valid JSON that
    decodes to form-feed + "rac". Control characters never belong in a single
    LaTeX expression, so each one followed by the rest of a known command is
    turned back into the command. Only use this on latex fields.
    """
    if not value:
        return value or ""
    return _CONTROL_LATEX_PATTERN.sub(
        lambda m: "\\" + _CONTROL_ESCAPE_LETTERS[m.group(1)] + m.group(2), value
    )


def _balanced_spans(text: str) -> List[Tuple[str, bool]]:
    """
    Collect every balanced {...} span, starting from each '{' in turn.

    Braces inside quoted strings are ignored. A '{' that never closes is
    skipped and the scan moves on to the next '{'. Each span is paired with a
    flag telling whether it starts after such an unclosed '{': those may be
    children of a truncated record (e.g. a single equation) and are only
    tried after truncation repair.
    """
    spans = []
    enclosed = False
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escape_next = False
        for i in range(start, len(text)):
            char = text[i]
            if escape_next:
                escape_next = False
                continue
            if char == "\\" and in_string:
                escape_next = True
                continue
            if char == '"':
                in_string = not in_string
            elif not in_string:
                if char == "{":
                    depth += 1
                elif char == "}":
                    depth -= 1
                    if depth == 0:
                        spans.append((text[start:i + 1], enclosed))
                        break
        else:
            enclosed = True
        start = text.find("{", start + 1)
    return spans


def _scan_structure(text: str) -> Tuple[bool, List[str], List[Tuple[int, List[str]]]]:
    """
    Walk the text once, tracking string/escape state and the open {/[ stack.

    Returns:
        (in_string_at_end, open_stack, comma_checkpoints) where each checkpoint is
        (position of a structural comma, stack snapshot at that point)
    """
    stack: List[str] = []
    checkpoints: List[Tuple[int, List[str]]] = []
    in_string = False
    escape_next = False

    for i, char in enumerate(text):
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if char == "\\":
                escape_next = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]":
            if stack:
                stack.pop()
        elif char == ",":
            checkpoints.append((i, list(stack)))

    return in_string, stack, checkpoints


def _close_structure(prefix: str, stack: List[str]) -> str:
    """Append closers for every open container, innermost first."""
    body = prefix.rstrip()
    while body.endswith(","):
        body = body[:-1].rstrip()
    if body.endswith(":"):
        body += " null"
    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return body + closers


def repair_truncated_json(text: str) -> Optional[Dict[str, Any]]:
    """
    Repair JSON that was cut off mid-generation.

    Closes a dangling string, then every open array/object in nesting order.
    If that still does not parse (e.g. the cut fell inside a key), backs off to
    earlier structural commas and closes from there.

    Returns:
        Parsed dict, or None if no repair parses
    """
    start = text.find("{")
    if start == -1:
        return None
    fragment = text[start:]

    in_string, stack, checkpoints = _scan_structure(fragment)
    if not stack:
        return None

    tail = fragment
    if in_string:
        # Drop a dangling escape before closing the string
        if tail.endswith("\\") and not tail.endswith("\\\\"):
            tail = tail[:-1]
        tail += '"'

    repaired = try_parse_object(_close_structure(tail, stack))
    if repaired is not None:
        logger.warning(f"Repaired truncated JSON by closing {len(stack)} open containers")
        return repaired

    for position, snapshot in reversed(checkpoints):
        if not snapshot:
            continue
        repaired = try_parse_object(_close_structure(fragment[:position], snapshot))
        if repaired is not None:
            logger.warning(f"Repaired truncated JSON by backing off to char {position}")
            return repaired

    return None


def normalize_string_field(value: Any) -> str:
    """
    Normalize a string field from an LLM response.
    Some LLMs incorrectly return strings as lists.

    Args:
        value: Raw value from JSON (could be str, list, or other)

    Returns:
        Normalized string value
    """
    if isinstance(value, list):
        logger.warning(f"LLM returned field as list (length {len(value)}), converting to string")
        return " ".join(str(item) for item in value if item)
    elif isinstance(value, str):
        return value
    elif value is None:
        return ""
    else:
        logger.warning(f"LLM returned field as {type(value).__name__}, converting to string")
        return str(value)


def normalize_string_list(value: Any) -> List[str]:
    """Normalize a list-of-strings field; a bare string becomes a one-item list."""
    if isinstance(value, list):
        return [normalize_string_field(item) for item in value if item]
    if value:
        return [normalize_string_field(value)]
    return []


def truncation_fallback_record(text: str) -> Dict[str, Any]:
    """
    Minimal iteration-shaped record for output that could not be repaired.

    Never a half iteration: all required keys are present, equations is empty,
    and the text fields carry an explicit truncation marker.
    """
    match = _K_PATTERN.search(text)
    k = int(match.group(1)) if match else 0
    return {
        "k": k,
        "goal": f"{TRUNCATION_MARKER} goal could not be recovered",
        "analysis": f"{TRUNCATION_MARKER} the model response was cut off before it formed valid JSON",
        "equations": [],
        "result_summary": f"{TRUNCATION_MARKER} no result could be recovered from this response",
        "truncated": True,
    }


def extract_json(raw_text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Extract a JSON object from raw model text.

    Strategy, first success wins:
    1. Greedy match of the largest {...} span
    2. Brace-balance scan from each '{' (braces inside strings ignored),
       skipping any '{' that never closes
    3. Truncation repair (close open string, then open containers)
    4. Balanced spans that start inside an unclosed '{'
    5. Placeholder record flagging truncation

    Args:
        raw_text: Raw completion text (may contain prose or be truncated)

    Returns:
        Parsed dict, a placeholder record, or None if the text contains no '{'
    """
    if not raw_text or "{" not in raw_text:
        return None

    content = _strip_wrappers(raw_text)
    if "{" not in content:
        content = raw_text

    # STEP 1: Greedy span
    match = _GREEDY_OBJECT_PATTERN.search(content)
    if match:
        parsed = try_parse_object(match.group(0))
        if parsed is not None:
            return parsed

    # STEP 2: Balanced spans
    spans = _balanced_spans(content)
    for span, enclosed in spans:
        if enclosed:
            continue
        parsed = try_parse_object(span)
        if parsed is not None:
            logger.debug("Extracted JSON via brace-balance scan")
            return parsed

    # STEP 3: Truncation repair
    repaired = repair_truncated_json(content)
    if repaired is not None:
        return repaired

    # STEP 4: Spans after a stray '{'
    for span, enclosed in spans:
        if not enclosed:
            continue
        parsed = try_parse_object(span)
        if parsed is not None:
            logger.debug("Extracted JSON after skipping an unclosed '{'")
            return parsed

    # STEP 5: Placeholder record
    logger.error(
        f"JSON extraction failed - returning truncation placeholder "
        f"(response length: {len(raw_text)} chars, tail: {repr(raw_text[-120:])})"
    )
    return truncation_fallback_record(content)

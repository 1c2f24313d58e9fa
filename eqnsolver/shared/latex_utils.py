"""
LaTeX helpers shared by the pipeline and the document builder.
"""
import re
from typing import Optional


# Macro names models sometimes emit without the leading backslash.
# Restricted to names that do not occur as ordinary English words in prose.
BARE_MACRO_NAMES = [
    "varepsilon", "vartheta", "varphi", "lambda", "Lambda", "infty", "hbar",
    "nabla", "otimes", "oplus", "langle", "rangle", "dagger", "xi", "Xi",
]

_BARE_MACRO_PATTERN = re.compile(
    r"(?<![\\A-Za-z])(" + "|".join(BARE_MACRO_NAMES) + r")(?![A-Za-z])"
)


def normalize_latex_tokens(value: Optional[str]) -> str:
    """
    Prefix bare macro names (hbar, lambda, xi, infty, varepsilon ...) with a backslash.

    Only standalone words are touched; "\\hbar" and words such as "lambdas" are left alone.
    """
    if not value:
        return value or ""
    return _BARE_MACRO_PATTERN.sub(r"\\\1", value)


_LATEX_SPECIALS = {
    "#": r"\#",
    "%": r"\%",
    "&": r"\&",
    "_": r"\_",
    "$": r"\$",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
    "{": r"\{",
    "}": r"\}",
}
_LATEX_SPECIALS_PATTERN = re.compile(r"[#%&_$~^{}]")


def escape_latex(value: Optional[str]) -> str:
    """
    Escape free text for inclusion in a LaTeX document.

    Backslashes are taken out FIRST (swapped for a sentinel), then # % & _ $ ~ ^ { }
    are escaped in a single pass, and only then does the sentinel become
    \\textbackslash{}. Sequences introduced by one replacement are never escaped again.
    Non-string input renders as an empty string.
    """
    if not isinstance(value, str):
        return ""
    text = value.replace("\\", "\x00")
    text = _LATEX_SPECIALS_PATTERN.sub(lambda m: _LATEX_SPECIALS[m.group(0)], text)
    return text.replace("\x00", r"\textbackslash{}")

"""
LaTeX document assembly.

Pure and deterministic: the same metadata, iterations and final section always
produce the same document string. Free text is escaped; equation LaTeX and the
synthesized appendix are emitted as-is.
"""
from typing import List

from eqnsolver.shared.latex_utils import escape_latex
from eqnsolver.shared.models import DocumentMeta, FinalSection, Iteration


PREAMBLE_PACKAGES = r"""\documentclass[11pt]{article}
\usepackage[utf8]{inputenc}
\usepackage{amsmath, amssymb, amsthm, physics, bm}
\usepackage{mathtools}
\usepackage{geometry}
\usepackage[colorlinks=true,linkcolor=blue,citecolor=blue,urlcolor=blue]{hyperref}
\geometry{margin=1in}
"""


def _section(title: str) -> str:
    return f"\\section{{{escape_latex(title)}}}\n"


def _equation(latex: str, boxed: bool = False) -> str:
    body = f"\\boxed{{{latex}}}" if boxed else latex
    return f"\\begin{{equation}}\n{body}\n\\end{{equation}}\n"


def _item_list(items: List[str]) -> str:
    lines = ["\\begin{itemize}"]
    lines.extend(f"  \\item {escape_latex(item)}" for item in items if item)
    lines.append("\\end{itemize}")
    return "\n".join(lines) + "\n\n"


def _render_iteration(iteration: Iteration, position: int) -> str:
    k = iteration.k or position
    out = [f"\\subsection{{Iteration {k}}}\n"]
    if iteration.goal:
        out.append(f"\\textbf{{Goal:}} {escape_latex(iteration.goal)}\n\n")
    if iteration.analysis:
        out.append(f"{escape_latex(iteration.analysis)}\n\n")
    for eq in iteration.equations:
        if eq.latex:
            out.append(_equation(eq.latex))
        if eq.text:
            out.append(f"{escape_latex(eq.text)}\n\n")
    if iteration.latex:
        out.append(f"{iteration.latex}\n\n")
    if iteration.result_summary:
        out.append(f"\\textit{{Summary:}} {escape_latex(iteration.result_summary)}\n\n")
    return "".join(out)


def build_latex_document(meta: DocumentMeta, iterations: List[Iteration], final: FinalSection) -> str:
    """
    Render the full document.

    Section order: Problem Statement, Assumptions, Notation, one subsection per
    iteration, Conclusion, then the appendix when one was synthesized.
    """
    parts = [
        PREAMBLE_PACKAGES,
        f"\\title{{{escape_latex(meta.title)}}}\n",
        f"\\author{{{escape_latex(meta.author)}}}\n",
        "\\date{\\today}\n",
        "\\begin{document}\n",
        "\\maketitle\n",
    ]
    if meta.abstract:
        parts.append(f"\\begin{{abstract}}\n{escape_latex(meta.abstract)}\n\\end{{abstract}}\n")
    parts.append("\\tableofcontents\n\\newpage\n\n")

    parts.append(_section("Problem Statement"))
    if meta.problem:
        parts.append(f"{escape_latex(meta.problem)}\n\n")
    if meta.equation_latex:
        parts.append(f"Given: ${meta.equation_latex}$.\n\n")

    if meta.assumptions:
        parts.append(_section("Assumptions and Approximations"))
        parts.append(_item_list(meta.assumptions))

    if meta.notation:
        parts.append(_section("Notation"))
        parts.append(_item_list(meta.notation))

    parts.append(_section("Iterative Solution Procedure"))
    for position, iteration in enumerate(iterations, start=1):
        parts.append(_render_iteration(iteration, position))

    parts.append(_section("Conclusion"))
    if final.text:
        parts.append(f"{escape_latex(final.text)}\n\n")
    if final.main_result_latex:
        parts.append(_equation(final.main_result_latex, boxed=True))

    if final.appendix_latex:
        parts.append("\n\\appendix\n")
        parts.append(_section("Detailed Derivations"))
        parts.append(f"{final.appendix_latex}\n")

    parts.append("\n\\end{document}\n")
    return "".join(parts)

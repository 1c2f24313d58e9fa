"""
Appendix Prompts - Final synthesis pass over all accepted iterations.
"""
from typing import Dict, List

from eqnsolver.shared.models import Iteration, ProblemSpec, PROMPT_CONTEXT_FIELDS


def get_appendix_system_prompt() -> str:
    """Get system prompt for appendix synthesis."""
    return (
        "You are an expert theoretical physicist producing a LaTeX appendix of extremely "
        "detailed derivations. Output JSON only."
    )


def _iteration_summary(iterations: List[Iteration]) -> str:
    return "\n".join(
        f"({it.k}) {it.goal} :: {it.result_summary}" for it in iterations
    )


def build_appendix_messages(problem: ProblemSpec, iterations: List[Iteration]) -> List[Dict[str, str]]:
    """Build appendix-synthesis chat messages."""
    context_keys = [
        field_name for field_name, _ in PROMPT_CONTEXT_FIELDS
        if getattr(problem.context, field_name)
    ]
    user_prompt = f"""From the iterative derivation steps below, produce an exhaustive LaTeX appendix that expands all calculations with no skipped algebra. Include: boundary-condition enforcement, normalization integrals with explicit evaluation, dimensional analysis, Hermiticity proofs with integration by parts, orthogonality and completeness checks, spectral decompositions if applicable, asymptotics, perturbative corrections (up to second order if meaningful), and WKB leading + next-to-leading terms with turning point analysis if meaningful.

Be extremely strict about zero redundancy and high continuity:
- Do NOT restate equations or text already covered in iterations; only transform, extend, or synthesize.
- Maintain symbol consistency; define any new symbols exactly once.
- Ensure every equation advances the derivation with explicit references as needed.

Structure with subsections and many numbered equations.

Equation: {problem.equation}
Context keys: {', '.join(context_keys)}

Iterations summary:
{_iteration_summary(iterations)}

Return ONLY valid JSON: {{"appendixLatex": string, "main_result_latex"?: string}}"""

    return [
        {"role": "system", "content": get_appendix_system_prompt()},
        {"role": "user", "content": user_prompt},
    ]

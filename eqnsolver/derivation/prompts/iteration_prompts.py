"""
Iteration prompts for the derivation loop.

Every round sends:
- a system message carrying the derivation style contract
- a user message with the problem, a compact summary of ALL prior iterations,
  a continuity block quoting the LAST iteration's endpoint, the current plan
  step (planner strategy only), and the required JSON schema.

Prior iterations are summarized (goal + summary + equation count), never
replayed in full, to keep the prompt size bounded.
"""
import re
from typing import List, Optional, Dict

from eqnsolver.shared.models import (
    DetailProfile,
    Iteration,
    PlanStep,
    ProblemSpec,
    PROMPT_CONTEXT_FIELDS,
)


ITERATION_JSON_SCHEMA = (
    'Return ONLY valid JSON with keys: {"k": number, "goal": string, "analysis": string, '
    '"equations": Array<{"latex": string, "text": string}>, "result_summary": string, '
    '"latex"?: string, "stop"?: boolean, "main_result_latex"?: string}'
)


SYSTEM_PREAMBLE = """You are an expert theoretical physicist. Solve non-relativistic time-independent or time-dependent Schrödinger equations with rigorous, explicit, and iterative reasoning, stating all assumptions and approximations. Use physically justified methods: separation of variables, spectral decomposition, WKB, perturbation theory, variational principles, Green's functions, scattering theory, boundary condition enforcement, normalization, completeness, and orthogonality.

DERIVATION STYLE CONTRACT:
- Equation-by-equation exposition: every step of the derivation is its own entry in the "equations" array.
- Explicit justification: every equation carries a "text" field saying WHY it follows (which identity, substitution, boundary condition, or approximation).
- Zero redundancy: never restate an equation or definition already derived in a previous iteration.
- Consistent notation: introduce each symbol exactly once, with a definition, and keep it fixed.
- Checks: verify units/dimensions, confirm Hermiticity, state function spaces and regimes of validity.

FORMAT RULES FOR THE EQUATIONS ARRAY:
- "latex" holds math ONLY (no prose, no $ delimiters, no equation environments).
- "text" holds the short justification in plain prose.
- Escape every backslash in JSON strings (write \\\\hbar for \\hbar).
- Output ONLY the JSON object. No markdown, no commentary."""


HAMILTONIAN_ONLY_HINT = (
    "If only the Hamiltonian is given, formulate the eigenvalue problem H\\psi = E\\psi and derive "
    "the Schrödinger equation with an appropriate basis/representation before proceeding."
)

_HAMILTONIAN_PATTERN = re.compile(r"(\bH\s*=|hamiltonian)", re.IGNORECASE)
_EIGEN_EQUATION_PATTERN = re.compile(r"(\\psi|psi|Ψ|ψ|\bE\b|=\s*E\s*\w*)", re.IGNORECASE)


def looks_hamiltonian_only(equation: str) -> bool:
    """True when the input names a Hamiltonian but no eigen-equation."""
    return bool(_HAMILTONIAN_PATTERN.search(equation or "")) and not _EIGEN_EQUATION_PATTERN.search(equation or "")


def build_problem_block(problem: ProblemSpec) -> str:
    """Problem statement lines; only context fields that are set are listed."""
    lines = [
        f"Equation: {problem.equation}",
        f"Variable: {problem.variable or 'x'}",
    ]
    for field_name, label in PROMPT_CONTEXT_FIELDS:
        value = getattr(problem.context, field_name)
        if value:
            lines.append(f"{label}: {value}")
    if problem.context.equation_latex:
        lines.append(f"Equation (LaTeX): {problem.context.equation_latex}")
    if problem.context.assumptions:
        lines.append("Assumptions: " + "; ".join(problem.context.assumptions))
    if problem.context.notation:
        lines.append("Notation: " + "; ".join(problem.context.notation))
    if problem.request_text:
        lines.append(f"Request: {problem.request_text}")
    if looks_hamiltonian_only(problem.equation):
        lines.append(HAMILTONIAN_ONLY_HINT)
    return "\n".join(lines)


def build_prior_summary(prior: List[Iteration]) -> str:
    """Goal + result summary + equation count for every accepted iteration."""
    if not prior:
        return ""
    lines = ["PRIOR ITERATIONS (already established - do not repeat):"]
    for it in prior:
        lines.append(
            f"({it.k}) Goal: {it.goal} | Result: {it.result_summary} | Equations: {len(it.equations)}"
        )
    return "\n".join(lines)


def _final_equation(iteration: Iteration) -> str:
    for eq in reversed(iteration.equations):
        if eq.latex or eq.text:
            return eq.latex or eq.text
    return ""


def build_continuity_block(last: Optional[Iteration]) -> str:
    """Quote the previous endpoint and require the next iteration to start from it."""
    if last is None:
        return ""
    final_equation = _final_equation(last)
    return "\n".join([
        "CONTINUITY REQUIREMENT:",
        f"- Last iteration's final equation: {final_equation or '(none)'}",
        f"- Last iteration's result summary: {last.result_summary}",
        "- Continue EXACTLY from this point. Do NOT restate the final equation or any earlier one; "
        "your first equation must transform or extend it.",
    ])


def build_plan_step_block(plan_step: Optional[PlanStep]) -> str:
    """Current plan step title/methods/deliverables/success criterion."""
    if plan_step is None:
        return ""
    lines = [f"PLANNED STEP {plan_step.index}: {plan_step.title}"]
    if plan_step.methods:
        lines.append(f"Methods to use: {', '.join(plan_step.methods)}")
    if plan_step.deliverables:
        lines.append(f"Deliverables: {'; '.join(plan_step.deliverables)}")
    if plan_step.success:
        lines.append(f"Success criterion: {plan_step.success}")
    if plan_step.physics_checks:
        lines.append(f"Physics checks: {', '.join(plan_step.physics_checks)}")
    return "\n".join(lines)


def _output_requirements(profile: DetailProfile) -> str:
    return f"""STRICT ANTI-REDUNDANCY & CONSISTENCY POLICY:
- Do NOT repeat previously stated equations or definitions. Refer to them implicitly and continue transformations.
- Maintain symbol consistency; introduce new symbols only once with clear definitions.
- If a correction is needed, state it succinctly and proceed; do not re-derive prior steps.
- Each equation must advance the derivation.

OUTPUT REQUIREMENTS FOR THIS ITERATION:
- Provide thorough derivations, with no skipped algebraic steps.
- Include boundary-condition enforcement, normalization integrals, dimensional analysis, and Hermiticity checks explicitly where they apply.
- Where applicable, derive eigenfunctions, eigenvalues, orthogonality, completeness, and normalization constants explicitly.
- When using an approximation (WKB, perturbation, variational), justify its regime of validity and compare to exact limiting cases.
- Provide at least {profile.min_equations} equations in the "equations" array; each must carry a justification in "text".
- "goal" states what this iteration sets out to do; "analysis" explains the reasoning; "result_summary" states what was achieved.
- Set "stop": true only when the problem is fully solved, and then give the final result in "main_result_latex"."""


def build_iteration_messages(
    problem: ProblemSpec,
    prior: List[Iteration],
    plan_step: Optional[PlanStep],
    profile: DetailProfile,
) -> List[Dict[str, str]]:
    """Build the chat messages for one derivation round."""
    last = prior[-1] if prior else None
    sections = [
        build_problem_block(problem),
        "Goal: Produce the next rigorous iteration advancing the solution, not repeating prior content.",
        build_prior_summary(prior),
        build_continuity_block(last),
        build_plan_step_block(plan_step),
        _output_requirements(profile),
        ITERATION_JSON_SCHEMA,
    ]
    user_content = "\n\n".join(section for section in sections if section)
    return [
        {"role": "system", "content": SYSTEM_PREAMBLE},
        {"role": "user", "content": user_content},
    ]


def build_revision_messages(
    problem: ProblemSpec,
    prior: List[Iteration],
    plan_step: Optional[PlanStep],
    profile: DetailProfile,
    failures: List[str],
) -> List[Dict[str, str]]:
    """
    Same context as the original round plus an explicit quality-failure notice.

    The failure reasons from the validator are quoted so the model can fix them.
    """
    messages = build_iteration_messages(problem, prior, plan_step, profile)
    failure_lines = "\n".join(f"- {reason}" for reason in failures) or "- unspecified"
    revision_notice = f"""YOUR PREVIOUS ATTEMPT FAILED QUALITY CHECKS AND MUST BE CORRECTED.

FAILED CHECKS:
{failure_lines}

REMINDERS:
- At least {profile.min_equations} equations, each with "latex" math and a "text" justification longer than a few words.
- Your first equation must NOT repeat the previous iteration's first equation, and NO equation may repeat the previous iteration's final equation. Continue from where it ended.
- "goal", "analysis" and "result_summary" must be substantive (full sentences).
- Mention the verification performed (boundary conditions, normalization, Hermiticity, dimensional analysis, orthogonality, completeness, eigenvalues) in the analysis or justifications.

Produce the corrected iteration now.

{ITERATION_JSON_SCHEMA}"""
    messages[-1] = {"role": "user", "content": messages[-1]["content"] + "\n\n" + revision_notice}
    return messages


def build_json_repair_messages(content: str, max_content_chars: int = 12000) -> List[Dict[str, str]]:
    """Ask the model to convert raw text into strictly valid JSON for the iteration schema."""
    if len(content) > max_content_chars:
        content = content[:max_content_chars] + "\n[...content truncated...]"
    return [
        {"role": "system", "content": "You must output ONLY valid JSON. No prose."},
        {
            "role": "user",
            "content": (
                "Convert the following content to valid JSON that matches this schema. "
                "Escape every backslash inside strings.\n"
                f"{ITERATION_JSON_SCHEMA}\n\nContent:\n{content}"
            ),
        },
    ]

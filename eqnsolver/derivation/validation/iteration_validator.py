"""
Iteration quality gate.

Pure function: takes a candidate iteration, the previous accepted iteration and
the detail profile, and returns every failed check by name. Logging of the
failures is the caller's job.
"""
import re
from typing import List, Optional

from eqnsolver.shared.models import DetailProfile, Equation, Iteration, ValidationReport


MIN_GOAL_CHARS = 20
MIN_ANALYSIS_CHARS = 50
MIN_SUMMARY_CHARS = 60
MIN_JUSTIFICATION_CHARS = 10  # text must be strictly longer than this
JUSTIFIED_RATIO = 0.6
MATH_DENSITY_RATIO = 0.7

# Verification concepts; each keyword counts once however often it appears
RIGOR_KEYWORDS = [
    "boundary",
    "normaliz",
    "hermitian",
    "hermiticity",
    "dimension",
    "orthogonal",
    "completeness",
    "eigenvalue",
    "eigenfunction",
    "continuity",
    "differentiab",
    "integrat",
]

_MATH_TOKEN_PATTERN = re.compile(r"=|\\[A-Za-z]+|\^|_|psi|[ψΨħ∂∇∫∑∏≈≤≥±×·√∞]", re.IGNORECASE)
_WHITESPACE_PATTERN = re.compile(r"\s+")


def equation_key(equation: Equation) -> str:
    """Comparison key: latex falling back to text, lower-cased, whitespace collapsed."""
    value = equation.latex or equation.text or ""
    return _WHITESPACE_PATTERN.sub(" ", value.strip().lower())


def count_rigor_keywords(iteration: Iteration) -> int:
    corpus = " ".join(
        [iteration.analysis, iteration.result_summary] + [eq.text for eq in iteration.equations]
    ).lower()
    return sum(1 for keyword in RIGOR_KEYWORDS if keyword in corpus)


def _has_math_token(equation: Equation) -> bool:
    return bool(_MATH_TOKEN_PATTERN.search(f"{equation.latex} {equation.text}"))


def _redundancy_failures(iteration: Iteration, previous: Optional[Iteration]) -> List[str]:
    if previous is None or not previous.equations or not iteration.equations:
        return []

    failures = []
    first_key = equation_key(iteration.equations[0])
    if first_key and first_key == equation_key(previous.equations[0]):
        failures.append("redundant_first_equation: first equation repeats the previous iteration's first equation")

    last_key = equation_key(previous.equations[-1])
    if last_key:
        for position, eq in enumerate(iteration.equations, start=1):
            if equation_key(eq) == last_key:
                failures.append(
                    f"redundant_restated_endpoint: equation {position} repeats the previous iteration's final equation"
                )
                break
    return failures


def validate_iteration(
    iteration: Iteration,
    previous: Optional[Iteration],
    profile: DetailProfile,
) -> ValidationReport:
    """
    Run every quality check against a candidate iteration.

    Args:
        iteration: Candidate produced by the model
        previous: Last accepted iteration (None for round 1)
        profile: Thresholds for the requested detail level

    Returns:
        ValidationReport; failures lists every failed check in a fixed order
    """
    failures: List[str] = []
    equations = iteration.equations
    count = len(equations)

    if count < profile.min_equations:
        failures.append(f"too_few_equations: {count} < {profile.min_equations}")

    empty = [i for i, eq in enumerate(equations, start=1) if not eq.latex.strip() and not eq.text.strip()]
    if empty:
        failures.append(f"empty_equations: entries {empty} have neither latex nor text")

    if count:
        justified = sum(1 for eq in equations if len(eq.text.strip()) > MIN_JUSTIFICATION_CHARS)
        if justified / count < JUSTIFIED_RATIO:
            failures.append(f"missing_justifications: only {justified}/{count} equations are justified")

    if len(iteration.result_summary.strip()) < MIN_SUMMARY_CHARS:
        failures.append(f"short_result_summary: fewer than {MIN_SUMMARY_CHARS} characters")
    if len(iteration.analysis.strip()) < MIN_ANALYSIS_CHARS:
        failures.append(f"short_analysis: fewer than {MIN_ANALYSIS_CHARS} characters")
    if len(iteration.goal.strip()) < MIN_GOAL_CHARS:
        failures.append(f"short_goal: fewer than {MIN_GOAL_CHARS} characters")

    failures.extend(_redundancy_failures(iteration, previous))

    hits = count_rigor_keywords(iteration)
    if hits < profile.min_rigor_keywords:
        failures.append(f"insufficient_rigor: {hits} verification keywords < {profile.min_rigor_keywords}")

    if count:
        with_math = sum(1 for eq in equations if _has_math_token(eq))
        if with_math / count < MATH_DENSITY_RATIO:
            failures.append(f"low_math_density: only {with_math}/{count} equations contain math")

    return ValidationReport(passed=not failures, failures=failures)

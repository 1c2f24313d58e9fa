from eqnsolver.derivation.validation.iteration_validator import (
    count_rigor_keywords,
    equation_key,
    validate_iteration,
)
from eqnsolver.shared.models import DETAIL_PROFILES, Equation, Iteration


EXHAUSTIVE = DETAIL_PROFILES["exhaustive"]
BASIC = DETAIL_PROFILES["basic"]


def _equations(tag, n):
    return [
        Equation(
            latex=f"\\psi_{{{tag}{i}}}(x) = A_{i} e^{{-x^2/2}}",
            text=f"Normalization of mode {tag}{i} fixes the constant A.",
        )
        for i in range(n)
    ]


def _iteration(tag="a", n=6, **overrides):
    fields = dict(
        goal="Construct the ground-state eigenfunction",
        analysis="We impose the boundary conditions at infinity and verify normalization of the solution.",
        equations=_equations(tag, n),
        result_summary="The ground state is a normalized Gaussian; orthogonality with excited states follows.",
    )
    fields.update(overrides)
    return Iteration(**fields)


def _has_failure(report, name):
    return any(reason.startswith(name) for reason in report.failures)


def test_well_formed_iteration_passes():
    report = validate_iteration(_iteration(), None, EXHAUSTIVE)
    assert report.passed
    assert report.failures == []


def test_equation_count_gate():
    below = validate_iteration(_iteration(n=EXHAUSTIVE.min_equations - 1), None, EXHAUSTIVE)
    assert not below.passed
    assert _has_failure(below, "too_few_equations")

    at_min = validate_iteration(_iteration(n=EXHAUSTIVE.min_equations), None, EXHAUSTIVE)
    assert at_min.passed


def test_basic_profile_is_more_lenient():
    assert validate_iteration(_iteration(n=3), None, BASIC).passed
    assert not validate_iteration(_iteration(n=3), None, EXHAUSTIVE).passed


def test_equation_with_neither_latex_nor_text_fails():
    equations = _equations("a", 6) + [Equation(latex=" ", text="")]
    report = validate_iteration(_iteration(equations=equations), None, EXHAUSTIVE)
    assert _has_failure(report, "empty_equations")


def test_justification_ratio():
    equations = _equations("a", 6)
    for eq in equations[:3]:
        eq.text = "short"
    report = validate_iteration(_iteration(equations=equations), None, EXHAUSTIVE)
    assert _has_failure(report, "missing_justifications")


def test_minimum_text_lengths():
    report = validate_iteration(
        _iteration(goal="too short", analysis="brief", result_summary="small"),
        None,
        EXHAUSTIVE,
    )
    assert _has_failure(report, "short_goal")
    assert _has_failure(report, "short_analysis")
    assert _has_failure(report, "short_result_summary")


def test_redundant_first_equation_rejected_case_and_whitespace_insensitive():
    previous = _iteration("a")
    repeated = _equations("b", 6)
    repeated[0] = Equation(
        latex="  " + previous.equations[0].latex.upper().replace(" ", "   ") + " ",
        text="Restates the previous starting point verbatim.",
    )
    report = validate_iteration(_iteration(equations=repeated), previous, EXHAUSTIVE)
    assert not report.passed
    assert _has_failure(report, "redundant_first_equation")


def test_restating_previous_final_equation_rejected():
    previous = _iteration("a")
    equations = _equations("b", 6)
    equations[3] = Equation(latex=previous.equations[-1].latex, text="Copied from the previous iteration.")
    report = validate_iteration(_iteration(equations=equations), previous, EXHAUSTIVE)
    assert _has_failure(report, "redundant_restated_endpoint")


def test_distinct_equations_pass_redundancy_check():
    assert validate_iteration(_iteration("b"), _iteration("a"), EXHAUSTIVE).passed


def test_equation_key_falls_back_to_text():
    assert equation_key(Equation(latex="", text="  Some   TEXT ")) == "some text"


def test_rigor_keyword_coverage():
    bland = _iteration(
        analysis="We rearrange the terms of the expression and simplify the result carefully.",
        result_summary="The expression has been simplified into a compact closed form for later use.",
        equations=[
            Equation(latex=f"y_{i} = x + {i}", text=f"Rearranging term number {i} again.")
            for i in range(6)
        ],
    )
    assert count_rigor_keywords(bland) == 0
    report = validate_iteration(bland, None, EXHAUSTIVE)
    assert _has_failure(report, "insufficient_rigor")


def test_math_density():
    equations = [
        Equation(latex="linear relation", text="Follows from the boundary conditions stated.")
        for _ in range(6)
    ]
    report = validate_iteration(_iteration(equations=equations), None, EXHAUSTIVE)
    assert _has_failure(report, "low_math_density")


def test_all_failures_reported():
    report = validate_iteration(Iteration(), None, EXHAUSTIVE)
    assert not report.passed
    assert len(report.failures) >= 5

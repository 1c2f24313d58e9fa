import asyncio
import json

import pytest

from conftest import iteration_payload, plan_payload
from eqnsolver.derivation.core import derivation_coordinator as coordinator_module
from eqnsolver.derivation.core.derivation_coordinator import DerivationCoordinator
from eqnsolver.shared.errors import ProviderError, TransientProviderError
from eqnsolver.shared.models import DerivationConfig, Equation, Iteration, ProblemContext, ProblemSpec


def _run(coro):
    return asyncio.run(coro)


OSCILLATOR = ProblemSpec(
    equation="-ħ^2/2m d^2ψ/dx^2 + V(x)ψ = Eψ",
    context=ProblemContext(potential="harmonic oscillator"),
)


def _config(**overrides):
    fields = dict(strategy="baseline", max_iterations=3, enable_appendix=False)
    fields.update(overrides)
    return DerivationConfig(**fields)


def test_iteration_numbering_ignores_model_k(scripted, provider):
    client = scripted([
        iteration_payload("a", k=99),
        iteration_payload("b", k=99),
        iteration_payload("c", k=7),
    ])
    result = _run(DerivationCoordinator(client, provider, _config()).run(OSCILLATOR))

    assert [it.k for it in result.iterations] == [1, 2, 3]
    assert result.terminated_early is False
    assert result.termination_reason == "completed"


def test_quality_failure_after_revision_degrades_gracefully(scripted, provider):
    client = scripted([
        iteration_payload("a"),
        iteration_payload("b", n_equations=1),  # round 2 fails the gate
        iteration_payload("c", n_equations=2),  # revision fails too
    ])
    result = _run(DerivationCoordinator(client, provider, _config()).run(OSCILLATOR))

    assert [it.k for it in result.iterations] == [1]
    assert result.terminated_early is True
    assert result.termination_reason == "quality_gate"
    assert len(client.calls) == 3
    assert "FAILED QUALITY CHECKS" in client.user_prompt(2)
    assert "too_few_equations" in client.user_prompt(2)
    assert "\\subsection{Iteration 1}" in result.latex
    assert "\\subsection{Iteration 2}" not in result.latex
    assert result.latex.rstrip().endswith("\\end{document}")


def test_successful_revision_is_accepted(scripted, provider):
    client = scripted([
        iteration_payload("a", n_equations=2),
        iteration_payload("b"),
    ])
    result = _run(DerivationCoordinator(client, provider, _config(max_iterations=1)).run(OSCILLATOR))

    assert len(result.iterations) == 1
    assert result.iterations[0].goal.startswith("Derive the b part")


def test_plan_bounds_the_loop(scripted, provider):
    client = scripted([
        plan_payload(3),
        iteration_payload("a"),
        iteration_payload("b"),
        iteration_payload("c"),
    ])
    config = _config(strategy="planner", max_iterations=6)
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))

    assert len(result.iterations) == 3
    assert len(result.plan) == 3
    assert len(client.calls) == 4
    assert "PLANNED STEP 2: Planned step 2" in client.user_prompt(2)


def test_max_iterations_bounds_a_longer_plan(scripted, provider):
    client = scripted([plan_payload(5), iteration_payload("a"), iteration_payload("b")])
    config = _config(strategy="planner", max_iterations=2)
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))
    assert len(result.iterations) == 2


def test_planner_failure_falls_back_to_generic_loop(scripted, provider):
    client = scripted([
        TransientProviderError("HTTP 503", status_code=503),
        iteration_payload("a"),
        iteration_payload("b"),
    ])
    config = _config(strategy="planner", max_iterations=2)
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))

    assert result.plan == []
    assert len(result.iterations) == 2
    assert "PLANNED STEP" not in client.user_prompt(1)


def test_end_to_end_stop_flag_and_main_result(scripted, provider):
    client = scripted([
        plan_payload(4),
        iteration_payload("a"),
        iteration_payload("b", stop=True, main_result_latex="E_n = hbar\\omega (n + 1/2)"),
        json.dumps({"appendixLatex": "\\subsection{Ladder algebra} More detail.", "main_result_latex": "ignored"}),
    ])
    config = DerivationConfig(max_iterations=2, detail_level="exhaustive", strategy="planner")
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))

    assert len(result.iterations) == 2
    assert result.termination_reason == "model_stop"
    assert result.iterations[-1].stop is True
    # Bare macro names are normalized and the final iteration wins over the synthesis
    assert result.main_result_latex == "E_n = \\hbar\\omega (n + 1/2)"
    assert result.appendix_latex == "\\subsection{Ladder algebra} More detail."
    assert len(client.calls) == 4
    assert "\\subsection{Ladder algebra}" in result.latex


def test_stop_flag_ends_run_before_remaining_plan_steps(scripted, provider):
    client = scripted([
        plan_payload(4),
        iteration_payload("a", stop=True),
    ])
    config = _config(strategy="planner", max_iterations=4)
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))

    assert len(result.iterations) == 1
    assert len(client.calls) == 2


def test_main_result_falls_back_to_synthesis(scripted, provider):
    client = scripted([
        iteration_payload("a"),
        json.dumps({"appendixLatex": "\\section*{Extra}", "main_result_latex": "E_0 = \\hbar\\omega/2"}),
    ])
    config = _config(max_iterations=1, enable_appendix=True, detail_level="standard")
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))
    assert result.main_result_latex == "E_0 = \\hbar\\omega/2"


def test_appendix_skipped_for_basic_detail(scripted, provider):
    client = scripted([iteration_payload("a", n_equations=3)])
    config = _config(max_iterations=1, enable_appendix=True, detail_level="basic")
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))
    assert len(client.calls) == 1
    assert result.appendix_latex == ""


def test_appendix_failure_is_absorbed(scripted, provider):
    client = scripted([
        iteration_payload("a"),
        ProviderError("HTTP 400 bad", status_code=400),
    ])
    config = _config(max_iterations=1, enable_appendix=True, detail_level="exhaustive")
    result = _run(DerivationCoordinator(client, provider, config).run(OSCILLATOR))
    assert len(result.iterations) == 1
    assert result.appendix_latex == ""


def test_unparseable_output_uses_repair_call_then_stops(scripted, provider):
    client = scripted([
        iteration_payload("a"),
        "I cannot answer in JSON today.",
        "Still no structured output.",
    ])
    result = _run(DerivationCoordinator(client, provider, _config()).run(OSCILLATOR))

    assert len(result.iterations) == 1
    assert result.termination_reason == "unparseable_output"
    assert result.terminated_early is True
    repair_call = client.calls[2]
    assert repair_call["max_tokens"] == 1200
    assert "Convert the following content" in repair_call["messages"][-1]["content"]


def test_repair_call_output_is_accepted(scripted, provider):
    client = scripted([
        "The derivation follows in prose only.",
        "```json\n" + iteration_payload("a") + "\n```",
    ])
    result = _run(DerivationCoordinator(client, provider, _config(max_iterations=1)).run(OSCILLATOR))
    assert len(result.iterations) == 1


def test_round_provider_error_propagates(scripted, provider):
    client = scripted([
        iteration_payload("a"),
        ProviderError("HTTP 401 invalid key", status_code=401),
    ])
    with pytest.raises(ProviderError):
        _run(DerivationCoordinator(client, provider, _config()).run(OSCILLATOR))


def test_inter_round_delay_skipped_before_first_round(scripted, provider, monkeypatch):
    delays = []

    async def _fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(coordinator_module.asyncio, "sleep", _fake_sleep)
    client = scripted([iteration_payload("a"), iteration_payload("b"), iteration_payload("c")])
    _run(DerivationCoordinator(client, provider, _config(inter_round_delay_ms=250)).run(OSCILLATOR))

    assert delays == [0.25, 0.25]


def test_round_prompt_carries_prior_summary_and_continuity(scripted, provider):
    client = scripted([iteration_payload("a"), iteration_payload("b")])
    _run(DerivationCoordinator(client, provider, _config(max_iterations=2)).run(OSCILLATOR))

    first, second = client.user_prompt(0), client.user_prompt(1)
    assert "Potential: harmonic oscillator" in first
    assert "PRIOR ITERATIONS" not in first
    assert "(1) Goal: Derive the a part" in second
    assert "Equations: 6" in second
    assert "CONTINUITY REQUIREMENT" in second
    assert "E^{(a)}_5 = \\hbar\\omega (5 + 1/2)" in second
    assert client.calls[1]["max_tokens"] == 3500


def test_bare_macro_names_normalized_in_latex_and_text():
    raw = Iteration(k=9, equations=[Equation(latex="E = hbar omega", text="lambda is the eigenvalue")])
    normalized = coordinator_module._normalize_iteration(raw, 2)

    assert normalized.k == 2
    assert normalized.equations[0].latex == "E = \\hbar omega"
    assert normalized.equations[0].text == "\\lambda is the eigenvalue"
    assert raw.equations[0].text == "lambda is the eigenvalue"

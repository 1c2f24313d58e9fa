import json

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedChatClient, iteration_payload
from eqnsolver.api.main import app
from eqnsolver.api.routes import solver
from eqnsolver.shared.config import SolverSettings
from eqnsolver.shared.errors import ConfigurationError, ProviderError
from eqnsolver.shared.models import ParsedIntent, ProblemContext, SolveRequest


client = TestClient(app)


@pytest.fixture
def settings(monkeypatch):
    test_settings = SolverSettings(
        _env_file=None,
        max_iterations_cap=4,
        default_max_iterations=2,
        default_temperature=0.1,
        inter_round_delay_ms=0,
        enable_appendix=True,
    )
    monkeypatch.setattr(solver, "solver_settings", test_settings)
    return test_settings


@pytest.fixture
def wire(monkeypatch, settings, provider):
    """Install a scripted chat client and a fixed provider on the routes module."""

    def _wire(replies):
        chat = ScriptedChatClient(replies)
        monkeypatch.setattr(solver, "chat_client", chat)
        monkeypatch.setattr(solver, "resolve_provider", lambda name, s=None: provider)
        return chat

    return _wire


BASELINE = {"strategy": "baseline", "detailLevel": "basic"}


def test_schrodinger_happy_path(wire):
    chat = wire([iteration_payload("a"), iteration_payload("b", stop=True, main_result_latex="E_n = n")])
    response = client.post("/api/schrodinger", json={
        "equation": "-hbar^2/2m psi'' + V psi = E psi",
        "maxIterations": 3,
        **BASELINE,
    })

    assert response.status_code == 200
    body = response.json()
    assert [it["k"] for it in body["iterations"]] == [1, 2]
    assert body["final"] == {"main_result_latex": "E_n = n", "appendix": False}
    assert body["terminated_early"] is False
    assert body["termination_reason"] == "model_stop"
    assert body["latex"].startswith("\\documentclass")
    assert "latex" not in body["iterations"][0]
    assert len(chat.calls) == 2


def test_schrodinger_reports_appendix_flag(wire):
    wire([iteration_payload("a"), json.dumps({"appendixLatex": "\\subsection{More} detail"})])
    response = client.post("/api/schrodinger", json={
        "equation": "H psi = E psi",
        "strategy": "baseline",
        "detailLevel": "exhaustive",
        "maxIterations": 1,
    })
    body = response.json()
    assert body["final"]["appendix"] is True
    assert "\\subsection{More} detail" in body["latex"]


def test_max_iterations_clamped_to_cap(wire):
    chat = wire([iteration_payload(tag) for tag in "abcd"])
    response = client.post("/api/schrodinger", json={"equation": "H psi = E psi", "maxIterations": 50, **BASELINE})
    assert len(response.json()["iterations"]) == 4
    assert len(chat.calls) == 4


def test_clamp_helpers(settings):
    assert solver.clamp_iterations(None, settings) == 2
    assert solver.clamp_iterations("abc", settings) == 2
    assert solver.clamp_iterations(0, settings) == 1
    assert solver.clamp_iterations("3", settings) == 3
    assert solver.clamp_iterations(99, settings) == 4
    assert solver.clamp_temperature(None, settings) == 0.1
    assert solver.clamp_temperature(float("nan"), settings) == 0.1
    assert solver.clamp_temperature(-2, settings) == 0.0
    assert solver.clamp_temperature("5", settings) == 1.0
    assert solver.clamp_temperature(0.4, settings) == 0.4


def test_missing_equation_is_client_error(wire):
    chat = wire([])
    response = client.post("/api/schrodinger", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing equation"}
    assert chat.calls == []


def test_configuration_error_maps_to_500(monkeypatch, settings):
    def _missing_key(name, s=None):
        raise ConfigurationError("GROQ_API_KEY not set")

    monkeypatch.setattr(solver, "resolve_provider", _missing_key)
    response = client.post("/api/schrodinger", json={"equation": "H psi = E psi"})
    assert response.status_code == 500
    assert response.json() == {"error": "GROQ_API_KEY not set"}


def test_provider_error_maps_to_502(wire):
    wire([ProviderError("HTTP 401: invalid api key", status_code=401)])
    response = client.post("/api/schrodinger", json={"equation": "H psi = E psi", **BASELINE})
    assert response.status_code == 502
    assert "HTTP 401" in response.json()["error"]


def test_invalid_detail_level_rejected(wire):
    wire([])
    response = client.post("/api/schrodinger", json={"equation": "H psi = E psi", "detailLevel": "extreme"})
    assert response.status_code == 400
    assert response.json()["error"].startswith("Invalid request")


def test_request_text_is_parsed_into_the_problem(wire):
    chat = wire([
        json.dumps({"equation": "H = p^2/2m + V(x)", "potential": "V(x) = g x^4"}),
        iteration_payload("a"),
    ])
    response = client.post("/api/schrodinger", json={
        "requestText": "Find the ground state of a quartic oscillator",
        "maxIterations": 1,
        **BASELINE,
    })

    assert response.status_code == 200
    round_prompt = chat.user_prompt(1)
    assert "Equation: H = p^2/2m + V(x)" in round_prompt
    assert "Potential: V(x) = g x^4" in round_prompt
    assert "Request: Find the ground state of a quartic oscillator" in round_prompt


def test_unusable_intent_without_equation_is_client_error(wire):
    wire(["I could not find an equation."])
    response = client.post("/api/schrodinger", json={"requestText": "tell me a story", **BASELINE})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing equation"}


def test_merge_intent_keeps_caller_values():
    intent = ParsedIntent(equation="H = p^2/2m", potential="free particle", domain="x in R")
    equation, context = solver.merge_intent(None, ProblemContext(potential="square well"), intent)
    assert equation == "H = p^2/2m"
    assert context.potential == "square well"
    assert context.domain == "x in R"

    equation, context = solver.merge_intent("H psi = E psi", ProblemContext(), None)
    assert equation == "H psi = E psi"
    assert context == ProblemContext()


@pytest.mark.parametrize("body,expected", [
    ({"equation": "H = p^2/2m + V(x)"}, True),
    ({"equation": "i\\hbar d/dt psi = H psi"}, True),
    ({"equation": "x^2 - 4 = 0"}, False),
    ({"equation": "x^2 - 4 = 0", "mode": "schrodinger"}, True),
    ({"equation": "H psi = E psi", "mode": "general"}, False),
    ({"requestText": "particle in a box"}, True),
    ({}, False),
])
def test_physics_detection(body, expected):
    assert solver.is_physics_request(SolveRequest(**body)) is expected


def test_solve_general_equation(wire):
    payload = {
        "type": "quadratic",
        "steps": [{"step": 1, "description": "Factor", "equation": "(x-2)(x+2)=0", "latex": "(x-2)(x+2)=0", "explanation": "difference of squares"}],
        "finalSolution": "x = 2 or x = -2",
        "finalSolutionLatex": "x = \\pm 2",
    }
    wire([json.dumps(payload)])
    response = client.post("/api/solve", json={"equation": "x^2 - 4 = 0"})
    assert response.status_code == 200
    assert response.json() == payload


def test_solve_general_falls_back_on_prose(wire):
    wire(["x equals plus or minus two"])
    response = client.post("/api/solve", json={"equation": "x^2 - 4 = 0"})
    body = response.json()
    assert body["steps"][0]["description"] == "AI Analysis"
    assert body["steps"][0]["explanation"] == "x equals plus or minus two"


def test_solve_delegates_physics_input(wire):
    wire([iteration_payload("a")])
    response = client.post("/api/solve", json={"equation": "H\\psi = E\\psi", "maxIterations": 1, **BASELINE})
    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "hamiltonian"
    assert len(body["steps"]) == 1
    assert body["steps"][0]["description"].startswith("Derive the a part")
    assert body["finalSolutionLatex"] == "See document"
    assert body["latexDocument"].rstrip().endswith("\\end{document}")


def test_solve_general_mode_requires_equation(wire):
    wire([])
    response = client.post("/api/solve", json={"mode": "general"})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing equation"}


def test_root_and_health():
    assert client.get("/health").json() == {"status": "healthy"}
    root = client.get("/").json()
    assert root["name"] == "AI Equation Solver"
    assert root["status"] == "running"

"""
Solver API routes.
"""
import logging
import re
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, HTTPException

from eqnsolver.shared.chat_client import chat_client
from eqnsolver.shared.config import SolverSettings, solver_settings
from eqnsolver.shared.errors import ChatClientError, ConfigurationError, ProviderError
from eqnsolver.shared.models import (
    DerivationConfig,
    DerivationResult,
    ParsedIntent,
    ProblemContext,
    ProblemSpec,
    ProviderConfig,
    SolveRequest,
)
from eqnsolver.shared.provider_config import resolve_provider
from eqnsolver.derivation.agents.general_solver import GeneralSolverAgent
from eqnsolver.derivation.agents.intent_parser import IntentParserAgent
from eqnsolver.derivation.core.derivation_coordinator import DerivationCoordinator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["solver"])


PHYSICS_PATTERN = re.compile(
    r"(\bH\s*=|schro(e|ö|o)ding|psi|Ψ|ψ|\bV\(|ħ|\\hbar|wave\s*function|hamiltonian)",
    re.IGNORECASE,
)

# Context fields the intent parser may fill in when the caller left them unset
INTENT_CONTEXT_FIELDS = (
    "type", "potential", "mass", "domain", "boundary", "initial", "parameters", "task", "equation_latex",
)


def clamp_iterations(value: Any, settings: SolverSettings) -> int:
    """Coerce to int (default on garbage) and clamp to [1, max_iterations_cap]."""
    try:
        iterations = int(value)
    except (TypeError, ValueError):
        iterations = settings.default_max_iterations
    return max(1, min(iterations, settings.max_iterations_cap))


def clamp_temperature(value: Any, settings: SolverSettings) -> float:
    """Coerce to float (default on garbage) and clamp to [0, 1]."""
    try:
        temperature = float(value)
    except (TypeError, ValueError):
        temperature = settings.default_temperature
    if temperature != temperature:  # NaN
        temperature = settings.default_temperature
    return max(0.0, min(temperature, 1.0))


def build_derivation_config(request: SolveRequest, settings: SolverSettings) -> DerivationConfig:
    """The one place request values and settings become run tunables."""
    return DerivationConfig(
        max_iterations=clamp_iterations(request.max_iterations, settings),
        temperature=clamp_temperature(request.temperature, settings),
        detail_level=request.detail_level,
        strategy=request.strategy,
        max_retries=settings.max_retries,
        base_delay_ms=settings.base_delay_ms,
        inter_round_delay_ms=settings.inter_round_delay_ms,
        enable_appendix=settings.enable_appendix,
    )


def merge_intent(
    equation: Optional[str],
    context: ProblemContext,
    intent: Optional[ParsedIntent],
) -> Tuple[Optional[str], ProblemContext]:
    """Fill unset equation/context fields from the parsed intent. Caller-supplied values win."""
    if intent is None:
        return equation, context
    updates = {
        field_name: getattr(intent, field_name)
        for field_name in INTENT_CONTEXT_FIELDS
        if getattr(intent, field_name) and not getattr(context, field_name)
    }
    merged_context = context.model_copy(update=updates) if updates else context
    merged_equation = equation or intent.equation or intent.equation_latex
    return merged_equation, merged_context


def _status_for(error: Exception) -> int:
    if isinstance(error, ConfigurationError):
        return 500
    if isinstance(error, (ProviderError, ChatClientError)):
        return 502
    return 500


async def _build_problem(
    request: SolveRequest,
    provider: ProviderConfig,
    config: DerivationConfig,
) -> ProblemSpec:
    equation = (request.equation or "").strip() or None
    context = request.context
    request_text = (request.request_text or "").strip() or None

    if request_text and not equation:
        intent = await IntentParserAgent(chat_client, provider, config).parse(request_text)
        equation, context = merge_intent(equation, context, intent)

    if not equation:
        raise HTTPException(status_code=400, detail="Missing equation")

    return ProblemSpec(
        equation=equation,
        variable=request.variable or "x",
        context=context,
        request_text=request_text,
    )


async def _derive(request: SolveRequest) -> DerivationResult:
    """Resolve provider, build the problem and run the derivation coordinator."""
    if not (request.equation or "").strip() and not (request.request_text or "").strip():
        raise HTTPException(status_code=400, detail="Missing equation")
    provider = resolve_provider(request.provider, solver_settings)
    config = build_derivation_config(request, solver_settings)
    problem = await _build_problem(request, provider, config)
    coordinator = DerivationCoordinator(chat_client, provider, config)
    return await coordinator.run(problem)


def _http_error(error: Exception, label: str) -> HTTPException:
    """Log a pipeline failure and map it onto an HTTP status."""
    logger.error(f"{label} failed: {error}", exc_info=not isinstance(error, (ConfigurationError, ChatClientError)))
    return HTTPException(status_code=_status_for(error), detail=str(error) or f"{label} failed")


@router.post("/schrodinger")
async def solve_schrodinger(request: SolveRequest):
    """Run the iterative derivation pipeline and return iterations plus the LaTeX document."""
    try:
        result = await _derive(request)
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error(e, "Schrödinger derivation") from e

    return {
        "iterations": [it.model_dump(exclude_none=True) for it in result.iterations],
        "latex": result.latex,
        "final": {
            "main_result_latex": result.main_result_latex,
            "appendix": bool(result.appendix_latex),
        },
        "plan": [step.model_dump() for step in result.plan],
        "terminated_early": result.terminated_early,
        "termination_reason": result.termination_reason,
    }


def is_physics_request(request: SolveRequest) -> bool:
    """Decide whether /solve should delegate to the derivation pipeline."""
    if request.mode == "schrodinger":
        return True
    if request.mode == "general":
        return False
    if not (request.equation or "").strip():
        return bool((request.request_text or "").strip())
    return bool(PHYSICS_PATTERN.search(request.equation))


def derivation_to_steps(result: DerivationResult) -> Dict[str, Any]:
    """Reshape a derivation into the step-list response of the general solver."""
    steps = []
    for it in result.iterations:
        first = it.equations[0] if it.equations else None
        steps.append({
            "step": it.k,
            "description": it.goal or f"Iteration {it.k}",
            "equation": first.text if first else "",
            "latex": first.latex if first else "",
            "explanation": it.analysis or it.result_summary,
        })
    return {
        "type": "hamiltonian",
        "steps": steps,
        "finalSolution": "See iterative derivation",
        "finalSolutionLatex": result.main_result_latex or "See document",
        "latexDocument": result.latex,
        "iterations": [it.model_dump(exclude_none=True) for it in result.iterations],
    }


@router.post("/solve")
async def solve(request: SolveRequest):
    """
    Solve an equation.

    Physics-like input (Hamiltonians, psi, hbar, V(x), wave functions) and
    free-text requests go through the derivation pipeline; everything else
    gets a single-call step-by-step solution.
    """
    if is_physics_request(request):
        logger.info("Solve: delegating to the derivation pipeline")
        try:
            result = await _derive(request)
        except HTTPException:
            raise
        except Exception as e:
            raise _http_error(e, "Schrödinger derivation") from e
        return derivation_to_steps(result)

    equation = (request.equation or "").strip()
    if not equation:
        raise HTTPException(status_code=400, detail="Missing equation")

    try:
        provider = resolve_provider(request.provider, solver_settings)
        config = build_derivation_config(request, solver_settings)
        return await GeneralSolverAgent(chat_client, provider, config).solve(equation, request.variable or "x")
    except Exception as e:
        raise _http_error(e, "General solve") from e

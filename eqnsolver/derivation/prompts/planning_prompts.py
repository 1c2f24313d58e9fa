"""
Planning Prompts - System and user prompts for the derivation planner.
"""
import json
from typing import Dict, List, Optional

from eqnsolver.shared.models import ProblemContext


# Recognized method vocabulary. Prompt guidance only - plans are not validated against it.
METHOD_VOCABULARY = [
    "Separation of variables (specify coordinates)",
    "Spectral decomposition (specify basis)",
    "Sturm-Liouville theory",
    "WKB approximation (specify regime)",
    "Perturbation theory (specify order and parameter)",
    "Variational method (specify trial function)",
    "Green's function (specify boundary conditions)",
    "Scattering theory (specify asymptotic form)",
    "Operator methods (ladder operators, etc.)",
]


def get_planning_system_prompt() -> str:
    """Get system prompt for derivation planning."""
    return """You are an expert theoretical physicist planning analytical solutions to Schrödinger/Hamiltonian problems at the level of Landau & Lifshitz or Sakurai.

Your plan must be:
1. COMPREHENSIVE: Cover all necessary steps from problem formulation to final solution
2. GRANULAR: Each step should be atomic and produce a substantial block of equations
3. METHODICAL: Specify exact mathematical methods and physics principles
4. RIGOROUS: Include all verification steps (Hermiticity, normalization, boundary conditions, dimensional analysis)
5. NON-REDUNDANT: Each step builds on the previous one without repetition

Output ONLY valid JSON. No prose."""


def get_planning_json_schema() -> str:
    """Get JSON schema for the planner output."""
    return """{
  "plan": [
    {
      "index": 1,
      "title": "Specific, clear title (e.g. 'Formulate eigenvalue problem and establish Sturm-Liouville form')",
      "methods": ["specific method 1", "specific method 2"],
      "deliverables": ["Derive Hamiltonian operator in position representation", "Verify Hermiticity by integration by parts", "..."],
      "success": "Concrete, measurable criterion",
      "physics_checks": ["Hermiticity", "Dimensional consistency", "Boundary conditions"]
    }
  ],
  "notes": "Global assumptions, approximations, and strategy overview"
}"""


def build_planning_messages(
    equation: str,
    context: ProblemContext,
    request_text: Optional[str] = None,
    min_steps: int = 4,
    max_steps: int = 6,
) -> List[Dict[str, str]]:
    """
    Build planner chat messages.

    Args:
        equation: Target equation or Hamiltonian
        context: Structured problem hints (only set fields are forwarded)
        request_text: Free-text request; falls back to context.task
        min_steps: Lower bound on plan length requested from the model
        max_steps: Upper bound on plan length requested from the model
    """
    context_json = json.dumps(
        context.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True),
        ensure_ascii=False,
        indent=2,
    )
    task = request_text or context.task or "(not provided)"
    methods = "\n".join(f"   - {method}" for method in METHOD_VOCABULARY)

    user_prompt = f"""Create a detailed, expert-level plan to solve this quantum mechanics problem with rigor and granularity.

PROBLEM:
Equation: {equation or '(not provided)'}
Context: {context_json}
Task: {task}

PLANNING REQUIREMENTS:

1. STRUCTURE ({min_steps}-{max_steps} major steps):
   - Step 1: Problem formulation and setup
   - Middle steps: Core derivation using appropriate methods
   - Final step: Verification and physical interpretation

2. For EACH step, specify:
   - Clear, specific title
   - Exact methods to use (be specific, not generic)
   - Detailed deliverables
   - Concrete success criterion
   - Expected physics checks

3. METHODS (choose appropriate ones):
{methods}

4. MANDATORY DELIVERABLES across all steps:
   - Hamiltonian operator in appropriate representation
   - Eigenvalue equation derivation
   - Boundary condition enforcement
   - Normalization constant calculation
   - Hermiticity verification
   - Dimensional analysis
   - Orthogonality proof
   - Energy spectrum derivation
   - Wavefunction explicit form
   - Physical interpretation

5. QUALITY STANDARDS:
   - No vague statements like "solve the equation"
   - Specify what approximations are valid and why
   - State regimes of validity

OUTPUT SCHEMA:
{get_planning_json_schema()}

Create a plan with {min_steps}-{max_steps} steps that will produce a complete, rigorous solution."""

    return [
        {"role": "system", "content": get_planning_system_prompt()},
        {"role": "user", "content": user_prompt},
    ]

"""
General Solver Prompts - Single-call step-by-step solution for non-physics equations.
"""
from typing import Dict, List


def get_general_solver_system_prompt() -> str:
    """Get system prompt for the general equation solver."""
    return """You are an expert mathematical solver. Solve equations step-by-step with extraordinary detail.
- For cubic equations, explicitly use Cardano's method (depress the cubic, compute the discriminant, handle the casus irreducibilis).
- For quartic equations, use Ferrari's method when a symbolic solution is feasible.
- For general polynomials: try factorization (rational root theorem, factoring by grouping), reduce to lower degrees if possible, and provide exact radicals when feasible; only mention numerical methods if an exact form is provably not expressible with radicals.

For each solution, provide a JSON response with this EXACT structure:
{
  "type": "linear|quadratic|cubic|polynomial|hamiltonian|differential",
  "steps": [
    {
      "step": 1,
      "description": "Clear title",
      "equation": "plain text equation",
      "latex": "LaTeX formatted equation",
      "explanation": "Detailed explanation of this step"
    }
  ],
  "finalSolution": "plain text solution",
  "finalSolutionLatex": "LaTeX formatted solution"
}

IMPORTANT: Return ONLY valid JSON, no other text."""


def build_general_solver_messages(equation: str, variable: str = "x") -> List[Dict[str, str]]:
    """Build chat messages for a single-call general solve."""
    return [
        {"role": "system", "content": get_general_solver_system_prompt()},
        {
            "role": "user",
            "content": (
                f"Solve this equation with detailed steps: {equation}\n"
                f"Variable: {variable or 'x'}\n\n"
                "Provide the solution in the JSON format specified."
            ),
        },
    ]

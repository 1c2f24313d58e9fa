"""
Intent Prompts - Extract structured problem fields from a free-text request.
"""
from typing import Dict, List


def get_intent_system_prompt() -> str:
    """Get system prompt for intent extraction."""
    return (
        "You extract physics problem intent for Schrödinger/Hamiltonian systems. "
        "Output ONLY valid JSON matching the schema. No prose."
    )


def get_intent_json_schema() -> str:
    """Get JSON schema for intent extraction."""
    return """{
  "equation": string,          // canonical target equation or Hamiltonian expression (plain text)
  "equationLatex"?: string,
  "type"?: "time-independent" | "time-dependent",
  "potential"?: string,
  "mass"?: string,             // position-dependent mass if any
  "domain"?: string,
  "boundary"?: string,
  "initial"?: string,
  "parameters"?: string,
  "task"?: string              // e.g. "eigenvalues and eigenfunctions", "time evolution"
}"""


def build_intent_messages(request_text: str) -> List[Dict[str, str]]:
    """Build intent-parser chat messages for a free-text request."""
    user_prompt = (
        "From the following natural-language request, extract structured fields needed to solve "
        "a Schrödinger/Hamiltonian problem. If a field is unknown, omit it. "
        f"Return ONLY valid JSON with keys:\n{get_intent_json_schema()}\n\n"
        f"Request: {request_text}"
    )
    return [
        {"role": "system", "content": get_intent_system_prompt()},
        {"role": "user", "content": user_prompt},
    ]

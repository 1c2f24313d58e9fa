import json
import os
import sys
from typing import Any, Dict, List, Optional

# Ensure project root is on sys.path for test imports
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

import pytest  # noqa: E402

from eqnsolver.shared.models import ProviderConfig  # noqa: E402


class ScriptedChatClient:
    """
    Stand-in for ResilientChatClient.complete that replays scripted replies.

    Each reply is either a content string (wrapped into the normalized
    choices shape) or an exception instance, which is raised.
    """

    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, provider, messages, **kwargs):
        self.calls.append({"provider": provider, "messages": messages, **kwargs})
        if not self.replies:
            raise AssertionError(f"unexpected chat call #{len(self.calls)}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return {"choices": [{"message": {"role": "assistant", "content": reply}}]}

    def user_prompt(self, index: int) -> str:
        return self.calls[index]["messages"][-1]["content"]


def iteration_payload(
    tag: str,
    k: int = 1,
    n_equations: int = 6,
    stop: Optional[bool] = None,
    main_result_latex: Optional[str] = None,
) -> str:
    """JSON text of an iteration that passes the exhaustive quality gate."""
    record: Dict[str, Any] = {
        "k": k,
        "goal": f"Derive the {tag} part of the oscillator spectrum",
        "analysis": (
            "We enforce the boundary conditions at infinity and check the normalization "
            "of every eigenfunction introduced in this step."
        ),
        "equations": [
            {
                "latex": f"E^{{({tag})}}_{i} = \\hbar\\omega ({i} + 1/2)",
                "text": f"Step {i} of {tag}: apply the ladder operator identity to the ground state.",
            }
            for i in range(n_equations)
        ],
        "result_summary": (
            "The eigenvalue spectrum is discrete and equally spaced; orthogonality "
            "and normalization are verified explicitly."
        ),
    }
    if stop is not None:
        record["stop"] = stop
    if main_result_latex is not None:
        record["main_result_latex"] = main_result_latex
    return json.dumps(record)


def plan_payload(n_steps: int) -> str:
    return json.dumps({
        "plan": [
            {
                "index": i + 1,
                "title": f"Planned step {i + 1}",
                "methods": ["Operator methods (ladder operators)"],
                "deliverables": [f"Deliverable {i + 1}"],
                "success": f"Success criterion {i + 1}",
                "physics_checks": ["Hermiticity"],
            }
            for i in range(n_steps)
        ],
        "notes": "Harmonic oscillator on the real line",
    })


@pytest.fixture
def provider() -> ProviderConfig:
    return ProviderConfig(
        name="groq",
        endpoint_url="https://llm.test/v1/chat/completions",
        api_key="test-key",
        model_id="test-model",
    )


@pytest.fixture
def scripted():
    """Factory: scripted(["reply", ...]) -> ScriptedChatClient."""
    return ScriptedChatClient

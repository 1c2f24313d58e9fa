"""
Pydantic models for the equation solver service.
"""
from typing import List, Dict, Optional, Any, Literal
from pydantic import BaseModel, Field


DetailLevel = Literal["basic", "standard", "exhaustive"]
Strategy = Literal["planner", "baseline"]
WireFormat = Literal["openai", "gemini"]


# ============================================================================
# PROBLEM INPUT
# ============================================================================


class ProblemContext(BaseModel):
    """
    Named hints describing the physics problem.

    Every field is explicit - new hints must be added here rather than being
    smuggled through as free-form keys, so prompt construction stays auditable.
    Unknown keys sent by clients are dropped.
    """
    type: Optional[str] = None  # "time-independent" | "time-dependent" | free text
    potential: Optional[str] = None
    mass: Optional[str] = None  # Position-dependent mass if any
    domain: Optional[str] = None
    boundary: Optional[str] = None
    initial: Optional[str] = None
    parameters: Optional[str] = None
    task: Optional[str] = None
    problem: Optional[str] = None  # Prose problem statement for the document
    equation_latex: Optional[str] = Field(default=None, alias="equationLatex")
    assumptions: List[str] = Field(default_factory=list)
    notation: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True
        extra = "ignore"


# Context fields that are forwarded into prompts, in display order
PROMPT_CONTEXT_FIELDS = [
    ("type", "Type"),
    ("potential", "Potential"),
    ("mass", "Mass"),
    ("domain", "Domain"),
    ("boundary", "Boundary conditions"),
    ("initial", "Initial condition"),
    ("parameters", "Parameters"),
    ("task", "Task"),
]


class ProblemSpec(BaseModel):
    """Input to a solve run. Treated as immutable for the duration of the run."""
    equation: str
    variable: str = "x"
    context: ProblemContext = Field(default_factory=ProblemContext)
    request_text: Optional[str] = None  # Free-text request (also guides the planner)

    class Config:
        frozen = True


class ParsedIntent(BaseModel):
    """Structured fields extracted from a free-text request by the intent parser."""
    equation: Optional[str] = None
    equation_latex: Optional[str] = Field(default=None, alias="equationLatex")
    type: Optional[str] = None
    potential: Optional[str] = None
    mass: Optional[str] = None
    domain: Optional[str] = None
    boundary: Optional[str] = None
    initial: Optional[str] = None
    parameters: Optional[str] = None
    task: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "ignore"


# ============================================================================
# PIPELINE RECORDS
# ============================================================================


class PlanStep(BaseModel):
    """One planned derivation step, consumed positionally by iteration k."""
    index: int
    title: str = ""
    methods: List[str] = Field(default_factory=list)
    deliverables: List[str] = Field(default_factory=list)
    success: str = ""
    physics_checks: List[str] = Field(default_factory=list)


class Equation(BaseModel):
    """A single derivation equation: math-only LaTeX plus a short justification."""
    latex: str = ""
    text: str = ""


class Iteration(BaseModel):
    """
    One accepted round of the derivation loop.

    k is assigned by the coordinator and overrides whatever the model returned.
    """
    k: int = 0
    goal: str = ""
    analysis: str = ""
    equations: List[Equation] = Field(default_factory=list)
    result_summary: str = ""
    latex: Optional[str] = None  # Highlighted intermediate result
    stop: Optional[bool] = None  # Model-declared termination
    main_result_latex: Optional[str] = None


class ValidationReport(BaseModel):
    """Outcome of the quality gate. failures is empty iff passed."""
    passed: bool
    failures: List[str] = Field(default_factory=list)


# ============================================================================
# CONFIGURATION OBJECTS (threaded explicitly through the pipeline)
# ============================================================================


class DetailProfile(BaseModel):
    """Quality thresholds and token limits attached to a detail level."""
    min_equations: int
    min_rigor_keywords: int
    iteration_max_tokens: int


DETAIL_PROFILES: Dict[str, DetailProfile] = {
    "basic": DetailProfile(min_equations=3, min_rigor_keywords=1, iteration_max_tokens=2000),
    "standard": DetailProfile(min_equations=4, min_rigor_keywords=1, iteration_max_tokens=3000),
    "exhaustive": DetailProfile(min_equations=6, min_rigor_keywords=2, iteration_max_tokens=3500),
}


class DerivationConfig(BaseModel):
    """Tunables for one pipeline run."""
    max_iterations: int = 4
    temperature: float = 0.1
    detail_level: DetailLevel = "exhaustive"
    strategy: Strategy = "planner"
    max_retries: int = 3
    base_delay_ms: int = 500
    inter_round_delay_ms: int = 0
    enable_appendix: bool = True

    @property
    def profile(self) -> DetailProfile:
        return DETAIL_PROFILES[self.detail_level]


class ProviderConfig(BaseModel):
    """Resolved provider endpoint, credentials and wire format."""
    name: str
    endpoint_url: str
    api_key: str
    model_id: str
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    wire_format: WireFormat = "openai"


# ============================================================================
# OUTPUTS
# ============================================================================


class DerivationResult(BaseModel):
    """Everything a solve run hands back to the caller."""
    iterations: List[Iteration] = Field(default_factory=list)
    plan: List[PlanStep] = Field(default_factory=list)
    latex: str = ""
    main_result_latex: str = ""
    appendix_latex: str = ""
    terminated_early: bool = False
    termination_reason: str = ""


class DocumentMeta(BaseModel):
    """Front matter for the rendered LaTeX document."""
    title: str = "Iterative Analytical Solution of the Schrödinger Equation"
    author: str = "AutoSolver"
    abstract: str = ""
    problem: str = ""
    equation_latex: str = ""
    assumptions: List[str] = Field(default_factory=list)
    notation: List[str] = Field(default_factory=list)


class FinalSection(BaseModel):
    """Conclusion text, final result and synthesized appendix."""
    text: str = ""
    main_result_latex: str = ""
    appendix_latex: str = ""


# ============================================================================
# API REQUESTS
# ============================================================================


class SolveRequest(BaseModel):
    """Request body for the derivation endpoints (camelCase aliases accepted)."""
    equation: Optional[str] = None
    request_text: Optional[str] = Field(default=None, alias="requestText")
    variable: str = "x"
    context: ProblemContext = Field(default_factory=ProblemContext)
    max_iterations: Optional[Any] = Field(default=None, alias="maxIterations")
    temperature: Optional[Any] = None
    detail_level: DetailLevel = Field(default="exhaustive", alias="detailLevel")
    strategy: Strategy = "planner"
    provider: Optional[str] = None
    mode: Optional[Literal["general", "schrodinger"]] = None

    class Config:
        populate_by_name = True
        extra = "ignore"

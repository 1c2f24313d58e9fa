"""
Derivation Coordinator - orchestrates the iterative derivation workflow.
Planning → iteration rounds (validate / revise inline) → appendix synthesis → document.
"""
import asyncio
import logging
from typing import List, Optional

from eqnsolver.shared.chat_client import ResilientChatClient
from eqnsolver.shared.latex_utils import normalize_latex_tokens
from eqnsolver.shared.models import (
    DerivationConfig,
    DerivationResult,
    DocumentMeta,
    FinalSection,
    Iteration,
    PlanStep,
    ProblemSpec,
    ProviderConfig,
)
from eqnsolver.derivation.agents.appendix_synthesizer import AppendixSynthesizerAgent
from eqnsolver.derivation.agents.iteration_submitter import IterationSubmitterAgent
from eqnsolver.derivation.agents.planner import PlannerAgent
from eqnsolver.derivation.latex.document_builder import build_latex_document
from eqnsolver.derivation.validation.iteration_validator import validate_iteration

logger = logging.getLogger(__name__)


DOCUMENT_ABSTRACT = (
    "An iterative, expert-level derivation using physically justified approximations "
    "and checks for consistency, normalization, and boundary conditions."
)
CONCLUSION_TEXT = (
    "We have constructed the solution iteratively, with stated assumptions and regimes of validity. "
    "The final expression summarizes the solved wavefunction/energies under the specified conditions."
)

# Detail levels that warrant the appendix pass
APPENDIX_DETAIL_LEVELS = ("standard", "exhaustive")

# Termination reasons
REASON_COMPLETED = "completed"
REASON_MODEL_STOP = "model_stop"
REASON_UNPARSEABLE = "unparseable_output"
REASON_QUALITY_GATE = "quality_gate"


def _normalize_iteration(iteration: Iteration, k: int) -> Iteration:
    """
    Assign k and prefix bare macro names; returns a new Iteration.

    Equation text is normalized too: models write "lambda" or "hbar" in the
    justification prose, and the document renders that prose escaped, so the
    macro shows up literally as \\lambda rather than being typeset.
    """
    equations = [
        eq.model_copy(update={
            "latex": normalize_latex_tokens(eq.latex),
            "text": normalize_latex_tokens(eq.text),
        })
        for eq in iteration.equations
    ]
    update = {"k": k, "equations": equations}
    if iteration.latex:
        update["latex"] = normalize_latex_tokens(iteration.latex)
    if iteration.main_result_latex:
        update["main_result_latex"] = normalize_latex_tokens(iteration.main_result_latex)
    return iteration.model_copy(update=update)


def build_document_meta(problem: ProblemSpec) -> DocumentMeta:
    """Front matter; problem text falls back from context.problem to the request, then the equation."""
    context = problem.context
    return DocumentMeta(
        abstract=DOCUMENT_ABSTRACT,
        problem=context.problem or problem.request_text or problem.equation,
        equation_latex=context.equation_latex or "",
        assumptions=list(context.assumptions),
        notation=list(context.notation),
    )


class DerivationCoordinator:
    """
    Coordinates one derivation run.
    - Optional planning phase (strategy "planner")
    - Sequential rounds; each accepted iteration feeds the next prompt
    - One revision per round; a round that cannot produce a valid iteration ends the run
    - Appendix synthesis and LaTeX rendering
    """

    def __init__(
        self,
        chat_client: ResilientChatClient,
        provider: ProviderConfig,
        config: Optional[DerivationConfig] = None,
    ):
        self.config = config or DerivationConfig()
        self.provider = provider

        self.planner = PlannerAgent(chat_client, provider, self.config)
        self.submitter = IterationSubmitterAgent(chat_client, provider, self.config)
        self.synthesizer = AppendixSynthesizerAgent(chat_client, provider, self.config)

        self.current_mode = "idle"
        self._termination_reason = REASON_COMPLETED

    def total_rounds(self, plan: List[PlanStep]) -> int:
        """min(plan length, max iterations) with a plan, max iterations without one."""
        if plan:
            return min(len(plan), self.config.max_iterations)
        return self.config.max_iterations

    def _should_synthesize(self, iterations: List[Iteration]) -> bool:
        return (
            bool(iterations)
            and self.config.enable_appendix
            and self.config.detail_level in APPENDIX_DETAIL_LEVELS
        )

    async def _run_round(
        self,
        problem: ProblemSpec,
        iterations: List[Iteration],
        plan_step: Optional[PlanStep],
        k: int,
    ) -> Optional[Iteration]:
        """
        Produce one accepted iteration, or None when the run must stop.
        Provider errors from the round call propagate.
        """
        previous = iterations[-1] if iterations else None

        candidate = await self.submitter.generate(problem, iterations, plan_step)
        if candidate is None:
            logger.warning(f"Round {k}: no JSON could be recovered, stopping")
            self._termination_reason = REASON_UNPARSEABLE
            return None

        report = validate_iteration(candidate, previous, self.config.profile)
        if report.passed:
            return candidate

        logger.info(f"Round {k}: candidate REJECTED - {'; '.join(report.failures)}")
        revised = await self.submitter.revise(problem, iterations, plan_step, report.failures)
        if revised is None:
            logger.warning(f"Round {k}: revision produced no usable JSON, stopping")
            self._termination_reason = REASON_QUALITY_GATE
            return None

        report = validate_iteration(revised, previous, self.config.profile)
        if not report.passed:
            logger.info(f"Round {k}: revision REJECTED - {'; '.join(report.failures)}")
            self._termination_reason = REASON_QUALITY_GATE
            return None

        logger.info(f"Round {k}: revision ACCEPTED")
        return revised

    async def run(self, problem: ProblemSpec) -> DerivationResult:
        """
        Execute the full pipeline for one problem.

        Returns:
            DerivationResult with the accepted iterations and rendered document.
            Quality and parse failures end the run early but still return a result.

        Raises:
            ChatClientError: A round's provider call failed
        """
        self._termination_reason = REASON_COMPLETED

        # PHASE 1: planning
        plan: List[PlanStep] = []
        if self.config.strategy == "planner":
            self.current_mode = "planning"
            plan = await self.planner.plan(problem.equation, problem.context, problem.request_text)

        # PHASE 2: iteration rounds
        self.current_mode = "iterating"
        iterations: List[Iteration] = []
        rounds = self.total_rounds(plan)
        logger.info(
            f"Derivation: {rounds} rounds (plan={len(plan)}, max_iterations={self.config.max_iterations}, "
            f"detail={self.config.detail_level}, provider={self.provider.name})"
        )

        for k in range(1, rounds + 1):
            if k > 1 and self.config.inter_round_delay_ms > 0:
                await asyncio.sleep(self.config.inter_round_delay_ms / 1000.0)

            plan_step = plan[k - 1] if plan else None
            logger.info(f"--- Round {k}/{rounds}" + (f": {plan_step.title}" if plan_step else "") + " ---")

            accepted = await self._run_round(problem, iterations, plan_step, k)
            if accepted is None:
                break

            iteration = _normalize_iteration(accepted, k)
            iterations.append(iteration)
            logger.info(f"Round {k}: accepted ({len(iteration.equations)} equations)")

            if iteration.stop is True:
                logger.info(f"Round {k}: stop requested by model")
                self._termination_reason = REASON_MODEL_STOP
                break

        # PHASE 3: synthesis
        self.current_mode = "synthesizing"
        main_result_latex = (iterations[-1].main_result_latex or "") if iterations else ""
        final = FinalSection(text=CONCLUSION_TEXT, main_result_latex=main_result_latex)

        if self._should_synthesize(iterations):
            synthesis = await self.synthesizer.synthesize(problem, iterations)
            final.appendix_latex = synthesis.appendix_latex
            if not final.main_result_latex and synthesis.main_result_latex:
                final.main_result_latex = synthesis.main_result_latex

        latex = build_latex_document(build_document_meta(problem), iterations, final)

        self.current_mode = "done"
        terminated_early = self._termination_reason in (REASON_UNPARSEABLE, REASON_QUALITY_GATE)
        logger.info(
            f"Derivation finished: {len(iterations)} iterations accepted, "
            f"reason={self._termination_reason}, appendix={'yes' if final.appendix_latex else 'no'}"
        )

        return DerivationResult(
            iterations=iterations,
            plan=plan,
            latex=latex,
            main_result_latex=final.main_result_latex,
            appendix_latex=final.appendix_latex,
            terminated_early=terminated_early,
            termination_reason=self._termination_reason,
        )

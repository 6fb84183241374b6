"""Compatibility analysis and final recommendation capabilities."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from planmind.agents.capabilities.base import BaseCapability, error_entry
from planmind.agents.capabilities.search import plan_label
from planmind.agents.models import (
    CapabilityName,
    CapabilityOutput,
    IntentClassification,
)
from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import ANALYZE_PROMPT, RECOMMEND_PROMPT, describe_client_info
from planmind.retrieval.models import FusedDocument
from planmind.state.models import (
    Compatibility,
    CompatibilityAnalysis,
    ConversationState,
    PlanAnalysis,
    Recommendation,
    StateError,
)
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

MAX_DOC_CHARS = 800


def _plan_id(doc: FusedDocument) -> str:
    return str(doc.metadata.get("plan_id") or doc.id)


def _compatibility(score: float) -> Compatibility:
    if score >= 75:
        return "high"
    if score >= 50:
        return "medium"
    return "low"


def heuristic_analysis(docs: Sequence[FusedDocument]) -> CompatibilityAnalysis:
    """Rank plans by fused relevance when the model is unavailable.

    Scores are the plan's best RRF score relative to the top document, with
    partially relevant documents discounted.
    """
    best: dict[str, tuple[float, FusedDocument]] = {}
    for doc in docs:
        weight = 0.7 if doc.grade and doc.grade.label == "partially_relevant" else 1.0
        score = doc.rrf_score * weight
        plan = _plan_id(doc)
        if plan not in best or score > best[plan][0]:
            best[plan] = (score, doc)
    if not best:
        return CompatibilityAnalysis(reasoning="No plans to analyze.")

    top = max(score for score, _ in best.values())
    ranked = []
    for plan, (score, doc) in sorted(best.items(), key=lambda kv: -kv[1][0]):
        relative = round(100 * score / top, 1) if top > 0 else 0.0
        pros = [doc.grade.reason] if doc.grade and doc.grade.reason else []
        ranked.append(
            PlanAnalysis(
                plan_id=plan,
                plan_name=plan_label(doc),
                score=relative,
                compatibility=_compatibility(relative),
                pros=pros,
            )
        )
    return CompatibilityAnalysis(
        ranked=ranked,
        top_recommendation=ranked[0].plan_id,
        reasoning="Ranked by search relevance; detailed analysis was unavailable.",
    )


def _format_documents(docs: Sequence[FusedDocument]) -> str:
    return "\n\n".join(
        f"[plan_id={_plan_id(d)}] {plan_label(d)}\n{d.content[:MAX_DOC_CHARS]}"
        for d in docs
    )


class AnalyzeCompatibilityCapability(BaseCapability):
    """Scores the retrieved plans against the profile."""

    name = CapabilityName.ANALYZE_COMPATIBILITY

    def __init__(self, completion: ChatCompletionService | None = None) -> None:
        self._completion = completion

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        errors = []
        analysis: CompatibilityAnalysis | None = None
        if self._completion is not None:
            prompt = ANALYZE_PROMPT.format(
                client_info=describe_client_info(state.client_info),
                documents=_format_documents(state.search_results),
            )
            try:
                analysis = await self._completion.complete(
                    prompt, CompatibilityAnalysis
                )
            except DEGRADABLE_EXCEPTIONS as exc:
                log_error_with_context(exc, "analyze_compatibility")
                errors.append(error_entry(self.name, exc))
        if analysis is None or not analysis.ranked:
            analysis = heuristic_analysis(state.search_results)

        lines = [
            f"{i}. {p.plan_name or p.plan_id}: {p.score:.0f}/100 ({p.compatibility})"
            for i, p in enumerate(analysis.ranked[:5], start=1)
        ]
        response = "Here is how the plans fit your profile:\n" + "\n".join(lines)
        if analysis.reasoning:
            response += f"\n\n{analysis.reasoning}"
        logger.info("Analyzed {} plans", len(analysis.ranked))
        return CapabilityOutput(response=response, analysis=analysis, errors=errors)


def template_recommendation(analysis: CompatibilityAnalysis) -> Recommendation:
    """Static recommendation rendered from the ranked analysis."""
    if not analysis.ranked:
        return Recommendation(
            markdown=(
                "I don't have enough information to recommend a plan yet. "
                "Tell me more about what you need and I'll search again."
            )
        )
    top, *rest = analysis.ranked
    alternatives = rest[:2]
    md = [
        "## Recommendation",
        f"**{top.plan_name or top.plan_id}** is the best fit "
        f"({top.score:.0f}/100, {top.compatibility} compatibility).",
    ]
    if top.pros:
        md += ["", "### Highlights", *(f"- {p}" for p in top.pros)]
    if alternatives:
        md += [
            "",
            "### Alternatives",
            *(
                f"- {a.plan_name or a.plan_id} ({a.score:.0f}/100)"
                for a in alternatives
            ),
        ]
    next_steps = ["Confirm prices for your profile", "Check waiting periods"]
    md += ["", "### Next steps", *(f"- {s}" for s in next_steps)]
    return Recommendation(
        markdown="\n".join(md),
        top_plan_id=top.plan_id,
        alternative_ids=[a.plan_id for a in alternatives],
        highlights=list(top.pros),
        warnings=list(top.cons),
        next_steps=next_steps,
    )


class GenerateRecommendationCapability(BaseCapability):
    """Turns the current analysis into a final recommendation."""

    name = CapabilityName.GENERATE_RECOMMENDATION

    def __init__(self, completion: ChatCompletionService | None = None) -> None:
        self._completion = completion

    async def run(
        self,
        state: ConversationState,
        classification: IntentClassification,
        message: str,
    ) -> CapabilityOutput:
        analysis = state.compatibility_analysis or CompatibilityAnalysis()
        errors = []
        recommendation: Recommendation | None = None
        if self._completion is not None and analysis.ranked:
            prompt = RECOMMEND_PROMPT.format(
                client_info=describe_client_info(state.client_info),
                analysis=analysis.model_dump_json(indent=2),
            )
            try:
                recommendation = await self._completion.complete(
                    prompt, Recommendation
                )
            except DEGRADABLE_EXCEPTIONS as exc:
                log_error_with_context(exc, "generate_recommendation")
                errors.append(error_entry(self.name, exc))
        if recommendation is not None and not recommendation.markdown.strip():
            logger.warning("Model recommendation was blank; using the template")
            errors.append(
                StateError(capability=str(self.name), message="blank_recommendation")
            )
            recommendation = None
        if recommendation is None:
            recommendation = template_recommendation(analysis)
        return CapabilityOutput(
            response=recommendation.markdown,
            recommendation=recommendation,
            errors=errors,
        )


__all__ = [
    "AnalyzeCompatibilityCapability",
    "GenerateRecommendationCapability",
    "heuristic_analysis",
    "template_recommendation",
]

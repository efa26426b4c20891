import json
import logging
import math
from typing import Any, Dict, List, Optional

from . import agents
from .config import EndpointConfig
from .errors import EvaluationError, ToolFailure
from .llm import completion_text
from .schemas import AlignmentVerdict, VeracityVerdict
from .tools import ToolSpec, run_tool_session

logger = logging.getLogger("uvicorn.error")


def _oas_text(spec: Any) -> str:
    return spec if isinstance(spec, str) else json.dumps(spec, indent=2)


def parse_alignment_score(text: str) -> AlignmentVerdict:
    raw = (text or "").strip()
    try:
        score = float(raw)
    except ValueError:
        raise EvaluationError(f"Alignment evaluator returned an invalid score: {raw!r}")
    if math.isnan(score) or math.isinf(score) or score < 0.0 or score > 5.0:
        raise EvaluationError(f"Alignment evaluator returned an out-of-range score: {raw!r}")
    return AlignmentVerdict(score=score)


def parse_veracity(text: str) -> VeracityVerdict:
    result = (text or "").strip().lower()
    if result not in ("true", "false"):
        raise EvaluationError(f"Veracity evaluator returned an invalid response: {text!r}")
    return VeracityVerdict(is_accurate=result == "true")


class AlignmentScorer:
    """Scores 0.0-5.0 how closely a spec covers exactly what the query asked for."""

    def __init__(self, llm: Any, endpoint: EndpointConfig):
        self.llm = llm
        self.endpoint = endpoint

    async def score(self, query: str, spec: Any) -> AlignmentVerdict:
        messages = [
            {"role": "system", "content": agents.ALIGNMENT_EVALUATOR_SYSTEM},
            {"role": "user", "content": agents.ALIGNMENT_EVALUATOR_PROMPT.format(query=query, oas=_oas_text(spec))},
        ]
        try:
            data = await self.llm.chat_completion(
                model=self.endpoint.model_id,
                messages=messages,
                temperature=0.1,
                max_tokens=16,
                base_url=self.endpoint.base_url,
                api_key=self.endpoint.api_key,
            )
        except (ToolFailure, ValueError) as exc:
            raise EvaluationError(f"Alignment evaluation failed: {exc}") from exc
        verdict = parse_alignment_score(completion_text(data))
        logger.info("Alignment score: %.2f", verdict.score)
        return verdict


class VeracityScorer:
    """Checks a spec against live documentation using the search and read tools."""

    def __init__(self, llm: Any, endpoint: EndpointConfig, tools: List[ToolSpec], max_rounds: int = 5):
        self.llm = llm
        self.endpoint = endpoint
        self.tools = tools
        self.max_rounds = max_rounds

    async def check(
        self,
        spec: Any,
        source_urls: List[str],
        operation: Optional[str] = None,
    ) -> VeracityVerdict:
        if source_urls:
            sources = ", ".join(source_urls)
        else:
            sources = agents.VERACITY_NO_SOURCES.format(operation=operation or "the operation in the OAS")
        try:
            result = await run_tool_session(
                self.llm,
                self.endpoint,
                system=agents.VERACITY_EVALUATOR_SYSTEM,
                prompt=agents.VERACITY_EVALUATOR_PROMPT.format(sources=sources, oas=_oas_text(spec)),
                tools=self.tools,
                max_rounds=self.max_rounds,
                temperature=0.1,
                max_tokens=1024,
            )
        except (ToolFailure, ValueError) as exc:
            raise EvaluationError(f"Veracity evaluation failed: {exc}") from exc
        if result.exhausted:
            raise EvaluationError(
                f"Veracity evaluation failed: no verdict within {self.max_rounds} round(s)"
            )
        verdict = parse_veracity(result.text)
        logger.info("Veracity verdict: %s (%s)", verdict.is_accurate, sources)
        return verdict


def describe_checks(
    validation_error: Optional[str],
    alignment: Optional[AlignmentVerdict],
    veracity: Optional[VeracityVerdict],
    threshold: float,
) -> Dict[str, Any]:
    findings: Dict[str, Any] = {}
    if validation_error:
        findings["validation"] = validation_error
    if alignment is not None and alignment.score < threshold:
        findings["alignment"] = f"score {alignment.score:.2f} is below the required {threshold:.2f}"
    if veracity is not None and not veracity.is_accurate:
        findings["veracity"] = "the OAS does not match the current documentation"
    return findings

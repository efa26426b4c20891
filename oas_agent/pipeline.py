"""Spec pipeline: query -> intent -> operations -> evidence -> OAS fragment -> checks.

Stages run strictly in order and each one converts its collaborators' failures into a
StageError, so the first failing stage ends the run with a SpecFailure and nothing
downstream is invoked. asyncio.CancelledError is never caught here.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from . import agents
from .config import AppSettings
from .errors import EvaluationError, StageError, ToolFailure
from .evaluators import AlignmentScorer, VeracityScorer, describe_checks
from .llm import completion_text, json_schema_format
from .schemas import (
    INTENT_SCHEMA,
    OAS_FRAGMENT_SCHEMA,
    OPERATIONS_SCHEMA,
    AlignmentVerdict,
    CandidateSpec,
    EvidenceBundle,
    EvidenceSource,
    IntentDecision,
    NotSpecRequest,
    OperationList,
    PipelineResult,
    SpecFailure,
    SpecSuccess,
    VeracityVerdict,
)
from .tools import Toolkit, run_tool_session

logger = logging.getLogger("uvicorn.error")

UNDECOMPOSABLE_MESSAGE = "Could not understand the specific API operations requested in the query."

GATHERING_LABEL = "Information Gathering"
ITERATIVE_LABEL = "Iterative Generation & Validation"
STRUCTURED_LABEL = "JSON Generation"


class Stage(str, Enum):
    CLASSIFYING = "classifying"
    DECOMPOSING = "decomposing"
    GATHERING = "gathering"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    EVALUATING = "evaluating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineRun:
    query: str
    stage: Stage = Stage.CLASSIFYING
    operation: Optional[str] = None
    history: List[Stage] = field(default_factory=lambda: [Stage.CLASSIFYING])
    cycles: int = 0

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        self.history.append(stage)
        logger.info("Spec run [%s] -> %s", self.operation or self.query, stage.value)


def strip_code_fence(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def extract_json_block(text: str) -> Optional[str]:
    """Return the first top-level brace-balanced {...} span, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        start = text.find("{", start + 1)
    return None


def parse_intent(text: str) -> IntentDecision:
    cleaned = strip_code_fence(text)
    value: Any = cleaned
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        value = parsed.get("intent")
    elif isinstance(parsed, str):
        value = parsed
    if not isinstance(value, str):
        return IntentDecision(is_spec_request=False)
    return IntentDecision(is_spec_request=value.strip().strip(".\"'").lower() == "yes")


def parse_operations(text: str) -> OperationList:
    parsed = json.loads(strip_code_fence(text))
    if isinstance(parsed, dict):
        parsed = parsed.get("operations")
    if not isinstance(parsed, list):
        raise ValueError("expected a JSON object with an 'operations' array")
    operations = [str(op).strip() for op in parsed if isinstance(op, str) and op.strip()]
    return OperationList(operations=operations)


def _dump(document: Dict[str, Any]) -> str:
    return json.dumps(document, indent=2)


class SpecPipeline:
    def __init__(self, llm: Any, toolkit: Toolkit, settings: AppSettings):
        self.llm = llm
        self.toolkit = toolkit
        self.settings = settings
        self.generator = settings.endpoint("generator")
        self.evaluator = settings.endpoint("evaluator")
        self.alignment = AlignmentScorer(llm, self.evaluator)
        self.veracity = VeracityScorer(
            llm, self.evaluator, toolkit.veracity_tools(), max_rounds=settings.veracity_max_rounds
        )

    async def run(self, query: str) -> PipelineResult:
        state = PipelineRun(query=query)
        logger.info("Received query: %s", query)
        try:
            intent = await self.classify_intent(query)
            if not intent.is_spec_request:
                logger.info("Request is not for an OAS; returning an empty result.")
                state.advance(Stage.DONE)
                return NotSpecRequest()

            state.advance(Stage.DECOMPOSING)
            operations = await self.decompose(query)
            operation = operations.selected
            if operation is None:
                logger.info("Could not decompose request into specific operations.")
                state.advance(Stage.FAILED)
                return SpecFailure(kind="caller_error", operation=query, reason=UNDECOMPOSABLE_MESSAGE)
            if operations.skipped:
                logger.warning("Only the first operation is generated; skipping %s", operations.skipped)
            state.operation = operation

            state.advance(Stage.GATHERING)
            evidence = await self.gather_evidence(operation)

            if self.settings.evaluation_enabled:
                candidate = await self.refine(state, query, evidence)
            else:
                state.advance(Stage.SYNTHESIZING)
                candidate = await self.synthesize(evidence)
                state.advance(Stage.VALIDATING)
                self.ensure_valid(candidate)
        except StageError as exc:
            logger.error("Spec run failed for %r: %s", state.operation or query, exc)
            state.advance(Stage.FAILED)
            return SpecFailure(operation=state.operation or query, reason=exc.reason)
        state.advance(Stage.DONE)
        logger.info("Generated OAS for operation: %s (version %d)", state.operation, candidate.version)
        return SpecSuccess(operation=state.operation or query, spec=candidate.document)

    async def _generate(self, system: str, prompt: str, schema_name: str, schema: Dict[str, Any], max_tokens: int) -> str:
        data = await self.llm.chat_completion(
            model=self.generator.model_id,
            messages=[{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            temperature=0.0,
            max_tokens=max_tokens,
            response_format=json_schema_format(schema_name, schema),
            base_url=self.generator.base_url,
            api_key=self.generator.api_key,
        )
        return completion_text(data)

    async def classify_intent(self, query: str) -> IntentDecision:
        try:
            text = await self._generate(
                agents.INTENT_CLASSIFIER_SYSTEM,
                agents.INTENT_CLASSIFIER_PROMPT.format(query=query),
                "intent",
                INTENT_SCHEMA,
                max_tokens=32,
            )
        except (ToolFailure, ValueError) as exc:
            raise StageError("Intent Classification", str(exc)) from exc
        decision = parse_intent(text)
        logger.info("Intent check: %s", "yes" if decision.is_spec_request else "no")
        return decision

    async def decompose(self, query: str) -> OperationList:
        try:
            text = await self._generate(
                agents.OPERATION_DECOMPOSER_SYSTEM,
                agents.OPERATION_DECOMPOSER_PROMPT.format(query=query),
                "operations",
                OPERATIONS_SCHEMA,
                max_tokens=512,
            )
            operations = parse_operations(text)
        except (ToolFailure, ValueError) as exc:
            raise StageError("Operation Decomposition", str(exc)) from exc
        logger.info("Decomposed operations: %s", operations.operations)
        return operations

    async def gather_evidence(self, operation: str) -> EvidenceBundle:
        try:
            result = await run_tool_session(
                self.llm,
                self.generator,
                system=agents.EVIDENCE_GATHERER_SYSTEM.format(operation=operation),
                prompt=agents.EVIDENCE_GATHERER_PROMPT.format(operation=operation),
                tools=self.toolkit.gathering_tools(),
                max_rounds=self.settings.gather_max_rounds,
            )
        except (ToolFailure, ValueError) as exc:
            raise StageError(GATHERING_LABEL, str(exc)) from exc
        summary = result.text.strip()
        if not summary:
            detail = "Agent failed to produce a text summary."
            if result.exhausted:
                detail = f"Agent failed to produce a text summary within {result.rounds} round(s)."
            raise StageError(GATHERING_LABEL, detail)
        sources = [
            EvidenceSource(url=str(inv.arguments.get("url")), extracted_text=inv.result)
            for inv in result.invocations_of("read_webpage_content")
            if inv.ok and isinstance(inv.result, str)
        ]
        search_urls: List[str] = []
        for inv in result.invocations_of("search_api_documentation"):
            if inv.ok and isinstance(inv.result, list):
                search_urls.extend(str(url) for url in inv.result)
        logger.info(
            "Gathered evidence for %r: %d source(s), %d search hit(s), %d round(s)",
            operation,
            len(sources),
            len(search_urls),
            result.rounds,
        )
        return EvidenceBundle(operation=operation, summary=summary, sources=sources, search_urls=search_urls)

    def _synthesis_prompt(
        self,
        evidence: EvidenceBundle,
        previous: Optional[CandidateSpec],
        findings: Optional[Dict[str, Any]],
    ) -> str:
        prompt = agents.SYNTHESIS_PROMPT.format(evidence=evidence.summary)
        if previous is not None and findings:
            findings_text = "\n".join(f"- {key}: {value}" for key, value in findings.items())
            prompt += agents.REVISION_PROMPT.format(candidate=_dump(previous.document), findings=findings_text)
        return prompt

    async def synthesize(
        self,
        evidence: EvidenceBundle,
        previous: Optional[CandidateSpec] = None,
        findings: Optional[Dict[str, Any]] = None,
    ) -> CandidateSpec:
        prompt = self._synthesis_prompt(evidence, previous, findings)
        if self.settings.synthesis_mode == "structured":
            document = await self._synthesize_structured(prompt)
        else:
            document = await self._synthesize_iterative(prompt)
        if previous is None:
            return CandidateSpec.first(document)
        return previous.revise(document)

    async def _synthesize_structured(self, prompt: str) -> Dict[str, Any]:
        try:
            text = await self._generate(
                agents.STRUCTURED_SYNTHESIZER_SYSTEM, prompt, "oas_fragment", OAS_FRAGMENT_SCHEMA, max_tokens=4096
            )
        except (ToolFailure, ValueError) as exc:
            raise StageError(STRUCTURED_LABEL, str(exc)) from exc
        try:
            document = json.loads(strip_code_fence(text))
        except ValueError:
            raise StageError(STRUCTURED_LABEL, f"Model output was not valid JSON. Output: {text}")
        if not isinstance(document, dict) or not document:
            raise StageError(STRUCTURED_LABEL, "Generation resulted in an empty JSON object '{}'.")
        return document

    async def _synthesize_iterative(self, prompt: str) -> Dict[str, Any]:
        try:
            result = await run_tool_session(
                self.llm,
                self.generator,
                system=agents.ITERATIVE_SYNTHESIZER_SYSTEM,
                prompt=prompt,
                tools=self.toolkit.validation_tools(),
                max_rounds=self.settings.synthesis_max_rounds,
            )
        except (ToolFailure, ValueError) as exc:
            raise StageError(ITERATIVE_LABEL, str(exc)) from exc
        if result.exhausted:
            raise StageError(
                ITERATIVE_LABEL,
                f"Validation did not converge within {result.rounds} round(s) "
                f"({len(result.invocations)} validator call(s)).",
            )
        raw_output = result.text.strip()
        block = extract_json_block(raw_output)
        if block is None:
            raise StageError(
                ITERATIVE_LABEL, f"Agent output did not contain a recognizable JSON block. Output: {raw_output}"
            )
        try:
            document = json.loads(block)
        except ValueError:
            raise StageError(ITERATIVE_LABEL, f"Final extracted block was not valid JSON. Extracted: {block}")
        if not isinstance(document, dict) or not document:
            raise StageError(ITERATIVE_LABEL, "Iterative generation resulted in an empty JSON object '{}'.")
        return document

    def _label(self) -> str:
        return STRUCTURED_LABEL if self.settings.synthesis_mode == "structured" else ITERATIVE_LABEL

    def check_valid(self, candidate: CandidateSpec) -> Optional[str]:
        try:
            verdict = self.toolkit.validate(json.dumps(candidate.document))
        except Exception as exc:
            raise StageError(self._label(), f"Validator failed: {exc}") from exc
        return None if verdict.is_valid else (verdict.error or "OAS validation failed")

    def ensure_valid(self, candidate: CandidateSpec) -> None:
        error = self.check_valid(candidate)
        if error:
            raise StageError(self._label(), f"Final JSON failed validation: {error}")

    async def evaluate(
        self, query: str, candidate: CandidateSpec, evidence: EvidenceBundle
    ) -> Tuple[AlignmentVerdict, Optional[VeracityVerdict]]:
        try:
            alignment = await self.alignment.score(query, candidate.document)
            if alignment.score < self.settings.alignment_threshold:
                return alignment, None
            veracity = await self.veracity.check(candidate.document, evidence.source_urls, evidence.operation)
        except EvaluationError as exc:
            raise StageError("Evaluation", str(exc)) from exc
        return alignment, veracity

    async def refine(self, state: PipelineRun, query: str, evidence: EvidenceBundle) -> CandidateSpec:
        """Synthesize -> validate -> align -> verify, revising until all pass or cycles run out."""
        candidate: Optional[CandidateSpec] = None
        findings: Dict[str, Any] = {}
        max_cycles = self.settings.evaluation_max_cycles
        for cycle in range(1, max_cycles + 1):
            state.cycles = cycle
            state.advance(Stage.SYNTHESIZING)
            candidate = await self.synthesize(evidence, previous=candidate, findings=findings)

            state.advance(Stage.VALIDATING)
            validation_error = self.check_valid(candidate)
            alignment: Optional[AlignmentVerdict] = None
            veracity: Optional[VeracityVerdict] = None
            if validation_error is None:
                state.advance(Stage.EVALUATING)
                alignment, veracity = await self.evaluate(query, candidate, evidence)
            findings = describe_checks(validation_error, alignment, veracity, self.settings.alignment_threshold)
            if not findings:
                logger.info("Candidate v%d passed all checks on cycle %d", candidate.version, cycle)
                return candidate
            logger.warning("Cycle %d/%d failed checks: %s", cycle, max_cycles, findings)
        summary = "; ".join(f"{key}: {value}" for key, value in findings.items())
        raise StageError("Evaluation", f"budget of {max_cycles} cycle(s) exhausted. Last findings: {summary}")

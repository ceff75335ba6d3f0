"""
Validated rewrite workflow.

The analyzer LLM proposes a rewrite, an independent validator LLM checks it
for semantic equivalence, and a rejected rewrite is regenerated exactly once
with the validator's feedback. The workflow is a langgraph state machine:

    generate -> validate -> passed
                         -> retry_generate -> validate -> passed | failed
    any generation failure -> failed (never retried)

Callers always get an AnalysisResult back; failures are expressed through
``rewritten_query=None`` and ``validator_status="invalid"``.
"""

import json
import logging
from dataclasses import asdict
from typing import Any, Dict, Literal, Optional

from langgraph.graph import StateGraph, START, END

from .analysis_state import AnalysisState
from .llm_tracker import LLMCallError, TokenTrackingLLM, get_global_tracker
from .prompts import build_analyzer_prompt, build_correction_instructions
from .semantic_validator import SemanticValidator
from dbpowerai.core.sql.analysis_result import AnalysisResult, VALIDATOR_INVALID, VALIDATOR_VALID
from dbpowerai.core.sql.heuristic_analyzer import fake_analysis
from dbpowerai.core.storage.result_store import PersistenceSink

logger = logging.getLogger(__name__)

MAX_GENERATIONS = 2

# Placeholder scores: nothing is measured, validation only gates the rewrite.
PASSED_SCORE = 85
PASSED_SEVERITY = "medium"
PASSED_SPEEDUP = 0.5
FAILED_SCORE = 70
FAILED_SEVERITY = "medium"
FAILED_SPEEDUP = 0.0


class GenerationError(Exception):
    """The analyzer reply could not be obtained or parsed."""


def extract_json_block(response_content: str) -> str:
    """Strip markdown fences or surrounding prose from a JSON reply."""
    content = (response_content or "").strip()
    if "```json" in content:
        json_start = content.find("```json") + 7
        json_end = content.find("```", json_start)
        return content[json_start:json_end if json_end != -1 else None].strip()

    json_start = content.find("{")
    json_end = content.rfind("}") + 1
    if json_start != -1 and json_end > json_start:
        return content[json_start:json_end]
    return content


def parse_generation(response_content: str) -> Dict[str, Any]:
    """
    Normalize an analyzer reply into analysis, issues, rewrittenQuery and suggestedIndexes.

    Raises GenerationError when the reply is not a JSON object, has no rewrite
    or carries a field of the wrong shape.
    """
    try:
        parsed = json.loads(extract_json_block(response_content))
    except json.JSONDecodeError as e:
        raise GenerationError(f"Analyzer reply is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise GenerationError("Analyzer reply is not a JSON object")

    rewritten_query = parsed.get("rewrittenQuery")
    if not isinstance(rewritten_query, str) or not rewritten_query.strip():
        raise GenerationError("Analyzer reply has no rewrittenQuery")

    issues = parsed.get("issues")
    if issues is None:
        issues = []
    elif isinstance(issues, str):
        issues = [issues]
    elif not isinstance(issues, list):
        raise GenerationError(f"Analyzer reply has issues of type {type(issues).__name__}, expected a list")

    suggested_indexes = parsed.get("suggestedIndexes")
    if suggested_indexes is None:
        suggested_indexes = ""
    elif isinstance(suggested_indexes, list):
        suggested_indexes = "\n".join(str(index) for index in suggested_indexes)
    elif not isinstance(suggested_indexes, str):
        raise GenerationError(
            f"Analyzer reply has suggestedIndexes of type {type(suggested_indexes).__name__}, expected text"
        )

    return {
        "analysis": str(parsed.get("analysis") or ""),
        "issues": [str(issue) for issue in issues],
        "rewrittenQuery": rewritten_query.strip(),
        "suggestedIndexes": str(suggested_indexes),
    }


class AnalysisOrchestrator:
    """
    Runs the generate / validate / retry-once workflow.

    Args:
        generator: object with ``invoke(prompt, call_type=...)`` returning a message with ``.content``
        validator: SemanticValidator used for the second pass
        persistence_sink: optional PersistenceSink for rewrites rejected on both attempts
    """

    def __init__(self,
                 generator: Any,
                 validator: SemanticValidator,
                 persistence_sink: Optional[PersistenceSink] = None):
        self.generator = generator
        self.validator = validator
        self.persistence_sink = persistence_sink
        self.graph = self._build_graph()

    def run(self, query: str, schema: Optional[str] = None, explain: Optional[str] = None) -> Dict[str, Any]:
        """Run the workflow and return the final state, including call counters and the visited path."""
        initial_state = AnalysisState(query=query, schema_text=schema, explain_text=explain)
        final_state = self.graph.invoke(initial_state)

        logger.info(
            f"Validated analysis finished: outcome={final_state.get('outcome')}, "
            f"path={' -> '.join(final_state.get('visited', []))}"
        )
        return final_state

    def analyze(self, query: str, schema: Optional[str] = None, explain: Optional[str] = None) -> AnalysisResult:
        final_state = self.run(query, schema=schema, explain=explain)
        return AnalysisResult(**final_state["result"])

    # Nodes

    def _generate(self, state: AnalysisState, correction_instructions: Optional[str] = None) -> Dict[str, Any]:
        prompt = build_analyzer_prompt(
            state.query,
            correction_instructions=correction_instructions,
            schema=state.schema_text,
            execution_plan=state.explain_text,
        )
        updates: Dict[str, Any] = {"generator_calls": state.generator_calls + 1}

        try:
            response = self.generator.invoke(prompt, call_type="analyzer")
            updates["generation"] = parse_generation(response.content)
            updates["generation_error"] = None
        except (LLMCallError, GenerationError) as e:
            logger.error(f"Analyzer attempt {updates['generator_calls']} failed: {e}")
            updates["generation"] = None
            updates["generation_error"] = str(e)

        return updates

    def generate_node(self, state: AnalysisState) -> Dict[str, Any]:
        logger.info("Calling analyzer (attempt 1)")
        updates = self._generate(state)
        updates["visited"] = state.visited + ["generate"]
        return updates

    def retry_generate_node(self, state: AnalysisState) -> Dict[str, Any]:
        logger.info("Validation failed, retrying analyzer with corrections")
        correction = build_correction_instructions(state.validator_explanation or "")
        updates = self._generate(state, correction_instructions=correction)
        updates["visited"] = state.visited + ["retry_generate"]
        return updates

    def validate_node(self, state: AnalysisState) -> Dict[str, Any]:
        verdict = self.validator.validate_rewrite(state.query, state.generation["rewrittenQuery"])
        return {
            "validator_valid": verdict.valid,
            "validator_explanation": verdict.explanation,
            "validator_calls": state.validator_calls + 1,
            "visited": state.visited + ["validate"],
        }

    def passed_node(self, state: AnalysisState) -> Dict[str, Any]:
        logger.info(f"Validation passed on attempt {state.generator_calls}")
        generation = state.generation
        result = AnalysisResult(
            score=PASSED_SCORE,
            severity=PASSED_SEVERITY,
            issues=tuple(generation["issues"]),
            suggested_index=generation["suggestedIndexes"],
            rewritten_query=generation["rewrittenQuery"],
            speedup_estimate=PASSED_SPEEDUP,
            validator_status=VALIDATOR_VALID,
            semantic_warning=None,
        )
        return {"outcome": "passed", "result": asdict(result), "visited": state.visited + ["passed"]}

    def failed_node(self, state: AnalysisState) -> Dict[str, Any]:
        updates: Dict[str, Any] = {"outcome": "failed", "visited": state.visited + ["failed"]}

        if state.generation_error is not None:
            if state.generator_calls == 1:
                issues = ("Analysis failed",)
                warning = f"Analyzer failed: {state.generation_error}"
            else:
                issues = ("Analysis failed after retry",)
                warning = "Rewrite could not be validated"
            result = AnalysisResult(
                score=FAILED_SCORE,
                severity=FAILED_SEVERITY,
                issues=issues,
                suggested_index="",
                rewritten_query=None,
                speedup_estimate=FAILED_SPEEDUP,
                validator_status=VALIDATOR_INVALID,
                semantic_warning=warning,
            )
        else:
            logger.warning("Validation failed on both attempts, recording failure for review")
            updates["failure_recorded"] = self._record_failure(state)
            generation = state.generation
            result = AnalysisResult(
                score=FAILED_SCORE,
                severity=FAILED_SEVERITY,
                issues=tuple(generation["issues"]),
                suggested_index=generation["suggestedIndexes"],
                rewritten_query=None,
                speedup_estimate=FAILED_SPEEDUP,
                validator_status=VALIDATOR_INVALID,
                semantic_warning=state.validator_explanation,
            )

        updates["result"] = asdict(result)
        return updates

    def _record_failure(self, state: AnalysisState) -> bool:
        if self.persistence_sink is None:
            logger.warning("No persistence sink configured; validation failure not recorded")
            return False
        try:
            self.persistence_sink.record_validation_failure(
                original_query=state.query,
                attempted_rewrite=state.generation["rewrittenQuery"],
                validator_explanation=state.validator_explanation or "",
            )
            return True
        except Exception:
            # The caller still gets a well-formed result
            logger.exception("Failed to record validation failure")
            return False

    # Routing

    def route_after_generate(self, state: AnalysisState) -> Literal["validate", "failed"]:
        if state.generation_error is not None:
            return "failed"
        return "validate"

    def route_after_validate(self, state: AnalysisState) -> Literal["passed", "retry_generate", "failed"]:
        if state.validator_valid:
            return "passed"
        if state.generator_calls < MAX_GENERATIONS:
            return "retry_generate"
        return "failed"

    def _build_graph(self):
        workflow = StateGraph(AnalysisState)

        workflow.add_node("generate", self.generate_node)
        workflow.add_node("validate", self.validate_node)
        workflow.add_node("retry_generate", self.retry_generate_node)
        workflow.add_node("passed", self.passed_node)
        workflow.add_node("failed", self.failed_node)

        workflow.add_edge(START, "generate")
        workflow.add_conditional_edges(
            "generate",
            self.route_after_generate,
            {"validate": "validate", "failed": "failed"}
        )
        workflow.add_conditional_edges(
            "retry_generate",
            self.route_after_generate,
            {"validate": "validate", "failed": "failed"}
        )
        workflow.add_conditional_edges(
            "validate",
            self.route_after_validate,
            {"passed": "passed", "retry_generate": "retry_generate", "failed": "failed"}
        )
        workflow.add_edge("passed", END)
        workflow.add_edge("failed", END)

        return workflow.compile()


def build_orchestrator(openai_api_key: str,
                       persistence_sink: Optional[PersistenceSink] = None,
                       config: Optional[Any] = None) -> AnalysisOrchestrator:
    """Create analyzer and validator LLMs from configuration and wire the orchestrator."""
    if config is None:
        from dbpowerai.config.startup_config import get_startup_config
        config = get_startup_config()

    generator = TokenTrackingLLM(
        model=config.analyzer_model,
        temperature=config.analyzer_temperature,
        timeout=config.request_timeout_seconds,
        json_mode=True,
        api_key=openai_api_key,
    )
    validator_llm = TokenTrackingLLM(
        model=config.validator_model,
        temperature=config.validator_temperature,
        timeout=config.request_timeout_seconds,
        api_key=openai_api_key,
    )

    tracker = get_global_tracker()
    tracker.register_llm("analyzer", generator)
    tracker.register_llm("validator", validator_llm)

    return AnalysisOrchestrator(generator, SemanticValidator(validator_llm), persistence_sink)


def analyze_with_validation(query: str,
                            openai_api_key: Optional[str],
                            persistence_sink: Optional[PersistenceSink] = None,
                            config: Optional[Any] = None,
                            schema: Optional[str] = None,
                            explain: Optional[str] = None) -> AnalysisResult:
    """
    Entry point for the validated analysis path.

    Without an OpenAI key the heuristic analysis is returned unchanged and no
    network call is made.
    """
    if not openai_api_key:
        logger.info("No OpenAI key configured, using heuristic analysis")
        return fake_analysis(query)

    orchestrator = build_orchestrator(openai_api_key, persistence_sink, config)
    return orchestrator.analyze(query, schema=schema, explain=explain)

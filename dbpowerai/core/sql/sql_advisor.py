# dbpowerai/core/sql/sql_advisor.py

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .pattern_detector import DetectedPattern, detect_patterns
from .sql_parser import SqlStructure, parse_sql
from dbpowerai.core.agent.analysis_graph import extract_json_block
from dbpowerai.core.agent.llm_tracker import LLMCallError
from dbpowerai.core.agent.prompts import build_prompt

logger = logging.getLogger(__name__)

NO_BOTTLENECK = "No major issues detected"


class AdvisorError(Exception):
    """Raised when the advisor workflow cannot produce a report."""


@dataclass
class AdvisorReport:
    """Structured reply of the structure-aware advisor."""
    analysis: str
    warnings: List[str]
    rewritten_query: str
    recommended_indexes: str
    notes: str
    detected_patterns: List[DetectedPattern] = field(default_factory=list)
    bottleneck: str = NO_BOTTLENECK
    structure: Optional[SqlStructure] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "analysis": self.analysis,
            "warnings": list(self.warnings),
            "rewrittenQuery": self.rewritten_query,
            "recommendedIndexes": self.recommended_indexes,
            "notes": self.notes,
            "detectedPatterns": [pattern.to_dict() for pattern in self.detected_patterns],
            "bottleneck": self.bottleneck,
        }


def summarize_bottleneck(patterns: List[DetectedPattern]) -> str:
    return "; ".join(pattern.message for pattern in patterns) or NO_BOTTLENECK


class SQLAdvisor:
    """
    Single-call advisor: extract structure, detect anti-patterns, and ask the
    LLM for an analysis grounded in both.

    Unlike the validated workflow, the rewrite returned here is not checked by
    a second model.
    """

    def __init__(self, llm: Any):
        self.llm = llm

    def optimize(self,
                 query: str,
                 db: str,
                 schema: Optional[str] = None,
                 execution_plan: Optional[str] = None) -> AdvisorReport:
        if not query or not query.strip():
            raise AdvisorError("Query is required")
        if not db or not db.strip():
            raise AdvisorError("Database type is required")

        structure = parse_sql(query)
        patterns = detect_patterns(structure)
        logger.info(f"Advisor analyzing {db} query: {len(structure.tables)} tables, {len(patterns)} patterns detected")

        prompt = build_prompt(query, db, structure, patterns, schema=schema, execution_plan=execution_plan)

        try:
            response = self.llm.invoke(prompt, call_type="advisor")
        except LLMCallError as e:
            raise AdvisorError(f"Failed to analyze query: {e}") from e

        try:
            parsed = json.loads(extract_json_block(response.content))
        except json.JSONDecodeError as e:
            logger.error(f"Advisor reply is not valid JSON: {e}")
            raise AdvisorError("Invalid AI response format") from e

        if not isinstance(parsed, dict):
            raise AdvisorError("Invalid AI response format")

        warnings = parsed.get("warnings")
        if warnings is None:
            warnings = []
        elif isinstance(warnings, str):
            warnings = [warnings]
        elif not isinstance(warnings, list):
            logger.error(f"Advisor reply has warnings of type {type(warnings).__name__}")
            raise AdvisorError("Invalid AI response format")

        return AdvisorReport(
            analysis=str(parsed.get("analysis") or ""),
            warnings=[str(warning) for warning in warnings],
            rewritten_query=str(parsed.get("rewrittenQuery") or ""),
            recommended_indexes=str(parsed.get("recommendedIndexes") or ""),
            notes=str(parsed.get("notes") or ""),
            detected_patterns=patterns,
            bottleneck=summarize_bottleneck(patterns),
            structure=structure,
        )

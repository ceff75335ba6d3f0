# dbpowerai/core/sql/analysis_result.py

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

SEVERITY_ORDER = ("low", "medium", "high", "critical")

VALIDATOR_VALID = "valid"
VALIDATOR_INVALID = "invalid"


def severity_rank(severity: str) -> int:
    """Position of a severity label in SEVERITY_ORDER (unknown labels rank lowest)."""
    try:
        return SEVERITY_ORDER.index(severity)
    except ValueError:
        return 0


def max_severity(*severities: str) -> str:
    """Return the most severe of the given labels."""
    return max(severities, key=severity_rank) if severities else "low"


def estimate_tokens(query: str, schema: Optional[str] = None, explain: Optional[str] = None) -> int:
    """Rough token cost of an analysis request: one token per four characters."""
    total_chars = len(query or "") + len(schema or "") + len(explain or "")
    return math.ceil(total_chars / 4)


@dataclass(frozen=True)
class AnalysisResult:
    """
    The report every analysis path hands back to its caller.

    Instances are built once per request and never mutated. ``validator_status``
    and ``semantic_warning`` are only populated by the validated LLM path.
    """
    score: int
    severity: str
    issues: Tuple[str, ...]
    suggested_index: str
    rewritten_query: Optional[str]
    speedup_estimate: float
    validator_status: Optional[str] = None
    semantic_warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the wire field names the dashboard and webhook consume."""
        payload: Dict[str, Any] = {
            "score": self.score,
            "severity": self.severity,
            "issues": list(self.issues),
            "suggestedIndex": self.suggested_index,
            "rewrittenQuery": self.rewritten_query,
            "speedupEstimate": self.speedup_estimate,
        }
        if self.validator_status is not None:
            payload["validator_status"] = self.validator_status
            payload["semantic_warning"] = self.semantic_warning
        return payload

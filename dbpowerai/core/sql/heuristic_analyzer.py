"""
Local rule-based scorer used when no LLM credential is configured and for
free-tier requests.

It overlaps with the pattern detector on purpose but scores differently; the
free-tier output depends on these exact penalties. The rewritten query it
produces is a naive textual substitution with no semantic verification and is
not guaranteed to be correct for an arbitrary query.
"""

import logging
import re
from typing import List

from .analysis_result import AnalysisResult, max_severity

logger = logging.getLogger(__name__)

BASE_SCORE = 85
FALLBACK_COLUMNS = "id, status, created_at"
FALLBACK_LIMIT = 100
DEFAULT_TABLE = "your_table"
DEFAULT_COLUMN = "status"

MISSING_INDEX_ISSUE = "Missing index on WHERE clause columns"
NO_ISSUES = "No major issues found"


def _has(pattern: str, text: str) -> bool:
    return re.search(pattern, text, re.IGNORECASE) is not None


def score_to_severity(score: int) -> str:
    """Severity ladder applied to the final score."""
    if score < 40:
        return "critical"
    elif score < 60:
        return "high"
    elif score < 75:
        return "medium"
    return "low"


def fake_analysis(query: str) -> AnalysisResult:
    """
    Score a query from keyword hits alone.

    Deterministic and free of I/O; never raises for string input.
    """
    query = query or ""
    query_lower = query.lower()

    issues: List[str] = []
    score = BASE_SCORE
    severity = "low"

    has_select_star = _has(r"\bselect\s+\*", query_lower)
    has_order_without_limit = _has(r"\border\s+by\b", query_lower) and not _has(r"\blimit\b", query_lower)

    if has_select_star:
        issues.append("Using SELECT * retrieves unnecessary columns")
        score -= 15

    if _has(r"\bwhere\b", query_lower) and "index" not in query_lower:
        issues.append(MISSING_INDEX_ISSUE)
        score -= 20
        severity = max_severity(severity, "high")

    if has_order_without_limit:
        issues.append("ORDER BY without LIMIT can cause performance issues")
        score -= 10

    if _has(r"\blike\s+'%", query_lower):
        issues.append("Leading wildcard in LIKE prevents index usage")
        score -= 15
        severity = max_severity(severity, "high")

    if _has(r"\bor\b", query_lower):
        issues.append("OR conditions may prevent index optimization")
        score -= 10

    if _has(r"\bjoin\b", query_lower) and not _has(r"\bon\b", query_lower) and not _has(r"\busing\b", query_lower):
        issues.append("JOIN without proper ON clause")
        score -= 25
        severity = max_severity(severity, "critical")

    if _has(r"\(\s*select\b", query_lower):
        issues.append("Subquery detected - consider using JOIN instead")
        score -= 12

    score = max(0, min(100, score))
    severity = max_severity(severity, score_to_severity(score))

    suggested_index = ""
    if MISSING_INDEX_ISSUE in issues:
        table_match = re.search(r"from\s+(\w+)", query, re.IGNORECASE)
        column_match = re.search(r"where\s+(\w+)", query, re.IGNORECASE)
        table_name = table_match.group(1) if table_match else DEFAULT_TABLE
        column_name = column_match.group(1) if column_match else DEFAULT_COLUMN
        suggested_index = f"CREATE INDEX idx_{table_name}_{column_name}\nON {table_name}({column_name});"

    rewritten_query = query.strip()
    if has_select_star:
        rewritten_query = re.sub(r"SELECT\s+\*", f"SELECT {FALLBACK_COLUMNS}", rewritten_query, flags=re.IGNORECASE)
    if has_order_without_limit:
        if rewritten_query.endswith(";"):
            rewritten_query = rewritten_query[:-1] + f"\nLIMIT {FALLBACK_LIMIT};"
        else:
            rewritten_query += f"\nLIMIT {FALLBACK_LIMIT};"

    speedup_estimate = min(0.9, 0.2 + len(issues) * 0.15) if issues else 0.1

    logger.debug(f"Heuristic analysis: score={score}, severity={severity}, issues={len(issues)}")

    return AnalysisResult(
        score=score,
        severity=severity,
        issues=tuple(issues) if issues else (NO_ISSUES,),
        suggested_index=suggested_index,
        rewritten_query=rewritten_query,
        speedup_estimate=round(speedup_estimate, 2),
    )

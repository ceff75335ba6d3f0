# dbpowerai/core/sql/pattern_detector.py

import re
from dataclasses import dataclass
from typing import Dict, List

from .sql_parser import (
    CASE_CONVERSION,
    LEADING_WILDCARD_LIKE,
    OR_CONDITION,
    WORDPRESS_META_QUERY,
    SqlStructure,
)

_COUNT_STAR = re.compile(r"COUNT\s*\(\s*\*\s*\)", re.IGNORECASE)
_COUNT_CALL = re.compile(r"COUNT\s*\(", re.IGNORECASE)
_DISTINCT = re.compile(r"DISTINCT", re.IGNORECASE)


@dataclass(frozen=True)
class DetectedPattern:
    """A known correctness or performance anti-pattern found in a query."""
    type: str
    severity: str  # low, medium, high
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "severity": self.severity, "message": self.message}


def detect_patterns(structure: SqlStructure) -> List[DetectedPattern]:
    """
    Run every detector over a parsed structure.

    The output order is fixed: join explosion, COUNT(*) with joins, missing
    DISTINCT, non-sargable filters, WordPress meta queries, missing GROUP BY.
    """
    patterns: List[DetectedPattern] = []

    patterns.extend(detect_join_explosion(structure))
    patterns.extend(detect_count_star_with_joins(structure))
    patterns.extend(detect_missing_distinct(structure))
    patterns.extend(detect_non_sargable_filters(structure))
    patterns.extend(detect_wordpress_meta(structure))
    patterns.extend(detect_missing_group_by(structure))

    return patterns


def detect_join_explosion(structure: SqlStructure) -> List[DetectedPattern]:
    patterns = []

    left_joins = [join for join in structure.joins if join.join_type == "LEFT"]
    if len(left_joins) >= 2:
        patterns.append(DetectedPattern(
            type="join_explosion",
            severity="high",
            message=(
                f"Multiple LEFT JOINs detected ({len(left_joins)}). "
                "This can cause cartesian product and row multiplication."
            ),
        ))

    if len(structure.joins) >= 3 and not structure.aggregates:
        patterns.append(DetectedPattern(
            type="join_chain_without_aggregation",
            severity="medium",
            message=(
                f"{len(structure.joins)} JOINs without aggregation may indicate "
                "unnecessary complexity or missing GROUP BY."
            ),
        ))

    return patterns


def detect_count_star_with_joins(structure: SqlStructure) -> List[DetectedPattern]:
    has_count_star = any(_COUNT_STAR.search(agg) for agg in structure.aggregates)

    if has_count_star and structure.joins:
        return [DetectedPattern(
            type="count_star_with_joins",
            severity="high",
            message=(
                "COUNT(*) with JOINs will count duplicated rows. "
                "Consider using COUNT(DISTINCT primary_key) or a subquery."
            ),
        )]
    return []


def detect_missing_distinct(structure: SqlStructure) -> List[DetectedPattern]:
    has_counts = any(_COUNT_CALL.search(agg) for agg in structure.aggregates)
    has_distinct = any(_DISTINCT.search(agg) for agg in structure.aggregates)

    if has_counts and not has_distinct and len(structure.joins) >= 2:
        return [DetectedPattern(
            type="missing_distinct",
            severity="high",
            message="COUNT without DISTINCT in a multi-JOIN query will likely produce incorrect results.",
        )]
    return []


def detect_non_sargable_filters(structure: SqlStructure) -> List[DetectedPattern]:
    """One pattern per filter label that prevents index usage."""
    patterns = []

    for label in structure.filters:
        if label == LEADING_WILDCARD_LIKE:
            patterns.append(DetectedPattern(
                type="non_sargable_like",
                severity="high",
                message='LIKE with leading wildcard (LIKE "%...") prevents index usage and causes full table scans.',
            ))
        elif label == OR_CONDITION:
            patterns.append(DetectedPattern(
                type="non_sargable_or",
                severity="medium",
                message="OR conditions can prevent index usage. Consider using UNION or IN clauses instead.",
            ))
        elif label == CASE_CONVERSION:
            patterns.append(DetectedPattern(
                type="non_sargable_case_conversion",
                severity="medium",
                message=(
                    "LOWER()/UPPER() functions on indexed columns prevent index usage. "
                    "Use case-insensitive collation or functional indexes."
                ),
            ))

    return patterns


def detect_wordpress_meta(structure: SqlStructure) -> List[DetectedPattern]:
    if WORDPRESS_META_QUERY in structure.filters:
        return [DetectedPattern(
            type="wordpress_meta_query",
            severity="high",
            message=(
                "WordPress meta_query pattern detected. Multiple JOINs on wp_postmeta cause "
                "severe performance issues. Consider custom tables or caching."
            ),
        )]
    return []


def detect_missing_group_by(structure: SqlStructure) -> List[DetectedPattern]:
    # Might be intentional (a whole-table aggregate); reported as medium.
    if structure.aggregates and not structure.group_by:
        return [DetectedPattern(
            type="missing_group_by",
            severity="medium",
            message=(
                "Aggregation functions found without GROUP BY. "
                "Verify if this is intentional or if GROUP BY is missing."
            ),
        )]
    return []

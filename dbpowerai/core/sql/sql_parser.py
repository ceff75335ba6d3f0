"""
Coarse structural extraction of SQL text.

This is a best-effort regex scanner over whitespace-normalized text, not a SQL
front end: there is no grammar, no nesting awareness and no understanding of
string literals. The pattern detector is calibrated against exactly this
behavior, so false positives and negatives are expected and tolerated.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_IDENT = r"[a-zA-Z0-9_`.\[\]]+"
_JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL", "CROSS")

_FROM_PATTERN = re.compile(rf"\bFROM\s+({_IDENT})", re.IGNORECASE)
_JOIN_PATTERN = re.compile(
    rf"(?:\b(INNER|LEFT|RIGHT|FULL|CROSS)\s+)?(?:OUTER\s+)?\bJOIN\s+({_IDENT})",
    re.IGNORECASE,
)
# Where one join clause ends: the next join or the next top-level clause keyword.
_JOIN_BOUNDARY = re.compile(
    r"\b(?:(?:INNER|LEFT|RIGHT|FULL|CROSS)\s+)?(?:OUTER\s+)?JOIN\b"
    r"|\bWHERE\b|\bGROUP\s+BY\b|\bORDER\s+BY\b|\bHAVING\b|\bLIMIT\b|\bUNION\b",
    re.IGNORECASE,
)
_ON_PATTERN = re.compile(r"\bON\s+(.+)$", re.IGNORECASE)
_USING_PATTERN = re.compile(r"\bUSING\s*(\(.*?\))", re.IGNORECASE)
_AGGREGATE_PATTERN = re.compile(r"\b(?:COUNT|SUM|AVG|MAX|MIN|GROUP_CONCAT)\s*\([^)]+\)", re.IGNORECASE)
_WHERE_PATTERN = re.compile(
    r"\bWHERE\s+(.+?)(?=\s+(?:GROUP\s+BY|ORDER\s+BY|LIMIT|HAVING)\b|$)", re.IGNORECASE
)
_GROUP_BY_PATTERN = re.compile(
    r"\bGROUP\s+BY\s+(.+?)(?=\s+(?:HAVING|ORDER\s+BY|LIMIT|UNION)\b|\)|;|$)", re.IGNORECASE
)
_AND_SPLIT = re.compile(r"\bAND\b", re.IGNORECASE)

# Filter-shape labels, in the order they are reported.
LEADING_WILDCARD_LIKE = "LIKE with leading wildcard"
OR_CONDITION = "OR condition"
CASE_CONVERSION = "Case conversion function (LOWER/UPPER)"
WORDPRESS_META_QUERY = "WordPress meta_query pattern"
COMPLEX_WHERE = "Complex WHERE clause with many conditions"

COMPLEX_WHERE_MIN_PARTS = 6


@dataclass
class JoinClause:
    """One JOIN as it appears in the query text."""
    join_type: str
    target_table: str
    condition: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.join_type, "to": self.target_table, "condition": self.condition}


@dataclass
class SqlStructure:
    """Structural summary of a query, recomputed for every request."""
    tables: List[str] = field(default_factory=list)
    joins: List[JoinClause] = field(default_factory=list)
    aggregates: List[str] = field(default_factory=list)
    filters: List[str] = field(default_factory=list)
    group_by: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tables": list(self.tables),
            "joins": [join.to_dict() for join in self.joins],
            "aggregates": list(self.aggregates),
            "filters": list(self.filters),
            "groupBy": list(self.group_by),
        }


def normalize_sql(sql: Optional[str]) -> str:
    """Collapse every whitespace run to one space and trim the ends."""
    if not sql:
        return ""
    return re.sub(r"\s+", " ", str(sql)).strip()


def clean_table_name(name: str) -> str:
    """Strip backtick and bracket quoting from an identifier."""
    return re.sub(r"[`\[\]]", "", name).strip()


def parse_sql(sql: Optional[str]) -> SqlStructure:
    """
    Extract tables, joins, aggregates, filter smells and GROUP BY columns.

    Total for any string input: malformed or empty SQL yields empty collections.
    """
    normalized = normalize_sql(sql)
    if not normalized:
        return SqlStructure()

    return SqlStructure(
        tables=extract_tables(normalized),
        joins=extract_joins(normalized),
        aggregates=extract_aggregates(normalized),
        filters=extract_filters(normalized),
        group_by=extract_group_by(normalized),
    )


def extract_tables(query: str) -> List[str]:
    """First FROM target plus every JOIN target, de-duplicated in first-seen order."""
    tables: List[str] = []

    from_match = _FROM_PATTERN.search(query)
    if from_match:
        tables.append(clean_table_name(from_match.group(1)))

    for match in _JOIN_PATTERN.finditer(query):
        tables.append(clean_table_name(match.group(2)))

    seen = set()
    unique_tables = []
    for table in tables:
        if table and table not in seen:
            seen.add(table)
            unique_tables.append(table)
    return unique_tables


def extract_joins(query: str) -> List[JoinClause]:
    """Every JOIN in source order; repeated joins are kept."""
    joins: List[JoinClause] = []

    for match in _JOIN_PATTERN.finditer(query):
        join_type = (match.group(1) or "INNER").upper()
        target_table = clean_table_name(match.group(2))

        boundary = _JOIN_BOUNDARY.search(query, match.end())
        segment = query[match.end():boundary.start() if boundary else len(query)]

        condition = ""
        on_match = _ON_PATTERN.search(segment)
        if on_match:
            condition = on_match.group(1).strip()
        else:
            using_match = _USING_PATTERN.search(segment)
            if using_match:
                condition = f"USING {using_match.group(1).strip()}"

        joins.append(JoinClause(join_type=join_type, target_table=target_table, condition=condition))

    return joins


def extract_aggregates(query: str) -> List[str]:
    """Aggregate calls with their argument text, verbatim, duplicates preserved."""
    return [match.group(0).strip() for match in _AGGREGATE_PATTERN.finditer(query)]


def extract_filters(query: str) -> List[str]:
    """Labels for filter shapes that tend to defeat indexes."""
    filters: List[str] = []

    if re.search(r"\bLIKE\s+['\"]%", query, re.IGNORECASE):
        filters.append(LEADING_WILDCARD_LIKE)

    if re.search(r"\bOR\b", query, re.IGNORECASE):
        filters.append(OR_CONDITION)

    if re.search(r"\b(?:LOWER|UPPER)\s*\(", query, re.IGNORECASE):
        filters.append(CASE_CONVERSION)

    if re.search(r"meta_key|meta_value", query, re.IGNORECASE):
        filters.append(WORDPRESS_META_QUERY)

    where_match = _WHERE_PATTERN.search(query)
    if where_match and len(_AND_SPLIT.split(where_match.group(1))) >= COMPLEX_WHERE_MIN_PARTS:
        filters.append(COMPLEX_WHERE)

    return filters


def extract_group_by(query: str) -> List[str]:
    """Raw GROUP BY expressions, comma-split and trimmed."""
    match = _GROUP_BY_PATTERN.search(query)
    if not match:
        return []
    return [column.strip() for column in match.group(1).split(",") if column.strip()]

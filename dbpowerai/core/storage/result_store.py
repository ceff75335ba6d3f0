# dbpowerai/core/storage/result_store.py

"""
Append-only persistence for analysis output.

Tables:
    llm_validation_failures  rewrites rejected twice by the validator, kept for human review
    query_history            every /analyze and /webhook result
    advisor_queries          structure-aware advisor reports
    ai_tests                 validation suite runs

Rows produced from LLM prompts carry the PROMPT_VERSION they were built with.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import (
    Column, DateTime, Integer, MetaData, String, Table, Text, create_engine, func, select
)
from sqlalchemy.engine import Engine

from dbpowerai.core.agent.prompts import PROMPT_VERSION

logger = logging.getLogger(__name__)

metadata = MetaData()

llm_validation_failures = Table(
    "llm_validation_failures", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("original_query", Text, nullable=False),
    Column("attempted_rewrite", Text, nullable=False),
    Column("validator_explanation", Text, nullable=False),
    Column("prompt_version", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

query_history = Table(
    "query_history", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("input_query", Text, nullable=False),
    Column("analysis_result", Text, nullable=False),
    Column("source", String(32), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

advisor_queries = Table(
    "advisor_queries", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("raw_query", Text, nullable=False),
    Column("db_type", String(64), nullable=False),
    Column("optimized_query", Text),
    Column("suggested_indexes", Text),
    Column("bottleneck", Text),
    Column("analysis", Text),
    Column("warnings", Text),
    Column("detected_patterns", Text),
    Column("notes", Text),
    Column("schema", Text),
    Column("execution_plan", Text),
    Column("prompt_version", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

ai_tests = Table(
    "ai_tests", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("test_type", String(64), nullable=False),
    Column("input_query", Text, nullable=False),
    Column("schema", Text),
    Column("explain", Text),
    Column("result", Text),
    Column("status", String(16), nullable=False),
    Column("attempts", Integer, nullable=False),
    Column("prompt_version", String(32)),
    Column("created_at", DateTime(timezone=True), nullable=False),
)


class PersistenceSink(Protocol):
    """What the analysis workflow needs from storage."""

    def record_validation_failure(self, original_query: str, attempted_rewrite: str,
                                  validator_explanation: str) -> None:
        ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ResultStore:
    """SQLAlchemy-backed store; creates its tables on first use."""

    def __init__(self, engine: Engine):
        self.engine = engine
        metadata.create_all(self.engine)

    @classmethod
    def from_url(cls, database_url: str) -> "ResultStore":
        return cls(create_engine(database_url))

    def _insert(self, table: Table, values: Dict[str, Any]) -> int:
        values.setdefault("created_at", _now())
        with self.engine.begin() as conn:
            result = conn.execute(table.insert().values(**values))
            row_id = result.inserted_primary_key[0]
        logger.debug(f"Inserted row {row_id} into {table.name}")
        return row_id

    def record_validation_failure(self, original_query: str, attempted_rewrite: str,
                                  validator_explanation: str) -> int:
        logger.info("Recording validation failure for review")
        return self._insert(llm_validation_failures, {
            "original_query": original_query,
            "attempted_rewrite": attempted_rewrite,
            "validator_explanation": validator_explanation,
            "prompt_version": PROMPT_VERSION,
        })

    def record_analysis(self, input_query: str, analysis_result: Dict[str, Any], source: str = "analyze") -> int:
        return self._insert(query_history, {
            "input_query": input_query,
            "analysis_result": json.dumps(analysis_result),
            "source": source,
        })

    def record_advisor_report(self, query: str, db_type: str, report: Dict[str, Any],
                              schema: Optional[str] = None, execution_plan: Optional[str] = None) -> int:
        """Persist an advisor report given in its wire form (see AdvisorReport.to_dict)."""
        return self._insert(advisor_queries, {
            "raw_query": query,
            "db_type": db_type,
            "optimized_query": report.get("rewrittenQuery"),
            "suggested_indexes": report.get("recommendedIndexes"),
            "bottleneck": report.get("bottleneck"),
            "analysis": report.get("analysis"),
            "warnings": json.dumps(report.get("warnings") or []),
            "detected_patterns": json.dumps(report.get("detectedPatterns") or []),
            "notes": report.get("notes"),
            "schema": schema,
            "execution_plan": execution_plan,
            "prompt_version": PROMPT_VERSION,
        })

    def record_test_run(self, test_type: str, input_query: str, result: Dict[str, Any], status: str,
                        attempts: int, schema: Optional[str] = None, explain: Optional[str] = None) -> int:
        return self._insert(ai_tests, {
            "test_type": test_type,
            "input_query": input_query,
            "schema": schema,
            "explain": explain,
            "result": json.dumps(result),
            "status": status,
            "attempts": attempts,
            "prompt_version": PROMPT_VERSION,
        })

    def list_validation_failures(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent validation failures first."""
        statement = (
            select(llm_validation_failures)
            .order_by(llm_validation_failures.c.id.desc())
            .limit(limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(statement).mappings().all()
        return [dict(row) for row in rows]

    def count_rows(self, table_name: str) -> int:
        table = metadata.tables[table_name]
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()

"""
Tests for the structure-aware advisor
"""

import json

import pytest

from dbpowerai.core.agent.llm_tracker import LLMCallError
from dbpowerai.core.sql.sql_advisor import NO_BOTTLENECK, AdvisorError, SQLAdvisor

QUERY = (
    "SELECT * FROM orders LEFT JOIN users ON orders.user_id=users.id "
    "LEFT JOIN items ON orders.item_id = items.id WHERE status = 'PAID'"
)

ADVISOR_REPLY = json.dumps({
    "analysis": "Two LEFT JOINs fan out orders. SEMANTIC CHECK: PASSED",
    "warnings": ["Row multiplication from items"],
    "rewrittenQuery": "SELECT o.id FROM orders o WHERE o.status = 'PAID'",
    "recommendedIndexes": "CREATE INDEX idx_orders_status ON orders(status);",
    "notes": "Filters preserved.",
})


class TestSQLAdvisor:

    def test_report_from_structure_and_reply(self, scripted_llm):
        llm = scripted_llm([ADVISOR_REPLY])

        report = SQLAdvisor(llm).optimize(QUERY, "PostgreSQL", schema="orders(id, status)")

        assert llm.call_types == ["advisor"]
        assert "Database engine: PostgreSQL" in llm.prompts[0]
        assert "orders(id, status)" in llm.prompts[0]
        assert report.rewritten_query == "SELECT o.id FROM orders o WHERE o.status = 'PAID'"
        assert report.warnings == ["Row multiplication from items"]
        assert [pattern.type for pattern in report.detected_patterns] == ["join_explosion"]
        assert report.bottleneck.startswith("Multiple LEFT JOINs detected (2)")
        assert report.structure.tables == ["orders", "users", "items"]

    def test_bottleneck_joins_messages(self, scripted_llm):
        sql = "SELECT id FROM users WHERE LOWER(email) = 'a' OR name LIKE '%x'"
        report = SQLAdvisor(scripted_llm([ADVISOR_REPLY])).optimize(sql, "MySQL")

        assert report.bottleneck == "; ".join(pattern.message for pattern in report.detected_patterns)
        assert len(report.detected_patterns) == 3

    def test_no_patterns(self, scripted_llm):
        report = SQLAdvisor(scripted_llm([ADVISOR_REPLY])).optimize("SELECT id FROM users", "SQLite")
        assert report.bottleneck == NO_BOTTLENECK

    def test_to_dict_wire_keys(self, scripted_llm):
        data = SQLAdvisor(scripted_llm([ADVISOR_REPLY])).optimize(QUERY, "PostgreSQL").to_dict()

        assert set(data) == {
            "analysis", "warnings", "rewrittenQuery", "recommendedIndexes", "notes",
            "detectedPatterns", "bottleneck",
        }
        assert data["detectedPatterns"][0]["type"] == "join_explosion"

    def test_single_warning_string(self, scripted_llm):
        reply = json.dumps({"analysis": "ok", "warnings": "Only one", "rewrittenQuery": "SELECT 1"})
        report = SQLAdvisor(scripted_llm([reply])).optimize("SELECT 1", "PostgreSQL")

        assert report.warnings == ["Only one"]
        assert report.notes == ""

    @pytest.mark.parametrize("query,db", [("", "PostgreSQL"), ("   ", "PostgreSQL"), ("SELECT 1", ""), ("SELECT 1", " ")])
    def test_blank_inputs(self, scripted_llm, query, db):
        llm = scripted_llm([])
        with pytest.raises(AdvisorError):
            SQLAdvisor(llm).optimize(query, db)
        assert llm.calls == 0

    def test_llm_failure(self, scripted_llm):
        with pytest.raises(AdvisorError, match="Failed to analyze query"):
            SQLAdvisor(scripted_llm([LLMCallError("timeout")])).optimize(QUERY, "PostgreSQL")

    @pytest.mark.parametrize("reply", [
        "definitely not json",
        "[\"a\"]",
        json.dumps({"analysis": "ok", "warnings": 3, "rewrittenQuery": "SELECT 1"}),
        json.dumps({"analysis": "ok", "warnings": {"w": 1}, "rewrittenQuery": "SELECT 1"}),
    ])
    def test_malformed_reply(self, scripted_llm, reply):
        with pytest.raises(AdvisorError, match="Invalid AI response format"):
            SQLAdvisor(scripted_llm([reply])).optimize(QUERY, "PostgreSQL")

"""
Tests for the local keyword-based analyzer
"""

import pytest

from dbpowerai.core.sql.analysis_result import AnalysisResult, estimate_tokens, max_severity
from dbpowerai.core.sql.heuristic_analyzer import NO_ISSUES, fake_analysis, score_to_severity


class TestFakeAnalysis:

    def test_select_star_penalty_and_rewrite(self):
        result = fake_analysis("SELECT * FROM t")

        assert result.score == 70
        assert result.severity == "medium"
        assert "SELECT *" not in result.rewritten_query
        assert result.rewritten_query == "SELECT id, status, created_at FROM t"
        assert result.speedup_estimate == 0.35

    def test_join_with_on_is_not_penalized(self):
        result = fake_analysis("SELECT a FROM t JOIN u ON t.id=u.id")

        assert "JOIN without proper ON clause" not in result.issues
        assert result.score == 85
        assert result.severity == "low"

    def test_join_without_on_is_critical(self):
        result = fake_analysis("SELECT a FROM t JOIN u")

        assert result.severity == "critical"
        assert result.score == 60
        assert result.issues == ("JOIN without proper ON clause",)

    def test_join_with_using_is_not_penalized(self):
        assert fake_analysis("SELECT a FROM t JOIN u USING (id)").score == 85

    def test_end_to_end_query(self):
        sql = (
            "SELECT * FROM orders LEFT JOIN users ON orders.user_id=users.id "
            "LEFT JOIN items ON orders.item_id = items.id WHERE status = 'PAID'"
        )
        result = fake_analysis(sql)

        assert result.score <= 70
        assert result.score == 50
        assert result.severity in ("high", "critical")
        assert result.suggested_index == "CREATE INDEX idx_orders_status\nON orders(status);"
        assert result.speedup_estimate == 0.5

    def test_no_issues(self):
        result = fake_analysis("SELECT id FROM t")

        assert result.issues == (NO_ISSUES,)
        assert result.score == 85
        assert result.severity == "low"
        assert result.speedup_estimate == 0.1
        assert result.suggested_index == ""
        assert result.rewritten_query == "SELECT id FROM t"

    def test_where_mentioning_index_skips_index_penalty(self):
        result = fake_analysis("SELECT id FROM t WHERE index_col = 1")

        assert result.score == 85
        assert result.suggested_index == ""

    def test_leading_wildcard_escalates_to_high(self):
        result = fake_analysis("SELECT id FROM users WHERE name LIKE '%bob'")

        assert result.score == 50
        assert result.severity == "high"
        assert result.suggested_index == "CREATE INDEX idx_users_name\nON users(name);"

    @pytest.mark.parametrize("sql,expected", [
        ("SELECT id FROM t ORDER BY created_at", "SELECT id FROM t ORDER BY created_at\nLIMIT 100;"),
        ("SELECT id FROM t ORDER BY created_at;", "SELECT id FROM t ORDER BY created_at\nLIMIT 100;"),
    ])
    def test_order_by_without_limit_gets_limit(self, sql, expected):
        result = fake_analysis(sql)

        assert result.rewritten_query == expected
        assert result.score == 75
        assert result.severity == "low"

    def test_order_by_with_limit_is_untouched(self):
        result = fake_analysis("SELECT id FROM t ORDER BY created_at LIMIT 10")
        assert result.rewritten_query == "SELECT id FROM t ORDER BY created_at LIMIT 10"
        assert result.score == 85

    def test_or_is_matched_as_a_word(self):
        assert fake_analysis("SELECT id FROM orders").score == 85
        assert "OR conditions may prevent index optimization" in fake_analysis(
            "SELECT id FROM t WHERE a = 1 OR b = 2"
        ).issues

    def test_subquery_penalty(self):
        result = fake_analysis("SELECT id FROM t WHERE id IN (SELECT t_id FROM u)")

        assert result.score == 53
        assert "Subquery detected - consider using JOIN instead" in result.issues

    def test_score_is_clamped_at_zero(self):
        sql = "SELECT * FROM a JOIN b WHERE x LIKE '%y' OR z IN (SELECT 1) ORDER BY c"
        result = fake_analysis(sql)

        assert result.score == 0
        assert result.severity == "critical"
        assert result.speedup_estimate == 0.9
        assert len(result.issues) == 7

    def test_is_deterministic(self):
        sql = "SELECT * FROM t WHERE a = 1 ORDER BY b"
        assert fake_analysis(sql) == fake_analysis(sql)

    def test_wire_format_has_no_validator_fields(self):
        data = fake_analysis("SELECT * FROM t").to_dict()

        assert set(data) == {"score", "severity", "issues", "suggestedIndex", "rewrittenQuery", "speedupEstimate"}
        assert isinstance(data["issues"], list)


class TestSeverityHelpers:

    @pytest.mark.parametrize("score,expected", [
        (0, "critical"), (39, "critical"), (40, "high"), (59, "high"),
        (60, "medium"), (74, "medium"), (75, "low"), (100, "low"),
    ])
    def test_score_ladder(self, score, expected):
        assert score_to_severity(score) == expected

    def test_max_severity(self):
        assert max_severity("low", "critical", "medium") == "critical"
        assert max_severity("high", "medium") == "high"

    def test_validated_result_wire_format(self):
        result = AnalysisResult(
            score=85, severity="medium", issues=("a",), suggested_index="", rewritten_query="SELECT 1",
            speedup_estimate=0.5, validator_status="valid", semantic_warning=None,
        )
        data = result.to_dict()

        assert data["validator_status"] == "valid"
        assert data["semantic_warning"] is None

    def test_estimate_tokens(self):
        assert estimate_tokens("a" * 9) == 3
        assert estimate_tokens("a" * 8, schema="b" * 4, explain="c" * 4) == 4
        assert estimate_tokens("") == 0

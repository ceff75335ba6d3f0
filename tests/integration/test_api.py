"""
Integration tests for the HTTP surface
"""

import logging
import math

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from dbpowerai.api import main_app
from dbpowerai.config.startup_config import reset_startup_config
from dbpowerai.core.agent.llm_tracker import reset_global_tracker
from dbpowerai.core.agent.validation_suite import SuiteReport
from dbpowerai.core.sql.analysis_result import AnalysisResult
from dbpowerai.core.sql.sql_advisor import AdvisorError, AdvisorReport

QUERY = (
    "SELECT * FROM orders LEFT JOIN users ON orders.user_id=users.id "
    "LEFT JOIN items ON orders.item_id = items.id WHERE status = 'PAID'"
)
API_KEY = "test-webhook-key"
AUTH = {"Authorization": f"Bearer {API_KEY}"}


@pytest.fixture
def client(tmp_path, monkeypatch):
    """API client backed by a throwaway SQLite result store, no OpenAI key"""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'results' / 'test.db'}")
    monkeypatch.setenv("SLOWQUERY_API_KEY", API_KEY)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    reset_startup_config()

    with TestClient(main_app.app) as test_client:
        yield test_client

    reset_startup_config()
    reset_global_tracker()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["result_store"] is True
        assert data["components"]["openai_configured"] is False
        assert data["llm_usage"]["total_calls"] == 0


class TestAnalyze:

    def test_heuristic_analysis_without_key(self, client):
        response = client.post("/analyze", json={"query": QUERY})

        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 50
        assert data["severity"] == "high"
        assert data["suggestedIndex"] == "CREATE INDEX idx_orders_status\nON orders(status);"
        assert "validator_status" not in data
        assert data["estimatedTokens"] == math.ceil(len(QUERY) / 4)
        assert main_app.RESULT_STORE.count_rows("query_history") == 1

    def test_validated_analysis_with_key(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        validated = AnalysisResult(
            score=85, severity="medium", issues=("Full scan",), suggested_index="",
            rewritten_query="SELECT id FROM orders", speedup_estimate=0.5,
            validator_status="valid", semantic_warning=None,
        )

        with patch("dbpowerai.api.main_app.analyze_with_validation", return_value=validated) as analyze:
            response = client.post("/analyze", json={"query": QUERY, "schema": "orders(id)", "explain": "Seq Scan"})

        assert response.status_code == 200
        assert response.json()["validator_status"] == "valid"
        args, kwargs = analyze.call_args
        assert args == (QUERY, "sk-test")
        assert kwargs["schema"] == "orders(id)"
        assert kwargs["explain"] == "Seq Scan"
        assert kwargs["persistence_sink"] is main_app.RESULT_STORE

    def test_blank_query(self, client):
        assert client.post("/analyze", json={"query": "   "}).status_code == 400

    def test_missing_query(self, client):
        response = client.post("/analyze", json={"schema": "orders(id)"})

        assert response.status_code == 422
        assert response.json()["message"] == "Request validation failed"


class TestOptimize:

    def test_requires_openai_key(self, client):
        response = client.post("/optimize", json={"query": QUERY, "db": "PostgreSQL"})
        assert response.status_code == 503

    def test_requires_db(self, client):
        assert client.post("/optimize", json={"query": QUERY, "db": " "}).status_code == 400

    def test_advisor_usage_is_logged(self, client, monkeypatch, caplog):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        report = AdvisorReport(
            analysis="ok", warnings=[], rewritten_query="SELECT 1", recommended_indexes="", notes="",
        )

        with patch("dbpowerai.api.main_app.SQLAdvisor") as advisor_class, \
                caplog.at_level(logging.INFO, logger="dbpowerai.api.main_app"):
            advisor_class.return_value.optimize.return_value = report
            client.post("/optimize", json={"query": QUERY, "db": "PostgreSQL"})

        assert "Advisor used 0 tokens in 0 call(s)" in caplog.text

    def test_report_is_returned_and_recorded(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        report = AdvisorReport(
            analysis="Fan-out", warnings=["w"], rewritten_query="SELECT 1",
            recommended_indexes="CREATE INDEX i ON orders(status);", notes="ok",
        )

        with patch("dbpowerai.api.main_app.SQLAdvisor") as advisor_class:
            advisor_class.return_value.optimize.return_value = report
            response = client.post(
                "/optimize", json={"query": QUERY, "db": "PostgreSQL", "executionPlan": "Seq Scan"}
            )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["rewrittenQuery"] == "SELECT 1"
        assert body["data"]["id"] == 1
        assert advisor_class.return_value.optimize.call_args.kwargs["execution_plan"] == "Seq Scan"
        assert main_app.RESULT_STORE.count_rows("advisor_queries") == 1

    def test_advisor_failure_is_bad_gateway(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        with patch("dbpowerai.api.main_app.SQLAdvisor") as advisor_class:
            advisor_class.return_value.optimize.side_effect = AdvisorError("Invalid AI response format")
            response = client.post("/optimize", json={"query": QUERY, "db": "PostgreSQL"})

        assert response.status_code == 502
        assert response.json()["detail"] == "Invalid AI response format"


class TestWebhook:

    def test_missing_authorization(self, client):
        assert client.post("/webhook", json={"query": QUERY}).status_code == 401

    def test_wrong_key(self, client):
        response = client.post("/webhook", json={"query": QUERY}, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_heuristic_analysis(self, client):
        response = client.post("/webhook", json={"query": QUERY}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["score"] == 50
        assert main_app.RESULT_STORE.count_rows("query_history") == 1

    def test_slack_notification_when_configured(self, client, monkeypatch):
        monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/x")

        with patch("dbpowerai.api.main_app.send_slack_message", return_value=True) as send:
            response = client.post("/webhook", json={"query": QUERY, "schema": "orders(id)"}, headers=AUTH)

        assert response.status_code == 200
        args, kwargs = send.call_args
        assert args[0] == "https://hooks.slack.test/x"
        assert args[1]["sql"] == QUERY
        assert args[1]["schema"] == "orders(id)"
        assert kwargs["timeout"] == 5.0

    def test_no_slack_without_url(self, client):
        with patch("dbpowerai.api.main_app.send_slack_message") as send:
            client.post("/webhook", json={"query": QUERY}, headers=AUTH)
        send.assert_not_called()


class TestAdminRunTests:

    def test_requires_authorization(self, client):
        response = client.post("/admin/run-tests", json={"tests": [{"query": QUERY}]})
        assert response.status_code == 401

    def test_empty_tests(self, client):
        assert client.post("/admin/run-tests", json={"tests": []}, headers=AUTH).status_code == 400

    def test_requires_openai_key(self, client):
        response = client.post("/admin/run-tests", json={"tests": [{"query": QUERY}]}, headers=AUTH)
        assert response.status_code == 503

    def test_runs_suite(self, client, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

        with patch("dbpowerai.api.main_app.build_orchestrator") as build, \
                patch("dbpowerai.api.main_app.run_validation_suite",
                      return_value=SuiteReport(total=1, passed=1, failed=0)) as run_suite:
            response = client.post(
                "/admin/run-tests",
                json={"tests": [{"query": QUERY, "schema": "orders(id)", "test_type": "join"}]},
                headers=AUTH,
            )

        assert response.status_code == 200
        assert response.json() == {"total": 1, "passed": 1, "failed": 0, "tests": []}
        build.assert_called_once()
        tests = run_suite.call_args.args[1]
        assert tests == [{"query": QUERY, "schema": "orders(id)", "explain": None, "test_type": "join"}]
